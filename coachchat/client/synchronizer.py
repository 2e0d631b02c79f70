# -*- coding: utf-8 -*-
"""Chat client: message synchronizer.

All updates to a room's message list go through :func:`merge_messages`:
union by id, sorted by ``(created_at, id)``. Merges run synchronously on the
event loop, so no partially merged list is ever observable.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Iterable, List, Optional, Sequence

from .models import InboundFrame, Message

logger = logging.getLogger(__name__)

FetchHistory = Callable[[], Awaitable[List[Message]]]
ChangeListener = Callable[[List[Message]], None]


def merge_messages(current: Sequence[Message], incoming: Iterable[Message]) -> List[Message]:
    """Union of both sources by message id; the incoming copy of a known id wins."""
    by_id = {m.id: m for m in current}
    for message in incoming:
        by_id[message.id] = message
    return sorted(by_id.values(), key=lambda m: m.sort_key)


class MessageSynchronizer:
    """Ordered, de-duplicated message list of one room."""

    def __init__(
        self,
        room_id: int,
        fetch: FetchHistory,
        on_change: Optional[ChangeListener] = None,
    ) -> None:
        self.room_id = room_id
        self._fetch = fetch
        self._on_change = on_change
        self._messages: List[Message] = []
        self._closed = False

    @property
    def messages(self) -> List[Message]:
        return list(self._messages)

    @property
    def last_message(self) -> Optional[Message]:
        return self._messages[-1] if self._messages else None

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True

    def apply_history(self, messages: Iterable[Message]) -> bool:
        return self._merge(messages)

    def apply_pushed(self, message: Message) -> bool:
        return self._merge([message])

    async def refresh(self) -> bool:
        """Re-fetch the full history and merge it in."""
        messages = await self._fetch()
        if self._closed:
            logger.debug("Discarding history for closed room %s", self.room_id)
            return False
        return self.apply_history(messages)

    async def handle_frame(self, frame: InboundFrame) -> bool:
        if not frame.is_chat_message:
            return False
        if frame.message_data is not None:
            return self.apply_pushed(frame.message_data)
        # Bare signal: trust REST history rather than guessing what was missed.
        return await self.refresh()

    def _merge(self, incoming: Iterable[Message]) -> bool:
        if self._closed:
            return False
        accepted = []
        for message in incoming:
            if message.room_id is not None and message.room_id != self.room_id:
                logger.warning("Ignoring message %s for room %s in room %s", message.id, message.room_id, self.room_id)
                continue
            accepted.append(message)
        merged = merge_messages(self._messages, accepted)
        if merged == self._messages:
            return False
        self._messages = merged
        if self._on_change is not None:
            self._on_change(self.messages)
        return True
