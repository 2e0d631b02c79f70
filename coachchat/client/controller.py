# -*- coding: utf-8 -*-
"""Chat client: per-room chat view controller."""

from __future__ import annotations

import logging
from typing import Any, Callable, List, Optional

from ..config import Settings, settings as default_settings
from ..errors import AuthExpiredError, ChatError, GatewayError
from .channel import FrameHandler, RealtimeChannel, StatusListener
from .gateway import ChatGateway
from .models import (
    Attachment,
    ConnectionState,
    ConnectionStatus,
    InboundFrame,
    Message,
    MessageDraft,
    Party,
)
from .session import SessionStore
from .synchronizer import ChangeListener, MessageSynchronizer

logger = logging.getLogger(__name__)

ChannelFactory = Callable[[int, FrameHandler, StatusListener], RealtimeChannel]
ErrorListener = Callable[[ChatError], None]


class ChatViewController:
    """Orchestrates one open chat room.

    ``enter()`` loads the caller identity, opens the realtime channel and merges
    the REST history. ``exit()`` closes the channel; anything that completes
    afterwards (late REST responses, stray frames) is dropped.
    Role-agnostic: clients and dietitians use the same controller.
    """

    def __init__(
        self,
        room_id: int,
        *,
        gateway: ChatGateway,
        session: SessionStore,
        settings: Optional[Settings] = None,
        channel_factory: Optional[ChannelFactory] = None,
        on_change: Optional[ChangeListener] = None,
        on_error: Optional[ErrorListener] = None,
        on_status: Optional[StatusListener] = None,
    ) -> None:
        self.room_id = int(room_id)
        self.gateway = gateway
        self.session = session
        self._settings = settings or default_settings
        self._channel_factory = channel_factory or self._default_channel
        self._on_change = on_change
        self._on_error = on_error
        self._on_status = on_status
        self._draft = MessageDraft()
        self._synchronizer: Optional[MessageSynchronizer] = None
        self._channel: Optional[RealtimeChannel] = None
        self._current_user: Optional[Party] = None
        self._generation = 0
        self._active = False

    async def __aenter__(self) -> "ChatViewController":
        await self.enter()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.exit()

    # ---- state ----

    @property
    def active(self) -> bool:
        return self._active

    @property
    def current_user(self) -> Optional[Party]:
        return self._current_user

    @property
    def messages(self) -> List[Message]:
        return self._synchronizer.messages if self._synchronizer is not None else []

    @property
    def draft(self) -> MessageDraft:
        return self._draft

    @property
    def connection_status(self) -> ConnectionStatus:
        if self._channel is None:
            return ConnectionStatus.CLOSED
        return self._channel.status

    @property
    def disconnected(self) -> bool:
        return self.connection_status == ConnectionStatus.FAILED

    @property
    def connection_state(self) -> ConnectionState:
        last = self._synchronizer.last_message if self._synchronizer is not None else None
        return ConnectionState(
            room_id=self.room_id,
            status=self.connection_status,
            attempt=self._channel.attempt if self._channel is not None else 0,
            last_message_id=last.id if last else None,
            last_message_at=last.created_at if last else None,
        )

    def is_mine(self, message: Message) -> bool:
        return self._current_user is not None and message.sender.id == self._current_user.id

    # ---- lifecycle ----

    async def enter(self) -> None:
        if self._active:
            return
        self._generation += 1
        generation = self._generation
        self._active = True
        self._synchronizer = MessageSynchronizer(self.room_id, self._fetch_history, on_change=self._on_change)
        try:
            user = self.session.user
            if user is None:
                user = await self.gateway.get_current_user()
                self.session.set_user(user)
            if generation != self._generation:
                return
            self._current_user = user

            # Listen before loading history so nothing sent in between is missed;
            # the synchronizer absorbs the overlap.
            self._channel = self._channel_factory(self.room_id, self._handle_frame, self._handle_status)
            self._channel.start()

            history = await self.gateway.list_messages(self.room_id)
        except BaseException:
            if generation == self._generation:
                await self.exit()
            raise
        if generation != self._generation:
            logger.debug("Dropping history for room %s: view exited", self.room_id)
            return
        self._synchronizer.apply_history(history)
        logger.info("Entered room %s with %s messages", self.room_id, len(history))

    async def exit(self) -> None:
        self._generation += 1
        self._active = False
        if self._synchronizer is not None:
            self._synchronizer.close()
        if self._channel is not None:
            await self._channel.close()
        logger.info("Left room %s", self.room_id)

    # ---- draft ----

    def set_content(self, content: str) -> None:
        self._draft = self._draft.model_copy(update={"content": content})

    def stage_attachment(self, attachment: Attachment) -> None:
        """Stage an image or a file; it replaces any attachment already staged."""
        self._draft = self._draft.model_copy(update={"attachment": attachment})

    def clear_attachment(self) -> None:
        self._draft = self._draft.model_copy(update={"attachment": None})

    async def send(self, content: Optional[str] = None, attachment: Optional[Attachment] = None) -> Message:
        """Send the draft (optionally replacing its text/attachment first).

        Raises :class:`~coachchat.errors.ValidationError` before any network call
        when there is nothing to send. On failure the draft is left untouched so the
        user can retry.
        """
        if not self._active:
            raise ChatError(f"Room {self.room_id} is not open")
        if content is not None:
            self.set_content(content)
        if attachment is not None:
            self.stage_attachment(attachment)

        draft = self._draft
        draft.ensure_sendable()
        generation = self._generation
        message = await self.gateway.send_message(self.room_id, draft)
        if generation == self._generation and self._synchronizer is not None:
            self._synchronizer.apply_pushed(message)
        if self._draft is draft:
            self._draft = MessageDraft()
        return message

    async def refresh(self) -> None:
        if self._synchronizer is None or not self._active:
            return
        await self._synchronizer.refresh()

    # ---- channel callbacks ----

    async def _fetch_history(self) -> List[Message]:
        return await self.gateway.list_messages(self.room_id)

    async def _handle_frame(self, frame: InboundFrame) -> None:
        synchronizer = self._synchronizer
        if not self._active or synchronizer is None:
            return
        try:
            await synchronizer.handle_frame(frame)
        except (GatewayError, AuthExpiredError) as exc:
            self._report(exc)

    def _handle_status(self, status: ConnectionStatus) -> None:
        if status == ConnectionStatus.FAILED:
            logger.warning("Room %s disconnected; re-open the room to reconnect", self.room_id)
        if self._on_status is not None:
            self._on_status(status)

    def _report(self, exc: ChatError) -> None:
        logger.warning("Room %s: %s", self.room_id, exc.message)
        if self._on_error is not None:
            self._on_error(exc)

    def _default_channel(self, room_id: int, on_frame: FrameHandler, on_status: StatusListener) -> RealtimeChannel:
        return RealtimeChannel(
            room_id,
            on_frame,
            token=self.session.token,
            settings=self._settings,
            on_status=on_status,
        )
