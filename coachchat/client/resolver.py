# -*- coding: utf-8 -*-
"""Chat client: find or create the room with a counterpart."""

from __future__ import annotations

import asyncio
import functools
import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from ..errors import GatewayError
from .gateway import ChatGateway
from .models import Party, Room
from .session import SessionStore

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def find_room(rooms: Iterable[Room], me: Party, counterpart_id: int) -> Optional[Room]:
    for room in rooms:
        if room.counterpart_for(me).id == counterpart_id:
            return room
    return None


def unique_by_counterpart(rooms: Iterable[Room], me: Party) -> List[Room]:
    """First room per counterpart, most recent conversation first."""
    seen: Dict[int, Room] = {}
    for room in rooms:
        seen.setdefault(room.counterpart_for(me).id, room)

    def _recency(room: Room) -> datetime:
        if room.last_message and room.last_message.created_at:
            return room.last_message.created_at
        return _EPOCH

    return sorted(seen.values(), key=_recency, reverse=True)


class RoomResolver:
    """Resolves the unique room between the signed-in party and a counterpart."""

    def __init__(self, gateway: ChatGateway, session: SessionStore) -> None:
        self.gateway = gateway
        self.session = session
        self._inflight: Dict[int, asyncio.Task] = {}

    async def current_user(self) -> Party:
        user = self.session.user
        if user is None:
            user = await self.gateway.get_current_user()
            self.session.set_user(user)
        return user

    async def conversations(self) -> List[Room]:
        me = await self.current_user()
        return unique_by_counterpart(await self.gateway.list_rooms(), me)

    async def resolve(self, counterpart_id: int) -> Room:
        # Concurrent resolves for one counterpart share a single lookup/create.
        task = self._inflight.get(counterpart_id)
        if task is None:
            task = asyncio.ensure_future(self._resolve(counterpart_id))
            self._inflight[counterpart_id] = task
            task.add_done_callback(functools.partial(self._forget, counterpart_id))
        return await asyncio.shield(task)

    def _forget(self, counterpart_id: int, task: asyncio.Task) -> None:
        if self._inflight.get(counterpart_id) is task:
            del self._inflight[counterpart_id]

    async def _resolve(self, counterpart_id: int) -> Room:
        me = await self.current_user()
        room = find_room(await self.gateway.list_rooms(), me, counterpart_id)
        if room is not None:
            return room

        try:
            room = await self.gateway.create_room(counterpart_id)
        except GatewayError as exc:
            logger.warning("Creating room with %s failed (%s); checking room list again", counterpart_id, exc.message)
            room = find_room(await self.gateway.list_rooms(), me, counterpart_id)
            if room is not None:
                return room
            raise GatewayError(
                f"Could not open a chat with party {counterpart_id}",
                status_code=exc.status_code,
                transient=exc.transient,
                details=exc.details,
            ) from exc
        logger.info("Created room %s with party %s", room.id, counterpart_id)
        return room
