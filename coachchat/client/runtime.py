# -*- coding: utf-8 -*-
"""Chat client: entry point tying session, gateway, resolver and the open room together."""

from __future__ import annotations

import logging
from typing import Any, List, Optional

import httpx

from ..config import Settings, settings as default_settings
from .controller import ChannelFactory, ChatViewController, ErrorListener
from .channel import StatusListener
from .gateway import ChatGateway
from .models import Room
from .resolver import RoomResolver
from .session import SessionStore
from .synchronizer import ChangeListener

logger = logging.getLogger(__name__)


class ChatClient:
    """One chat client process: at most one open room at a time.

    Opening a room always exits the previously open one first, so a stale
    channel can never keep delivering frames into a view that is gone.
    """

    def __init__(
        self,
        session: Optional[SessionStore] = None,
        *,
        settings: Optional[Settings] = None,
        gateway: Optional[ChatGateway] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        channel_factory: Optional[ChannelFactory] = None,
    ) -> None:
        self.settings = settings or default_settings
        self.session = session or SessionStore.from_settings(self.settings)
        self._owns_gateway = gateway is None
        self.gateway = gateway or ChatGateway(self.session, settings=self.settings, transport=transport)
        self.resolver = RoomResolver(self.gateway, self.session)
        self._channel_factory = channel_factory
        self._active: Optional[ChatViewController] = None

    async def __aenter__(self) -> "ChatClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    @property
    def active_room(self) -> Optional[ChatViewController]:
        return self._active

    async def conversations(self) -> List[Room]:
        return await self.resolver.conversations()

    async def open_room(
        self,
        room_id: int,
        *,
        on_change: Optional[ChangeListener] = None,
        on_error: Optional[ErrorListener] = None,
        on_status: Optional[StatusListener] = None,
    ) -> ChatViewController:
        """Open a room whose id is already known (e.g. from ``conversations()``)."""
        await self.close_room()
        controller = ChatViewController(
            room_id,
            gateway=self.gateway,
            session=self.session,
            settings=self.settings,
            channel_factory=self._channel_factory,
            on_change=on_change,
            on_error=on_error,
            on_status=on_status,
        )
        self._active = controller
        try:
            await controller.enter()
        except BaseException:
            if self._active is controller:
                self._active = None
            raise
        return controller

    async def open_chat_with(
        self,
        counterpart_id: int,
        *,
        on_change: Optional[ChangeListener] = None,
        on_error: Optional[ErrorListener] = None,
        on_status: Optional[StatusListener] = None,
    ) -> ChatViewController:
        """Resolve (find or create) the room with ``counterpart_id`` and open it."""
        room = await self.resolver.resolve(counterpart_id)
        return await self.open_room(room.id, on_change=on_change, on_error=on_error, on_status=on_status)

    async def close_room(self) -> None:
        controller, self._active = self._active, None
        if controller is not None:
            await controller.exit()

    async def aclose(self) -> None:
        await self.close_room()
        if self._owns_gateway:
            await self.gateway.aclose()
