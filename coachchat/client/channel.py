# -*- coding: utf-8 -*-
"""
Chat client: realtime channel

One websocket per open room, used only to learn that new messages exist.
State machine::

    connecting -> open -> (transport closed) -> backoff -> connecting ...
    any state  -> closed   (explicit close, terminal)
    backoff    -> failed   (max_attempts consecutive failed reconnects, terminal)
"""

from __future__ import annotations

import asyncio
import functools
import json
import logging
from typing import Any, AsyncContextManager, AsyncIterable, Awaitable, Callable, Optional, Union
from urllib.parse import urlencode

from pydantic import ValidationError as PydanticValidationError
from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import WebSocketException

from ..config import Settings, settings as default_settings
from ..errors import ChannelError
from .models import ConnectionStatus, InboundFrame

logger = logging.getLogger(__name__)

Frame = Union[str, bytes]
Connector = Callable[[str], AsyncContextManager[AsyncIterable[Frame]]]
FrameHandler = Callable[[InboundFrame], Awaitable[None]]
StatusListener = Callable[[ConnectionStatus], None]


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before reconnect number ``attempt + 1``: base * 2**attempt, capped."""
    return min(base_delay * (2 ** attempt), max_delay)


def _is_chat_message(raw: str) -> bool:
    try:
        data = json.loads(raw)
    except ValueError:
        return False
    return isinstance(data, dict) and data.get("type") == "chat_message"


def channel_url(ws_base_url: str, room_id: int, token: Optional[str] = None) -> str:
    url = f"{ws_base_url.rstrip('/')}/ws/chat/{int(room_id)}/"
    if token:
        url += "?" + urlencode({"token": token})
    return url


class RealtimeChannel:
    """Reconnecting push listener for a single room."""

    def __init__(
        self,
        room_id: int,
        on_frame: FrameHandler,
        *,
        token: Optional[str] = None,
        url: Optional[str] = None,
        settings: Optional[Settings] = None,
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
        max_attempts: Optional[int] = None,
        connector: Optional[Connector] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_status: Optional[StatusListener] = None,
    ) -> None:
        cfg = settings or default_settings
        self.room_id = room_id
        self.url = url or channel_url(cfg.ws_base_url, room_id, token)
        self.base_delay = cfg.reconnect_base_delay if base_delay is None else base_delay
        self.max_delay = cfg.reconnect_max_delay if max_delay is None else max_delay
        self.max_attempts = cfg.reconnect_max_attempts if max_attempts is None else max_attempts
        self._on_frame = on_frame
        self._on_status = on_status
        self._connector = connector or functools.partial(ws_connect, open_timeout=cfg.request_timeout)
        self._sleep = sleep
        self._status = ConnectionStatus.CONNECTING
        self._attempt = 0
        self._closing = False
        self._task: Optional[asyncio.Task] = None

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def attempt(self) -> int:
        return self._attempt

    def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._run(), name=f"chat-channel-{self.room_id}")

    async def wait(self) -> None:
        """Wait until the channel reaches a terminal state."""
        if self._task is not None:
            await asyncio.shield(self._task)

    async def close(self) -> None:
        """Explicit teardown: no further reconnects or frames."""
        self._closing = True
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._set_status(ConnectionStatus.CLOSED)

    async def _run(self) -> None:
        while not self._closing:
            self._set_status(ConnectionStatus.CONNECTING)
            try:
                await self._listen()
            except ChannelError as exc:
                logger.warning("%s", exc)
            if self._closing:
                return
            if self._attempt >= self.max_attempts:
                logger.error(
                    "Realtime channel for room %s lost after %s reconnect attempts",
                    self.room_id,
                    self._attempt,
                )
                self._set_status(ConnectionStatus.FAILED)
                return
            delay = backoff_delay(self._attempt, self.base_delay, self.max_delay)
            self._attempt += 1
            self._set_status(ConnectionStatus.BACKOFF)
            logger.info(
                "Reconnecting room %s in %.1fs (attempt %s/%s)",
                self.room_id,
                delay,
                self._attempt,
                self.max_attempts,
            )
            await self._sleep(delay)

    async def _listen(self) -> None:
        try:
            async with self._connector(self.url) as ws:
                self._attempt = 0
                self._set_status(ConnectionStatus.OPEN)
                logger.info("Realtime channel open for room %s", self.room_id)
                async for raw in ws:
                    if self._closing:
                        return
                    await self._dispatch(raw)
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            raise ChannelError(f"Realtime channel for room {self.room_id} dropped: {exc}") from exc
        except Exception as exc:
            logger.exception("Unexpected error on realtime channel for room %s", self.room_id)
            raise ChannelError(f"Realtime channel for room {self.room_id} failed: {exc}") from exc
        logger.info("Realtime channel closed by server for room %s", self.room_id)

    async def _dispatch(self, raw: Frame) -> None:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        try:
            frame = InboundFrame.model_validate_json(raw)
        except PydanticValidationError as exc:
            if not _is_chat_message(raw):
                logger.warning("Skipping malformed frame on room %s: %s", self.room_id, exc.errors()[:1])
                return
            # Unreadable inline message: still a signal that history changed.
            logger.warning("Invalid inline message on room %s; refetching: %s", self.room_id, exc.errors()[:1])
            frame = InboundFrame(type="chat_message")
        if not frame.is_chat_message:
            logger.debug("Ignoring %s frame on room %s", frame.type, self.room_id)
            return
        try:
            await self._on_frame(frame)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Frame handler failed on room %s", self.room_id)

    def _set_status(self, status: ConnectionStatus) -> None:
        if status == self._status:
            return
        self._status = status
        if self._on_status is None:
            return
        try:
            self._on_status(status)
        except Exception:
            logger.exception("Status listener failed on room %s (%s)", self.room_id, status.value)
