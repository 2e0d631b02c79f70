# -*- coding: utf-8 -*-
"""
Chat push hub

Keeps the open websockets of every room and pushes new messages to them.
Client frames are read and discarded; the socket is push-only.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Set

from fastapi import HTTPException, WebSocket, WebSocketDisconnect

from ..auth.security import user_from_token
from ..config import settings
from .storage import get_room, is_room_party

logger = logging.getLogger(__name__)

# Application close codes (4000-4999 are free for applications).
CLOSE_UNAUTHORIZED = 4401
CLOSE_FORBIDDEN = 4403


class RoomHub:
    """Websocket registry per chat room"""

    def __init__(self) -> None:
        self.active_connections: Dict[int, Set[WebSocket]] = {}

    async def connect(self, room_id: int, websocket: WebSocket) -> None:
        await websocket.accept()
        self.active_connections.setdefault(room_id, set()).add(websocket)
        logger.info("Chat websocket connected: room=%s open=%s", room_id, len(self.active_connections[room_id]))

    def disconnect(self, room_id: int, websocket: WebSocket) -> None:
        sockets = self.active_connections.get(room_id)
        if not sockets:
            return
        sockets.discard(websocket)
        if not sockets:
            del self.active_connections[room_id]
        logger.info("Chat websocket disconnected: room=%s", room_id)

    def connection_count(self, room_id: int) -> int:
        return len(self.active_connections.get(room_id, ()))

    async def broadcast(self, room_id: int, message: Dict[str, Any]) -> None:
        """Push one frame to every socket of the room, dropping dead ones."""
        for websocket in list(self.active_connections.get(room_id, ())):
            try:
                await websocket.send_json(message)
            except (WebSocketDisconnect, RuntimeError) as exc:
                logger.warning("Dropping chat websocket for room %s: %s", room_id, exc)
                self.disconnect(room_id, websocket)


room_hub = RoomHub()


def _authorize(room_id: int, token: Optional[str]) -> Optional[int]:
    """Return a close code when the socket must be refused, else None."""
    if not token:
        return CLOSE_UNAUTHORIZED if settings.ws_require_auth else None
    try:
        user = user_from_token(token)
    except HTTPException:
        return CLOSE_UNAUTHORIZED
    room = get_room(room_id=room_id)
    if not room or not is_room_party(room, int(user["id"])):
        return CLOSE_FORBIDDEN
    return None


async def chat_websocket_endpoint(websocket: WebSocket, room_id: int) -> None:
    """Websocket endpoint handler for /ws/chat/{room_id}/"""
    close_code = _authorize(room_id, websocket.query_params.get("token"))
    if close_code is not None:
        logger.info("Refusing chat websocket: room=%s code=%s", room_id, close_code)
        await websocket.close(code=close_code)
        return

    await room_hub.connect(room_id, websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        room_hub.disconnect(room_id, websocket)
    except Exception:
        logger.exception("Chat websocket error on room %s", room_id)
        room_hub.disconnect(room_id, websocket)
