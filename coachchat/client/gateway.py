# -*- coding: utf-8 -*-
"""Chat client: REST gateway (rooms, history, send)."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..config import Settings, settings as default_settings
from ..errors import AuthExpiredError, GatewayError
from .models import Message, MessageDraft, Party, Room
from .session import SessionStore

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def _error_detail(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return (resp.text or "").strip()[:200]
    if isinstance(data, dict) and data.get("detail") is not None:
        return str(data["detail"])
    return str(data)[:200]


def _parse(model: Type[M], data: Any) -> M:
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        raise GatewayError(f"Unexpected {model.__name__} payload", details=str(exc)) from exc


def _parse_list(model: Type[M], data: Any) -> List[M]:
    if not isinstance(data, list):
        raise GatewayError(f"Expected a list of {model.__name__}", details=data)
    return [_parse(model, item) for item in data]


class ChatGateway:
    """Bearer-authenticated REST calls of the chat API.

    Reads (``get_current_user``, ``list_rooms``, ``list_messages``) are retried once,
    immediately, on a transient failure. Writes are never retried. A 401 clears the
    session and raises :class:`AuthExpiredError`.
    """

    def __init__(
        self,
        session: SessionStore,
        *,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        cfg = settings or default_settings
        self.session = session
        self._client = httpx.AsyncClient(
            base_url=(base_url or cfg.api_base_url).rstrip("/"),
            timeout=timeout if timeout is not None else cfg.request_timeout,
            transport=transport,
            follow_redirects=True,
        )

    async def __aenter__(self) -> "ChatGateway":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ---- operations ----

    async def get_current_user(self) -> Party:
        data = await self._request("GET", "/api/users/me/", read=True)
        return _parse(Party, data)

    async def list_rooms(self) -> List[Room]:
        data = await self._request("GET", "/api/chat/rooms/", read=True)
        return _parse_list(Room, data)

    async def create_room(self, counterpart_id: int) -> Room:
        data = await self._request("POST", "/api/chat/rooms/", json={"counterpart_id": int(counterpart_id)})
        return _parse(Room, data)

    async def list_messages(self, room_id: int) -> List[Message]:
        data = await self._request("GET", f"/api/chat/rooms/{int(room_id)}/messages/", read=True)
        return _parse_list(Message, data)

    async def send_message(self, room_id: int, draft: MessageDraft) -> Message:
        draft.ensure_sendable()
        path = f"/api/chat/rooms/{int(room_id)}/messages/"
        content = draft.content if draft.content.strip() else ""
        attachment = draft.attachment
        if attachment is None:
            data = await self._request("POST", path, json={"chat_room": int(room_id), "content": content})
        else:
            form: Dict[str, str] = {"chat_room": str(int(room_id))}
            if content:
                form["content"] = content
            files = {attachment.kind: (attachment.filename, attachment.content, attachment.content_type)}
            data = await self._request("POST", path, data=form, files=files)
        return _parse(Message, data)

    # ---- transport ----

    async def _request(self, method: str, path: str, *, read: bool = False, **kwargs: Any) -> Any:
        attempts = 2 if read else 1
        for attempt in range(1, attempts + 1):
            try:
                return await self._send_once(method, path, **kwargs)
            except GatewayError as exc:
                if not exc.transient or attempt >= attempts:
                    raise
                logger.warning("%s %s failed (%s); retrying once", method, path, exc.message)
        raise GatewayError(f"{method} {path} failed")

    async def _send_once(self, method: str, path: str, **kwargs: Any) -> Any:
        headers = self.session.auth_headers()
        if not headers:
            raise AuthExpiredError("Not authenticated")
        try:
            resp = await self._client.request(method, path, headers=headers, **kwargs)
        except httpx.TimeoutException as exc:
            raise GatewayError(f"{method} {path} timed out", transient=True) from exc
        except httpx.TransportError as exc:
            raise GatewayError(f"{method} {path} failed: {exc}", transient=True) from exc

        if resp.status_code == 401:
            self.session.invalidate()
            raise AuthExpiredError(_error_detail(resp) or "Session expired", details={"status_code": 401})
        if resp.status_code >= 400:
            detail = _error_detail(resp)
            raise GatewayError(
                f"{method} {path} returned {resp.status_code}: {detail}",
                status_code=resp.status_code,
                transient=resp.status_code >= 500,
                details=detail,
            )
        try:
            return resp.json()
        except ValueError as exc:
            raise GatewayError(f"{method} {path} returned invalid JSON", status_code=resp.status_code) from exc
