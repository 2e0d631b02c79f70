# -*- coding: utf-8 -*-
"""Chat: API endpoints (rooms/messages)."""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError
from starlette.datastructures import UploadFile

from ..auth.api import user_public
from ..auth.security import get_current_user
from ..config import settings
from .models import LastMessage, MessageCreateRequest, MessageOut, RoomCreateRequest, RoomOut
from .realtime import room_hub
from .storage import (
    create_message,
    get_or_create_room,
    list_messages,
    list_rooms,
    media_url,
    require_room,
    save_upload,
)

router = APIRouter(prefix="/api/chat", tags=["Chat"])


def _room_out(row: Dict[str, Any]) -> RoomOut:
    last = row.get("last_message")
    return RoomOut(
        id=int(row["id"]),
        client=user_public(row["client"]),
        dietitian=user_public(row["dietitian"]),
        created_at=row["created_at"],
        last_message=LastMessage(
            content=last.get("content") or "",
            created_at=last["created_at"],
            image=media_url(last.get("image_relpath")),
            file=media_url(last.get("file_relpath")),
        )
        if last
        else None,
    )


def _message_out(row: Dict[str, Any]) -> MessageOut:
    return MessageOut(
        id=int(row["id"]),
        chat_room=int(row["room_id"]),
        sender=user_public(row["sender"]),
        content=row.get("content") or "",
        created_at=row["created_at"],
        image=media_url(row.get("image_relpath")),
        file=media_url(row.get("file_relpath")),
    )


@router.get("/rooms/", response_model=list[RoomOut], summary="List my chat rooms")
def list_chat_rooms(user: dict = Depends(get_current_user)):
    return [_room_out(r) for r in list_rooms(user_id=int(user["id"]))]


@router.post("/rooms/", response_model=RoomOut, summary="Get or create the room with a counterpart")
def create_chat_room(request: RoomCreateRequest, user: dict = Depends(get_current_user)):
    row = get_or_create_room(user=user, counterpart_id=request.counterpart_id)
    return _room_out(row)


@router.get("/rooms/{room_id}/messages/", response_model=list[MessageOut], summary="List room messages (oldest first)")
def list_room_messages(room_id: int, user: dict = Depends(get_current_user)):
    require_room(user_id=int(user["id"]), room_id=room_id)
    return [_message_out(m) for m in list_messages(room_id=room_id)]


async def _read_upload(kind: str, part: Any) -> Optional[Tuple[str, bytes]]:
    """Return ``(filename, data)`` of a non-empty upload part, enforcing the size limit."""
    if not isinstance(part, UploadFile):
        return None
    data = await part.read()
    if len(data) > int(settings.max_upload_mb) * 1024 * 1024:
        raise HTTPException(status_code=413, detail=f"{kind.capitalize()} too large")
    if not data:
        return None
    return part.filename or "", data


@router.post("/rooms/{room_id}/messages/", response_model=MessageOut, summary="Send a message (JSON or multipart)")
async def send_room_message(room_id: int, request: Request, user: dict = Depends(get_current_user)):
    require_room(user_id=int(user["id"]), room_id=room_id)

    uploads: Dict[str, Tuple[str, bytes]] = {}
    content_type = request.headers.get("content-type") or ""
    if content_type.startswith("multipart/form-data"):
        form = await request.form()
        raw_room = form.get("chat_room")
        raw_content = form.get("content")
        try:
            body = MessageCreateRequest(
                chat_room=int(raw_room) if isinstance(raw_room, str) and raw_room.strip() else None,
                content=raw_content if isinstance(raw_content, str) else "",
            )
        except (ValueError, ValidationError) as exc:
            raise HTTPException(status_code=400, detail="Invalid message form") from exc
        # Every part is checked before anything is written to the media root.
        for kind in ("image", "file"):
            upload = await _read_upload(kind, form.get(kind))
            if upload is not None:
                uploads[kind] = upload
    else:
        try:
            body = MessageCreateRequest.model_validate(await request.json())
        except (ValueError, ValidationError) as exc:
            raise HTTPException(status_code=400, detail="Invalid message body") from exc

    if body.chat_room is not None and body.chat_room != room_id:
        raise HTTPException(status_code=400, detail="chat_room does not match the room in the path")
    if not body.content.strip() and not uploads:
        raise HTTPException(status_code=400, detail="Message must have content, an image or a file")

    relpaths = {
        kind: save_upload(kind=kind, filename=filename, data=data)
        for kind, (filename, data) in uploads.items()
    }
    row = create_message(
        room_id=room_id,
        sender_id=int(user["id"]),
        content=body.content,
        image_relpath=relpaths.get("image"),
        file_relpath=relpaths.get("file"),
    )
    message = _message_out(row)
    await room_hub.broadcast(room_id, {"type": "chat_message", "message_data": message.model_dump(mode="json")})
    return message
