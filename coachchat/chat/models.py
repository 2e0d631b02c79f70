# -*- coding: utf-8 -*-
"""Chat: Pydantic models."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from ..auth.models import UserPublic


class RoomCreateRequest(BaseModel):
    counterpart_id: int = Field(..., ge=1)


class LastMessage(BaseModel):
    content: str
    created_at: str
    image: Optional[str] = None
    file: Optional[str] = None


class RoomOut(BaseModel):
    id: int
    client: UserPublic
    dietitian: UserPublic
    created_at: str
    last_message: Optional[LastMessage] = None


class MessageOut(BaseModel):
    id: int
    chat_room: int
    sender: UserPublic
    content: str
    created_at: str
    image: Optional[str] = None
    file: Optional[str] = None


class MessageCreateRequest(BaseModel):
    # Room id is taken from the path; the body copy is only checked for consistency.
    chat_room: Optional[int] = None
    content: str = Field(default="", max_length=10_000)
