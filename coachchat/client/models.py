# -*- coding: utf-8 -*-
"""Chat client: wire models and client-side state."""

from __future__ import annotations

import mimetypes
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Literal, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from ..errors import ValidationError


Role = Literal["client", "dietitian"]
AttachmentKind = Literal["image", "file"]


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Party(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    first_name: str = ""
    last_name: str = ""
    role: Optional[Role] = None

    @property
    def display_name(self) -> str:
        name = f"{self.first_name} {self.last_name}".strip()
        return name or f"#{self.id}"


class LastMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    content: str = ""
    created_at: Optional[datetime] = None
    image: Optional[str] = None
    file: Optional[str] = None

    @field_validator("content", mode="before")
    @classmethod
    def _none_content(cls, v):
        return "" if v is None else v


class Room(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    client: Party
    dietitian: Party
    last_message: Optional[LastMessage] = None

    def counterpart_for(self, user: Party) -> Party:
        """The other party of this room, seen from ``user``."""
        if user.role == "client":
            return self.dietitian
        if user.role == "dietitian":
            return self.client
        return self.dietitian if user.id == self.client.id else self.client


class Message(BaseModel):
    """One immutable chat message. Ordered by (created_at, id)."""

    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)

    id: int
    room_id: Optional[int] = Field(default=None, alias="chat_room")
    sender: Party
    content: str = ""
    created_at: datetime
    image: Optional[str] = None
    file: Optional[str] = None

    @field_validator("content", mode="before")
    @classmethod
    def _none_content(cls, v):
        return "" if v is None else v

    @field_validator("created_at")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return _as_utc(v)

    @property
    def sort_key(self) -> Tuple[datetime, int]:
        return (self.created_at, self.id)

    @property
    def has_attachment(self) -> bool:
        return bool(self.image or self.file)


class Attachment(BaseModel):
    """Pending attachment staged for the next send. Never persisted."""

    kind: AttachmentKind
    filename: str
    content: bytes = Field(repr=False)
    content_type: str = "application/octet-stream"

    @classmethod
    def from_path(cls, path: Path | str, kind: Optional[AttachmentKind] = None) -> "Attachment":
        p = Path(path).expanduser()
        content_type = mimetypes.guess_type(p.name)[0] or "application/octet-stream"
        if kind is None:
            kind = "image" if content_type.startswith("image/") else "file"
        return cls(kind=kind, filename=p.name, content=p.read_bytes(), content_type=content_type)


class MessageDraft(BaseModel):
    content: str = ""
    attachment: Optional[Attachment] = None

    @property
    def is_empty(self) -> bool:
        return not self.content.strip() and self.attachment is None

    def ensure_sendable(self) -> None:
        if self.is_empty:
            raise ValidationError("A message needs text, an image or a file")


class InboundFrame(BaseModel):
    """JSON frame received on the realtime channel."""

    model_config = ConfigDict(extra="allow")

    type: str
    message_data: Optional[Message] = Field(
        default=None,
        validation_alias=AliasChoices("message_data", "message"),
    )

    @property
    def is_chat_message(self) -> bool:
        return self.type == "chat_message"


class ConnectionStatus(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    BACKOFF = "backoff"
    CLOSED = "closed"
    FAILED = "failed"


@dataclass
class ConnectionState:
    room_id: int
    status: ConnectionStatus = ConnectionStatus.CONNECTING
    attempt: int = 0
    last_message_id: Optional[int] = None
    last_message_at: Optional[datetime] = None
