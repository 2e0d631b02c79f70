# -*- coding: utf-8 -*-
"""Chat: DB storage helpers (rooms/messages/uploads)."""

from __future__ import annotations

import re
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

from fastapi import HTTPException

from ..app_db import db_conn
from ..config import settings

_SAFE_SUFFIX = re.compile(r"^\.[A-Za-z0-9]{1,10}$")


def _utc_now() -> str:
    # Microseconds keep same-second messages distinguishable; ids break remaining ties.
    return datetime.now(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


def media_url(relpath: Optional[str]) -> Optional[str]:
    if not relpath:
        return None
    return f"/media/{relpath}"


def _user(conn: sqlite3.Connection, user_id: int) -> Dict[str, Any]:
    row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
    return dict(row) if row else {"id": user_id, "first_name": "", "last_name": "", "role": "client"}


def _last_message(conn: sqlite3.Connection, room_id: int) -> Optional[Dict[str, Any]]:
    row = conn.execute(
        "SELECT * FROM chat_messages WHERE room_id = ? ORDER BY created_at DESC, id DESC LIMIT 1",
        (room_id,),
    ).fetchone()
    return dict(row) if row else None


def _hydrate_room(conn: sqlite3.Connection, row: sqlite3.Row) -> Dict[str, Any]:
    room = dict(row)
    room["client"] = _user(conn, int(row["client_id"]))
    room["dietitian"] = _user(conn, int(row["dietitian_id"]))
    room["last_message"] = _last_message(conn, int(row["id"]))
    return room


def _hydrate_message(conn: sqlite3.Connection, row: sqlite3.Row) -> Dict[str, Any]:
    msg = dict(row)
    msg["sender"] = _user(conn, int(row["sender_id"]))
    return msg


def list_rooms(*, user_id: int) -> List[Dict[str, Any]]:
    with db_conn(settings.app_db_path) as conn:
        rows = conn.execute(
            "SELECT * FROM chat_rooms WHERE client_id = ? OR dietitian_id = ? ORDER BY id ASC",
            (user_id, user_id),
        ).fetchall()
        return [_hydrate_room(conn, r) for r in rows]


def get_or_create_room(*, user: Dict[str, Any], counterpart_id: int) -> Dict[str, Any]:
    """Upsert the unique room between ``user`` and ``counterpart_id``."""
    with db_conn(settings.app_db_path) as conn:
        counterpart = conn.execute("SELECT * FROM users WHERE id = ?", (counterpart_id,)).fetchone()
        if not counterpart:
            raise HTTPException(status_code=400, detail="Counterpart not found")
        if counterpart["role"] == user["role"]:
            raise HTTPException(status_code=400, detail="Counterpart must have the opposite role")

        if user["role"] == "client":
            client_id, dietitian_id = int(user["id"]), int(counterpart["id"])
        else:
            client_id, dietitian_id = int(counterpart["id"]), int(user["id"])

        conn.execute(
            "INSERT OR IGNORE INTO chat_rooms (client_id, dietitian_id, created_at) VALUES (?, ?, ?)",
            (client_id, dietitian_id, _utc_now()),
        )
        row = conn.execute(
            "SELECT * FROM chat_rooms WHERE client_id = ? AND dietitian_id = ?",
            (client_id, dietitian_id),
        ).fetchone()
        return _hydrate_room(conn, row)


def get_room(*, room_id: int) -> Optional[Dict[str, Any]]:
    with db_conn(settings.app_db_path) as conn:
        row = conn.execute("SELECT * FROM chat_rooms WHERE id = ?", (room_id,)).fetchone()
        return dict(row) if row else None


def is_room_party(room: Dict[str, Any], user_id: int) -> bool:
    return int(user_id) in (int(room["client_id"]), int(room["dietitian_id"]))


def require_room(*, user_id: int, room_id: int) -> Dict[str, Any]:
    room = get_room(room_id=room_id)
    if not room or not is_room_party(room, user_id):
        raise HTTPException(status_code=404, detail="Room not found")
    return room


def list_messages(*, room_id: int) -> List[Dict[str, Any]]:
    with db_conn(settings.app_db_path) as conn:
        rows = conn.execute(
            "SELECT * FROM chat_messages WHERE room_id = ? ORDER BY created_at ASC, id ASC",
            (room_id,),
        ).fetchall()
        return [_hydrate_message(conn, r) for r in rows]


def create_message(
    *,
    room_id: int,
    sender_id: int,
    content: str,
    image_relpath: Optional[str] = None,
    file_relpath: Optional[str] = None,
) -> Dict[str, Any]:
    now = _utc_now()
    with db_conn(settings.app_db_path) as conn:
        cur = conn.execute(
            """
            INSERT INTO chat_messages (room_id, sender_id, content, image_relpath, file_relpath, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (room_id, sender_id, content, image_relpath, file_relpath, now),
        )
        row = conn.execute("SELECT * FROM chat_messages WHERE id = ?", (cur.lastrowid,)).fetchone()
        return _hydrate_message(conn, row)


def save_upload(*, kind: str, filename: str, data: bytes) -> str:
    """Store an attachment under the media root and return its relative path."""
    suffix = Path(filename or "").suffix.lower()
    if not _SAFE_SUFFIX.match(suffix):
        suffix = ""
    relpath = f"chat/{kind}s/{uuid4().hex}{suffix}"
    target = settings.media_root / relpath
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(data)
    return relpath
