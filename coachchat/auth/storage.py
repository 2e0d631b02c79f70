# -*- coding: utf-8 -*-
"""Auth: DB storage helpers."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ..app_db import db_conn
from ..config import settings


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def get_user_by_email(email: str) -> Optional[Dict[str, Any]]:
    with db_conn(settings.app_db_path) as conn:
        row = conn.execute("SELECT * FROM users WHERE email = ?", (email.lower().strip(),)).fetchone()
        return dict(row) if row else None


def get_user_by_id(user_id: int) -> Optional[Dict[str, Any]]:
    with db_conn(settings.app_db_path) as conn:
        row = conn.execute("SELECT * FROM users WHERE id = ?", (int(user_id),)).fetchone()
        return dict(row) if row else None


def create_user(*, email: str, role: str, first_name: str = "", last_name: str = "") -> Dict[str, Any]:
    now = _utc_now()
    email_norm = email.lower().strip()
    with db_conn(settings.app_db_path) as conn:
        cur = conn.execute(
            "INSERT INTO users (email, first_name, last_name, role, created_at) VALUES (?, ?, ?, ?, ?)",
            (email_norm, first_name, last_name, role, now),
        )
        user_id = int(cur.lastrowid)
    return {
        "id": user_id,
        "email": email_norm,
        "first_name": first_name,
        "last_name": last_name,
        "role": role,
        "created_at": now,
    }
