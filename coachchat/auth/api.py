# -*- coding: utf-8 -*-
"""Auth: API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from .models import UserPublic
from .security import get_current_user

router = APIRouter(prefix="/api/users", tags=["Users"])


def user_public(row: dict) -> UserPublic:
    return UserPublic(
        id=int(row["id"]),
        first_name=row.get("first_name") or "",
        last_name=row.get("last_name") or "",
        role=row["role"],
    )


@router.get("/me/", response_model=UserPublic, summary="Get current user")
def me(user: dict = Depends(get_current_user)):
    return user_public(user)
