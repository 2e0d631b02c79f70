# -*- coding: utf-8 -*-
"""Auth: Pydantic models."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


Role = Literal["client", "dietitian"]


class UserCreateRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=254)
    role: Role
    first_name: str = Field(default="", max_length=64)
    last_name: str = Field(default="", max_length=64)


class UserPublic(BaseModel):
    id: int
    first_name: str
    last_name: str
    role: Role
