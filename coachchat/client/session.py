# -*- coding: utf-8 -*-
"""Chat client: session store (bearer token + current user)."""

from __future__ import annotations

import logging
from typing import Dict, Optional

from ..config import Settings, settings as default_settings
from .models import Party

logger = logging.getLogger(__name__)


class SessionStore:
    """Holds the bearer token and the identity of the signed-in party.

    Passed explicitly to the gateway and controllers; there is no global session.
    """

    def __init__(self, token: Optional[str] = None, user: Optional[Party] = None) -> None:
        self._token = token or None
        self._user = user

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "SessionStore":
        cfg = settings or default_settings
        return cls(token=cfg.token)

    @property
    def token(self) -> Optional[str]:
        return self._token

    @property
    def user(self) -> Optional[Party]:
        return self._user

    @property
    def is_authenticated(self) -> bool:
        return bool(self._token)

    def sign_in(self, token: str, user: Optional[Party] = None) -> None:
        self._token = token
        self._user = user

    def set_user(self, user: Party) -> None:
        self._user = user

    def invalidate(self) -> None:
        """Forget token and identity (token rejected by the server)."""
        if self._token:
            logger.info("Session invalidated")
        self._token = None
        self._user = None

    def auth_headers(self) -> Dict[str, str]:
        if not self._token:
            return {}
        return {"Authorization": f"Bearer {self._token}"}
