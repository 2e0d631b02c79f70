# -*- coding: utf-8 -*-
"""Chat client exceptions."""

from __future__ import annotations

from typing import Any, Optional


class ChatError(Exception):
    """Base exception for the chat client."""

    def __init__(self, message: str, details: Optional[Any] = None):
        self.message = message
        self.details = details
        super().__init__(message)


class GatewayError(ChatError):
    """REST call failed (network, timeout, or an error status from the server).

    ``transient`` marks failures worth one immediate retry on reads:
    transport errors, timeouts and 5xx responses.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        transient: bool = False,
        details: Optional[Any] = None,
    ):
        super().__init__(message, details=details)
        self.status_code = status_code
        self.transient = transient


class AuthExpiredError(ChatError):
    """The bearer token was rejected (or is missing). The session has been cleared."""

    pass


class ChannelError(ChatError):
    """Realtime transport failure."""

    pass


class ValidationError(ChatError):
    """Message rejected locally before any network call."""

    pass
