"""Error taxonomy shared by the session, pipeline and gateway layers."""

from __future__ import annotations

from typing import Any, Dict, Optional


class MarticError(RuntimeError):
    """Base class for errors surfaced to the user as a notification."""


class NotLoggedIn(MarticError):
    """Raised when an operation requires a session and none exists."""


class SessionLost(MarticError):
    """Raised when the server reports that the cookie session is gone."""


class CommunicationFailure(MarticError):
    """Raised for network, transport and unparseable response errors."""


class ApiError(CommunicationFailure):
    """Normalised error returned by a remote endpoint."""

    def __init__(self, code: Any, message: str, payload: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(f"API error [{code}]: {message}")
        self.code = code
        self.message = message
        self.payload = payload or {}


class EmptyResult(MarticError):
    """Raised when the model returned no usable text."""


class PeripheralFailure(MarticError):
    """Raised by OS adapters (volume, audio device, clipboard)."""
