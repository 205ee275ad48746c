"""Custom exceptions for the upstream realtime service."""

from typing import Any


class RealtimeServiceError(Exception):
    """Base exception for upstream realtime errors."""

    pass


class RealtimeConnectionError(RealtimeServiceError):
    """Raised when the upstream link cannot be opened or drops."""

    pass


class RealtimeProtocolError(RealtimeServiceError):
    """Raised when the upstream model reports an error event."""

    def __init__(self, message: str, payload: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.payload = payload or {}
