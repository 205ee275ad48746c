"""Relay session exceptions and caller close codes."""

from enum import IntEnum


class CloseCode(IntEnum):
    """WebSocket close codes sent to the caller."""

    NORMAL = 1000
    INVALID_PAYLOAD = 1007
    POLICY_VIOLATION = 1008
    UPSTREAM_FAILURE = 1011


class RelayError(Exception):
    """Base exception for relay session errors."""

    pass


class ProtocolViolation(RelayError):
    """Raised when the caller sends something the protocol does not allow."""

    def __init__(self, message: str, close_code: CloseCode = CloseCode.INVALID_PAYLOAD) -> None:
        super().__init__(message)
        self.close_code = close_code


class SessionCapacityError(RelayError):
    """Raised when the gateway is at its maximum number of sessions."""

    pass
