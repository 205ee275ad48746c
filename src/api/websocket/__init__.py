"""WebSocket handlers for realtime caller sessions.

This module provides the caller WebSocket endpoint:
- realtime_endpoint: Main WebSocket handler
- session_registry: Global session registry
"""

from src.api.websocket.realtime_gateway import (
    SessionEntry,
    SessionRegistry,
    WebSocketCallerChannel,
    realtime_endpoint,
    session_registry,
)

__all__ = [
    "realtime_endpoint",
    "session_registry",
    "SessionRegistry",
    "SessionEntry",
    "WebSocketCallerChannel",
]
