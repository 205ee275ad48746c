"""WebSocket handler for caller realtime voice sessions.

Handles the caller protocol:
- Binary frames carry PCM16 mono audio
- Text frames carry JSON control messages (client_hello, image_upload)
- Sends assistant_audio_chunk / assistant_audio_ready back to the caller
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from src.config import Settings, get_settings
from src.core.event_sink import TimelinePublisher
from src.core.exceptions import CloseCode, SessionCapacityError
from src.core.relay import RealtimeRelay
from src.logging_config import get_logger
from src.observability.metrics import ACTIVE_SESSIONS
from src.services.realtime.protocol import RealtimeLink

logger: Any = get_logger(__name__)


class WebSocketCallerChannel:
    """Sends relay output to the caller over the accepted WebSocket."""

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket

    async def send_json(self, message: dict[str, Any]) -> None:
        if self._websocket.client_state != WebSocketState.CONNECTED:
            return
        try:
            await self._websocket.send_json(message)
        except Exception as e:
            logger.error(f"Failed to send {message.get('type')} to caller: {e}")

    async def close(self, code: int, reason: str = "") -> None:
        if self._websocket.client_state != WebSocketState.CONNECTED:
            return
        try:
            await self._websocket.close(code=code, reason=reason[:120])
        except Exception as e:
            logger.debug(f"Caller socket already closed: {e}")


@dataclass
class SessionEntry:
    """Entry in the relay session registry."""

    relay: RealtimeRelay
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class SessionRegistry:
    """Registry of live relay sessions, bounded by a capacity limit."""

    def __init__(self, max_sessions: int | None = None) -> None:
        self._max_sessions = max_sessions
        self._sessions: dict[str, SessionEntry] = {}
        self._lock = asyncio.Lock()

    @property
    def max_sessions(self) -> int:
        if self._max_sessions is None:
            return get_settings().max_concurrent_sessions
        return self._max_sessions

    async def register(self, relay: RealtimeRelay) -> None:
        """Track a new relay session.

        Raises:
            SessionCapacityError: If the gateway is at maximum capacity.
        """
        async with self._lock:
            limit = self.max_sessions
            if len(self._sessions) >= limit:
                logger.warning(
                    f"Max concurrent sessions reached ({limit}), "
                    f"rejecting incident {relay.incident_id}"
                )
                raise SessionCapacityError(f"Gateway at capacity ({limit} concurrent sessions)")

            self._sessions[relay.session_id] = SessionEntry(relay=relay)
            ACTIVE_SESSIONS.set(len(self._sessions))
            logger.info(
                f"Registered session {relay.session_id} for incident {relay.incident_id} "
                f"(active: {len(self._sessions)}/{limit})"
            )

    async def remove(self, session_id: str) -> SessionEntry | None:
        async with self._lock:
            entry = self._sessions.pop(session_id, None)
            ACTIVE_SESSIONS.set(len(self._sessions))
            return entry

    async def close_all(self) -> None:
        """Close all sessions (for shutdown)."""
        async with self._lock:
            entries = list(self._sessions.items())
            self._sessions.clear()
            ACTIVE_SESSIONS.set(0)

        for session_id, entry in entries:
            try:
                await entry.relay.close("shutdown", CloseCode.NORMAL)
            except Exception as e:
                logger.error(f"Error closing session {session_id}: {e}")

    @property
    def active_count(self) -> int:
        return len(self._sessions)


# Global registry instance
session_registry = SessionRegistry()

# Collaborator factories; None means the production implementations
link_factory: Callable[[], RealtimeLink] | None = None
publisher_factory: Callable[[], TimelinePublisher] | None = None


async def realtime_endpoint(
    websocket: WebSocket,
    *,
    settings: Settings | None = None,
    registry: SessionRegistry | None = None,
) -> None:
    """Handle one caller WebSocket connection.

    The connection is accepted first so a missing incident or a full
    gateway can be reported with a close code the caller can read.
    """
    settings = settings or get_settings()
    registry = registry or session_registry

    await websocket.accept()
    incident_id = (websocket.query_params.get("incident_id") or "").strip()
    if not incident_id:
        logger.warning("Caller connected without incident_id, closing")
        await websocket.close(code=CloseCode.POLICY_VIOLATION, reason="incident_id required")
        return

    relay = RealtimeRelay(
        incident_id,
        WebSocketCallerChannel(websocket),
        settings=settings,
        link_factory=link_factory,
        publisher=publisher_factory() if publisher_factory else None,
    )
    try:
        await registry.register(relay)
    except SessionCapacityError as e:
        await relay.close("capacity", CloseCode.POLICY_VIOLATION)
        logger.warning(f"Rejected incident {incident_id}: {e}")
        return

    logger.info(f"Caller connected for incident {incident_id}")
    receiver = asyncio.create_task(
        _receive_loop(websocket, relay),
        name=f"caller-recv-{relay.session_id}",
    )
    closed = asyncio.create_task(relay.wait_closed(), name=f"relay-closed-{relay.session_id}")

    try:
        await asyncio.wait({receiver, closed}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (receiver, closed):
            if not task.done():
                task.cancel()
        await asyncio.gather(receiver, closed, return_exceptions=True)

        await relay.close("caller_disconnected", CloseCode.NORMAL)
        await registry.remove(relay.session_id)
        logger.info(
            f"Session ended for incident {incident_id} "
            f"({relay.session.close_reason}, {relay.session.duration_seconds:.1f}s)"
        )


async def _receive_loop(websocket: WebSocket, relay: RealtimeRelay) -> None:
    """Feed caller frames to the relay until the caller goes away."""
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.info(f"Caller disconnected ({message.get('code')})")
                return

            data = message.get("bytes")
            if data is not None:
                await relay.handle_audio(data)
                continue

            text = message.get("text")
            if text is not None:
                await relay.handle_control(text)

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for incident {relay.incident_id}")
    except RuntimeError as e:
        # Raised by starlette when receiving after the socket closed
        logger.debug(f"Caller receive stopped: {e}")
