"""Ownership of the single upstream realtime link for one session."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

from src.core.session import RelaySession
from src.core.timers import SessionTimers, TimerKey
from src.logging_config import get_logger
from src.observability.metrics import RESPONSE_REQUESTS
from src.services.realtime.exceptions import RealtimeConnectionError, RealtimeServiceError
from src.services.realtime.protocol import (
    JsonDict,
    RealtimeLink,
    TurnDetection,
    append_audio_event,
    commit_event,
    response_create_event,
    session_update_event,
    text_item_event,
)

logger: Any = get_logger(__name__)


class UpstreamBridge:
    """Translates relay decisions into upstream protocol messages.

    At most one link is ever created per session. Every method except
    `open` expects the caller to hold the session lock; the response
    debounce timer takes the lock itself when it fires.
    """

    def __init__(
        self,
        session: RelaySession,
        link_factory: Callable[[], RealtimeLink],
        *,
        lock: asyncio.Lock,
        timers: SessionTimers,
        instructions: str,
        voice: str = "alloy",
        turn_detection: TurnDetection | None = None,
        response_debounce_ms: int = 50,
        on_failure: Callable[[RealtimeServiceError], None] | None = None,
    ) -> None:
        self._session = session
        self._link_factory = link_factory
        self._lock = lock
        self._timers = timers
        self._instructions = instructions
        self._voice = voice
        self._turn_detection = turn_detection or TurnDetection()
        self._response_debounce_s = response_debounce_ms / 1000
        self._on_failure = on_failure

        self.link: RealtimeLink | None = None
        self.ready = False

    def ensure_connected(self) -> bool:
        """Create the link if none exists.

        Returns:
            True if a new link was created and must be opened; False if a
            link already exists (connected or connecting).
        """
        if self.link is not None:
            return False
        self.link = self._link_factory()
        return True

    async def open(self) -> None:
        """Connect the link. Runs without the session lock held."""
        if self.link is None:
            raise RealtimeConnectionError("No upstream link to open")
        await self.link.connect()

    async def configure(self) -> None:
        """Send the one-time session configuration and mark the link ready."""
        await self.send(
            session_update_event(
                self._instructions,
                voice=self._voice,
                turn_detection=self._turn_detection,
            )
        )
        self.ready = True

    @property
    def is_open(self) -> bool:
        return self.ready and self.link is not None and self.link.is_open

    async def send(self, event: JsonDict) -> None:
        if self.link is None:
            raise RealtimeConnectionError("Upstream link not created")
        await self.link.send(event)

    async def append_audio(self, chunk: bytes) -> None:
        await self.send(append_audio_event(chunk))

    async def commit(self) -> None:
        await self.send(commit_event())

    async def add_text(self, text: str) -> None:
        await self.send(text_item_event(text))

    async def request_response(self, *, immediate: bool = False) -> bool:
        """Ask upstream for a response, at most one in flight.

        Requests made while one is pending are coalesced. Normally the
        send is delayed briefly so a commit and its response request go
        out back to back; `immediate` skips the delay (session close).

        Returns:
            True if a new request was started, False if coalesced.
        """
        if self._session.response_pending:
            if immediate and self._timers.cancel(TimerKey.RESPONSE_DEBOUNCE):
                # debounced request not yet sent: send it now
                await self._send_response_create()
                return True
            RESPONSE_REQUESTS.labels(outcome="coalesced").inc()
            logger.debug(f"Response already pending for {self._session.incident_id}")
            return False

        self._session.response_pending = True
        if immediate:
            self._timers.cancel(TimerKey.RESPONSE_DEBOUNCE)
            await self._send_response_create()
        else:
            self._timers.schedule(
                TimerKey.RESPONSE_DEBOUNCE,
                self._response_debounce_s,
                self._on_response_due,
            )
        return True

    async def _on_response_due(self) -> None:
        async with self._lock:
            if self._session.is_closed or not self._session.response_pending:
                return
            try:
                await self._send_response_create()
            except RealtimeServiceError as e:
                logger.error(f"Response request failed for {self._session.incident_id}: {e}")
                if self._on_failure is not None:
                    self._on_failure(e)

    async def _send_response_create(self) -> None:
        if not self.is_open:
            logger.debug("Upstream not open, dropping response request")
            self._session.response_pending = False
            return
        await self.send(response_create_event())
        RESPONSE_REQUESTS.labels(outcome="sent").inc()
        logger.debug(f"response.create sent for {self._session.incident_id}")

    async def close(self) -> None:
        self.ready = False
        if self.link is not None:
            await self.link.close()
