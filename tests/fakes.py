"""In-memory stand-ins for the relay's collaborators."""

from __future__ import annotations

import asyncio
import base64
from collections.abc import AsyncIterator
from typing import Any

from src.services.incident.client import IncidentServiceError, TimelineEvent
from src.services.realtime.exceptions import RealtimeConnectionError


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeLink:
    """Upstream link that records sends and replays scripted events."""

    def __init__(
        self,
        script: list[dict[str, Any]] | None = None,
        *,
        fail_connect: bool = False,
    ) -> None:
        self.sent: list[dict[str, Any]] = []
        self.connected = False
        self.closed = False
        self.fail_connect = fail_connect
        self.fail_send = False
        self._queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()
        for event in script or []:
            self._queue.put_nowait(event)

    @property
    def is_open(self) -> bool:
        return self.connected and not self.closed

    async def connect(self) -> None:
        if self.fail_connect:
            raise RealtimeConnectionError("connection refused")
        self.connected = True

    async def send(self, event: dict[str, Any]) -> None:
        if not self.is_open or self.fail_send:
            raise RealtimeConnectionError("link is not open")
        self.sent.append(event)

    def push(self, event: dict[str, Any]) -> None:
        self._queue.put_nowait(event)

    def hang_up(self) -> None:
        """End the event stream as if upstream closed the connection."""
        self._queue.put_nowait(None)

    async def events(self) -> AsyncIterator[dict[str, Any]]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._queue.put_nowait(None)

    # Inspection helpers

    def sent_types(self) -> list[str]:
        return [event["type"] for event in self.sent]

    def count(self, event_type: str) -> int:
        return self.sent_types().count(event_type)

    def appended_audio(self) -> list[bytes]:
        return [
            base64.b64decode(event["audio"])
            for event in self.sent
            if event["type"] == "input_audio_buffer.append"
        ]


class FakeCaller:
    """Caller channel that records outbound messages and the close code."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self.close_code: int | None = None
        self.close_reason = ""

    async def send_json(self, message: dict[str, Any]) -> None:
        if not self.closed:
            self.sent.append(message)

    async def close(self, code: int, reason: str = "") -> None:
        if self.closed:
            return
        self.closed = True
        self.close_code = code
        self.close_reason = reason

    def of_type(self, message_type: str) -> list[dict[str, Any]]:
        return [message for message in self.sent if message["type"] == message_type]


class FakePublisher:
    """Timeline publisher that keeps events in memory."""

    def __init__(self, fail_types: tuple[str, ...] = ()) -> None:
        self.events: list[tuple[str, TimelineEvent]] = []
        self.fail_types = fail_types
        self.closed = False

    async def post_event(self, incident_id: str, event: TimelineEvent) -> None:
        if event.type in self.fail_types:
            raise IncidentServiceError(f"rejected {event.type}", status_code=500)
        self.events.append((incident_id, event))

    async def close(self) -> None:
        self.closed = True

    def of_type(self, event_type: str) -> list[TimelineEvent]:
        return [event for _, event in self.events if event.type == event_type]


class FakeVision:
    """Vision analyzer returning a canned analysis."""

    def __init__(self, result: str = "A two-car collision with visible smoke.") -> None:
        self.result = result
        self.calls: list[dict[str, Any]] = []
        self.closed = False

    async def analyze(
        self,
        image_data: str,
        mime_type: str,
        history: list[dict[str, str]] | None = None,
    ) -> str:
        self.calls.append({"image_data": image_data, "mime_type": mime_type, "history": history})
        return self.result

    async def close(self) -> None:
        self.closed = True
