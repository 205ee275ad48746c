"""Incident service client for appending timeline events."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import httpx


class IncidentServiceError(RuntimeError):
    """Raised when the incident service rejects or fails a request."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True, slots=True)
class TimelineEvent:
    """One `{actor, type, payload}` entry for an incident timeline."""

    actor: str
    type: str
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"actor": self.actor, "type": self.type, "payload": self.payload}


def caption_event(text: str) -> TimelineEvent:
    return TimelineEvent(actor="emergency", type="live_caption_final", payload={"text": text})


def agent_state_event(state: str) -> TimelineEvent:
    return TimelineEvent(actor="agent", type="agent_state", payload={"state": state})


def agent_message_event(payload: dict[str, Any]) -> TimelineEvent:
    return TimelineEvent(actor="agent", type="agent_message", payload=payload)


def run_agent_event(transcript: str) -> TimelineEvent:
    return TimelineEvent(
        actor="realtime_gateway",
        type="run_agent",
        payload={
            "reason": "user_spoke",
            "transcript": transcript,
            "timestamp": datetime.now(UTC).isoformat(),
        },
    )


def image_uploaded_event(image_url: str | None, mime_type: str | None) -> TimelineEvent:
    return TimelineEvent(
        actor="emergency",
        type="image_uploaded",
        payload={"imageUrl": image_url, "mimeType": mime_type},
    )


def image_analyzed_event(analysis: str, image_url: str | None) -> TimelineEvent:
    return TimelineEvent(
        actor="system",
        type="image_analyzed",
        payload={"analysis": analysis, "imageUrl": image_url},
    )


class IncidentClient:
    """POSTs timeline events to `/incidents/{id}/events`."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> IncidentClient:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def client(self) -> httpx.AsyncClient:
        """Lazy initialization of the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                headers={"content-type": "application/json"},
                transport=self._transport,
            )
        return self._client

    async def post_event(self, incident_id: str, event: TimelineEvent) -> None:
        """Append one event to an incident timeline.

        Raises:
            IncidentServiceError: On transport failure or a 4xx/5xx response.
        """
        try:
            response = await self.client.post(
                f"/incidents/{incident_id}/events",
                json=event.to_dict(),
            )
        except httpx.HTTPError as e:
            raise IncidentServiceError(f"Timeline request failed: {e}") from e

        if response.status_code >= 400:
            raise IncidentServiceError(
                f"Timeline rejected {event.type}: {response.status_code} {response.text[:200]}",
                status_code=response.status_code,
            )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
