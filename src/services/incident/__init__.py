"""Incident service integration (timeline events)."""

from src.services.incident.client import (
    IncidentClient,
    IncidentServiceError,
    TimelineEvent,
)

__all__ = [
    "IncidentClient",
    "IncidentServiceError",
    "TimelineEvent",
]
