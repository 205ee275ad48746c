"""Observability module for metrics."""

from src.observability.metrics import (
    ACTIVE_SESSIONS,
    AUDIO_COMMITS,
    CALLER_TRANSCRIPTS,
    RESPONSE_REQUESTS,
    TIMELINE_PUBLISHES,
    record_response_audio,
    record_session_end,
)

__all__ = [
    "ACTIVE_SESSIONS",
    "AUDIO_COMMITS",
    "CALLER_TRANSCRIPTS",
    "RESPONSE_REQUESTS",
    "TIMELINE_PUBLISHES",
    "record_response_audio",
    "record_session_end",
]
