"""Prometheus metrics for the realtime relay.

Provides metrics for monitoring session health, turn taking, and
timeline delivery.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, generate_latest
from prometheus_client.exposition import CONTENT_TYPE_LATEST

# =============================================================================
# Counters
# =============================================================================

AUDIO_COMMITS = Counter(
    "relay_audio_commits_total",
    "Input audio buffer commits sent upstream",
    ["reason"],
)

RESPONSE_REQUESTS = Counter(
    "relay_response_requests_total",
    "Response-create requests by outcome (sent or coalesced)",
    ["outcome"],
)

CALLER_TRANSCRIPTS = Counter(
    "relay_caller_transcripts_total",
    "Finalized caller transcripts by echo guard verdict",
    ["verdict"],
)

TIMELINE_PUBLISHES = Counter(
    "relay_timeline_publishes_total",
    "Timeline event publications by outcome",
    ["event_type", "outcome"],
)

SESSION_TERMINATIONS = Counter(
    "relay_session_terminations_total",
    "Relay sessions closed, by reason",
    ["reason"],
)

# =============================================================================
# Gauges
# =============================================================================

ACTIVE_SESSIONS = Gauge(
    "relay_active_sessions",
    "Currently connected caller sessions",
)

# =============================================================================
# Histograms
# =============================================================================

RESPONSE_AUDIO_SECONDS = Histogram(
    "relay_response_audio_seconds",
    "Duration of synthesized audio per assistant response",
    buckets=[0.5, 1, 2, 3, 5, 8, 13, 20, 30],
)

SESSION_DURATION = Histogram(
    "relay_session_duration_seconds",
    "Caller session duration in seconds",
    buckets=[10, 30, 60, 120, 300, 600, 900, 1800],
)

# =============================================================================
# Helper Functions
# =============================================================================


def record_session_end(reason: str, duration_seconds: float) -> None:
    """Record metrics for a finished session.

    Args:
        reason: Why the session ended (caller_disconnected, upstream_error, ...)
        duration_seconds: Time from accept to teardown
    """
    SESSION_TERMINATIONS.labels(reason=reason).inc()
    SESSION_DURATION.observe(duration_seconds)


def record_response_audio(duration_ms: int | None) -> None:
    """Record synthesized audio length for one response (if it had audio)."""
    if duration_ms is not None and duration_ms > 0:
        RESPONSE_AUDIO_SECONDS.observe(duration_ms / 1000)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output.

    Returns:
        Metrics in Prometheus text exposition format.
    """
    return generate_latest()


def get_content_type() -> str:
    """Get the content type for Prometheus metrics.

    Returns:
        Content-Type header value for Prometheus metrics.
    """
    return CONTENT_TYPE_LATEST
