"""Upstream realtime conversation service (OpenAI Realtime)."""

from src.services.realtime.exceptions import (
    RealtimeConnectionError,
    RealtimeProtocolError,
    RealtimeServiceError,
)
from src.services.realtime.openai_realtime import OpenAIRealtimeClient
from src.services.realtime.protocol import RealtimeLink, TurnDetection, UpstreamEvent

__all__ = [
    "OpenAIRealtimeClient",
    "RealtimeConnectionError",
    "RealtimeLink",
    "RealtimeProtocolError",
    "RealtimeServiceError",
    "TurnDetection",
    "UpstreamEvent",
]
