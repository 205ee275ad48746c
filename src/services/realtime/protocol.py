"""Upstream realtime conversation protocol: link interface and message shapes."""

from __future__ import annotations

import base64
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Protocol

JsonDict = dict[str, Any]


class UpstreamEvent:
    """Upstream event type names the relay reacts to."""

    SESSION_CREATED = "session.created"
    INPUT_TRANSCRIPT_COMPLETED = "conversation.item.input_audio_transcription.completed"
    AUDIO_DELTA = ("response.audio.delta", "response.output_audio.delta")
    AUDIO_DONE = ("response.audio.done", "response.output_audio.done")
    AUDIO_TRANSCRIPT_DONE = (
        "response.audio_transcript.done",
        "response.output_audio_transcript.done",
    )
    RESPONSE_DONE = "response.done"
    RESPONSE_STATUS = "response.status"
    ERROR = "error"


@dataclass
class TurnDetection:
    """Server-side voice activity detection parameters."""

    threshold: float = 0.5
    prefix_padding_ms: int = 300
    silence_duration_ms: int = 500
    # The relay owns response creation; the server only segments turns
    create_response: bool = False

    def to_dict(self) -> JsonDict:
        return {
            "type": "server_vad",
            "threshold": self.threshold,
            "prefix_padding_ms": self.prefix_padding_ms,
            "silence_duration_ms": self.silence_duration_ms,
            "create_response": self.create_response,
        }


def session_update_event(
    instructions: str,
    *,
    voice: str = "alloy",
    turn_detection: TurnDetection | None = None,
    transcription_model: str = "whisper-1",
) -> JsonDict:
    """One-time session configuration sent when the link opens."""
    return {
        "type": "session.update",
        "session": {
            "modalities": ["text", "audio"],
            "input_audio_format": "pcm16",
            "output_audio_format": "pcm16",
            "input_audio_transcription": {"model": transcription_model},
            "turn_detection": (turn_detection or TurnDetection()).to_dict(),
            "voice": voice,
            "instructions": instructions,
        },
    }


def append_audio_event(chunk: bytes) -> JsonDict:
    return {
        "type": "input_audio_buffer.append",
        "audio": base64.b64encode(chunk).decode("ascii"),
    }


def commit_event() -> JsonDict:
    return {"type": "input_audio_buffer.commit"}


def response_create_event() -> JsonDict:
    return {"type": "response.create"}


def text_item_event(text: str, role: str = "user") -> JsonDict:
    """Inject a text message into the upstream conversation."""
    return {
        "type": "conversation.item.create",
        "item": {
            "type": "message",
            "role": role,
            "content": [{"type": "input_text", "text": text}],
        },
    }


def extract_input_transcript(event: JsonDict) -> str:
    """Pull the caller transcript out of a transcription-completed event.

    Different upstream versions place it in different fields; the first
    non-empty one wins.
    """
    for key in ("transcript", "text", "output_text", "transcription"):
        value = event.get(key)
        if isinstance(value, str) and value:
            return value

    item = event.get("item")
    if isinstance(item, dict):
        content = item.get("content")
        if isinstance(content, list) and content and isinstance(content[0], dict):
            value = content[0].get("transcript")
            if isinstance(value, str):
                return value
    return ""


class RealtimeLink(Protocol):
    """Protocol for one upstream streaming connection."""

    @property
    def is_open(self) -> bool:
        """True while events can be sent."""
        ...

    async def connect(self) -> None:
        """Open the connection.

        Raises:
            RealtimeConnectionError: If the link cannot be established.
        """
        ...

    async def send(self, event: JsonDict) -> None:
        """Send one JSON event upstream.

        Raises:
            RealtimeConnectionError: If the link is closed or the send fails.
        """
        ...

    def events(self) -> AsyncIterator[JsonDict]:
        """Iterate decoded upstream events until the link closes."""
        ...

    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        ...
