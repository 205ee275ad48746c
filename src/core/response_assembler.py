"""Accumulates one streamed upstream response into a single artifact."""

from __future__ import annotations

import base64
import uuid
from dataclasses import dataclass, field


@dataclass
class PendingResponse:
    """State of the response currently being generated upstream."""

    audio_chunks: list[bytes] = field(default_factory=list)
    transcript_text: str = ""
    audio_ref: str = ""
    total_audio_bytes: int = 0
    audio_complete: bool = False

    @property
    def has_audio(self) -> bool:
        return bool(self.audio_chunks)


@dataclass(frozen=True, slots=True)
class AssistantMessage:
    """Consolidated artifact for one completed response."""

    text: str
    audio: bytes | None
    audio_ref: str | None
    sample_rate: int
    duration_ms: int | None

    @property
    def has_audio(self) -> bool:
        return self.audio is not None

    @property
    def audio_b64(self) -> str:
        return base64.b64encode(self.audio).decode("ascii") if self.audio else ""

    def to_timeline_payload(self) -> dict:
        return {
            "text": self.text,
            "has_audio": self.has_audio,
            "audio_ref": self.audio_ref,
            "duration_ms": self.duration_ms,
        }


@dataclass(frozen=True, slots=True)
class AudioDelta:
    """One decoded outbound audio chunk, tagged with its response ref."""

    ref: str
    audio: bytes
    first_in_response: bool


class ResponseAssembler:
    """Builds AssistantMessage artifacts from streamed deltas.

    Exactly one PendingResponse exists at a time; `finish` hands back the
    artifact and starts a fresh one for the next turn.
    """

    def __init__(self, *, bytes_per_sample: int = 2) -> None:
        self._bytes_per_sample = bytes_per_sample
        self.pending = PendingResponse()

    def add_audio(self, audio_b64: str) -> AudioDelta:
        """Append a base64 audio delta, minting the response ref if needed."""
        audio = base64.b64decode(audio_b64)
        first = not self.pending.audio_ref
        if first:
            self.pending.audio_ref = str(uuid.uuid4())
        self.pending.audio_chunks.append(audio)
        self.pending.total_audio_bytes += len(audio)
        return AudioDelta(ref=self.pending.audio_ref, audio=audio, first_in_response=first)

    def set_transcript(self, text: str) -> None:
        self.pending.transcript_text = text

    def mark_audio_complete(self) -> None:
        self.pending.audio_complete = True

    def duration_ms(self, sample_rate: int) -> int | None:
        if sample_rate <= 0:
            return None
        seconds = self.pending.total_audio_bytes / self._bytes_per_sample / sample_rate
        return round(seconds * 1000)

    def finish(self, sample_rate: int, fallback_text: str = "") -> AssistantMessage:
        """Produce the artifact for the in-flight response and reset."""
        pending = self.pending
        audio = b"".join(pending.audio_chunks) if pending.has_audio else None
        message = AssistantMessage(
            text=pending.transcript_text or fallback_text,
            audio=audio,
            audio_ref=pending.audio_ref if audio is not None else None,
            sample_rate=sample_rate,
            duration_ms=self.duration_ms(sample_rate) if audio is not None else None,
        )
        self.reset()
        return message

    def reset(self) -> None:
        self.pending = PendingResponse()
