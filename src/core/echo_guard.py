"""Echo suppression for the relay's own synthesized speech.

The caller's microphone picks up whatever the caller's speaker plays, so
the upstream model regularly transcribes the assistant's own voice as if
the caller had said it. EchoGuard tracks playback state per session and
rejects inbound transcripts that are likely such echoes.
"""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Callable
from enum import Enum


class EchoVerdict(str, Enum):
    """Outcome of screening one inbound transcript."""

    ACCEPTED = "accepted"
    AGENT_SPEAKING = "agent_speaking"  # Arrived while playback was live
    NOISE = "noise"  # Too short or no alphanumerics
    ECHO = "echo"  # Matches a recent synthesized utterance

    @property
    def accepted(self) -> bool:
        return self is EchoVerdict.ACCEPTED


def normalize_utterance(text: str) -> str:
    """Normalize text for echo comparison (trimmed, lower-cased)."""
    return (text or "").strip().lower()


def is_noise(text: str) -> bool:
    """Check if cleaned text is too short or has nothing speech-like."""
    cleaned = (text or "").strip()
    if len(cleaned) <= 2:
        return True
    return not any(ch.isalnum() for ch in cleaned)


class EchoGuard:
    """Per-session playback tracker and inbound transcript filter."""

    def __init__(
        self,
        *,
        grace_ms: int = 800,
        tail_ms: int = 1500,
        capacity: int = 5,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._grace_s = grace_ms / 1000
        self._tail_s = tail_ms / 1000
        self._clock = clock

        self.is_agent_speaking = False
        self.last_speech_activity_at: float | None = None
        self.last_speech_ended_at: float | None = None
        self.recent_agent_utterances: deque[str] = deque(maxlen=capacity)

    def mark_speaking(self) -> None:
        """Record synthesized speech activity (one outbound audio delta)."""
        self.is_agent_speaking = True
        self.last_speech_activity_at = self._clock()

    def mark_idle(self) -> None:
        """Record that playback has finished, including its tail."""
        if self.is_agent_speaking:
            self.last_speech_ended_at = self._clock()
        self.is_agent_speaking = False

    def remember(self, utterance: str) -> None:
        """Add a synthesized transcript to the echo ring buffer."""
        normalized = normalize_utterance(utterance)
        if normalized:
            self.recent_agent_utterances.append(normalized)

    def screen(self, transcript: str) -> EchoVerdict:
        """Decide whether an inbound transcript is genuine caller speech."""
        now = self._clock()

        if (
            self.is_agent_speaking
            and self.last_speech_activity_at is not None
            and now - self.last_speech_activity_at < self._grace_s
        ):
            return EchoVerdict.AGENT_SPEAKING

        if is_noise(transcript):
            return EchoVerdict.NOISE

        if self._within_echo_window(now) and self._matches_recent(transcript):
            return EchoVerdict.ECHO

        return EchoVerdict.ACCEPTED

    def _within_echo_window(self, now: float) -> bool:
        if self.is_agent_speaking:
            return True
        if self.last_speech_ended_at is None:
            return False
        return now - self.last_speech_ended_at < self._tail_s

    def _matches_recent(self, transcript: str) -> bool:
        # Containment both ways catches truncated and padded echoes
        candidate = normalize_utterance(transcript)
        return any(
            candidate in utterance or utterance in candidate
            for utterance in self.recent_agent_utterances
        )

    def reset(self) -> None:
        self.is_agent_speaking = False
        self.last_speech_activity_at = None
        self.last_speech_ended_at = None
        self.recent_agent_utterances.clear()
