"""Inbound audio accounting and commit decisions.

Turns the caller's continuous PCM16 stream into discrete commit points
for the upstream model. The controller holds no I/O: the relay asks it
what to do with each frame and performs the sends itself.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum, auto


class FrameAction(Enum):
    """What the relay should do with one inbound binary frame."""

    DROPPED_SMALL = auto()  # Below the minimum frame size
    DROPPED_OVERFLOW = auto()  # Pre-upstream buffer is full
    BUFFERED = auto()  # Held until upstream is ready
    FORWARD = auto()  # Send upstream now


def threshold_bytes(sample_rate: int, bytes_per_sample: int, window_ms: int) -> int:
    """Bytes of mono audio covering `window_ms` at `sample_rate`."""
    return math.ceil(sample_rate * bytes_per_sample * window_ms / 1000)


@dataclass
class BufferStats:
    """Byte accounting for one session."""

    received_bytes: int = 0
    forwarded_bytes: int = 0
    dropped_small_bytes: int = 0
    dropped_overflow_bytes: int = 0
    commits: int = 0


class AudioBufferController:
    """Tracks pending inbound bytes and the pre-upstream overflow buffer.

    Before upstream is ready, frames are held in arrival order up to a
    byte cap; frames that would exceed the cap are dropped (the oldest
    audio is preserved). Once upstream is ready the held frames are
    drained exactly once and every later frame is forwarded directly.
    """

    def __init__(
        self,
        *,
        sample_rate: int = 24000,
        bytes_per_sample: int = 2,
        commit_window_ms: int = 200,
        flush_window_ms: int = 100,
        min_frame_bytes: int = 200,
        pre_upstream_max_bytes: int = 256_000,
    ) -> None:
        self._bytes_per_sample = bytes_per_sample
        self._commit_window_ms = commit_window_ms
        self._flush_window_ms = flush_window_ms
        self._min_frame_bytes = min_frame_bytes
        self._pre_upstream_max_bytes = pre_upstream_max_bytes

        self.sample_rate = sample_rate
        self.commit_threshold_bytes = 0
        self.flush_threshold_bytes = 0
        self.configure(sample_rate)

        self.pending_bytes = 0
        self.upstream_ready = False
        self._pre_upstream: list[bytes] = []
        self._pre_upstream_bytes = 0
        self.stats = BufferStats()

    def configure(self, sample_rate: int) -> None:
        """Derive commit/flush thresholds from the negotiated sample rate."""
        self.sample_rate = sample_rate
        self.commit_threshold_bytes = threshold_bytes(
            sample_rate, self._bytes_per_sample, self._commit_window_ms
        )
        self.flush_threshold_bytes = threshold_bytes(
            sample_rate, self._bytes_per_sample, self._flush_window_ms
        )

    def offer(self, frame: bytes) -> FrameAction:
        """Classify an inbound frame, holding it if upstream is not ready."""
        size = len(frame)
        if size < self._min_frame_bytes:
            self.stats.dropped_small_bytes += size
            return FrameAction.DROPPED_SMALL

        self.stats.received_bytes += size

        if self.upstream_ready:
            return FrameAction.FORWARD

        if self._pre_upstream_bytes + size > self._pre_upstream_max_bytes:
            self.stats.dropped_overflow_bytes += size
            return FrameAction.DROPPED_OVERFLOW

        self._pre_upstream.append(frame)
        self._pre_upstream_bytes += size
        return FrameAction.BUFFERED

    def drain_pre_upstream(self) -> list[bytes]:
        """Switch to direct forwarding and hand back held frames in order.

        Only the first call returns frames; the buffer is discarded for
        the rest of the session.
        """
        if self.upstream_ready:
            return []
        self.upstream_ready = True
        frames = self._pre_upstream
        self._pre_upstream = []
        self._pre_upstream_bytes = 0
        return frames

    def record_forwarded(self, size: int) -> bool:
        """Account for bytes sent upstream.

        Returns:
            True when pending bytes have reached the commit threshold.
        """
        self.pending_bytes += size
        self.stats.forwarded_bytes += size
        return self.pending_bytes >= self.commit_threshold_bytes

    def flush_due(self) -> bool:
        """Whether pending audio is long enough for a timer/close commit."""
        return self.pending_bytes >= self.flush_threshold_bytes

    def mark_committed(self) -> int:
        """Reset the pending counter after a commit; returns committed bytes."""
        committed = self.pending_bytes
        self.pending_bytes = 0
        self.stats.commits += 1
        return committed

    @property
    def pre_upstream_bytes(self) -> int:
        return self._pre_upstream_bytes

    @property
    def pre_upstream_chunks(self) -> int:
        return len(self._pre_upstream)

    def clear(self) -> None:
        """Discard all buffered audio (session teardown)."""
        self.pending_bytes = 0
        self._pre_upstream = []
        self._pre_upstream_bytes = 0
