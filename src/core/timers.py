"""Named, cancellable scheduled callbacks for one session."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from src.logging_config import get_logger

logger: Any = get_logger(__name__)


class TimerKey(str, Enum):
    """Purposes a session schedules re-entry for."""

    COMMIT_FLUSH = "commit_flush"
    RESPONSE_DEBOUNCE = "response_debounce"
    AGENT_TRIGGER = "agent_trigger"
    SPEAKING_GRACE = "speaking_grace"


class SessionTimers:
    """At most one pending callback per TimerKey.

    Scheduling a key that is already pending supersedes the old callback.
    A timer never cancels the task it is running in, so a callback may
    reschedule or cancel everything (including its own key) safely.
    """

    def __init__(self, name: str = "") -> None:
        self._name = name
        self._tasks: dict[TimerKey, asyncio.Task[None]] = {}

    def schedule(
        self,
        key: TimerKey,
        delay: float,
        callback: Callable[[], Awaitable[None]],
    ) -> None:
        """(Re)start the timer for `key`; fires `callback` after `delay` seconds."""
        self.cancel(key)
        self._tasks[key] = asyncio.create_task(
            self._run(key, delay, callback),
            name=f"{key.value}-{self._name}",
        )

    async def _run(
        self,
        key: TimerKey,
        delay: float,
        callback: Callable[[], Awaitable[None]],
    ) -> None:
        await asyncio.sleep(delay)
        if self._tasks.get(key) is asyncio.current_task():
            del self._tasks[key]
        try:
            await callback()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Timer {key.value} failed for {self._name}: {e}")

    def cancel(self, key: TimerKey) -> bool:
        """Cancel a pending timer. Returns True if one was pending."""
        task = self._tasks.pop(key, None)
        if task is None or task.done():
            return False
        if task is asyncio.current_task():
            return False
        task.cancel()
        return True

    def is_pending(self, key: TimerKey) -> bool:
        task = self._tasks.get(key)
        return task is not None and not task.done()

    def cancel_all(self) -> None:
        for key in list(self._tasks):
            self.cancel(key)

    @property
    def pending_keys(self) -> set[TimerKey]:
        return {key for key in self._tasks if self.is_pending(key)}
