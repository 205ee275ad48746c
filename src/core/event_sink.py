"""Fire-and-forget publication of relay artifacts to the incident timeline.

Publication never blocks the audio path: each event is delivered on its
own task, with a per-session cap on concurrent requests and on queued
events. Delivery is best-effort and at most once; failures are logged
and counted, never retried or raised.
"""

from __future__ import annotations

import asyncio
from typing import Any, Protocol

from src.core.response_assembler import AssistantMessage
from src.logging_config import get_logger, truncate_for_log
from src.observability.metrics import TIMELINE_PUBLISHES
from src.services.incident.client import (
    TimelineEvent,
    agent_message_event,
    agent_state_event,
    caption_event,
    image_analyzed_event,
    image_uploaded_event,
    run_agent_event,
)

logger: Any = get_logger(__name__)


class TimelinePublisher(Protocol):
    """Protocol for the incident timeline transport."""

    async def post_event(self, incident_id: str, event: TimelineEvent) -> None:
        """Append one event; raises on failure."""
        ...

    async def close(self) -> None:
        ...


class EventSink:
    """Per-session publisher of timeline artifacts."""

    def __init__(
        self,
        incident_id: str,
        publisher: TimelinePublisher,
        *,
        max_concurrency: int = 4,
        max_pending: int = 64,
    ) -> None:
        self._incident_id = incident_id
        self._publisher = publisher
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._max_pending = max_pending
        self._tasks: set[asyncio.Task[None]] = set()
        self._closed = False

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def publish(self, event: TimelineEvent) -> bool:
        """Schedule delivery of one event. Returns False if it was dropped."""
        if self._closed:
            return False
        if len(self._tasks) >= self._max_pending:
            logger.warning(
                f"Timeline backlog full for {self._incident_id}, dropping {event.type}"
            )
            TIMELINE_PUBLISHES.labels(event_type=event.type, outcome="dropped").inc()
            return False

        task = asyncio.create_task(
            self._deliver(event),
            name=f"timeline-{event.type}-{self._incident_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def _deliver(self, event: TimelineEvent) -> None:
        async with self._semaphore:
            try:
                await self._publisher.post_event(self._incident_id, event)
            except Exception as e:
                if event.type == "run_agent":
                    logger.warning(f"Failed to trigger agent for {self._incident_id}: {e}")
                else:
                    logger.warning(
                        f"Failed to post {event.type} for {self._incident_id}: {e}"
                    )
                TIMELINE_PUBLISHES.labels(event_type=event.type, outcome="failed").inc()
                return

        TIMELINE_PUBLISHES.labels(event_type=event.type, outcome="ok").inc()
        if event.type == "run_agent":
            logger.info(f"Triggered coordinator agent for {self._incident_id}")

    # -------------------------------------------------------------------------
    # Artifacts
    # -------------------------------------------------------------------------

    def caption(self, text: str) -> bool:
        return self.publish(caption_event(text))

    def agent_state(self, state: str) -> bool:
        return self.publish(agent_state_event(state))

    def agent_message(self, message: AssistantMessage) -> bool:
        return self.publish(agent_message_event(message.to_timeline_payload()))

    def trigger_agent(self, transcript: str) -> bool:
        logger.debug(f"Agent trigger: {truncate_for_log(transcript)}")
        return self.publish(run_agent_event(transcript))

    def image_uploaded(self, image_url: str | None, mime_type: str | None) -> bool:
        return self.publish(image_uploaded_event(image_url, mime_type))

    def image_analyzed(self, analysis: str, image_url: str | None) -> bool:
        return self.publish(image_analyzed_event(analysis, image_url))

    # -------------------------------------------------------------------------
    # Shutdown
    # -------------------------------------------------------------------------

    async def drain(self, timeout: float = 2.0) -> None:
        """Give in-flight deliveries up to `timeout` seconds, then cancel them."""
        if not self._tasks:
            return
        tasks = set(self._tasks)
        _, still_running = await asyncio.wait(tasks, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning(
                f"Cancelled {len(still_running)} undelivered timeline events "
                f"for {self._incident_id}"
            )
            await asyncio.gather(*still_running, return_exceptions=True)

    async def close(self, timeout: float = 2.0) -> None:
        if self._closed:
            return
        self._closed = True
        await self.drain(timeout)
        await self._publisher.close()
