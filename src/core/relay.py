"""Realtime relay between one caller WebSocket and the upstream voice model.

Orchestrates a single caller session:
- Caller audio → buffer/commit policy → upstream link
- Upstream events → echo guard → caller playback and incident timeline
- Debounced agent triggers for accepted caller speech

All session state changes run under one asyncio.Lock, so caller frames,
upstream events and timer callbacks never interleave mid-update.
"""

from __future__ import annotations

import asyncio
import json
import time
import uuid
from collections.abc import Callable
from typing import Any, Protocol

from src.config import Settings, get_settings
from src.core.audio_buffer import AudioBufferController, FrameAction
from src.core.bridge import UpstreamBridge
from src.core.echo_guard import EchoGuard
from src.core.event_sink import EventSink, TimelinePublisher
from src.core.exceptions import CloseCode, ProtocolViolation
from src.core.response_assembler import AssistantMessage, ResponseAssembler
from src.core.session import ConnectionState, RelaySession, Role
from src.core.timers import SessionTimers, TimerKey
from src.logging_config import get_logger, truncate_for_log
from src.observability.metrics import (
    AUDIO_COMMITS,
    CALLER_TRANSCRIPTS,
    record_response_audio,
    record_session_end,
)
from src.prompts.dispatcher import DISPATCHER_INSTRUCTIONS, image_context_message
from src.services.incident.client import IncidentClient
from src.services.realtime.exceptions import RealtimeProtocolError, RealtimeServiceError
from src.services.realtime.openai_realtime import OpenAIRealtimeClient
from src.services.realtime.protocol import (
    JsonDict,
    RealtimeLink,
    UpstreamEvent,
    extract_input_transcript,
)
from src.services.vision.openai_vision import VisionAnalyzer

logger: Any = get_logger(__name__)

MAX_SAMPLE_RATE = 192_000


class CallerChannel(Protocol):
    """Protocol for messages going back to the caller."""

    async def send_json(self, message: dict[str, Any]) -> None:
        """Send one JSON message. Failures are logged, not raised."""
        ...

    async def close(self, code: int, reason: str = "") -> None:
        """Close the caller connection if it is still open."""
        ...


class RealtimeRelay:
    """Per-connection relay session.

    Lifecycle: AWAITING_HELLO → CONNECTING_UPSTREAM → STREAMING, then
    CLOSING → CLOSED on caller disconnect, upstream failure or protocol
    error, whichever happens first.
    """

    def __init__(
        self,
        incident_id: str,
        caller: CallerChannel,
        *,
        settings: Settings | None = None,
        link_factory: Callable[[], RealtimeLink] | None = None,
        publisher: TimelinePublisher | None = None,
        vision: VisionAnalyzer | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings or get_settings()
        s = self._settings

        self.session_id = str(uuid.uuid4())
        self.session = RelaySession(
            incident_id=incident_id,
            sample_rate=s.default_sample_rate,
            history_limit=s.conversation_history_limit,
        )
        self._caller = caller
        self._lock = asyncio.Lock()
        self._timers = SessionTimers(name=incident_id)
        self._closed_event = asyncio.Event()

        self.buffer = AudioBufferController(
            sample_rate=s.default_sample_rate,
            bytes_per_sample=s.bytes_per_sample,
            commit_window_ms=s.commit_window_ms,
            flush_window_ms=s.flush_window_ms,
            min_frame_bytes=s.min_audio_frame_bytes,
            pre_upstream_max_bytes=s.pre_upstream_max_bytes,
        )
        self.echo_guard = EchoGuard(
            grace_ms=s.echo_grace_ms,
            tail_ms=s.echo_tail_ms,
            capacity=s.recent_utterance_capacity,
            clock=clock,
        )
        self.assembler = ResponseAssembler(bytes_per_sample=s.bytes_per_sample)
        self.bridge = UpstreamBridge(
            self.session,
            link_factory or (lambda: OpenAIRealtimeClient(settings=s)),
            lock=self._lock,
            timers=self._timers,
            instructions=DISPATCHER_INSTRUCTIONS,
            voice=s.realtime_voice,
            response_debounce_ms=s.response_debounce_ms,
            on_failure=self._fail,
        )
        self.sink = EventSink(
            incident_id,
            publisher
            or IncidentClient(s.incident_base_url, timeout_seconds=s.timeline_timeout_seconds),
            max_concurrency=s.timeline_max_concurrency,
            max_pending=s.timeline_max_pending,
        )
        self._vision = vision

        self._connect_task: asyncio.Task[None] | None = None
        self._upstream_task: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[None]] = set()
        self._agent_trigger_transcripts: list[str] = []

        logger.info(f"Relay session {self.session_id} opened for incident {incident_id}")

    @property
    def state(self) -> ConnectionState:
        return self.session.state

    @property
    def incident_id(self) -> str:
        return self.session.incident_id

    async def wait_closed(self) -> None:
        await self._closed_event.wait()

    # =========================================================================
    # Caller frames
    # =========================================================================

    async def handle_control(self, text: str) -> None:
        """Handle one text frame from the caller."""
        async with self._lock:
            if self.session.is_closed:
                return
            try:
                message = _parse_control(text)
                message_type = message.get("type")
                if message_type == "client_hello":
                    self._handle_hello(message)
                elif message_type == "image_upload":
                    self._handle_image_upload(message)
                else:
                    logger.debug(f"Ignoring control frame type {message_type!r}")
            except ProtocolViolation as e:
                logger.warning(f"Protocol error from caller ({self.incident_id}): {e}")
                await self._teardown("protocol_error", e.close_code, str(e))

    async def handle_audio(self, frame: bytes) -> None:
        """Handle one binary PCM16 frame from the caller."""
        async with self._lock:
            if self.session.is_closed:
                return
            action = self.buffer.offer(frame)
            if action is FrameAction.DROPPED_OVERFLOW:
                logger.debug(
                    f"Pre-upstream buffer full ({self.buffer.pre_upstream_bytes} bytes), "
                    f"dropping {len(frame)} bytes"
                )
            if action is not FrameAction.FORWARD:
                return
            try:
                await self._forward(frame)
            except RealtimeServiceError as e:
                await self._teardown_upstream_failure(e)

    def _handle_hello(self, message: JsonDict) -> None:
        if self.session.hello_received:
            logger.warning(f"Duplicate client_hello ignored for {self.incident_id}")
            return

        sample_rate = _parse_sample_rate(
            message.get("sample_rate"), default=self._settings.default_sample_rate
        )
        self.session.sample_rate = sample_rate
        self.session.hello_received = True
        self.buffer.configure(sample_rate)

        logger.info(
            f"client_hello for {self.incident_id}: {sample_rate}Hz, "
            f"commit={self.buffer.commit_threshold_bytes}B "
            f"flush={self.buffer.flush_threshold_bytes}B"
        )

        if self.bridge.ensure_connected():
            self.session.transition_to(ConnectionState.CONNECTING_UPSTREAM)
            self._connect_task = asyncio.create_task(
                self._connect_upstream(),
                name=f"upstream-connect-{self.session_id}",
            )

    def _handle_image_upload(self, message: JsonDict) -> None:
        image_data = message.get("imageData")
        if not isinstance(image_data, str) or not image_data:
            raise ProtocolViolation("image_upload without imageData")
        mime_type = message.get("mimeType") or "image/jpeg"
        image_url = message.get("imageUrl")

        logger.info(
            f"image_upload for {self.incident_id}: {mime_type}, {len(image_data)} chars"
        )
        self.sink.image_uploaded(image_url, mime_type)

        history = self.session.recent_history(self._settings.vision_history_turns)
        self._spawn(
            self._analyze_image(image_data, mime_type, image_url, history),
            name=f"image-analysis-{self.session_id}",
        )

    # =========================================================================
    # Audio buffering and commits (lock held)
    # =========================================================================

    async def _forward(self, frame: bytes) -> None:
        await self.bridge.append_audio(frame)
        if self.buffer.record_forwarded(len(frame)):
            await self._commit("threshold")
        else:
            self._timers.schedule(
                TimerKey.COMMIT_FLUSH,
                self._settings.flush_delay_ms / 1000,
                self._on_flush_timer,
            )

    async def _commit(self, reason: str, *, immediate_response: bool = False) -> None:
        await self.bridge.commit()
        committed = self.buffer.mark_committed()
        self._timers.cancel(TimerKey.COMMIT_FLUSH)
        AUDIO_COMMITS.labels(reason=reason).inc()
        logger.debug(f"commit ({reason}) {committed}B for {self.incident_id}")
        await self.bridge.request_response(immediate=immediate_response)

    async def _on_flush_timer(self) -> None:
        async with self._lock:
            if not self.session.is_streaming or not self.buffer.flush_due():
                return
            try:
                await self._commit("timer")
            except RealtimeServiceError as e:
                await self._teardown_upstream_failure(e)

    # =========================================================================
    # Upstream link
    # =========================================================================

    async def _connect_upstream(self) -> None:
        try:
            await self.bridge.open()
        except RealtimeServiceError as e:
            logger.error(f"Upstream connect failed for {self.incident_id}: {e}")
            await self.close("upstream_connect_failed", CloseCode.UPSTREAM_FAILURE)
            return

        async with self._lock:
            if self.session.is_closed:
                return
            try:
                await self.bridge.configure()
                self.session.transition_to(ConnectionState.STREAMING)
                logger.info(f"Upstream ready for {self.incident_id}")
                await self._flush_pre_upstream()
            except RealtimeServiceError as e:
                await self._teardown_upstream_failure(e)
                return

            self._upstream_task = asyncio.create_task(
                self._upstream_loop(),
                name=f"upstream-events-{self.session_id}",
            )

    async def _flush_pre_upstream(self) -> None:
        held_bytes = self.buffer.pre_upstream_bytes
        frames = self.buffer.drain_pre_upstream()
        if not frames:
            return
        logger.info(
            f"Flushing pre-upstream buffer for {self.incident_id}: "
            f"{len(frames)} chunks, {held_bytes}B"
        )
        for frame in frames:
            await self._forward(frame)

    async def _upstream_loop(self) -> None:
        link = self.bridge.link
        if link is None:
            return
        try:
            async for event in link.events():
                await self.handle_upstream_event(event)
                if self.session.is_closed:
                    return
        except RealtimeServiceError as e:
            logger.warning(f"Upstream link dropped for {self.incident_id}: {e}")
            await self.close("upstream_dropped", CloseCode.UPSTREAM_FAILURE)
            return
        except Exception as e:
            logger.exception(f"Upstream reader failed for {self.incident_id}: {e}")
            await self.close("upstream_error", CloseCode.UPSTREAM_FAILURE)
            return

        await self.close("upstream_closed", CloseCode.UPSTREAM_FAILURE)

    async def handle_upstream_event(self, event: JsonDict) -> None:
        """Demultiplex one upstream event into local actions."""
        async with self._lock:
            if self.session.is_closed:
                return
            try:
                await self._dispatch(event)
            except RealtimeProtocolError as e:
                logger.error(f"Upstream error for {self.incident_id}: {e} {e.payload}")
                await self._teardown("upstream_error", CloseCode.UPSTREAM_FAILURE, "upstream error")
            except RealtimeServiceError as e:
                await self._teardown_upstream_failure(e)
            except (ValueError, TypeError, AttributeError) as e:
                logger.error(f"Malformed upstream event for {self.incident_id}: {e}")
                await self._teardown(
                    "upstream_error", CloseCode.UPSTREAM_FAILURE, "malformed upstream event"
                )

    async def _dispatch(self, event: JsonDict) -> None:
        event_type = str(event.get("type", ""))

        if event_type == UpstreamEvent.INPUT_TRANSCRIPT_COMPLETED:
            self._on_caller_transcript(extract_input_transcript(event))
        elif event_type in UpstreamEvent.AUDIO_DELTA:
            audio_b64 = event.get("delta") or event.get("audio")
            if audio_b64:
                await self._on_audio_delta(audio_b64)
        elif event_type in UpstreamEvent.AUDIO_DONE:
            self.assembler.mark_audio_complete()
        elif event_type in UpstreamEvent.AUDIO_TRANSCRIPT_DONE:
            self._on_assistant_transcript(event.get("transcript") or "")
        elif event_type == UpstreamEvent.RESPONSE_DONE:
            await self._on_response_done(event)
        elif event_type == UpstreamEvent.RESPONSE_STATUS:
            status = event.get("status")
            if status:
                self.sink.agent_state(str(status))
        elif event_type == UpstreamEvent.SESSION_CREATED:
            session_info = event.get("session") or {}
            logger.info(f"Upstream session created: {session_info.get('id')}")
        elif event_type == UpstreamEvent.ERROR:
            error = event.get("error") or {}
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise RealtimeProtocolError(message or "upstream error", payload=event)
        else:
            logger.debug(f"Upstream event {event_type}")

    # =========================================================================
    # Upstream event handlers (lock held)
    # =========================================================================

    def _on_caller_transcript(self, transcript: str) -> None:
        verdict = self.echo_guard.screen(transcript)
        CALLER_TRANSCRIPTS.labels(verdict=verdict.value).inc()
        if not verdict.accepted:
            logger.debug(
                f"Ignoring caller transcript ({verdict.value}): {truncate_for_log(transcript)}"
            )
            return

        text = transcript.strip()
        logger.info(f"Caller transcript for {self.incident_id}: {truncate_for_log(text)}")
        self.sink.caption(text)
        self.session.add_turn(Role.USER, text)

        self._agent_trigger_transcripts.append(text)
        self._timers.schedule(
            TimerKey.AGENT_TRIGGER,
            self._settings.agent_trigger_delay_seconds,
            self._on_agent_trigger,
        )

    def _on_assistant_transcript(self, transcript: str) -> None:
        if not transcript:
            return
        self.assembler.set_transcript(transcript)
        self.echo_guard.remember(transcript)
        self.session.add_turn(Role.ASSISTANT, transcript)
        logger.debug(f"Assistant transcript: {truncate_for_log(transcript)}")

    async def _on_audio_delta(self, audio_b64: str) -> None:
        delta = self.assembler.add_audio(audio_b64)
        self._timers.cancel(TimerKey.SPEAKING_GRACE)
        self.echo_guard.mark_speaking()

        await self._caller.send_json(
            {
                "type": "assistant_audio_chunk",
                "ref": delta.ref,
                "audio": audio_b64,
                "sampleRate": self._settings.output_sample_rate,
            }
        )
        if delta.first_in_response:
            self.sink.agent_state("speaking")

    async def _on_response_done(self, event: JsonDict) -> None:
        self.session.response_pending = False
        self._timers.schedule(
            TimerKey.SPEAKING_GRACE,
            self._settings.speaking_grace_ms / 1000,
            self._on_speaking_grace,
        )

        response = event.get("response") or {}
        fallback = response.get("output_text") if isinstance(response, dict) else None
        message = self.assembler.finish(
            self._settings.output_sample_rate, fallback_text=fallback or ""
        )
        await self._emit_assistant_message(message)

    async def _emit_assistant_message(self, message: AssistantMessage) -> None:
        if message.has_audio:
            await self._caller.send_json(
                {
                    "type": "assistant_audio_ready",
                    "ref": message.audio_ref,
                    "sampleRate": message.sample_rate,
                    "audio": message.audio_b64,
                }
            )
            record_response_audio(message.duration_ms)
            logger.info(
                f"Response audio ready for {self.incident_id}: "
                f"ref={message.audio_ref} {message.duration_ms}ms"
            )
        self.sink.agent_message(message)
        self.sink.agent_state("idle")

    # =========================================================================
    # Timers
    # =========================================================================

    async def _on_speaking_grace(self) -> None:
        async with self._lock:
            if self.session.is_closed:
                return
            self.echo_guard.mark_idle()

    async def _on_agent_trigger(self) -> None:
        async with self._lock:
            if self.session.is_closed or not self._agent_trigger_transcripts:
                return
            transcript = " ".join(self._agent_trigger_transcripts)
            self._agent_trigger_transcripts = []
            self.sink.trigger_agent(transcript)

    # =========================================================================
    # Image analysis
    # =========================================================================

    async def _analyze_image(
        self,
        image_data: str,
        mime_type: str,
        image_url: str | None,
        history: list[dict[str, str]],
    ) -> None:
        if self._vision is None:
            self._vision = VisionAnalyzer(settings=self._settings)
        analysis = await self._vision.analyze(image_data, mime_type, history)
        logger.info(f"Image analysis for {self.incident_id}: {truncate_for_log(analysis, 100)}")

        async with self._lock:
            if self.session.is_closed:
                return
            self.sink.image_analyzed(analysis, image_url)
            if not self.session.is_streaming:
                logger.warning(f"Upstream not ready, image context not injected for {self.incident_id}")
                return
            try:
                await self.bridge.add_text(image_context_message(analysis))
                await self.bridge.request_response()
            except RealtimeServiceError as e:
                await self._teardown_upstream_failure(e)

    # =========================================================================
    # Teardown
    # =========================================================================

    def _spawn(self, coro: Any, *, name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _fail(self, error: RealtimeServiceError) -> None:
        """Schedule teardown from a context that holds the lock."""
        self._spawn(
            self.close("upstream_send_failed", CloseCode.UPSTREAM_FAILURE),
            name=f"teardown-{self.session_id}",
        )

    async def _teardown_upstream_failure(self, error: RealtimeServiceError) -> None:
        logger.error(f"Upstream failure for {self.incident_id}: {error}")
        await self._teardown("upstream_send_failed", CloseCode.UPSTREAM_FAILURE, "upstream failure")

    async def close(
        self,
        reason: str = "caller_disconnected",
        code: int = CloseCode.NORMAL,
    ) -> None:
        """Tear the session down (idempotent) and release side channels."""
        async with self._lock:
            await self._teardown(reason, code, reason)
        await self.sink.close()
        if self._vision is not None:
            await self._vision.close()

    async def _teardown(self, reason: str, code: int, message: str = "") -> None:
        """Release session resources in order. Lock must be held."""
        if not self.session.transition_to(ConnectionState.CLOSING):
            return
        self.session.close_reason = reason
        logger.info(f"Closing relay session for {self.incident_id}: {reason}")

        if self.bridge.is_open and self.buffer.flush_due():
            try:
                await self._commit("close", immediate_response=True)
            except RealtimeServiceError as e:
                logger.warning(f"Final commit failed for {self.incident_id}: {e}")

        self._timers.cancel_all()
        current = asyncio.current_task()
        for task in (self._connect_task, self._upstream_task, *self._background):
            if task is not None and task is not current and not task.done():
                task.cancel()

        try:
            await self.bridge.close()
        except Exception as e:
            logger.warning(f"Error closing upstream link: {e}")

        self.buffer.clear()
        self.assembler.reset()
        self.echo_guard.reset()
        self.session.response_pending = False
        self._agent_trigger_transcripts = []

        await self._caller.close(int(code), message)

        self.session.transition_to(ConnectionState.CLOSED)
        record_session_end(reason, self.session.duration_seconds)
        self._closed_event.set()


def _parse_control(text: str) -> JsonDict:
    try:
        message = json.loads(text)
    except json.JSONDecodeError as e:
        raise ProtocolViolation(f"Malformed control frame: {e.msg}") from e
    if not isinstance(message, dict):
        raise ProtocolViolation("Control frame must be a JSON object")
    return message


def _parse_sample_rate(raw: Any, *, default: int) -> int:
    if raw is None:
        return default
    if isinstance(raw, bool):
        raise ProtocolViolation(f"Invalid sample_rate: {raw!r}")
    try:
        value = int(raw)
    except (TypeError, ValueError) as e:
        raise ProtocolViolation(f"Invalid sample_rate: {raw!r}") from e
    if value <= 0 or value > MAX_SAMPLE_RATE or value != float(raw):
        raise ProtocolViolation(f"Invalid sample_rate: {raw!r}")
    return value
