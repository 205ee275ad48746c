"""Tests for UpstreamBridge."""

from __future__ import annotations

import asyncio

import pytest

from src.core.bridge import UpstreamBridge
from src.core.session import ConnectionState, RelaySession
from src.core.timers import SessionTimers, TimerKey
from src.services.realtime.exceptions import RealtimeConnectionError, RealtimeServiceError
from tests.fakes import FakeLink


def make_bridge(
    link: FakeLink, *, debounce_ms: int = 0, on_failure=None
) -> tuple[UpstreamBridge, RelaySession, SessionTimers]:
    session = RelaySession(incident_id="inc-1", state=ConnectionState.STREAMING)
    timers = SessionTimers("inc-1")
    bridge = UpstreamBridge(
        session,
        lambda: link,
        lock=asyncio.Lock(),
        timers=timers,
        instructions="You are a dispatcher.",
        voice="verse",
        response_debounce_ms=debounce_ms,
        on_failure=on_failure,
    )
    return bridge, session, timers


async def open_bridge(bridge: UpstreamBridge) -> None:
    bridge.ensure_connected()
    await bridge.open()
    await bridge.configure()


class TestConnection:
    """Tests for link creation and configuration."""

    @pytest.mark.asyncio
    async def test_ensure_connected_is_idempotent(self) -> None:
        created: list[FakeLink] = []

        def factory() -> FakeLink:
            created.append(FakeLink())
            return created[-1]

        session = RelaySession(incident_id="inc-1")
        bridge = UpstreamBridge(
            session,
            factory,
            lock=asyncio.Lock(),
            timers=SessionTimers(),
            instructions="x",
        )

        assert bridge.ensure_connected() is True
        assert bridge.ensure_connected() is False
        assert len(created) == 1

    @pytest.mark.asyncio
    async def test_configure_sends_session_update(self) -> None:
        link = FakeLink()
        bridge, _, _ = make_bridge(link)

        await open_bridge(bridge)

        assert bridge.is_open
        update = link.sent[0]
        assert update["type"] == "session.update"
        session = update["session"]
        assert session["instructions"] == "You are a dispatcher."
        assert session["voice"] == "verse"
        assert session["input_audio_format"] == "pcm16"
        assert session["input_audio_transcription"] == {"model": "whisper-1"}
        assert session["turn_detection"]["type"] == "server_vad"
        assert session["turn_detection"]["create_response"] is False

    @pytest.mark.asyncio
    async def test_open_without_link(self) -> None:
        bridge, _, _ = make_bridge(FakeLink())

        with pytest.raises(RealtimeConnectionError):
            await bridge.open()

    @pytest.mark.asyncio
    async def test_send_after_close_raises(self) -> None:
        link = FakeLink()
        bridge, _, _ = make_bridge(link)
        await open_bridge(bridge)

        await bridge.close()

        assert not bridge.is_open
        with pytest.raises(RealtimeServiceError):
            await bridge.commit()


class TestResponseRequests:
    """Tests for response coalescing."""

    @pytest.mark.asyncio
    async def test_immediate_request(self) -> None:
        link = FakeLink()
        bridge, session, _ = make_bridge(link)
        await open_bridge(bridge)

        assert await bridge.request_response(immediate=True) is True

        assert link.count("response.create") == 1
        assert session.response_pending is True

    @pytest.mark.asyncio
    async def test_requests_coalesce_while_pending(self) -> None:
        link = FakeLink()
        bridge, session, _ = make_bridge(link)
        await open_bridge(bridge)

        assert await bridge.request_response() is True
        assert await bridge.request_response() is False
        await asyncio.sleep(0.02)
        assert await bridge.request_response() is False

        assert link.count("response.create") == 1

        session.response_pending = False
        assert await bridge.request_response(immediate=True) is True
        assert link.count("response.create") == 2

    @pytest.mark.asyncio
    async def test_debounced_request_fires(self) -> None:
        link = FakeLink()
        bridge, _, timers = make_bridge(link, debounce_ms=20)
        await open_bridge(bridge)

        await bridge.request_response()
        assert timers.is_pending(TimerKey.RESPONSE_DEBOUNCE)
        assert link.count("response.create") == 0

        await asyncio.sleep(0.05)
        assert link.count("response.create") == 1

    @pytest.mark.asyncio
    async def test_immediate_request_sends_debounced_one_now(self) -> None:
        link = FakeLink()
        bridge, _, timers = make_bridge(link, debounce_ms=50)
        await open_bridge(bridge)

        await bridge.request_response()
        assert await bridge.request_response(immediate=True) is True

        assert link.count("response.create") == 1
        assert not timers.is_pending(TimerKey.RESPONSE_DEBOUNCE)
        await asyncio.sleep(0.08)
        assert link.count("response.create") == 1

    @pytest.mark.asyncio
    async def test_request_dropped_when_link_not_open(self) -> None:
        link = FakeLink()
        bridge, session, _ = make_bridge(link)

        await bridge.request_response(immediate=True)

        assert link.sent == []
        assert session.response_pending is False

    @pytest.mark.asyncio
    async def test_debounced_failure_reported(self) -> None:
        link = FakeLink()
        failures: list[RealtimeServiceError] = []
        bridge, _, _ = make_bridge(link, debounce_ms=10, on_failure=failures.append)
        await open_bridge(bridge)

        link.fail_send = True
        await bridge.request_response()
        await asyncio.sleep(0.04)

        assert len(failures) == 1
        assert isinstance(failures[0], RealtimeConnectionError)
