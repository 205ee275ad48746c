"""Shared pytest fixtures for relay tests."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable, Generator
from typing import Any

import pytest
import pytest_asyncio

from src.api.routes import health as _health_routes  # noqa: F401  # bind real get_settings before fixtures patch it
from src.config import Settings, get_settings
from src.core.relay import RealtimeRelay
from tests.fakes import FakeCaller, FakeClock, FakeLink, FakePublisher, FakeVision


def build_settings(**overrides) -> Settings:
    """Create a Settings object with safe test defaults."""
    base = {
        "openai_api_key": "test-openai-key",
        "incident_base_url": "http://incident.test",
        "realtime_url": "wss://realtime.test/v1/realtime",
    }
    base.update(overrides)
    return Settings(**base)


@pytest.fixture
def settings_factory() -> Callable[..., Settings]:
    """Return a factory to build Settings with overrides."""
    return build_settings


@pytest.fixture
def settings(settings_factory: Callable[..., Settings]) -> Settings:
    """Default Settings fixture."""
    return settings_factory()


# =============================================================================
# Relay Fixtures
# =============================================================================


class RelayHarness:
    """A relay wired to in-memory collaborators."""

    def __init__(self, relay: RealtimeRelay, link: FakeLink, caller: FakeCaller,
                 publisher: FakePublisher, vision: FakeVision, clock: FakeClock) -> None:
        self.relay = relay
        self.link = link
        self.caller = caller
        self.publisher = publisher
        self.vision = vision
        self.clock = clock


@pytest_asyncio.fixture
async def relay_factory(settings_factory) -> AsyncGenerator[Callable[..., RelayHarness], None]:
    """Build a relay with fake upstream, caller, timeline and vision.

    Timer delays default to values that keep tests fast and deterministic:
    responses are requested without debounce and the idle flush timer is
    pushed far out unless a test overrides it. Relays still open when
    the test ends are closed.
    """
    harnesses: list[RelayHarness] = []

    def _factory(
        *,
        link: FakeLink | None = None,
        publisher: FakePublisher | None = None,
        incident_id: str = "inc-123",
        **overrides: Any,
    ) -> RelayHarness:
        defaults: dict[str, Any] = {
            "response_debounce_ms": 0,
            "flush_delay_ms": 10_000,
            "agent_trigger_delay_seconds": 10.0,
            "speaking_grace_ms": 10,
        }
        defaults.update(overrides)
        test_settings = settings_factory(**defaults)

        fake_link = link or FakeLink()
        caller = FakeCaller()
        fake_publisher = publisher or FakePublisher()
        vision = FakeVision()
        clock = FakeClock()

        relay = RealtimeRelay(
            incident_id,
            caller,
            settings=test_settings,
            link_factory=lambda: fake_link,
            publisher=fake_publisher,
            vision=vision,  # type: ignore[arg-type]
            clock=clock,
        )
        harness = RelayHarness(relay, fake_link, caller, fake_publisher, vision, clock)
        harnesses.append(harness)
        return harness

    yield _factory

    for harness in harnesses:
        await harness.relay.close()


# =============================================================================
# FastAPI Test Client Fixtures
# =============================================================================


@pytest.fixture
def fake_links() -> list[FakeLink]:
    """Upstream links created by the gateway during a test."""
    return []


@pytest.fixture
def upstream_script() -> list[dict[str, Any]]:
    """Events every gateway-created upstream link replays after connecting."""
    return []


@pytest.fixture
def test_client(settings_factory, monkeypatch, fake_links, upstream_script) -> Generator:
    """FastAPI TestClient with patched settings and fake collaborators."""
    import sys

    from fastapi.testclient import TestClient

    test_settings = settings_factory(response_debounce_ms=0, flush_delay_ms=10_000)

    def make_link() -> FakeLink:
        link = FakeLink(script=list(upstream_script))
        fake_links.append(link)
        return link

    # Patch get_settings in all modules that import it
    monkeypatch.setattr("src.config.get_settings", lambda: test_settings)
    monkeypatch.setattr(
        "src.api.websocket.realtime_gateway.get_settings", lambda: test_settings
    )
    monkeypatch.setattr("src.api.websocket.realtime_gateway.link_factory", make_link)
    monkeypatch.setattr("src.api.websocket.realtime_gateway.publisher_factory", FakePublisher)

    # Remove cached main module to force re-import with patches
    if "src.main" in sys.modules:
        del sys.modules["src.main"]

    import src.main

    monkeypatch.setattr(src.main, "get_settings", lambda: test_settings)

    app = src.main.create_app()
    app.dependency_overrides[get_settings] = lambda: test_settings

    with TestClient(app) as client:
        yield client
