"""Tests for the caller realtime WebSocket endpoint."""

from __future__ import annotations

import base64
import json

import pytest
from starlette.websockets import WebSocketDisconnect

from src.api.websocket import realtime_gateway

AUDIO = b"\x01\x00" * 480


class TestWebSocketConnection:
    """Tests for connection admission."""

    def test_missing_incident_id_closes_1008(self, test_client) -> None:
        """Test connection without incident_id is closed with policy violation."""
        with test_client.websocket_connect("/ws/realtime") as websocket:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                websocket.receive_text()

        assert exc_info.value.code == 1008

    def test_blank_incident_id_closes_1008(self, test_client) -> None:
        with test_client.websocket_connect("/ws/realtime?incident_id=%20%20") as websocket:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                websocket.receive_text()

        assert exc_info.value.code == 1008

    def test_capacity_reached_closes_1008(self, test_client, monkeypatch) -> None:
        monkeypatch.setattr(realtime_gateway.session_registry, "_max_sessions", 0)

        with test_client.websocket_connect("/ws/realtime?incident_id=inc-1") as websocket:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                websocket.receive_text()

        assert exc_info.value.code == 1008

    def test_malformed_control_closes_1007(self, test_client) -> None:
        with test_client.websocket_connect("/ws/realtime?incident_id=inc-2") as websocket:
            websocket.send_text(json.dumps({"type": "client_hello", "sample_rate": 24000}))
            websocket.send_text("{not json")

            with pytest.raises(WebSocketDisconnect) as exc_info:
                websocket.receive_text()

        assert exc_info.value.code == 1007


class TestWebSocketStreaming:
    """Tests for assistant audio delivered to the caller."""

    @pytest.mark.parametrize(
        "upstream_script",
        [
            [
                {"type": "session.created", "session": {"id": "sess_1"}},
                {"type": "response.audio.delta", "delta": base64.b64encode(AUDIO).decode()},
                {"type": "response.audio.delta", "delta": base64.b64encode(AUDIO).decode()},
                {"type": "response.audio_transcript.done", "transcript": "Help is coming."},
                {"type": "response.done", "response": {}},
            ]
        ],
    )
    def test_assistant_audio_streamed_then_ready(self, test_client, fake_links) -> None:
        with test_client.websocket_connect("/ws/realtime?incident_id=inc-3") as websocket:
            websocket.send_text(json.dumps({"type": "client_hello", "sample_rate": 24000}))

            first = websocket.receive_json()
            second = websocket.receive_json()
            ready = websocket.receive_json()

        assert first["type"] == "assistant_audio_chunk"
        assert second["type"] == "assistant_audio_chunk"
        assert first["ref"] == second["ref"] == ready["ref"]
        assert first["sampleRate"] == 24000

        assert ready["type"] == "assistant_audio_ready"
        assert base64.b64decode(ready["audio"]) == AUDIO + AUDIO

        link = fake_links[0]
        assert link.sent_types()[0] == "session.update"
