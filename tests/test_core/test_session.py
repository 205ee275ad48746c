"""Tests for RelaySession state."""

from __future__ import annotations

from src.core.session import ConnectionState, RelaySession, Role


class TestConnectionState:
    """Tests for lifecycle transitions."""

    def test_happy_path(self) -> None:
        session = RelaySession(incident_id="inc-1")

        assert session.state is ConnectionState.AWAITING_HELLO
        assert session.transition_to(ConnectionState.CONNECTING_UPSTREAM)
        assert session.transition_to(ConnectionState.STREAMING)
        assert session.is_streaming
        assert session.transition_to(ConnectionState.CLOSING)
        assert session.is_closed
        assert session.transition_to(ConnectionState.CLOSED)

    def test_cannot_skip_connecting(self) -> None:
        session = RelaySession(incident_id="inc-1")

        assert session.transition_to(ConnectionState.STREAMING) is False
        assert session.state is ConnectionState.AWAITING_HELLO

    def test_closing_from_any_live_state(self) -> None:
        for state in (
            ConnectionState.AWAITING_HELLO,
            ConnectionState.CONNECTING_UPSTREAM,
            ConnectionState.STREAMING,
        ):
            session = RelaySession(incident_id="inc-1", state=state)
            assert session.transition_to(ConnectionState.CLOSING) is True

    def test_closing_only_once(self) -> None:
        session = RelaySession(incident_id="inc-1")
        session.transition_to(ConnectionState.CLOSING)

        assert session.transition_to(ConnectionState.CLOSING) is False
        session.transition_to(ConnectionState.CLOSED)
        assert session.transition_to(ConnectionState.CLOSING) is False
        assert session.transition_to(ConnectionState.STREAMING) is False


class TestConversationHistory:
    """Tests for bounded conversation history."""

    def test_history_is_bounded(self) -> None:
        session = RelaySession(incident_id="inc-1", history_limit=3)
        for i in range(5):
            session.add_turn(Role.USER, f"turn {i}")

        assert [turn.text for turn in session.conversation_history] == [
            "turn 2",
            "turn 3",
            "turn 4",
        ]

    def test_empty_turns_skipped(self) -> None:
        session = RelaySession(incident_id="inc-1")
        session.add_turn(Role.USER, "")

        assert len(session.conversation_history) == 0

    def test_recent_history_messages(self) -> None:
        session = RelaySession(incident_id="inc-1")
        session.add_turn(Role.USER, "My car crashed")
        session.add_turn(Role.ASSISTANT, "Is anyone hurt?")
        session.add_turn(Role.USER, "No")

        assert session.recent_history(2) == [
            {"role": "assistant", "content": "Is anyone hurt?"},
            {"role": "user", "content": "No"},
        ]
        assert session.recent_history(0) == []
