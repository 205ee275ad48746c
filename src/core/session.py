"""Relay session state."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum


class ConnectionState(str, Enum):
    """Lifecycle of one caller connection."""

    AWAITING_HELLO = "awaiting_hello"
    CONNECTING_UPSTREAM = "connecting_upstream"
    STREAMING = "streaming"
    CLOSING = "closing"
    CLOSED = "closed"

    @property
    def is_terminal(self) -> bool:
        return self in (ConnectionState.CLOSING, ConnectionState.CLOSED)


# Allowed forward transitions; anything may move to CLOSING
_TRANSITIONS: dict[ConnectionState, set[ConnectionState]] = {
    ConnectionState.AWAITING_HELLO: {ConnectionState.CONNECTING_UPSTREAM},
    ConnectionState.CONNECTING_UPSTREAM: {ConnectionState.STREAMING},
    ConnectionState.STREAMING: set(),
    ConnectionState.CLOSING: {ConnectionState.CLOSED},
    ConnectionState.CLOSED: set(),
}


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True, slots=True)
class ConversationTurn:
    role: Role
    text: str

    def to_message(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.text}


@dataclass
class RelaySession:
    """State owned by one caller connection.

    Mutated only from the relay's serialized event path; never shared
    across connections.
    """

    incident_id: str
    sample_rate: int = 24000
    history_limit: int = 20
    state: ConnectionState = ConnectionState.AWAITING_HELLO
    response_pending: bool = False
    hello_received: bool = False
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    close_reason: str = ""

    conversation_history: deque[ConversationTurn] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.conversation_history = deque(maxlen=self.history_limit)

    def transition_to(self, new_state: ConnectionState) -> bool:
        """Move to `new_state` if allowed. Returns False for invalid moves."""
        if new_state is ConnectionState.CLOSING and not self.state.is_terminal:
            self.state = new_state
            return True
        if new_state in _TRANSITIONS[self.state]:
            self.state = new_state
            return True
        return False

    @property
    def is_streaming(self) -> bool:
        return self.state is ConnectionState.STREAMING

    @property
    def is_closed(self) -> bool:
        return self.state.is_terminal

    def add_turn(self, role: Role, text: str) -> None:
        if text:
            self.conversation_history.append(ConversationTurn(role=role, text=text))

    def recent_history(self, turns: int) -> list[dict[str, str]]:
        if turns <= 0:
            return []
        return [turn.to_message() for turn in list(self.conversation_history)[-turns:]]

    @property
    def duration_seconds(self) -> float:
        return (datetime.now(UTC) - self.started_at).total_seconds()
