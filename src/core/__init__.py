"""Core relay session components.

This module provides the per-connection orchestration:
- RelaySession: Connection state and conversation history
- AudioBufferController: Commit decisions for inbound audio
- EchoGuard: Suppression of the assistant's own speech
- ResponseAssembler: One artifact per upstream response
- RealtimeRelay: Wires caller, upstream and timeline together
"""

from src.core.audio_buffer import AudioBufferController, FrameAction
from src.core.echo_guard import EchoGuard, EchoVerdict
from src.core.event_sink import EventSink
from src.core.exceptions import CloseCode, ProtocolViolation, RelayError
from src.core.relay import RealtimeRelay
from src.core.response_assembler import AssistantMessage, ResponseAssembler
from src.core.session import ConnectionState, RelaySession
from src.core.timers import SessionTimers, TimerKey

__all__ = [
    # Session management
    "RelaySession",
    "ConnectionState",
    # Relay
    "RealtimeRelay",
    "CloseCode",
    "ProtocolViolation",
    "RelayError",
    # Building blocks
    "AudioBufferController",
    "FrameAction",
    "EchoGuard",
    "EchoVerdict",
    "ResponseAssembler",
    "AssistantMessage",
    "EventSink",
    "SessionTimers",
    "TimerKey",
]
