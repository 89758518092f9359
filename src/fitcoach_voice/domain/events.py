from __future__ import annotations

from enum import Enum


class ConnectionState(str, Enum):
    CONNECTING = "CONNECTING"
    OPEN = "OPEN"
    CLOSING = "CLOSING"
    CLOSED = "CLOSED"


class PipelineState(str, Enum):
    IDLE = "IDLE"
    TRANSCRIBING = "TRANSCRIBING"
    GENERATING = "GENERATING"
    SYNTHESIZING = "SYNTHESIZING"


class SessionState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    SPEAKING = "speaking"


class Direction(str, Enum):
    UPSTREAM = "upstream"  # client -> server
    DOWNSTREAM = "downstream"  # server -> client
