from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True, slots=True)
class AudioSegment:
    audio: bytes  # encoded audio (16-bit mono WAV)
    captured_at: float  # monotonic seconds (Clock)
    mimetype: str = "audio/wav"


@dataclass(frozen=True, slots=True)
class AmplitudeSample:
    value: float  # 0.0..1.0
    created_at: float

    def __post_init__(self) -> None:
        if not (0.0 <= self.value <= 1.0):
            raise ValueError("amplitude must be in 0.0..1.0")


class NotificationVariant(str, Enum):
    DEFAULT = "default"
    DESTRUCTIVE = "destructive"


@dataclass(frozen=True, slots=True)
class Notification:
    title: str
    description: str
    variant: NotificationVariant = NotificationVariant.DEFAULT


@dataclass(frozen=True, slots=True)
class ConversationTurn:
    """One completed exchange kept as generation context."""

    user_text: str
    assistant_text: str
    timestamp: float
