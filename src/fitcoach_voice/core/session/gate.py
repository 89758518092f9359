from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import Callable

from fitcoach_voice.core.audio.player import AudioPlayer
from fitcoach_voice.domain.models import AudioSegment

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SpeakingFlag:
    """True while assistant audio is playing.

    The lock makes "check flag, then send" a single step even if the capture
    sink and the playback callback ever run on different threads.
    """

    _value: bool = False
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def value(self) -> bool:
        with self._lock:
            return self._value

    def set(self, value: bool) -> bool:
        """Store ``value``; returns True if it changed."""
        with self._lock:
            changed = self._value != value
            self._value = value
            return changed

    def run_if_clear(self, action: Callable[[], None]) -> bool:
        with self._lock:
            if self._value:
                return False
            action()
            return True


@dataclass(slots=True)
class PlaybackGate:
    player: AudioPlayer
    flag: SpeakingFlag = field(default_factory=SpeakingFlag)
    on_change: Callable[[bool], None] | None = None

    discarded_segments: int = field(init=False, default=0)
    _play_lock: asyncio.Lock = field(init=False, default_factory=asyncio.Lock, repr=False)

    @property
    def speaking(self) -> bool:
        return self.flag.value

    def forward(self, segment: AudioSegment, send: Callable[[AudioSegment], None]) -> bool:
        """Hand ``segment`` to ``send`` unless assistant audio is playing; otherwise drop it."""
        if self.flag.run_if_clear(lambda: send(segment)):
            return True
        self.discarded_segments += 1
        logger.debug(f"[Gate] Discarded segment captured during playback (total={self.discarded_segments})")
        return False

    async def play(self, audio: bytes) -> None:
        async with self._play_lock:
            self._set(True)
            try:
                await self.player.play(audio)
            finally:
                self._set(False)

    async def reset(self) -> None:
        try:
            await self.player.stop()
        finally:
            self._set(False)

    def _set(self, value: bool) -> None:
        if self.flag.set(value):
            logger.debug(f"[Gate] speaking={value}")
            if self.on_change is not None:
                self.on_change(value)
