from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Protocol

from fitcoach_voice.core.audio.format import AudioFrameF32, decode_wav_pcm16
from fitcoach_voice.domain.errors import DeviceUnavailable

logger = logging.getLogger(__name__)


class AudioPlayer(Protocol):
    async def play(self, audio: bytes) -> None:
        """Play one encoded payload; returns when playback has ended."""

    async def stop(self) -> None: ...


@dataclass(slots=True)
class SoundDevicePlayer:
    """Plays WAV payloads on the output device; blocking playback runs in a worker thread."""

    device: int | str | None = None
    _playing: bool = field(init=False, default=False)

    async def play(self, audio: bytes) -> None:
        frame = decode_wav_pcm16(audio)
        self._playing = True
        try:
            await asyncio.to_thread(self._play_blocking, frame)
        except asyncio.CancelledError:
            # The worker thread keeps running until the device is told to stop.
            self._stop_device()
            raise
        finally:
            self._playing = False

    async def stop(self) -> None:
        if self._playing:
            self._stop_device()

    def _stop_device(self) -> None:
        import sounddevice as sd  # type: ignore

        sd.stop()
        logger.info("[Playback] Stopped")

    def _play_blocking(self, frame: AudioFrameF32) -> None:
        try:
            import sounddevice as sd  # type: ignore
        except OSError as exc:
            raise DeviceUnavailable(f"audio backend unavailable: {exc}") from exc

        try:
            sd.play(frame.samples, samplerate=frame.sample_rate_hz, device=self.device)
            sd.wait()
        except sd.PortAudioError as exc:
            raise DeviceUnavailable(f"speaker unavailable: {exc}") from exc
