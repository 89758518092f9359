from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable

import numpy as np

from fitcoach_voice.core.audio.amplitude import AmplitudeMeter
from fitcoach_voice.core.audio.format import encode_wav_pcm16, to_mono_at_rate
from fitcoach_voice.core.audio.source import AudioSource, classify_device_error
from fitcoach_voice.core.clock import Clock, SystemClock
from fitcoach_voice.domain.errors import DeviceError
from fitcoach_voice.domain.models import AudioSegment

logger = logging.getLogger(__name__)

SegmentSink = Callable[[AudioSegment], None]
StopCallback = Callable[[BaseException | None], None]


@dataclass(slots=True)
class AudioCapture:
    """Cuts microphone input into fixed-length WAV segments.

    Every ``segment_ms`` of audio becomes one AudioSegment handed to ``sink``.
    The amplitude meter is updated on every device frame. When capture ends on
    its own (device failure or ``max_capture_s`` reached) ``on_stopped`` is
    called with the error, or None for the duration cap.
    """

    source_factory: Callable[[], AudioSource]
    sink: SegmentSink
    sample_rate_hz: int = 16000
    segment_ms: int = 1000
    amplitude_hz: float = 60.0
    max_capture_s: float | None = None
    clock: Clock = field(default_factory=SystemClock)
    meter: AmplitudeMeter = field(default_factory=AmplitudeMeter)
    on_stopped: StopCallback | None = None

    _source: AudioSource | None = field(init=False, default=None, repr=False)
    _task: asyncio.Task[None] | None = field(init=False, default=None, repr=False)
    _buffer: np.ndarray = field(init=False, repr=False)
    _active: bool = field(init=False, default=False)
    _started_at: float | None = field(init=False, default=None)

    def __post_init__(self) -> None:
        if self.sample_rate_hz <= 0:
            raise ValueError("sample_rate_hz must be > 0")
        if self.segment_ms <= 0:
            raise ValueError("segment_ms must be > 0")
        if self.amplitude_hz <= 0:
            raise ValueError("amplitude_hz must be > 0")
        if self.max_capture_s is not None and self.max_capture_s <= 0:
            raise ValueError("max_capture_s must be > 0 or None")
        self._buffer = np.empty((0,), dtype=np.float32)

    @property
    def active(self) -> bool:
        return self._active

    @property
    def amplitude(self) -> float:
        return self.meter.latest.value if self._active else 0.0

    @property
    def segment_samples(self) -> int:
        return int(self.sample_rate_hz * self.segment_ms / 1000)

    async def start(self) -> None:
        if self._active:
            return

        source = self.source_factory()
        try:
            await source.open()
        except DeviceError:
            raise
        except Exception as exc:
            raise classify_device_error(exc) from exc

        self._source = source
        self._buffer = np.empty((0,), dtype=np.float32)
        self.meter.reset()
        self._started_at = self.clock.now()
        self._active = True
        self._task = asyncio.create_task(self._run(source))
        logger.info(f"[Capture] Started (segment={self.segment_ms}ms)")

    async def stop(self) -> None:
        if not self._active and self._source is None:
            return
        self._active = False

        source = self._source
        self._source = None
        if source is not None:
            await source.close()

        task = self._task
        self._task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        self._buffer = np.empty((0,), dtype=np.float32)
        self._started_at = None
        self.meter.reset()
        logger.info("[Capture] Stopped")

    async def amplitudes(self) -> AsyncIterator[float]:
        """Latest amplitude at animation-frame cadence; ends with 0.0 once capture stops."""
        interval = 1.0 / self.amplitude_hz
        while self._active:
            yield self.meter.latest.value
            await asyncio.sleep(interval)
        yield 0.0

    async def _run(self, source: AudioSource) -> None:
        segment_samples = self.segment_samples
        try:
            async for frame in source.frames():
                if not self._active:
                    return
                mono = to_mono_at_rate(frame, target_sample_rate_hz=self.sample_rate_hz)
                self.meter.update(mono)

                self._buffer = np.concatenate([self._buffer, mono])
                while self._buffer.size >= segment_samples:
                    chunk = self._buffer[:segment_samples]
                    self._buffer = self._buffer[segment_samples:]
                    self._emit(chunk)

                if self._cap_reached():
                    logger.info(f"[Capture] Max capture duration {self.max_capture_s:.0f}s reached")
                    await self._finish(None)
                    return
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if not self._active:
                return
            logger.exception("[Capture] Audio input failed")
            await self._finish(classify_device_error(exc))

    def _emit(self, chunk: np.ndarray) -> None:
        segment = AudioSegment(
            audio=encode_wav_pcm16(chunk, sample_rate_hz=self.sample_rate_hz),
            captured_at=self.clock.now(),
        )
        try:
            self.sink(segment)
        except Exception:
            logger.exception("[Capture] Segment sink failed")

    def _cap_reached(self) -> bool:
        if self.max_capture_s is None or self._started_at is None:
            return False
        return self.clock.now() - self._started_at >= self.max_capture_s

    async def _finish(self, reason: BaseException | None) -> None:
        await self.stop()
        if self.on_stopped is not None:
            self.on_stopped(reason)
