from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from fitcoach_voice.core.clock import Clock, SystemClock
from fitcoach_voice.domain.models import AmplitudeSample


@dataclass(slots=True)
class AmplitudeMeter:
    """Peak of the byte-scaled frequency spectrum, as a browser AnalyserNode reports it.

    Each update windows the newest ``fft_size`` samples (Blackman), smooths the
    magnitude spectrum over time, converts to dB and maps
    [min_decibels, max_decibels] onto [0, 1]. The reported value is the peak bin.
    """

    fft_size: int = 256
    min_decibels: float = -100.0
    max_decibels: float = -30.0
    smoothing: float = 0.8
    clock: Clock = field(default_factory=SystemClock)

    _window: np.ndarray = field(init=False, repr=False)
    _smoothed: np.ndarray = field(init=False, repr=False)
    _latest: AmplitudeSample = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if self.fft_size < 32 or self.fft_size & (self.fft_size - 1):
            raise ValueError("fft_size must be a power of two >= 32")
        if self.min_decibels >= self.max_decibels:
            raise ValueError("min_decibels must be < max_decibels")
        if not (0.0 <= self.smoothing < 1.0):
            raise ValueError("smoothing must be in 0.0..1.0 (exclusive)")
        self._window = np.blackman(self.fft_size).astype(np.float32)
        self.reset()

    @property
    def latest(self) -> AmplitudeSample:
        return self._latest

    def reset(self) -> None:
        self._smoothed = np.zeros(self.fft_size // 2, dtype=np.float32)
        self._latest = AmplitudeSample(value=0.0, created_at=self.clock.now())

    def update(self, samples: np.ndarray) -> AmplitudeSample:
        samples = np.asarray(samples, dtype=np.float32).reshape(-1)
        if samples.size >= self.fft_size:
            frame = samples[-self.fft_size :]
        else:
            frame = np.zeros(self.fft_size, dtype=np.float32)
            frame[self.fft_size - samples.size :] = samples

        spectrum = np.fft.rfft(frame * self._window)[: self.fft_size // 2]
        magnitude = np.abs(spectrum).astype(np.float32) / self.fft_size
        self._smoothed = self.smoothing * self._smoothed + (1.0 - self.smoothing) * magnitude

        with np.errstate(divide="ignore"):
            db = 20.0 * np.log10(self._smoothed)
        scaled = (db - self.min_decibels) / (self.max_decibels - self.min_decibels)
        peak = float(np.clip(np.nan_to_num(scaled, neginf=0.0), 0.0, 1.0).max())

        self._latest = AmplitudeSample(value=peak, created_at=self.clock.now())
        return self._latest
