from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pytest

from fitcoach_voice.core.audio.amplitude import AmplitudeMeter


@dataclass(slots=True)
class ManualClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds


def _sine(amplitude: float, *, n: int = 1024, rate: int = 16000, freq: float = 1000.0) -> np.ndarray:
    t = np.arange(n, dtype=np.float32) / rate
    return (amplitude * np.sin(2 * np.pi * freq * t)).astype(np.float32)


def test_silence_reads_zero():
    meter = AmplitudeMeter()
    assert meter.update(np.zeros(512, dtype=np.float32)).value == 0.0


def test_speech_level_reads_high_and_stays_in_range():
    meter = AmplitudeMeter()
    value = meter.update(_sine(0.5)).value
    assert 0.5 < value <= 1.0


def test_louder_input_reads_higher():
    quiet = AmplitudeMeter().update(_sine(0.001)).value
    loud = AmplitudeMeter().update(_sine(0.5)).value
    assert loud > quiet


def test_short_frames_are_zero_padded():
    meter = AmplitudeMeter()
    sample = meter.update(_sine(0.5, n=64))
    assert 0.0 <= sample.value <= 1.0


def test_reset_returns_to_zero_and_stamps_clock():
    clock = ManualClock()
    meter = AmplitudeMeter(clock=clock)
    meter.update(_sine(0.5))
    clock.advance(2.0)
    meter.reset()
    assert meter.latest.value == 0.0
    assert meter.latest.created_at == 2.0


def test_invalid_fft_size_rejected():
    with pytest.raises(ValueError):
        AmplitudeMeter(fft_size=100)
