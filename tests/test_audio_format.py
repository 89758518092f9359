from __future__ import annotations

import numpy as np
import pytest

from fitcoach_voice.core.audio.format import (
    AudioFrameF32,
    decode_wav_pcm16,
    encode_wav_pcm16,
    float32_to_pcm16le_bytes,
    mixdown_to_mono_f32,
    pcm16le_bytes_to_float32,
    resample_f32_linear,
    to_mono_at_rate,
    wrap_pcm16_as_wav,
)


def test_mixdown_to_mono():
    stereo = np.array([[0.0, 1.0], [1.0, 0.0]], dtype=np.float32)
    mono = mixdown_to_mono_f32(stereo)
    assert mono.shape == (2,)
    assert np.allclose(mono, np.array([0.5, 0.5], dtype=np.float32))


def test_float32_pcm16_clips_to_range():
    samples = np.array([-2.0, -0.5, 0.0, 0.5, 2.0], dtype=np.float32)
    restored = pcm16le_bytes_to_float32(float32_to_pcm16le_bytes(samples))
    assert restored.shape == samples.shape
    assert np.all(restored <= 1.0)
    assert np.all(restored >= -1.0)


def test_resample_length_ratio():
    src = np.linspace(-1.0, 1.0, num=480, dtype=np.float32)
    dst = resample_f32_linear(src, from_rate_hz=48000, to_rate_hz=16000)
    assert dst.shape[0] == 160


def test_to_mono_at_rate_mixes_and_resamples():
    frame = AudioFrameF32(samples=np.zeros((4800, 2), dtype=np.float32), sample_rate_hz=48000)
    out = to_mono_at_rate(frame, target_sample_rate_hz=16000)
    assert out.shape == (1600,)


def test_wav_encode_decode_keeps_rate_and_length():
    samples = np.linspace(-0.5, 0.5, num=1600, dtype=np.float32)
    wav = encode_wav_pcm16(samples, sample_rate_hz=16000)

    assert wav[:4] == b"RIFF"
    frame = decode_wav_pcm16(wav)
    assert frame.sample_rate_hz == 16000
    assert frame.samples.shape == (1600,)
    assert np.allclose(frame.samples, samples, atol=1e-3)


def test_wrap_pcm16_as_wav_preserves_frames():
    pcm = float32_to_pcm16le_bytes(np.zeros(320, dtype=np.float32))
    frame = decode_wav_pcm16(wrap_pcm16_as_wav(pcm, sample_rate_hz=22050))
    assert frame.sample_rate_hz == 22050
    assert frame.samples.shape == (320,)


def test_decode_rejects_non_wav():
    with pytest.raises(ValueError):
        decode_wav_pcm16(b"ID3 this is an mp3")
