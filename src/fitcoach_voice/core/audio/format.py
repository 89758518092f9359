from __future__ import annotations

import io
import math
import wave
from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True, slots=True)
class AudioFrameF32:
    samples: np.ndarray
    sample_rate_hz: int


def mixdown_to_mono_f32(samples: np.ndarray) -> np.ndarray:
    if samples.ndim == 1:
        mono = samples
    elif samples.ndim == 2:
        mono = samples.mean(axis=1)
    else:
        raise ValueError("samples must be 1D (mono) or 2D (frames, channels)")

    return np.asarray(mono, dtype=np.float32)


def resample_f32_linear(samples: np.ndarray, *, from_rate_hz: int, to_rate_hz: int) -> np.ndarray:
    if from_rate_hz <= 0 or to_rate_hz <= 0:
        raise ValueError("sample rates must be > 0")
    samples = np.asarray(samples, dtype=np.float32)
    if from_rate_hz == to_rate_hz or samples.size == 0:
        return samples

    src_len = int(samples.shape[0])
    dst_len = max(int(math.floor(src_len * (to_rate_hz / from_rate_hz))), 1)

    x_old = np.arange(src_len, dtype=np.float32)
    x_new = np.linspace(0.0, src_len - 1, num=dst_len, dtype=np.float32)
    return np.interp(x_new, x_old, samples).astype(np.float32)


def to_mono_at_rate(frame: AudioFrameF32, *, target_sample_rate_hz: int) -> np.ndarray:
    mono = mixdown_to_mono_f32(np.asarray(frame.samples))
    return resample_f32_linear(
        mono, from_rate_hz=frame.sample_rate_hz, to_rate_hz=target_sample_rate_hz
    )


def float32_to_pcm16le_bytes(samples: np.ndarray) -> bytes:
    clipped = np.clip(np.asarray(samples, dtype=np.float32), -1.0, 1.0)
    return np.round(clipped * 32767.0).astype("<i2").tobytes()


def pcm16le_bytes_to_float32(data: bytes) -> np.ndarray:
    return np.frombuffer(data, dtype="<i2").astype(np.float32) / 32768.0


def encode_wav_pcm16(samples: np.ndarray, *, sample_rate_hz: int) -> bytes:
    """Mono float32 samples -> 16-bit PCM WAV bytes."""
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wav_file:
        wav_file.setnchannels(1)
        wav_file.setsampwidth(2)
        wav_file.setframerate(sample_rate_hz)
        wav_file.writeframes(float32_to_pcm16le_bytes(samples))
    return buf.getvalue()


def wrap_pcm16_as_wav(pcm16le: bytes, *, sample_rate_hz: int) -> bytes:
    return encode_wav_pcm16(pcm16le_bytes_to_float32(pcm16le), sample_rate_hz=sample_rate_hz)


def decode_wav_pcm16(data: bytes) -> AudioFrameF32:
    """16-bit PCM WAV bytes -> float32 samples, shaped (frames, channels) when not mono."""
    try:
        with wave.open(io.BytesIO(data), "rb") as wav_file:
            channels = wav_file.getnchannels()
            sample_width = wav_file.getsampwidth()
            rate = wav_file.getframerate()
            raw = wav_file.readframes(wav_file.getnframes())
    except (wave.Error, EOFError) as exc:
        raise ValueError(f"not a WAV payload: {exc}") from exc

    if sample_width != 2:
        raise ValueError(f"unsupported WAV sample width: {sample_width * 8} bits")

    samples = pcm16le_bytes_to_float32(raw)
    if channels > 1:
        samples = samples.reshape(-1, channels)
    return AudioFrameF32(samples=samples, sample_rate_hz=rate)
