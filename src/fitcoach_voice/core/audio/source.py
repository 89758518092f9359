from __future__ import annotations

import contextlib
import logging
import queue
from dataclasses import dataclass, field
from typing import AsyncIterator, Protocol

import janus
import numpy as np

from fitcoach_voice.core.audio.format import AudioFrameF32
from fitcoach_voice.domain.errors import DeviceError, DeviceUnavailable, PermissionDenied

logger = logging.getLogger(__name__)

_PERMISSION_MARKERS = ("permission", "denied", "not authorized", "not permitted")


class AudioSource(Protocol):
    async def open(self) -> None: ...
    def frames(self) -> AsyncIterator[AudioFrameF32]: ...
    async def close(self) -> None: ...


@dataclass(slots=True)
class SoundDeviceAudioSource:
    """Microphone input via sounddevice/PortAudio.

    Frames are pushed from the PortAudio thread into a janus queue and read on
    the event loop. If sample_rate_hz is None the device default is used and
    callers resample.
    """

    sample_rate_hz: int | None = None
    channels: int = 1
    device: int | str | None = None
    blocksize: int | None = None
    max_queue_frames: int = 128

    _queue: janus.Queue[np.ndarray | None] | None = field(init=False, default=None, repr=False)
    _stream: object = field(init=False, default=None, repr=False)
    _closed: bool = field(init=False, default=False)
    _actual_sample_rate_hz: int = field(init=False, default=0, repr=False)

    def __post_init__(self) -> None:
        if self.sample_rate_hz is not None and self.sample_rate_hz <= 0:
            raise ValueError("sample_rate_hz must be > 0 or None")
        if self.channels <= 0:
            raise ValueError("channels must be > 0")
        if self.max_queue_frames <= 0:
            raise ValueError("max_queue_frames must be > 0")

    @property
    def sample_rate(self) -> int:
        return self._actual_sample_rate_hz

    async def open(self) -> None:
        if self._stream is not None:
            return
        try:
            import sounddevice as sd  # type: ignore
        except OSError as exc:  # PortAudio library missing
            raise DeviceUnavailable(f"audio backend unavailable: {exc}") from exc

        self._queue = janus.Queue(maxsize=self.max_queue_frames)
        q = self._queue

        def _callback(indata, _frames, _time, status):  # PortAudio thread
            if self._closed:
                return
            if status:
                logger.warning(f"[Capture] sounddevice input status: {status}")
            try:
                q.sync_q.put_nowait(np.asarray(indata, dtype=np.float32).copy())
            except queue.Full:
                # Drop rather than block the audio thread.
                return

        try:
            stream = sd.InputStream(
                samplerate=self.sample_rate_hz,
                channels=self.channels,
                dtype="float32",
                callback=_callback,
                device=self.device,
                blocksize=self.blocksize or 0,
            )
            stream.start()
        except (sd.PortAudioError, ValueError) as exc:
            self._queue.close()
            self._queue = None
            raise classify_device_error(exc) from exc

        self._stream = stream
        self._actual_sample_rate_hz = int(stream.samplerate)
        logger.info(f"[Capture] Microphone opened (device={self.device}, rate={self._actual_sample_rate_hz}Hz)")

    async def frames(self) -> AsyncIterator[AudioFrameF32]:
        if self._queue is None:
            raise DeviceError("audio source is not open")
        while True:
            item = await self._queue.async_q.get()
            if item is None:
                return
            yield AudioFrameF32(samples=item, sample_rate_hz=self._actual_sample_rate_hz)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        stream = self._stream
        self._stream = None
        if stream is not None:
            with contextlib.suppress(Exception):
                stream.stop()
            with contextlib.suppress(Exception):
                stream.close()
            logger.info("[Capture] Microphone released")

        q = self._queue
        if q is not None:
            with contextlib.suppress(Exception):
                q.sync_q.put_nowait(None)
            q.close()
            await q.wait_closed()


def classify_device_error(exc: BaseException) -> DeviceError:
    text = str(exc).lower()
    if any(marker in text for marker in _PERMISSION_MARKERS):
        return PermissionDenied(f"microphone access denied: {exc}")
    return DeviceUnavailable(f"microphone unavailable: {exc}")


def resolve_sounddevice_device(device: str = "", *, kind: str = "input") -> int | None:
    """Map a configured device name or index to a sounddevice index (None = default)."""
    device = (device or "").strip()
    if not device:
        return None

    import sounddevice as sd  # type: ignore

    channels_key = "max_input_channels" if kind == "input" else "max_output_channels"
    devices = sd.query_devices()

    with contextlib.suppress(ValueError):
        idx = int(device)
        if 0 <= idx < len(devices) and int(devices[idx].get(channels_key, 0) or 0) > 0:
            return idx

    for idx, info in enumerate(devices):
        if int(info.get(channels_key, 0) or 0) <= 0:
            continue
        if str(info.get("name", "") or "").lower() == device.lower():
            return idx

    raise DeviceUnavailable(f"no {kind} device named {device!r}")
