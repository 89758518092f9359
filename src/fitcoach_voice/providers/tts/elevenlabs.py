from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from fitcoach_voice.core.audio.format import wrap_pcm16_as_wav
from fitcoach_voice.domain.errors import SynthesisError

logger = logging.getLogger(__name__)

_PCM_FORMATS = {
    "pcm_16000": 16000,
    "pcm_22050": 22050,
    "pcm_24000": 24000,
    "pcm_44100": 44100,
}


@dataclass(slots=True)
class ElevenLabsSynthesizer:
    """ElevenLabs text-to-speech; raw PCM output is wrapped into WAV."""

    api_key: str
    voice_id: str = "MF3mGyEYCl7XYWbV9V6O"
    model_id: str = "eleven_multilingual_v2"
    output_format: str = "pcm_16000"
    base_url: str = "https://api.elevenlabs.io"
    timeout_s: float = 30.0
    voice_settings: dict[str, Any] = field(
        default_factory=lambda: {
            "stability": 0.5,
            "similarity_boost": 0.8,
            "style": 1.0,
            "use_speaker_boost": True,
        }
    )
    client: httpx.AsyncClient | None = None
    _internal_client: httpx.AsyncClient | None = field(init=False, default=None, repr=False)

    def __post_init__(self) -> None:
        if not self.api_key:
            raise ValueError("ElevenLabs API key is not configured")
        if self.output_format not in _PCM_FORMATS:
            raise ValueError(f"output_format must be one of {sorted(_PCM_FORMATS)}")

    def _get_client(self) -> httpx.AsyncClient:
        if self.client is not None:
            return self.client
        if self._internal_client is None:
            self._internal_client = httpx.AsyncClient(timeout=self.timeout_s)
        return self._internal_client

    async def synthesize(self, text: str, *, voice: str | None = None) -> bytes:
        if not text.strip():
            raise SynthesisError("cannot synthesize empty text")

        voice_id = voice or self.voice_id
        url = f"{self.base_url.rstrip('/')}/v1/text-to-speech/{voice_id}"
        headers = {
            "xi-api-key": self.api_key,
            "Accept": "audio/pcm",
            "Content-Type": "application/json",
        }
        payload: dict[str, Any] = {"text": text, "model_id": self.model_id}
        if self.voice_settings:
            payload["voice_settings"] = self.voice_settings

        logger.info(f"[TTS] ElevenLabs request (voice={voice_id}, chars={len(text)})")
        try:
            response = await self._get_client().post(
                url, params={"output_format": self.output_format}, headers=headers, json=payload
            )
        except httpx.HTTPError as exc:
            raise SynthesisError(f"ElevenLabs request failed: {exc}") from exc

        if response.status_code != 200:
            logger.error(f"[TTS] ElevenLabs HTTP {response.status_code}: {response.text[:200]}")
            raise SynthesisError(f"Failed to generate speech: HTTP {response.status_code}")

        if not response.content:
            raise SynthesisError("ElevenLabs returned no audio")
        return wrap_pcm16_as_wav(response.content, sample_rate_hz=_PCM_FORMATS[self.output_format])

    async def close(self) -> None:
        if self._internal_client is not None:
            await self._internal_client.aclose()
            self._internal_client = None
