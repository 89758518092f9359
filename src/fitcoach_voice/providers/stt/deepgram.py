"""Deepgram pre-recorded transcription over HTTPS.

Each captured segment is a complete short WAV file, so the REST ``/v1/listen``
endpoint is used rather than a streaming session.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from fitcoach_voice.domain.errors import TranscriptionError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DeepgramTranscriber:
    api_key: str
    model: str = "nova-3"
    language: str = "en"
    base_url: str = "https://api.deepgram.com"
    timeout_s: float = 15.0
    smart_format: bool = True
    client: httpx.AsyncClient | None = None
    _internal_client: httpx.AsyncClient | None = field(init=False, default=None, repr=False)

    def __post_init__(self) -> None:
        if not self.api_key:
            raise ValueError("api_key must be non-empty")

    def _get_client(self) -> httpx.AsyncClient:
        if self.client is not None:
            return self.client
        if self._internal_client is None:
            self._internal_client = httpx.AsyncClient(timeout=self.timeout_s)
        return self._internal_client

    async def transcribe(self, audio: bytes, *, mimetype: str) -> str:
        if not audio:
            raise TranscriptionError("empty audio segment")

        params = {
            "model": self.model,
            "language": self.language,
            "smart_format": "true" if self.smart_format else "false",
        }
        headers = {
            "Authorization": f"Token {self.api_key}",
            "Content-Type": mimetype,
        }
        url = f"{self.base_url.rstrip('/')}/v1/listen"

        try:
            response = await self._get_client().post(url, params=params, headers=headers, content=audio)
        except httpx.HTTPError as exc:
            raise TranscriptionError(f"Deepgram request failed: {exc}") from exc

        if response.status_code != 200:
            logger.error(f"[STT] Deepgram HTTP {response.status_code}: {response.text[:200]}")
            raise TranscriptionError(f"Deepgram request failed: HTTP {response.status_code}")

        transcript = extract_transcript(response.json())
        logger.info(f"[STT] Transcript: '{transcript}'")
        return transcript

    async def close(self) -> None:
        if self._internal_client is not None:
            await self._internal_client.aclose()
            self._internal_client = None


def extract_transcript(data: Any) -> str:
    try:
        channels = data["results"]["channels"]
        alternatives = channels[0]["alternatives"]
    except (KeyError, IndexError, TypeError) as exc:
        raise TranscriptionError("Deepgram response has no transcript") from exc
    if not alternatives:
        return ""
    return str(alternatives[0].get("transcript", "") or "").strip()
