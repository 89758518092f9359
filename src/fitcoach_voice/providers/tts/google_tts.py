from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from fitcoach_voice.domain.errors import SynthesisError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class GoogleCloudSynthesizer:
    """Google Cloud Text-to-Speech; LINEAR16 output already carries a WAV header.

    Credentials come from the environment (application default credentials).
    """

    voice: str = "en-US-Standard-I"
    language_code: str = "en-US"
    sample_rate_hz: int = 24000
    speaking_rate: float = 1.0
    client: Any = None
    _internal_client: Any = field(init=False, default=None, repr=False)

    def _get_client(self) -> Any:
        if self.client is not None:
            return self.client
        if self._internal_client is None:
            from google.cloud import texttospeech  # type: ignore

            self._internal_client = texttospeech.TextToSpeechAsyncClient()
        return self._internal_client

    async def synthesize(self, text: str, *, voice: str | None = None) -> bytes:
        if not text.strip():
            raise SynthesisError("cannot synthesize empty text")

        from google.api_core.exceptions import GoogleAPIError  # type: ignore
        from google.cloud import texttospeech  # type: ignore

        voice_name = voice or self.voice
        logger.info(f"[TTS] Google request (voice={voice_name}, chars={len(text)})")
        try:
            response = await self._get_client().synthesize_speech(
                input=texttospeech.SynthesisInput(text=text),
                voice=texttospeech.VoiceSelectionParams(
                    language_code=self.language_code,
                    name=voice_name,
                ),
                audio_config=texttospeech.AudioConfig(
                    audio_encoding=texttospeech.AudioEncoding.LINEAR16,
                    sample_rate_hertz=self.sample_rate_hz,
                    speaking_rate=self.speaking_rate,
                ),
            )
        except GoogleAPIError as exc:
            raise SynthesisError(f"Google TTS request failed: {exc}") from exc

        audio = getattr(response, "audio_content", None) or b""
        if not audio:
            raise SynthesisError("No audio content received from Google TTS")
        return bytes(audio)

    async def close(self) -> None:
        self._internal_client = None
