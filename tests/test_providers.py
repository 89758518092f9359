from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from types import SimpleNamespace

import httpx
import numpy as np
import pytest

from fitcoach_voice.core.audio.format import decode_wav_pcm16, float32_to_pcm16le_bytes
from fitcoach_voice.domain.errors import SynthesisError, TranscriptionError
from fitcoach_voice.domain.models import ConversationTurn
from fitcoach_voice.providers.llm.gemini import GeminiReplyGenerator
from fitcoach_voice.providers.llm.qwen import QwenReplyGenerator, build_messages
from fitcoach_voice.providers.stt.deepgram import DeepgramTranscriber, extract_transcript
from fitcoach_voice.providers.tts.elevenlabs import ElevenLabsSynthesizer
from fitcoach_voice.providers.tts.google_tts import GoogleCloudSynthesizer


def _deepgram_body(transcript: str) -> dict:
    return {"results": {"channels": [{"alternatives": [{"transcript": transcript, "confidence": 0.98}]}]}}


def test_deepgram_posts_wav_and_returns_transcript():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=_deepgram_body(" what's a good warmup "))

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            stt = DeepgramTranscriber(api_key="dg-key", client=client)
            return await stt.transcribe(b"RIFFdata", mimetype="audio/wav")

    assert asyncio.run(run()) == "what's a good warmup"
    request = seen[0]
    assert request.url.path == "/v1/listen"
    assert request.url.params["model"] == "nova-3"
    assert request.headers["Authorization"] == "Token dg-key"
    assert request.headers["Content-Type"] == "audio/wav"
    assert request.content == b"RIFFdata"


def test_deepgram_http_error_raises_transcription_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, text="invalid credentials")

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            await DeepgramTranscriber(api_key="dg-key", client=client).transcribe(b"x", mimetype="audio/wav")

    with pytest.raises(TranscriptionError):
        asyncio.run(run())


def test_deepgram_network_error_raises_transcription_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            await DeepgramTranscriber(api_key="dg-key", client=client).transcribe(b"x", mimetype="audio/wav")

    with pytest.raises(TranscriptionError):
        asyncio.run(run())


def test_extract_transcript_edge_cases():
    assert extract_transcript({"results": {"channels": [{"alternatives": []}]}}) == ""
    with pytest.raises(TranscriptionError):
        extract_transcript({"metadata": {}})


def test_deepgram_requires_api_key():
    with pytest.raises(ValueError):
        DeepgramTranscriber(api_key="")


@dataclass
class FakeGeminiClient:
    calls: list[dict] = field(default_factory=list)

    async def generate(self, *, text, system_prompt, history=()) -> str:
        self.calls.append({"text": text, "system_prompt": system_prompt, "history": list(history)})
        return "Try five minutes of light cardio."

    async def close(self) -> None:
        pass


@pytest.mark.asyncio
async def test_gemini_generator_uses_injected_client():
    fake = FakeGeminiClient()
    generator = GeminiReplyGenerator(api_key="k", client=fake)
    turn = ConversationTurn(user_text="hi", assistant_text="hello", timestamp=0.0)

    out = await generator.generate(text="what's a good warmup", system_prompt="COACH", history=[turn])

    assert out == "Try five minutes of light cardio."
    assert fake.calls == [{"text": "what's a good warmup", "system_prompt": "COACH", "history": [turn]}]


@dataclass
class FakeQwenClient:
    messages: list[dict[str, str]] | None = None

    async def chat(self, *, messages: list[dict[str, str]]) -> str:
        self.messages = messages
        return "Stretch your hamstrings."


@pytest.mark.asyncio
async def test_qwen_generator_builds_chat_messages():
    fake = FakeQwenClient()
    generator = QwenReplyGenerator(api_key="k", client=fake)
    turn = ConversationTurn(user_text="hi", assistant_text="hello", timestamp=0.0)

    out = await generator.generate(text="legs are sore", system_prompt="COACH", history=[turn])

    assert out == "Stretch your hamstrings."
    assert fake.messages == [
        {"role": "system", "content": "COACH"},
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "hello"},
        {"role": "user", "content": "legs are sore"},
    ]


def test_build_messages_without_system_prompt():
    assert build_messages(text="hey", system_prompt="") == [{"role": "user", "content": "hey"}]


def test_elevenlabs_wraps_pcm_as_wav():
    seen: list[httpx.Request] = []
    pcm = float32_to_pcm16le_bytes(np.zeros(160, dtype=np.float32))

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=pcm)

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await ElevenLabsSynthesizer(api_key="el", client=client).synthesize("Keep going!")

    wav = asyncio.run(run())
    frame = decode_wav_pcm16(wav)
    assert frame.sample_rate_hz == 16000
    assert frame.samples.shape == (160,)

    request = seen[0]
    assert request.url.path == "/v1/text-to-speech/MF3mGyEYCl7XYWbV9V6O"
    assert request.url.params["output_format"] == "pcm_16000"
    assert request.headers["xi-api-key"] == "el"
    body = json.loads(request.content)
    assert body["model_id"] == "eleven_multilingual_v2"
    assert body["voice_settings"]["similarity_boost"] == 0.8


def test_elevenlabs_failure_raises_synthesis_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="oops")

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            await ElevenLabsSynthesizer(api_key="el", client=client).synthesize("Keep going!")

    with pytest.raises(SynthesisError):
        asyncio.run(run())


def test_elevenlabs_rejects_unknown_format():
    with pytest.raises(ValueError):
        ElevenLabsSynthesizer(api_key="el", output_format="mp3_44100_128")


@dataclass
class FakeTTSClient:
    audio: bytes = b"RIFF....WAVE"
    requests: list[dict] = field(default_factory=list)

    async def synthesize_speech(self, *, input, voice, audio_config):
        self.requests.append({"input": input, "voice": voice, "audio_config": audio_config})
        return SimpleNamespace(audio_content=self.audio)


def test_google_tts_requests_linear16_with_configured_voice():
    fake = FakeTTSClient()

    async def run():
        return await GoogleCloudSynthesizer(client=fake).synthesize("Nice work.")

    assert asyncio.run(run()) == b"RIFF....WAVE"
    request = fake.requests[0]
    assert request["input"].text == "Nice work."
    assert request["voice"].name == "en-US-Standard-I"
    assert request["voice"].language_code == "en-US"


def test_google_tts_empty_audio_is_an_error():
    async def run():
        await GoogleCloudSynthesizer(client=FakeTTSClient(audio=b"")).synthesize("Nice work.")

    with pytest.raises(SynthesisError):
        asyncio.run(run())
