from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from fitcoach_voice.config.prompts import resolve_system_prompt
from fitcoach_voice.config.settings import (
    AppSettings,
    LLMProviderName,
    SecretsSettings,
    STTProviderName,
    TTSProviderName,
)
from fitcoach_voice.core.audio.capture import AudioCapture, SegmentSink, StopCallback
from fitcoach_voice.core.audio.player import SoundDevicePlayer
from fitcoach_voice.core.audio.source import SoundDeviceAudioSource, resolve_sounddevice_device
from fitcoach_voice.core.clock import Clock, SystemClock
from fitcoach_voice.core.notify import NotificationSink
from fitcoach_voice.core.pipeline.orchestrator import Emit, PipelineOrchestrator
from fitcoach_voice.core.pipeline.stages import (
    PipelineStages,
    ReplyGenerator,
    SemaphoreReplyGenerator,
    SpeechSynthesizer,
    Transcriber,
)
from fitcoach_voice.core.session.controller import SessionController
from fitcoach_voice.core.session.gate import PlaybackGate
from fitcoach_voice.core.storage.secrets import KeyringSecretStore, SecretStore, require_secret
from fitcoach_voice.core.transport.client import WebSocketTransport
from fitcoach_voice.core.transport.server import ConnectionInfo, OrchestratorFactory, VoiceServer
from fitcoach_voice.domain.events import SessionState

logger = logging.getLogger(__name__)

# secret store key -> environment variable consulted when the store has no value
PROVIDER_SECRETS: dict[str, str] = {
    "deepgram_api_key": "DEEPGRAM_API_KEY",
    "google_api_key": "GOOGLE_API_KEY",
    "alibaba_api_key": "DASHSCOPE_API_KEY",
    "elevenlabs_api_key": "ELEVENLABS_API_KEY",
}


def _provider_secret(secrets: SecretStore, key: str) -> str:
    return require_secret(secrets, key=key, env_var=PROVIDER_SECRETS[key])


def create_secret_store(settings: SecretsSettings) -> SecretStore:
    return KeyringSecretStore(service_name=settings.service_name)


def create_transcriber(settings: AppSettings, *, secrets: SecretStore) -> Transcriber:
    if settings.provider.stt == STTProviderName.DEEPGRAM:
        from fitcoach_voice.providers.stt.deepgram import DeepgramTranscriber

        api_key = _provider_secret(secrets, "deepgram_api_key")
        return DeepgramTranscriber(
            api_key=api_key,
            model=settings.deepgram.model,
            language=settings.deepgram.language,
        )

    raise ValueError(f"Unsupported STT provider: {settings.provider.stt}")


def create_reply_generator(settings: AppSettings, *, secrets: SecretStore) -> ReplyGenerator:
    if settings.provider.llm == LLMProviderName.GEMINI:
        from fitcoach_voice.providers.llm.gemini import GeminiReplyGenerator

        api_key = _provider_secret(secrets, "google_api_key")
        base: ReplyGenerator = GeminiReplyGenerator(
            api_key=api_key,
            model=settings.gemini.model,
            max_output_tokens=settings.gemini.max_output_tokens,
        )
    elif settings.provider.llm == LLMProviderName.QWEN:
        from fitcoach_voice.providers.llm.qwen import QwenReplyGenerator

        api_key = _provider_secret(secrets, "alibaba_api_key")
        base = QwenReplyGenerator(
            api_key=api_key,
            base_url=settings.qwen.base_url,
            model=settings.qwen.model,
        )
    else:
        raise ValueError(f"Unsupported LLM provider: {settings.provider.llm}")

    return SemaphoreReplyGenerator(
        inner=base,
        semaphore=asyncio.Semaphore(settings.pipeline.generation_concurrency),
    )


def create_synthesizer(
    settings: AppSettings, name: TTSProviderName, *, secrets: SecretStore
) -> SpeechSynthesizer:
    if name == TTSProviderName.GOOGLE:
        from fitcoach_voice.providers.tts.google_tts import GoogleCloudSynthesizer

        return GoogleCloudSynthesizer(
            voice=settings.google_tts.voice,
            language_code=settings.google_tts.language_code,
            sample_rate_hz=settings.google_tts.sample_rate_hz,
        )

    if name == TTSProviderName.ELEVENLABS:
        from fitcoach_voice.providers.tts.elevenlabs import ElevenLabsSynthesizer

        api_key = _provider_secret(secrets, "elevenlabs_api_key")
        return ElevenLabsSynthesizer(
            api_key=api_key,
            voice_id=settings.elevenlabs.voice_id,
            model_id=settings.elevenlabs.model_id,
            output_format=settings.elevenlabs.output_format,
        )

    raise ValueError(f"Unsupported TTS provider: {name}")


def select_tts(query: dict[str, str], *, default: TTSProviderName) -> TTSProviderName:
    raw = (query.get("tts") or "").strip().lower()
    if not raw:
        return default
    try:
        return TTSProviderName(raw)
    except ValueError:
        logger.warning(f"Unknown tts backend {raw!r} requested; using {default.value}")
        return default


SynthesizerFactory = Callable[[TTSProviderName], SpeechSynthesizer]


@dataclass(slots=True)
class ServerProviders:
    """Stage providers shared by every connection of one server process.

    Synthesizers are built on first request, so a backend whose key is not
    configured only matters once a client asks for it.
    """

    transcriber: Transcriber
    generator: ReplyGenerator
    synthesizer_factory: SynthesizerFactory
    default_tts: TTSProviderName = TTSProviderName.GOOGLE

    _synthesizers: dict[TTSProviderName, SpeechSynthesizer] = field(init=False, default_factory=dict)

    def synthesizer(self, name: TTSProviderName) -> SpeechSynthesizer:
        synth = self._synthesizers.get(name)
        if synth is not None:
            return synth
        try:
            synth = self.synthesizer_factory(name)
        except ValueError as exc:
            if name == self.default_tts:
                raise
            logger.warning(f"TTS backend {name.value} unavailable ({exc}); using {self.default_tts.value}")
            return self.synthesizer(self.default_tts)
        self._synthesizers[name] = synth
        return synth

    def stages_for(self, name: TTSProviderName) -> PipelineStages:
        return PipelineStages(
            transcriber=self.transcriber,
            generator=self.generator,
            synthesizer=self.synthesizer(name),
        )

    async def close(self) -> None:
        await self.transcriber.close()
        await self.generator.close()
        for synth in self._synthesizers.values():
            await synth.close()
        self._synthesizers.clear()


def create_server_providers(settings: AppSettings, *, secrets: SecretStore) -> ServerProviders:
    return ServerProviders(
        transcriber=create_transcriber(settings, secrets=secrets),
        generator=create_reply_generator(settings, secrets=secrets),
        synthesizer_factory=lambda name: create_synthesizer(settings, name, secrets=secrets),
        default_tts=settings.server.default_tts,
    )


def create_orchestrator_factory(
    settings: AppSettings,
    providers: ServerProviders,
    *,
    clock: Clock | None = None,
) -> OrchestratorFactory:
    system_prompt = resolve_system_prompt(settings.system_prompt)
    clock = clock or SystemClock()

    def factory(emit: Emit, info: ConnectionInfo) -> PipelineOrchestrator:
        tts = select_tts(info.query, default=providers.default_tts)
        logger.info(f"[Server] Connection {info.connection_id} uses tts={tts.value}")
        return PipelineOrchestrator(
            stages=providers.stages_for(tts),
            emit=emit,
            system_prompt=system_prompt,
            clock=clock,
            context_max_entries=settings.pipeline.context_max_entries,
            context_time_window_s=settings.pipeline.context_time_window_s,
            connection_id=info.connection_id,
        )

    return factory


def create_voice_server(
    settings: AppSettings,
    providers: ServerProviders,
    *,
    host: str | None = None,
    port: int | None = None,
) -> VoiceServer:
    return VoiceServer(
        orchestrator_factory=create_orchestrator_factory(settings, providers),
        host=host or settings.server.host,
        port=settings.server.port if port is None else port,
        path=settings.server.path,
        legacy_audio_tag=settings.server.legacy_audio_tag,
    )


def build_client_url(url: str, *, tts: TTSProviderName | None) -> str:
    """Attach the ``tts`` query parameter, replacing any existing one."""
    if tts is None:
        return url
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query) if k != "tts"]
    query.append(("tts", tts.value))
    return urlunsplit(parts._replace(query=urlencode(query)))


def create_session_controller(
    settings: AppSettings,
    *,
    notifier: NotificationSink,
    url: str | None = None,
    tts: TTSProviderName | None = None,
    on_state_change: Callable[[SessionState], None] | None = None,
) -> SessionController:
    server_url = build_client_url(url or settings.client.server_url, tts=tts or settings.client.tts)
    input_device = resolve_sounddevice_device(settings.audio.input_device, kind="input")
    output_device = resolve_sounddevice_device(settings.audio.output_device, kind="output")

    def transport_factory() -> WebSocketTransport:
        return WebSocketTransport(url=server_url, legacy_audio_tag=settings.client.legacy_audio_tag)

    def capture_factory(sink: SegmentSink, on_stopped: StopCallback) -> AudioCapture:
        return AudioCapture(
            source_factory=lambda: SoundDeviceAudioSource(
                sample_rate_hz=None,  # device default; resampled by AudioCapture
                channels=settings.audio.channels,
                device=input_device,
            ),
            sink=sink,
            sample_rate_hz=settings.audio.sample_rate_hz,
            segment_ms=settings.client.segment_ms,
            amplitude_hz=settings.client.amplitude_hz,
            max_capture_s=settings.client.max_capture_s,
            on_stopped=on_stopped,
        )

    return SessionController(
        transport_factory=transport_factory,
        capture_factory=capture_factory,
        gate=PlaybackGate(player=SoundDevicePlayer(device=output_device)),
        notifier=notifier,
        on_state_change=on_state_change,
    )
