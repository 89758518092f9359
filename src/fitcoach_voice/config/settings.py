from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit


class STTProviderName(str, Enum):
    DEEPGRAM = "deepgram"


class LLMProviderName(str, Enum):
    GEMINI = "gemini"
    QWEN = "qwen"


class TTSProviderName(str, Enum):
    GOOGLE = "google"
    ELEVENLABS = "elevenlabs"


@dataclass(slots=True)
class ServerSettings:
    host: str = "127.0.0.1"
    port: int = 8080
    path: str = "/voice-chat"
    legacy_audio_tag: bool = False
    default_tts: TTSProviderName = TTSProviderName.GOOGLE

    def validate(self) -> None:
        if not isinstance(self.default_tts, TTSProviderName):
            raise ValueError("invalid default_tts provider")
        if not self.host:
            raise ValueError("host must be non-empty")
        if not (0 <= self.port <= 65535):
            raise ValueError("port must be in 0..65535")
        if not self.path.startswith("/"):
            raise ValueError("path must start with '/'")


@dataclass(slots=True)
class ClientSettings:
    server_url: str = "ws://127.0.0.1:8080/voice-chat"
    segment_ms: int = 1000
    amplitude_hz: float = 60.0
    max_capture_s: float | None = None
    tts: TTSProviderName | None = None
    legacy_audio_tag: bool = False

    def validate(self) -> None:
        if urlsplit(self.server_url).scheme not in ("ws", "wss"):
            raise ValueError("server_url must be a ws:// or wss:// URL")
        if self.segment_ms <= 0:
            raise ValueError("segment_ms must be > 0")
        if self.amplitude_hz <= 0:
            raise ValueError("amplitude_hz must be > 0")
        if self.max_capture_s is not None and self.max_capture_s <= 0:
            raise ValueError("max_capture_s must be > 0 or null")


@dataclass(slots=True)
class AudioSettings:
    sample_rate_hz: int = 16000
    channels: int = 1
    input_device: str = ""
    output_device: str = ""

    def validate(self) -> None:
        if self.sample_rate_hz not in (8000, 16000, 24000, 48000):
            raise ValueError("sample_rate_hz must be 8000, 16000, 24000 or 48000")
        if self.channels <= 0:
            raise ValueError("channels must be > 0")


@dataclass(slots=True)
class ProviderSettings:
    stt: STTProviderName = STTProviderName.DEEPGRAM
    llm: LLMProviderName = LLMProviderName.GEMINI

    def validate(self) -> None:
        if not isinstance(self.stt, STTProviderName):
            raise ValueError("invalid stt provider")
        if not isinstance(self.llm, LLMProviderName):
            raise ValueError("invalid llm provider")


@dataclass(slots=True)
class DeepgramSettings:
    model: str = "nova-3"
    language: str = "en"

    def validate(self) -> None:
        if not self.model:
            raise ValueError("deepgram model must be non-empty")


@dataclass(slots=True)
class GeminiSettings:
    model: str = "gemini-2.5-flash"
    max_output_tokens: int = 256

    def validate(self) -> None:
        if not self.model:
            raise ValueError("gemini model must be non-empty")
        if self.max_output_tokens <= 0:
            raise ValueError("max_output_tokens must be > 0")


@dataclass(slots=True)
class QwenSettings:
    model: str = "qwen-plus"
    base_url: str = "https://dashscope-intl.aliyuncs.com/api/v1"

    def validate(self) -> None:
        if not self.model:
            raise ValueError("qwen model must be non-empty")
        if not self.base_url:
            raise ValueError("qwen base_url must be non-empty")


@dataclass(slots=True)
class GoogleTTSSettings:
    voice: str = "en-US-Standard-I"
    language_code: str = "en-US"
    sample_rate_hz: int = 24000

    def validate(self) -> None:
        if not self.voice:
            raise ValueError("google tts voice must be non-empty")
        if self.sample_rate_hz <= 0:
            raise ValueError("google tts sample_rate_hz must be > 0")


@dataclass(slots=True)
class ElevenLabsSettings:
    voice_id: str = "MF3mGyEYCl7XYWbV9V6O"
    model_id: str = "eleven_multilingual_v2"
    output_format: str = "pcm_16000"

    def validate(self) -> None:
        if not self.voice_id:
            raise ValueError("elevenlabs voice_id must be non-empty")
        if not self.output_format.startswith("pcm_"):
            raise ValueError("elevenlabs output_format must be a pcm_* format")


@dataclass(slots=True)
class PipelineSettings:
    context_max_entries: int = 3
    context_time_window_s: float = 120.0
    generation_concurrency: int = 4

    def validate(self) -> None:
        if self.context_max_entries < 0:
            raise ValueError("context_max_entries must be >= 0")
        if self.context_time_window_s <= 0:
            raise ValueError("context_time_window_s must be > 0")
        if self.generation_concurrency <= 0:
            raise ValueError("generation_concurrency must be > 0")


@dataclass(slots=True)
class SecretsSettings:
    service_name: str = "fitcoach-voice"

    def validate(self) -> None:
        if not self.service_name:
            raise ValueError("service_name must be non-empty")


@dataclass(slots=True)
class AppSettings:
    server: ServerSettings = field(default_factory=ServerSettings)
    client: ClientSettings = field(default_factory=ClientSettings)
    audio: AudioSettings = field(default_factory=AudioSettings)
    provider: ProviderSettings = field(default_factory=ProviderSettings)
    deepgram: DeepgramSettings = field(default_factory=DeepgramSettings)
    gemini: GeminiSettings = field(default_factory=GeminiSettings)
    qwen: QwenSettings = field(default_factory=QwenSettings)
    google_tts: GoogleTTSSettings = field(default_factory=GoogleTTSSettings)
    elevenlabs: ElevenLabsSettings = field(default_factory=ElevenLabsSettings)
    pipeline: PipelineSettings = field(default_factory=PipelineSettings)
    secrets: SecretsSettings = field(default_factory=SecretsSettings)
    system_prompt: str = ""

    def validate(self) -> None:
        self.server.validate()
        self.client.validate()
        self.audio.validate()
        self.provider.validate()
        self.deepgram.validate()
        self.gemini.validate()
        self.qwen.validate()
        self.google_tts.validate()
        self.elevenlabs.validate()
        self.pipeline.validate()
        self.secrets.validate()


def _enum_to_value(obj: object) -> object:
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, dict):
        return {k: _enum_to_value(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_enum_to_value(v) for v in obj]
    return obj


def to_dict(settings: AppSettings) -> dict[str, Any]:
    return _enum_to_value(asdict(settings))  # type: ignore[return-value]


def _parse_enum(enum_cls: type[Enum], value: object, default: Enum) -> Any:
    """Unknown or legacy provider names fall back to the default."""
    try:
        return enum_cls(value)
    except ValueError:
        return default


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, dict):
        raise ValueError(f"settings section `{name}` must be a JSON object")
    return value


def from_dict(data: dict[str, Any]) -> AppSettings:
    server = _section(data, "server")
    client = _section(data, "client")
    audio = _section(data, "audio")
    provider = _section(data, "provider")
    deepgram = _section(data, "deepgram")
    gemini = _section(data, "gemini")
    qwen = _section(data, "qwen")
    google_tts = _section(data, "google_tts")
    elevenlabs = _section(data, "elevenlabs")
    pipeline = _section(data, "pipeline")
    secrets = _section(data, "secrets")

    max_capture_raw = client.get("max_capture_s")
    client_tts_raw = client.get("tts")

    settings = AppSettings(
        server=ServerSettings(
            host=str(server.get("host", "127.0.0.1")),
            port=int(server.get("port", 8080)),
            path=str(server.get("path", "/voice-chat")),
            legacy_audio_tag=bool(server.get("legacy_audio_tag", False)),
            default_tts=_parse_enum(TTSProviderName, server.get("default_tts"), TTSProviderName.GOOGLE),
        ),
        client=ClientSettings(
            server_url=str(client.get("server_url", "ws://127.0.0.1:8080/voice-chat")),
            segment_ms=int(client.get("segment_ms", 1000)),
            amplitude_hz=float(client.get("amplitude_hz", 60.0)),
            max_capture_s=float(max_capture_raw) if max_capture_raw is not None else None,
            tts=_parse_enum(TTSProviderName, client_tts_raw, None) if client_tts_raw else None,  # type: ignore[arg-type]
            legacy_audio_tag=bool(client.get("legacy_audio_tag", False)),
        ),
        audio=AudioSettings(
            sample_rate_hz=int(audio.get("sample_rate_hz", 16000)),
            channels=int(audio.get("channels", 1)),
            input_device=str(audio.get("input_device") or ""),
            output_device=str(audio.get("output_device") or ""),
        ),
        provider=ProviderSettings(
            stt=_parse_enum(STTProviderName, provider.get("stt"), STTProviderName.DEEPGRAM),
            llm=_parse_enum(LLMProviderName, provider.get("llm"), LLMProviderName.GEMINI),
        ),
        deepgram=DeepgramSettings(
            model=str(deepgram.get("model", "nova-3")),
            language=str(deepgram.get("language", "en")),
        ),
        gemini=GeminiSettings(
            model=str(gemini.get("model", "gemini-2.5-flash")),
            max_output_tokens=int(gemini.get("max_output_tokens", 256)),
        ),
        qwen=QwenSettings(
            model=str(qwen.get("model", "qwen-plus")),
            base_url=str(qwen.get("base_url", "https://dashscope-intl.aliyuncs.com/api/v1")),
        ),
        google_tts=GoogleTTSSettings(
            voice=str(google_tts.get("voice", "en-US-Standard-I")),
            language_code=str(google_tts.get("language_code", "en-US")),
            sample_rate_hz=int(google_tts.get("sample_rate_hz", 24000)),
        ),
        elevenlabs=ElevenLabsSettings(
            voice_id=str(elevenlabs.get("voice_id", "MF3mGyEYCl7XYWbV9V6O")),
            model_id=str(elevenlabs.get("model_id", "eleven_multilingual_v2")),
            output_format=str(elevenlabs.get("output_format", "pcm_16000")),
        ),
        pipeline=PipelineSettings(
            context_max_entries=int(pipeline.get("context_max_entries", 3)),
            context_time_window_s=float(pipeline.get("context_time_window_s", 120.0)),
            generation_concurrency=int(pipeline.get("generation_concurrency", 4)),
        ),
        secrets=SecretsSettings(service_name=str(secrets.get("service_name", "fitcoach-voice"))),
        system_prompt=str(data.get("system_prompt", "")),
    )
    settings.validate()
    return settings


def load_settings(path: Path) -> AppSettings:
    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("settings file must contain a JSON object")
    return from_dict(raw)


def save_settings(path: Path, settings: AppSettings) -> None:
    settings.validate()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(to_dict(settings), ensure_ascii=False, indent=2), encoding="utf-8")


def load_settings_or_default(path: Path) -> AppSettings:
    if path.exists():
        return load_settings(path)
    return AppSettings()
