"""Wire protocol between the voice client and the pipeline server.

One JSON object per websocket frame, tagged by ``type``:

    upstream    {"type": "audio_in",  "audio": <base64>}
    downstream  {"type": "transcript", "text": ...}
                {"type": "response",   "text": ...}
                {"type": "audio_out",  "audio": <base64>}
                {"type": "error",      "message": ..., "detail": ...}

Older clients use the single tag ``"audio"`` for both directions. The decoder
always accepts it and resolves it by the direction the frame travelled; the
encoder emits it only when ``legacy_audio_tag`` is set.
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from typing import Any

from fitcoach_voice.domain.errors import ProtocolError
from fitcoach_voice.domain.events import Direction

TAG_AUDIO_IN = "audio_in"
TAG_AUDIO_OUT = "audio_out"
TAG_AUDIO_LEGACY = "audio"
TAG_TRANSCRIPT = "transcript"
TAG_RESPONSE = "response"
TAG_ERROR = "error"


@dataclass(frozen=True, slots=True)
class AudioIn:
    audio: bytes


@dataclass(frozen=True, slots=True)
class Transcript:
    text: str


@dataclass(frozen=True, slots=True)
class AssistantText:
    text: str


@dataclass(frozen=True, slots=True)
class AudioOut:
    audio: bytes


@dataclass(frozen=True, slots=True)
class ErrorMessage:
    message: str
    detail: str | None = None


WireMessage = AudioIn | Transcript | AssistantText | AudioOut | ErrorMessage

_UPSTREAM_TYPES = (AudioIn,)
_DOWNSTREAM_TYPES = (Transcript, AssistantText, AudioOut, ErrorMessage)


def direction_of(message: WireMessage) -> Direction:
    if isinstance(message, _UPSTREAM_TYPES):
        return Direction.UPSTREAM
    if isinstance(message, _DOWNSTREAM_TYPES):
        return Direction.DOWNSTREAM
    raise TypeError(f"Unknown WireMessage: {type(message)}")


def to_payload(message: WireMessage, *, legacy_audio_tag: bool = False) -> dict[str, Any]:
    if isinstance(message, AudioIn):
        tag = TAG_AUDIO_LEGACY if legacy_audio_tag else TAG_AUDIO_IN
        return {"type": tag, "audio": _b64encode(message.audio)}
    if isinstance(message, AudioOut):
        tag = TAG_AUDIO_LEGACY if legacy_audio_tag else TAG_AUDIO_OUT
        return {"type": tag, "audio": _b64encode(message.audio)}
    if isinstance(message, Transcript):
        return {"type": TAG_TRANSCRIPT, "text": message.text}
    if isinstance(message, AssistantText):
        return {"type": TAG_RESPONSE, "text": message.text}
    if isinstance(message, ErrorMessage):
        payload: dict[str, Any] = {"type": TAG_ERROR, "message": message.message}
        if message.detail is not None:
            payload["detail"] = message.detail
        return payload
    raise TypeError(f"Unknown WireMessage: {type(message)}")


def encode_message(message: WireMessage, *, legacy_audio_tag: bool = False) -> str:
    return json.dumps(to_payload(message, legacy_audio_tag=legacy_audio_tag), ensure_ascii=False)


def decode_message(raw: str | bytes, *, direction: Direction) -> WireMessage:
    """Parse one frame that travelled in ``direction``.

    Raises ProtocolError for anything that is not a well-formed message of a
    type allowed in that direction.
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ProtocolError("frame is not valid UTF-8") from exc

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ProtocolError(f"frame is not valid JSON: {exc.msg}") from exc

    if not isinstance(data, dict):
        raise ProtocolError("frame must be a JSON object")

    tag = data.get("type")
    if not isinstance(tag, str):
        raise ProtocolError("frame is missing a string 'type'")

    if tag == TAG_AUDIO_LEGACY:
        tag = TAG_AUDIO_IN if direction == Direction.UPSTREAM else TAG_AUDIO_OUT

    if direction == Direction.UPSTREAM:
        if tag != TAG_AUDIO_IN:
            raise ProtocolError(f"unexpected upstream message type: {tag!r}")
        return AudioIn(audio=_b64decode(data.get("audio")))

    if tag == TAG_AUDIO_OUT:
        return AudioOut(audio=_b64decode(data.get("audio")))
    if tag == TAG_TRANSCRIPT:
        return Transcript(text=_require_str(data, "text"))
    if tag == TAG_RESPONSE:
        return AssistantText(text=_require_str(data, "text"))
    if tag == TAG_ERROR:
        detail = data.get("detail")
        return ErrorMessage(
            message=_require_str(data, "message"),
            detail=str(detail) if detail is not None else None,
        )
    raise ProtocolError(f"unexpected downstream message type: {tag!r}")


def _require_str(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str):
        raise ProtocolError(f"field {key!r} must be a string")
    return value


def _b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _b64decode(value: object) -> bytes:
    if not isinstance(value, str) or not value:
        raise ProtocolError("field 'audio' must be a non-empty base64 string")
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ProtocolError("field 'audio' is not valid base64") from exc
