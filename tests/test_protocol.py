from __future__ import annotations

import base64
import json

import pytest

from fitcoach_voice.domain.errors import ProtocolError
from fitcoach_voice.domain.events import Direction
from fitcoach_voice.domain.protocol import (
    AssistantText,
    AudioIn,
    AudioOut,
    ErrorMessage,
    Transcript,
    decode_message,
    direction_of,
    encode_message,
    to_payload,
)


def test_audio_in_uses_distinct_tag_and_base64():
    payload = to_payload(AudioIn(audio=b"\x00\x01wav"))
    assert payload == {"type": "audio_in", "audio": base64.b64encode(b"\x00\x01wav").decode()}


def test_legacy_tag_is_shared_by_both_audio_directions():
    assert to_payload(AudioIn(audio=b"a"), legacy_audio_tag=True)["type"] == "audio"
    assert to_payload(AudioOut(audio=b"a"), legacy_audio_tag=True)["type"] == "audio"


def test_legacy_audio_tag_resolves_by_direction():
    raw = json.dumps({"type": "audio", "audio": base64.b64encode(b"xyz").decode()})

    assert decode_message(raw, direction=Direction.UPSTREAM) == AudioIn(audio=b"xyz")
    assert decode_message(raw, direction=Direction.DOWNSTREAM) == AudioOut(audio=b"xyz")


def test_downstream_messages_decode():
    assert decode_message('{"type": "transcript", "text": "hi"}', direction=Direction.DOWNSTREAM) == Transcript(
        text="hi"
    )
    assert decode_message('{"type": "response", "text": "yo"}', direction=Direction.DOWNSTREAM) == AssistantText(
        text="yo"
    )
    assert decode_message(
        '{"type": "error", "message": "Failed to get AI response"}', direction=Direction.DOWNSTREAM
    ) == ErrorMessage(message="Failed to get AI response")


def test_error_detail_is_omitted_when_absent():
    assert json.loads(encode_message(ErrorMessage(message="boom"))) == {"type": "error", "message": "boom"}
    assert json.loads(encode_message(ErrorMessage(message="boom", detail="why"))) == {
        "type": "error",
        "message": "boom",
        "detail": "why",
    }


def test_text_is_not_ascii_escaped():
    assert "Übung" in encode_message(Transcript(text="Übung"))


def test_bytes_frames_are_accepted():
    raw = b'{"type": "transcript", "text": "hello"}'
    assert decode_message(raw, direction=Direction.DOWNSTREAM) == Transcript(text="hello")


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[1, 2]",
        "{}",
        '{"type": 3}',
        '{"type": "audio_in"}',
        '{"type": "audio_in", "audio": "***"}',
        '{"type": "transcript", "text": "wrong direction"}',
        b"\xff\xfe",
    ],
)
def test_malformed_upstream_frames_raise_protocol_error(raw):
    with pytest.raises(ProtocolError):
        decode_message(raw, direction=Direction.UPSTREAM)


def test_unknown_downstream_tag_raises():
    with pytest.raises(ProtocolError):
        decode_message('{"type": "audio_in", "audio": "AAAA"}', direction=Direction.DOWNSTREAM)
    with pytest.raises(ProtocolError):
        decode_message('{"type": "response", "text": 5}', direction=Direction.DOWNSTREAM)


def test_direction_of():
    assert direction_of(AudioIn(audio=b"a")) == Direction.UPSTREAM
    for msg in (Transcript(text="t"), AssistantText(text="a"), AudioOut(audio=b"a"), ErrorMessage(message="e")):
        assert direction_of(msg) == Direction.DOWNSTREAM
