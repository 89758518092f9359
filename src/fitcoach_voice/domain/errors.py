from __future__ import annotations


class VoiceError(Exception):
    """Base class for all voice pipeline failures."""


class DeviceError(VoiceError):
    """Microphone or speaker could not be used. Fatal to the session."""


class PermissionDenied(DeviceError):
    pass


class DeviceUnavailable(DeviceError):
    pass


class TransportError(VoiceError):
    """Connection failed to open or dropped. Fatal to the session."""


class ConnectError(TransportError):
    pass


class NotConnected(TransportError):
    pass


class ConnectionLost(TransportError):
    pass


class StageError(VoiceError):
    """One pipeline stage failed; the utterance is abandoned, the session continues."""

    stage: str = "stage"


class TranscriptionError(StageError):
    stage = "transcribe"


class GenerationError(StageError):
    stage = "generate"


class SynthesisError(StageError):
    stage = "synthesize"


class ProtocolError(VoiceError):
    """Malformed wire message. Logged and dropped; the connection stays open."""
