from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable

from fitcoach_voice.core.audio.capture import AudioCapture, SegmentSink, StopCallback
from fitcoach_voice.core.notify import NotificationSink
from fitcoach_voice.core.session.gate import PlaybackGate
from fitcoach_voice.core.transport.client import ClientTransport
from fitcoach_voice.domain.errors import DeviceError, NotConnected, TransportError
from fitcoach_voice.domain.events import ConnectionState, SessionState
from fitcoach_voice.domain.models import AudioSegment, Notification, NotificationVariant
from fitcoach_voice.domain.protocol import (
    AssistantText,
    AudioIn,
    AudioOut,
    ErrorMessage,
    Transcript,
    WireMessage,
)

logger = logging.getLogger(__name__)

CaptureFactory = Callable[[SegmentSink, StopCallback], AudioCapture]

START_FAILED = Notification(
    title="Error",
    description="Could not start voice chat. Please try again.",
    variant=NotificationVariant.DESTRUCTIVE,
)
CONNECTION_FAILED = Notification(
    title="Connection Error",
    description="Voice chat encountered an error. Please try again.",
    variant=NotificationVariant.DESTRUCTIVE,
)


@dataclass(slots=True)
class SessionController:
    """Client-side voice session: microphone -> gate -> transport -> playback.

    ``state`` is derived from whether capture is running and from the gate's
    speaking flag; nothing else is stored. Device and connection failures end
    the session; pipeline errors from the server are only reported.
    """

    transport_factory: Callable[[], ClientTransport]
    capture_factory: CaptureFactory
    gate: PlaybackGate
    notifier: NotificationSink
    on_state_change: Callable[[SessionState], None] | None = None

    _transport: ClientTransport | None = field(init=False, default=None, repr=False)
    _capture: AudioCapture | None = field(init=False, default=None, repr=False)
    _last_transcript: str = field(init=False, default="")
    _tasks: set[asyncio.Task[None]] = field(init=False, default_factory=set, repr=False)
    _last_state: SessionState = field(init=False, default=SessionState.IDLE)

    def __post_init__(self) -> None:
        self.gate.on_change = lambda _speaking: self._publish_state()

    @property
    def state(self) -> SessionState:
        capture = self._capture
        if capture is None or not capture.active:
            return SessionState.IDLE
        if self.gate.speaking:
            return SessionState.SPEAKING
        return SessionState.LISTENING

    @property
    def last_transcript(self) -> str:
        return self._last_transcript

    @property
    def active(self) -> bool:
        return self._transport is not None or self._capture is not None

    async def amplitudes(self) -> AsyncIterator[float]:
        capture = self._capture
        if capture is None:
            yield 0.0
            return
        async for value in capture.amplitudes():
            yield value

    async def start_session(self) -> bool:
        """Connect, then open the microphone. Returns False (and notifies) on failure."""
        if self.active:
            return True

        transport = self.transport_factory()
        transport.on_message = self._handle_message
        transport.on_close = self._handle_connection_lost
        self._transport = transport

        capture: AudioCapture | None = None
        try:
            await transport.connect()
            if self._transport is not transport:
                await self._abandon_start(transport, capture)
                return False
            capture = self.capture_factory(self._forward_segment, self._handle_capture_stopped)
            self._capture = capture
            await capture.start()
            if self._transport is not transport or self._capture is not capture:
                await self._abandon_start(transport, capture)
                return False
        except (DeviceError, TransportError) as exc:
            if self._transport is not transport:
                logger.info(f"[Session] Start cancelled by stop: {exc}")
                await self._abandon_start(transport, capture)
                return False
            logger.error(f"[Session] Could not start voice chat: {exc}")
            await self.stop_session()
            self.notifier.notify(START_FAILED)
            return False

        logger.info("[Session] Started")
        self._publish_state()
        return True

    async def stop_session(self) -> None:
        """Release the microphone, close the connection, then clear playback state."""
        if not self.active:
            return

        capture = self._capture
        self._capture = None
        if capture is not None:
            await capture.stop()

        transport = self._transport
        self._transport = None
        if transport is not None:
            await transport.close()

        current = asyncio.current_task()
        tasks = [t for t in self._tasks if t is not current]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self.gate.reset()

        logger.info("[Session] Stopped")
        self._publish_state()

    async def _abandon_start(self, transport: ClientTransport, capture: AudioCapture | None) -> None:
        """Release what a start superseded by ``stop_session`` still holds."""
        if capture is not None:
            await capture.stop()
        await transport.close()
        logger.info("[Session] Start abandoned")
        self._publish_state()

    def _forward_segment(self, segment: AudioSegment) -> None:
        transport = self._transport
        if transport is None or transport.state != ConnectionState.OPEN:
            return
        try:
            self.gate.forward(segment, lambda seg: transport.send(AudioIn(audio=seg.audio)))
        except NotConnected:
            logger.debug("[Session] Transport closed; segment dropped")

    async def _handle_message(self, message: WireMessage) -> None:
        if isinstance(message, Transcript):
            self._last_transcript = message.text
            logger.info(f"[Session] Transcript: '{message.text}'")
        elif isinstance(message, AssistantText):
            self.notifier.notify(Notification(title="Assistant", description=message.text))
        elif isinstance(message, AudioOut):
            self._spawn(self._play(message.audio))
        elif isinstance(message, ErrorMessage):
            self.notifier.notify(
                Notification(title="Error", description=message.message, variant=NotificationVariant.DESTRUCTIVE)
            )

    async def _play(self, audio: bytes) -> None:
        try:
            await self.gate.play(audio)
        except DeviceError as exc:
            logger.error(f"[Session] Playback device failed: {exc}")
            self.notifier.notify(
                Notification(title="Audio Error", description=str(exc), variant=NotificationVariant.DESTRUCTIVE)
            )
            await self.stop_session()
        except ValueError as exc:
            logger.warning(f"[Session] Unplayable assistant audio: {exc}")
            self.notifier.notify(
                Notification(
                    title="Audio Error",
                    description="Could not play the assistant reply.",
                    variant=NotificationVariant.DESTRUCTIVE,
                )
            )

    def _handle_connection_lost(self, exc: BaseException) -> None:
        if not self.active:
            return
        logger.error(f"[Session] Connection lost: {exc}")
        self.notifier.notify(CONNECTION_FAILED)
        self._spawn(self.stop_session())

    def _handle_capture_stopped(self, reason: BaseException | None) -> None:
        if not self.active:
            return
        if reason is None:
            self.notifier.notify(
                Notification(title="Recording stopped", description="Maximum recording time reached.")
            )
        else:
            self.notifier.notify(
                Notification(title="Microphone Error", description=str(reason), variant=NotificationVariant.DESTRUCTIVE)
            )
        self._spawn(self.stop_session())

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _publish_state(self) -> None:
        state = self.state
        if state == self._last_state:
            return
        self._last_state = state
        logger.info(f"[Session] State: {state.value}")
        if self.on_state_change is not None:
            self.on_state_change(state)
