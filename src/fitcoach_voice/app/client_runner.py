from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable

from fitcoach_voice.app.wiring import create_session_controller
from fitcoach_voice.config.settings import AppSettings, TTSProviderName
from fitcoach_voice.core.notify import QueueNotificationSink
from fitcoach_voice.core.session.controller import SessionController
from fitcoach_voice.domain.errors import DeviceError
from fitcoach_voice.domain.events import SessionState
from fitcoach_voice.domain.models import Notification, NotificationVariant

logger = logging.getLogger(__name__)

POLL_INTERVAL_S = 0.25


def format_notification(notification: Notification) -> str:
    prefix = "!" if notification.variant == NotificationVariant.DESTRUCTIVE else "*"
    return f"{prefix} {notification.title}: {notification.description}"


@dataclass(slots=True)
class HeadlessClientRunner:
    """Runs one voice session from the terminal until Ctrl+C or the session ends."""

    settings: AppSettings
    url: str | None = None
    tts: TTSProviderName | None = None
    controller_factory: Callable[..., SessionController] = create_session_controller
    output: Callable[[str], None] = print

    notifier: QueueNotificationSink = field(init=False, default_factory=QueueNotificationSink)

    async def run(self) -> int:
        try:
            controller = self.controller_factory(
                self.settings,
                notifier=self.notifier,
                url=self.url,
                tts=self.tts,
                on_state_change=self._print_state,
            )
        except DeviceError as exc:
            logger.error(f"[Client] Audio device setup failed: {exc}")
            return 2

        if not await controller.start_session():
            self._drain()
            return 1

        self.output("Listening. Press Ctrl+C to stop.")
        try:
            await self._pump(controller)
        except (KeyboardInterrupt, asyncio.CancelledError):
            pass
        finally:
            await controller.stop_session()
            self._drain()
        return 0

    async def _pump(self, controller: SessionController) -> None:
        last_transcript = ""
        while controller.active:
            try:
                notification = await asyncio.wait_for(self.notifier.queue.get(), timeout=POLL_INTERVAL_S)
            except asyncio.TimeoutError:
                notification = None
            if controller.last_transcript and controller.last_transcript != last_transcript:
                last_transcript = controller.last_transcript
                self.output(f"> {last_transcript}")
            if notification is not None:
                self.output(format_notification(notification))

    def _drain(self) -> None:
        while not self.notifier.queue.empty():
            self.output(format_notification(self.notifier.queue.get_nowait()))

    def _print_state(self, state: SessionState) -> None:
        self.output(f"[{state.value}]")
