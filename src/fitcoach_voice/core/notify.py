from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Protocol

from fitcoach_voice.domain.models import Notification, NotificationVariant

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    def notify(self, notification: Notification) -> None: ...


class LoggingNotificationSink:
    def notify(self, notification: Notification) -> None:
        level = logging.WARNING if notification.variant == NotificationVariant.DESTRUCTIVE else logging.INFO
        logger.log(level, f"[Notify] {notification.title}: {notification.description}")


@dataclass(slots=True)
class QueueNotificationSink:
    """Buffers notifications for a consumer task (CLI printer, UI bridge)."""

    queue: asyncio.Queue[Notification] = field(default_factory=asyncio.Queue)

    def notify(self, notification: Notification) -> None:
        self.queue.put_nowait(notification)
