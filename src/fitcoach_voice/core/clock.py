from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    """Monotonic time source for capture caps, amplitude stamps and context expiry."""

    def now(self) -> float: ...


class SystemClock:
    def now(self) -> float:
        return time.monotonic()
