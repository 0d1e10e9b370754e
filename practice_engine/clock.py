from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    """Wall-clock abstraction.

    Engine code depends on this interface rather than calling real time directly,
    so elapsed time and countdowns can be driven deterministically in tests.
    """

    def now(self) -> float:
        """Return wall-clock seconds since the epoch."""

    def utcnow(self) -> datetime:
        """Return the current aware UTC datetime."""


class SystemClock:
    """Production clock backed by time.time()."""

    def now(self) -> float:
        return time.time()

    def utcnow(self) -> datetime:
        return datetime.now(timezone.utc)
