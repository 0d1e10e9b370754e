"""
services/countdown_timer.py

Countdown bound to one test session.
Remaining time is derived from a deadline on the injected clock, so a
throttled or skipped tick never makes the countdown drift; ticks only decide
when listeners hear about it.
"""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Awaitable, Callable, Optional

import config
from practice_engine.clock import Clock, SystemClock

logger = logging.getLogger(__name__)


def is_warning(remaining_seconds: int, total_seconds: int,
               ratio: float = config.TIMER_WARNING_RATIO) -> bool:
    """Derived warning threshold: at most ``ratio`` of the total time left."""
    if total_seconds <= 0:
        return False
    return remaining_seconds / total_seconds <= ratio


def format_clock(seconds: int) -> str:
    """``MM:SS``, or ``HH:MM:SS`` from one hour up."""
    seconds = max(0, int(seconds))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


class CountdownTimer:
    """
    start/pause/resume/reset countdown with tick and expiry callbacks.

    - ``on_tick(remaining)`` fires at most once per whole second while running.
    - ``on_expire()`` fires exactly once per start/reset cycle.
    - An expired or stopped timer cannot be resumed; ``start``/``reset`` re-arm it.
    """

    def __init__(
        self,
        clock: Optional[Clock] = None,
        on_tick: Optional[Callable[[int], None]] = None,
        on_expire: Optional[Callable[[], None]] = None,
    ) -> None:
        self._clock = clock or SystemClock()
        self._on_tick = on_tick
        self._on_expire = on_expire

        self._total = 0
        self._remaining = 0
        self._deadline: Optional[float] = None
        self._running = False
        self._expired = False
        self._stopped = False
        self._last_emitted: Optional[int] = None

    # ── state ───────────────────────────────────────────────────────────────

    @property
    def total_seconds(self) -> int:
        return self._total

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_expired(self) -> bool:
        return self._expired

    @property
    def remaining_seconds(self) -> int:
        if self._running:
            return self._compute_remaining()
        return self._remaining

    @property
    def remaining_fraction(self) -> float:
        if self._total <= 0:
            return 0.0
        return self.remaining_seconds / self._total

    @property
    def is_warning(self) -> bool:
        return is_warning(self.remaining_seconds, self._total)

    # ── controls ────────────────────────────────────────────────────────────

    def start(self, total_seconds: int) -> None:
        if total_seconds <= 0:
            raise ValueError("total_seconds must be > 0")
        self.reset(total_seconds)
        self._running = True
        self._deadline = self._clock.now() + self._total

    def reset(self, total_seconds: int) -> None:
        if total_seconds < 0:
            raise ValueError("total_seconds must be >= 0")
        self._total = int(total_seconds)
        self._remaining = self._total
        self._deadline = None
        self._running = False
        self._expired = False
        self._stopped = False
        self._last_emitted = None

    def pause(self) -> None:
        if not self._running:
            return
        self._remaining = self._compute_remaining()
        self._running = False
        self._deadline = None

    def resume(self) -> None:
        if self._running or self._expired or self._stopped or self._total <= 0:
            return
        self._deadline = self._clock.now() + self._remaining
        self._running = True

    def stop(self) -> None:
        """Halt for good: no more ticks or expiry until the next start/reset."""
        self.pause()
        self._stopped = True

    def tick(self) -> None:
        """Recompute remaining time and deliver tick/expiry callbacks."""
        if not self._running:
            return
        remaining = self._compute_remaining()
        self._remaining = remaining
        if remaining != self._last_emitted:
            self._last_emitted = remaining
            if self._on_tick is not None:
                self._on_tick(remaining)
        if remaining <= 0:
            self._running = False
            self._deadline = None
            self._expired = True
            logger.info("Countdown expired")
            if self._on_expire is not None:
                self._on_expire()

    async def run(
        self,
        interval: float = config.TIMER_TICK_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Drive ``tick()`` until the timer stops running."""
        while self._running:
            await sleep(interval)
            self.tick()

    def _compute_remaining(self) -> int:
        assert self._deadline is not None
        left = round(self._deadline - self._clock.now(), 6)
        return max(0, math.ceil(left))
