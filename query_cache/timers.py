"""
Per-query timers for staleness, garbage collection and interval refetches.
"""

import asyncio
import math
from typing import Callable, Optional


class QueryTimers:
    """Holds at most one pending timer of each kind for a query."""

    def __init__(self):
        self._stale: Optional[asyncio.TimerHandle] = None
        self._gc: Optional[asyncio.TimerHandle] = None
        self._interval: Optional[asyncio.TimerHandle] = None
        self.interval_seconds: Optional[float] = None

    @staticmethod
    def _call_later(delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        loop = asyncio.get_running_loop()
        return loop.call_later(max(0.0, delay), callback)

    @property
    def has_pending_stale(self) -> bool:
        return self._stale is not None and not self._stale.cancelled()

    @property
    def has_pending_gc(self) -> bool:
        return self._gc is not None and not self._gc.cancelled()

    @property
    def has_interval(self) -> bool:
        return self._interval is not None and not self._interval.cancelled()

    def schedule_stale(self, delay: float, callback: Callable[[], None]) -> bool:
        """Replace the stale timer; unbounded delays schedule nothing."""
        self.cancel_stale()
        if math.isinf(delay):
            return False

        def fire():
            self._stale = None
            callback()

        self._stale = self._call_later(delay, fire)
        return True

    def cancel_stale(self) -> None:
        if self._stale is not None:
            self._stale.cancel()
            self._stale = None

    def schedule_gc(self, delay: float, callback: Callable[[], None]) -> bool:
        """Replace the garbage collection timer; unbounded delays schedule nothing."""
        self.cancel_gc()
        if math.isinf(delay):
            return False

        def fire():
            self._gc = None
            callback()

        self._gc = self._call_later(delay, fire)
        return True

    def cancel_gc(self) -> None:
        if self._gc is not None:
            self._gc.cancel()
            self._gc = None

    def schedule_interval(self, interval: float, callback: Callable[[], None]) -> bool:
        """Replace the recurring refetch timer.

        The next tick is armed before ``callback`` runs, so a callback that
        cancels the interval also stops the re-armed tick.
        """
        self.cancel_interval()
        if not interval or interval <= 0 or math.isinf(interval):
            return False

        def tick():
            self._interval = self._call_later(interval, tick)
            callback()

        self.interval_seconds = interval
        self._interval = self._call_later(interval, tick)
        return True

    def cancel_interval(self) -> None:
        if self._interval is not None:
            self._interval.cancel()
            self._interval = None
        self.interval_seconds = None

    def cancel_all(self) -> None:
        self.cancel_stale()
        self.cancel_gc()
        self.cancel_interval()
