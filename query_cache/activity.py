"""
Activity monitor consulted before retries and background refetches.

The embedding application reports focus or visibility changes through
``set_active``; the cache only reads the flag and waits on it.
"""

import asyncio
from typing import Optional


class ActivityMonitor:
    """Tracks whether the host environment is currently active."""

    def __init__(self, active: bool = True):
        self._active = active
        self._event: Optional[asyncio.Event] = None

    def is_active(self) -> bool:
        return self._active

    def set_active(self, active: bool) -> None:
        """Record an activity change, waking paused retries on reactivation."""
        self._active = active
        if self._event is None:
            return
        if active:
            self._event.set()
        else:
            self._event.clear()

    async def wait_until_active(self) -> None:
        """Block until the environment reports activity."""
        if self._active:
            return
        if self._event is None:
            self._event = asyncio.Event()
        self._event.clear()
        await self._event.wait()
