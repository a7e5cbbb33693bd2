"""Time sources for the ledger (seconds since epoch, never decreasing)."""

from __future__ import annotations

import threading
import time


class Clock:
    def now(self) -> int:
        raise NotImplementedError


class SystemClock(Clock):
    """Wall clock clamped so a backwards system-time step is never observed."""

    def __init__(self):
        self._last = 0
        self._lock = threading.Lock()

    def now(self) -> int:
        with self._lock:
            self._last = max(self._last, int(time.time()))
            return self._last


class ManualClock(Clock):
    """Clock advanced explicitly; used by the offline demo and tests."""

    def __init__(self, start: int = 1_700_000_000):
        self._now = int(start)

    def now(self) -> int:
        return self._now

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError("clock cannot move backwards")
        self._now += int(seconds)
        return self._now
