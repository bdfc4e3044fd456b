"""Alert de-duplication window keyed by (vehicle, transition).

Usage:
    cooldown = AlertCooldown(window_s=300)
    if cooldown.allow(("truck-7", Transition.ENTER), now):
        publish(alert)
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Hashable


@dataclass(slots=True)
class CooldownStats:
    """Cooldown statistics."""
    allowed: int = 0
    suppressed: int = 0


class AlertCooldown:
    """Suppresses repeats of the same alert key inside a time window.

    Times are the sample timestamps, not wall clock, so replays are
    deterministic. Safe to share between threads.
    """

    def __init__(self, window_s: float = 300.0):
        self._window_s = window_s
        self._last: dict[Hashable, datetime] = {}
        self._stats = CooldownStats()
        self._lock = threading.Lock()

    @property
    def window_s(self) -> float:
        return self._window_s

    @property
    def stats(self) -> CooldownStats:
        return self._stats

    def is_cooling(self, key: Hashable, now: datetime) -> bool:
        """True if an alert for key was allowed less than window_s ago."""
        last = self._last.get(key)
        if last is None:
            return False
        return (now - last).total_seconds() < self._window_s

    def allow(self, key: Hashable, now: datetime) -> bool:
        """Check and record an alert for key at time now.

        Returns True if the alert should be emitted.
        """
        with self._lock:
            if self.is_cooling(key, now):
                self._stats.suppressed += 1
                return False
            self._last[key] = now
            self._stats.allowed += 1
            return True

    def prune(self, now: datetime) -> int:
        """Forget keys whose window has passed. Returns how many were dropped."""
        with self._lock:
            expired = [
                k for k, t in self._last.items()
                if (now - t).total_seconds() >= self._window_s
            ]
            for k in expired:
                del self._last[k]
        return len(expired)

    def reset(self) -> None:
        with self._lock:
            self._last.clear()
            self._stats = CooldownStats()

    def __len__(self) -> int:
        return len(self._last)
