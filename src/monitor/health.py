"""Health of the geofence polling loop.

The monitor is degraded while it is blind (the item store has failed
several polls in a row) or while most recent cycles overrun the poll
interval. Dropped alerts are reported but do not flip the flag, since
they are queued for redelivery.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class HealthStatus:
    cycles_total: int = 0
    fetch_failures_total: int = 0
    consecutive_failures: int = 0
    overrun_cycles: int = 0  # within the recent window
    samples_total: int = 0
    alerts_total: int = 0
    alerts_dropped: int = 0
    healthy: bool = True
    warnings: list[str] = field(default_factory=list)


class MonitorHealth:
    """Counts poll outcomes and flags a blind or lagging monitor."""

    def __init__(
        self,
        max_cycle_ms: float = 30_000.0,
        max_consecutive_failures: int = 5,
        window_size: int = 20,
    ):
        self._max_cycle_ms = max_cycle_ms
        self._max_consecutive_failures = max_consecutive_failures
        self._overruns: deque[bool] = deque(maxlen=window_size)
        self._totals = HealthStatus()

    @property
    def consecutive_failures(self) -> int:
        return self._totals.consecutive_failures

    def record_cycle(
        self,
        fetch_ok: bool,
        cycle_ms: float,
        samples: int = 0,
        alerts: int = 0,
        alerts_dropped: int = 0,
    ) -> None:
        t = self._totals
        t.cycles_total += 1
        t.samples_total += samples
        t.alerts_total += alerts
        t.alerts_dropped += alerts_dropped
        if fetch_ok:
            t.consecutive_failures = 0
        else:
            t.fetch_failures_total += 1
            t.consecutive_failures += 1
        self._overruns.append(cycle_ms > self._max_cycle_ms)

    @property
    def status(self) -> HealthStatus:
        t = self._totals
        overruns = sum(self._overruns)
        warnings = []
        blind = t.consecutive_failures >= self._max_consecutive_failures
        # a single slow poll is tolerated; a lagging loop is not
        lagging = overruns * 2 > len(self._overruns) >= 3
        if blind:
            warnings.append(f"Blind: item store unreachable for {t.consecutive_failures} polls")
        if lagging:
            warnings.append(
                f"Overrun: {overruns}/{len(self._overruns)} recent cycles over "
                f"{self._max_cycle_ms:.0f}ms"
            )
        if t.alerts_dropped:
            warnings.append(f"Dropped: {t.alerts_dropped} alerts awaiting redelivery")
        return HealthStatus(
            cycles_total=t.cycles_total,
            fetch_failures_total=t.fetch_failures_total,
            consecutive_failures=t.consecutive_failures,
            overrun_cycles=overruns,
            samples_total=t.samples_total,
            alerts_total=t.alerts_total,
            alerts_dropped=t.alerts_dropped,
            healthy=not (blind or lagging),
            warnings=warnings,
        )

    def log_status(self) -> None:
        s = self.status
        logger.log(
            logging.INFO if s.healthy else logging.WARNING,
            "Monitor %s after %d polls (%d failed): %d samples, %d alerts%s",
            "healthy" if s.healthy else "DEGRADED",
            s.cycles_total,
            s.fetch_failures_total,
            s.samples_total,
            s.alerts_total,
            "; " + "; ".join(s.warnings) if s.warnings else "",
        )
