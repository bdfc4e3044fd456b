"""Trip statistics over a full position track."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Sequence

import numpy as np

from history.simplify import STOP_SPEED
from shared.geo import haversine_km_array
from shared.samples import PositionSample


@dataclass(slots=True)
class TripSummary:
    """Aggregate statistics for one vehicle over a time window."""
    distance_km: float = 0.0
    duration_hours: float = 0.0
    avg_speed_kmh: float = 0.0
    max_speed_kmh: float = 0.0
    stop_count: int = 0

    def summary(self) -> str:
        return "\n".join([
            f"Distance: {self.distance_km:.2f} km",
            f"Duration: {self.duration_hours:.1f} hours",
            f"Speed: {self.avg_speed_kmh:.1f} km/h avg, {self.max_speed_kmh:.1f} km/h max",
            f"Stops: {self.stop_count}",
        ])

    def to_dict(self) -> dict:
        return asdict(self)


def _run_starts(speeds: np.ndarray, stop_speed: float) -> np.ndarray:
    """Indices where a maximal run of readings below stop_speed begins."""
    if speeds.size == 0:
        return np.zeros(0, dtype=np.intp)
    stopped = speeds < stop_speed
    begins = np.empty_like(stopped)
    begins[0] = stopped[0]
    begins[1:] = stopped[1:] & ~stopped[:-1]
    return np.flatnonzero(begins)


def count_stops(speeds: np.ndarray, stop_speed: float = STOP_SPEED) -> int:
    """Number of maximal runs of consecutive readings below stop_speed."""
    return int(_run_starts(speeds, stop_speed).size)


def find_stops(
    samples: Sequence[PositionSample],
    stop_speed: float = STOP_SPEED,
) -> list[PositionSample]:
    """First sample of every stop, in track order.

    Same definition as ``TripSummary.stop_count``: samples without a
    finite speed are left out before runs are formed.
    """
    with_speed = [s for s in samples if s.has_speed]
    speeds = np.array([s.speed for s in with_speed], dtype=np.float64)
    return [with_speed[i] for i in _run_starts(speeds, stop_speed)]


def compute_trip_summary(
    samples: Sequence[PositionSample],
    stop_speed: float = STOP_SPEED,
) -> TripSummary:
    """Compute trip statistics from a valid, time-sorted track.

    Distance sums haversine segments (non-finite segments skipped).
    Speed figures come from the reported speed field, not from
    distance over time; samples without a finite speed are ignored for
    speed and stop counting.
    """
    if not samples:
        return TripSummary()

    lat = np.array([s.latitude for s in samples], dtype=np.float64)
    lon = np.array([s.longitude for s in samples], dtype=np.float64)
    segments = haversine_km_array(lat, lon)
    distance_km = float(segments[np.isfinite(segments)].sum())

    duration_s = (samples[-1].timestamp - samples[0].timestamp).total_seconds()
    duration_hours = max(0.0, duration_s / 3600.0)

    speeds = np.array([s.speed for s in samples if s.has_speed], dtype=np.float64)
    if speeds.size:
        avg_speed = max(0.0, float(speeds.mean()))
        max_speed = max(0.0, float(speeds.max()))
    else:
        avg_speed = 0.0
        max_speed = 0.0

    return TripSummary(
        distance_km=distance_km,
        duration_hours=duration_hours,
        avg_speed_kmh=avg_speed,
        max_speed_kmh=max_speed,
        stop_count=count_stops(speeds, stop_speed),
    )
