"""Track simplification for map rendering.

Reduces a long, chronologically sorted sample sequence to at most
``max_points`` samples in a single deterministic pass. The first and
last samples are always kept and order is never changed. A sample is
kept when it is a stop (when stops are preserved), when it is far
enough or long enough after the last kept sample, or when a uniform
stride is needed so that uneventful stretches (idling with GPS jitter)
still get sampled.

Statistics must be computed from the full track, not from the output
of this module.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Sequence

from shared.geo import distance_meters
from shared.samples import PositionSample

logger = logging.getLogger(__name__)

STOP_SPEED = 5.0  # km/h; below this a sample counts as stationary


class OptimizationLevel(Enum):
    AUTO = "auto"
    HIGH = "high"      # coarse and fast
    MEDIUM = "medium"
    LOW = "low"        # detailed


@dataclass(frozen=True, slots=True)
class SimplifyParams:
    """Thresholds for one simplification pass."""
    max_points: int = 2000
    preserve_stops: bool = True
    min_distance_m: float = 10.0
    min_time_s: float = 30.0
    stop_speed: float = STOP_SPEED
    fill_ratio: float = 0.8   # stride fallback runs while output < fill_ratio * max_points


LEVEL_PARAMS = {
    OptimizationLevel.HIGH: SimplifyParams(max_points=500, preserve_stops=False,
                                           min_distance_m=50.0, min_time_s=120.0),
    OptimizationLevel.MEDIUM: SimplifyParams(max_points=1500, preserve_stops=True,
                                             min_distance_m=20.0, min_time_s=60.0),
    OptimizationLevel.LOW: SimplifyParams(max_points=3000, preserve_stops=True,
                                          min_distance_m=5.0, min_time_s=30.0),
}

# (input size above which the tier applies, params), largest first
AUTO_TIERS = [
    (50_000, SimplifyParams(max_points=1000, preserve_stops=False,
                            min_distance_m=30.0, min_time_s=90.0)),
    (20_000, SimplifyParams(max_points=1500, preserve_stops=True,
                            min_distance_m=20.0, min_time_s=60.0)),
    (10_000, SimplifyParams(max_points=2000, preserve_stops=True,
                            min_distance_m=10.0, min_time_s=45.0)),
    (5_000, SimplifyParams(max_points=2500, preserve_stops=True,
                           min_distance_m=5.0, min_time_s=30.0)),
]


def select_params(
    num_samples: int,
    level: OptimizationLevel = OptimizationLevel.AUTO,
) -> SimplifyParams | None:
    """Pick thresholds for a track size and level.

    Returns None when AUTO decides the track is small enough to render
    as is.
    """
    if level is not OptimizationLevel.AUTO:
        return LEVEL_PARAMS[level]
    for threshold, params in AUTO_TIERS:
        if num_samples > threshold:
            return params
    return None


def _speed(sample: PositionSample) -> float:
    # missing speed reads as stationary
    return sample.speed if sample.has_speed else 0.0


def is_stop(
    samples: Sequence[PositionSample],
    i: int,
    stop_speed: float = STOP_SPEED,
) -> bool:
    """True if sample i and the one before it are both below stop_speed."""
    if i <= 0:
        return False
    return _speed(samples[i]) < stop_speed and _speed(samples[i - 1]) < stop_speed


def simplify_track(
    samples: Sequence[PositionSample],
    params: SimplifyParams | None = None,
) -> list[PositionSample]:
    """Reduce a sorted track to at most params.max_points samples.

    Tracks that already fit are returned unchanged (as a new list).
    """
    if params is None:
        params = SimplifyParams()
    if params.max_points < 2:
        raise ValueError(f"max_points must be >= 2, got {params.max_points}")

    n = len(samples)
    if n <= params.max_points:
        return list(samples)

    stride = n // params.max_points
    fill_target = params.max_points * params.fill_ratio

    kept = [samples[0]]
    last = samples[0]
    last_index = 0

    for i in range(1, n - 1):
        if len(kept) >= params.max_points - 1:
            break

        current = samples[i]
        distance = distance_meters(last.point, current.point)
        elapsed = (current.timestamp - last.timestamp).total_seconds()

        keep = (
            (params.preserve_stops and is_stop(samples, i, params.stop_speed))
            or distance > params.min_distance_m
            or elapsed > params.min_time_s
            or (len(kept) < fill_target and i - last_index > stride)
        )
        if keep:
            kept.append(current)
            last = current
            last_index = i

    kept.append(samples[-1])

    logger.info("Track simplified: %d -> %d points (%.1f%% retained)",
                n, len(kept), 100.0 * len(kept) / n)
    return kept


def simplify_for_display(
    samples: Sequence[PositionSample],
    level: OptimizationLevel = OptimizationLevel.AUTO,
) -> list[PositionSample]:
    """Simplify with thresholds chosen from the level and track size."""
    params = select_params(len(samples), level)
    if params is None:
        return list(samples)
    return simplify_track(samples, params)
