"""Position samples as delivered by the telemetry store.

The item store serves coordinates as strings and timestamps as ISO-8601
text; any of them may be missing or garbage. Parsing never raises:
unusable fields become None and the sample is reported invalid.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable

from shared.geo import GeoPoint

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PositionSample:
    """One timestamped GPS reading for a vehicle."""
    vehicle_key: str
    timestamp: datetime | None
    latitude: float | None
    longitude: float | None
    speed: float | None = None  # km/h as reported by the tracker

    @property
    def is_valid(self) -> bool:
        """True if the sample can take part in geometry operations."""
        return (
            self.timestamp is not None
            and self.latitude is not None
            and self.longitude is not None
            and math.isfinite(self.latitude)
            and math.isfinite(self.longitude)
        )

    @property
    def point(self) -> GeoPoint | None:
        if self.latitude is None or self.longitude is None:
            return None
        return GeoPoint(lat=self.latitude, lon=self.longitude)

    @property
    def has_speed(self) -> bool:
        return self.speed is not None and math.isfinite(self.speed)


def _to_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return result if math.isfinite(result) else None


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string (or pass through a datetime).

    Naive values are taken as UTC so that comparisons never mix aware
    and naive datetimes.
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def sample_from_record(record: dict[str, Any], key_field: str = "gps_id") -> PositionSample:
    """Build a sample from a ``vehicle_datas`` item-store record."""
    key = record.get(key_field)
    return PositionSample(
        vehicle_key=str(key).strip() if key is not None else "",
        timestamp=parse_timestamp(record.get("timestamp")),
        latitude=_to_float(record.get("latitude")),
        longitude=_to_float(record.get("longitude")),
        speed=_to_float(record.get("speed")),
    )


def prepare_track(samples: Iterable[PositionSample]) -> list[PositionSample]:
    """Drop invalid samples and sort the rest chronologically.

    The sort is stable, so samples sharing a timestamp keep their
    delivery order.
    """
    valid = []
    skipped = 0
    for s in samples:
        if s.is_valid:
            valid.append(s)
        else:
            skipped += 1
    if skipped:
        logger.debug("Dropped %d invalid samples", skipped)
    valid.sort(key=lambda s: s.timestamp)
    return valid


def latest_per_vehicle(samples: Iterable[PositionSample]) -> dict[str, PositionSample]:
    """Newest valid sample for each vehicle key."""
    latest: dict[str, PositionSample] = {}
    for s in samples:
        if not s.is_valid or not s.vehicle_key:
            continue
        current = latest.get(s.vehicle_key)
        if current is None or s.timestamp > current.timestamp:
            latest[s.vehicle_key] = s
    return latest
