"""Great-circle distance and point-in-region tests.

Coordinates are WGS84 degrees. Region rings are handled directly in
longitude/latitude space without projection, which is fine for
city-block to few-km geofences but not metrically exact for polygons
spanning several degrees of latitude.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

import numpy as np

EARTH_RADIUS_M = 6_371_000.0
EARTH_RADIUS_KM = 6371.0


@dataclass(frozen=True, slots=True)
class GeoPoint:
    """WGS84 coordinate."""
    lat: float  # degrees, [-90, 90]
    lon: float  # degrees, [-180, 180]

    @property
    def is_finite(self) -> bool:
        return math.isfinite(self.lat) and math.isfinite(self.lon)

    @classmethod
    def from_lng_lat(cls, pair: Sequence[float]) -> GeoPoint:
        """Build from a GeoJSON-ordered ``[lng, lat]`` pair."""
        return cls(lat=float(pair[1]), lon=float(pair[0]))


def haversine_m(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance between two GPS points in meters."""
    lat1, lat2 = math.radians(a.lat), math.radians(b.lat)
    dlat = lat2 - lat1
    dlon = math.radians(b.lon - a.lon)
    h = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    )
    return 2 * EARTH_RADIUS_M * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def haversine_km(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance between two GPS points in kilometers."""
    return haversine_m(a, b) / 1000.0


def distance_meters(a: GeoPoint, b: GeoPoint) -> float:
    """Haversine distance in meters, 0.0 when either point is not finite.

    Safe to accumulate in statistics. Containment checks must validate
    their input first instead of relying on the 0.0 fallback.
    """
    if not (a.is_finite and b.is_finite):
        return 0.0
    d = haversine_m(a, b)
    return d if math.isfinite(d) else 0.0


def haversine_km_array(lat: np.ndarray, lon: np.ndarray) -> np.ndarray:
    """Distances in km between consecutive points of a track.

    Returns an array of length ``len(lat) - 1``. Segments touching a
    non-finite coordinate come out as NaN.
    """
    lat_r = np.radians(np.asarray(lat, dtype=np.float64))
    lon_r = np.radians(np.asarray(lon, dtype=np.float64))
    if lat_r.size < 2:
        return np.zeros(0, dtype=np.float64)
    dlat = np.diff(lat_r)
    dlon = np.diff(lon_r)
    h = (
        np.sin(dlat / 2) ** 2
        + np.cos(lat_r[:-1]) * np.cos(lat_r[1:]) * np.sin(dlon / 2) ** 2
    )
    h = np.clip(h, 0.0, 1.0)
    return 2 * EARTH_RADIUS_KM * np.arctan2(np.sqrt(h), np.sqrt(1 - h))


def point_in_circle(point: GeoPoint, center: GeoPoint, radius_m: float) -> bool:
    """True if point is inside or on the boundary of the circle.

    Malformed input yields False, never an exception.
    """
    try:
        if not (point.is_finite and center.is_finite):
            return False
        if not (math.isfinite(radius_m) and radius_m > 0):
            return False
        return haversine_m(point, center) <= radius_m
    except (TypeError, AttributeError):
        return False


def point_in_polygon(point: GeoPoint, ring: Sequence[GeoPoint]) -> bool:
    """Even-odd ray casting test on raw lon/lat degrees.

    Works with open and closed rings. A ring with fewer than three
    vertices is a caller bug: it fails the assertion when assertions are
    enabled and returns False otherwise.
    """
    assert len(ring) >= 3, f"polygon ring needs at least 3 vertices, got {len(ring)}"
    if len(ring) < 3 or not point.is_finite:
        return False

    x, y = point.lon, point.lat
    inside = False
    j = len(ring) - 1
    for i in range(len(ring)):
        xi, yi = ring[i].lon, ring[i].lat
        xj, yj = ring[j].lon, ring[j].lat
        if (yi > y) != (yj > y) and x < (xj - xi) * (y - yi) / (yj - yi) + xi:
            inside = not inside
        j = i
    return inside

