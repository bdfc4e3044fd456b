"""Geofence regions assigned to vehicles.

A region is either a circle (center + radius in meters) or a polygon
ring. Both variants are plain frozen dataclasses and ``contains``
dispatches on the geometry type. Regions coming from the item store
are re-validated every time they are fetched; anything with
non-finite coordinates, a non-positive radius or fewer than three
distinct polygon vertices is rejected and never reaches containment.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from shared.geo import GeoPoint, point_in_circle, point_in_polygon

logger = logging.getLogger(__name__)


class RuleType(Enum):
    FORBIDDEN = "FORBIDDEN"
    STAY_IN = "STAY_IN"
    STANDARD = "STANDARD"


class RegionStatus(Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


@dataclass(frozen=True, slots=True)
class CircleGeometry:
    """Circle defined by center + radius."""
    center: GeoPoint
    radius_m: float


@dataclass(frozen=True, slots=True)
class PolygonGeometry:
    """Polygon as an open ring of vertices (closing point stripped)."""
    ring: tuple[GeoPoint, ...]


Geometry = Union[CircleGeometry, PolygonGeometry]


@dataclass(frozen=True, slots=True)
class Region:
    """A named geofence with its rule type."""
    id: int | str
    name: str
    rule_type: RuleType
    geometry: Geometry
    status: RegionStatus = RegionStatus.ACTIVE

    @property
    def kind(self) -> str:
        return "circle" if isinstance(self.geometry, CircleGeometry) else "polygon"

    @property
    def is_active(self) -> bool:
        return self.status is RegionStatus.ACTIVE


def _finite(p: GeoPoint) -> bool:
    return isinstance(p, GeoPoint) and p.is_finite


def validate_geometry(geometry: Geometry) -> Geometry | None:
    """Return a normalized geometry, or None if it is unusable.

    Polygons lose a duplicated closing vertex; open and closed rings
    normalize to the same value.
    """
    if isinstance(geometry, CircleGeometry):
        r = geometry.radius_m
        if not _finite(geometry.center):
            return None
        if not isinstance(r, (int, float)) or not math.isfinite(r) or r <= 0:
            return None
        return geometry

    if isinstance(geometry, PolygonGeometry):
        ring = list(geometry.ring)
        if not all(_finite(p) for p in ring):
            return None
        if len(ring) > 1 and ring[0] == ring[-1]:
            ring = ring[:-1]
        if len(set(ring)) < 3:
            return None
        return PolygonGeometry(ring=tuple(ring))

    return None


def validate_region(region: Region | None) -> Region | None:
    """Return the region with normalized geometry, or None if invalid."""
    if region is None:
        return None
    geometry = validate_geometry(region.geometry)
    if geometry is None:
        logger.warning("Rejecting region %s (%s): invalid %s geometry",
                       region.id, region.name, region.kind)
        return None
    if geometry is region.geometry:
        return region
    return Region(
        id=region.id,
        name=region.name,
        rule_type=region.rule_type,
        geometry=geometry,
        status=region.status,
    )


def contains(point: GeoPoint, region: Region) -> bool:
    """Containment test dispatched on the region's geometry variant."""
    geometry = region.geometry
    if isinstance(geometry, CircleGeometry):
        return point_in_circle(point, geometry.center, geometry.radius_m)
    if isinstance(geometry, PolygonGeometry):
        return point_in_polygon(point, geometry.ring)
    return False


def _parse_pair(pair: Any) -> GeoPoint | None:
    if not isinstance(pair, (list, tuple)) or len(pair) < 2:
        return None
    try:
        return GeoPoint.from_lng_lat(pair)
    except (TypeError, ValueError):
        return None


def region_from_record(record: dict[str, Any]) -> Region | None:
    """Build and validate a region from a ``geofence`` item-store record.

    Expected shape::

        {"geofence_id": 7, "name": "Depot", "type": "circle",
         "rule_type": "FORBIDDEN", "status": "active",
         "definition": {"center": [lng, lat], "radius": 500}}

    Polygons carry ``definition.coordinates`` as a GeoJSON polygon
    (list of rings, the first one is used). ``definition`` may also be
    a JSON string. Returns None for anything malformed.
    """
    try:
        rule_type = RuleType(str(record.get("rule_type", "STANDARD")).upper())
        status = RegionStatus(str(record.get("status", "active")).lower())
    except ValueError:
        logger.warning("Rejecting geofence %s: unknown rule type or status",
                       record.get("geofence_id"))
        return None

    definition = record.get("definition")
    if isinstance(definition, str):
        try:
            definition = json.loads(definition)
        except ValueError:
            definition = None
    if not isinstance(definition, dict):
        logger.warning("Rejecting geofence %s: missing definition", record.get("geofence_id"))
        return None

    kind = str(record.get("type", "")).lower()
    geometry: Geometry | None = None
    if kind == "circle":
        center = _parse_pair(definition.get("center"))
        try:
            radius = float(definition.get("radius"))
        except (TypeError, ValueError):
            radius = float("nan")
        if center is not None:
            geometry = CircleGeometry(center=center, radius_m=radius)
    elif kind == "polygon":
        rings = definition.get("coordinates")
        if isinstance(rings, list) and rings and isinstance(rings[0], list):
            points = [_parse_pair(p) for p in rings[0]]
            if all(p is not None for p in points):
                geometry = PolygonGeometry(ring=tuple(points))

    if geometry is None:
        logger.warning("Rejecting geofence %s: unreadable %r geometry",
                       record.get("geofence_id"), kind)
        return None

    return validate_region(Region(
        id=record.get("geofence_id"),
        name=str(record.get("name") or f"Geofence {record.get('geofence_id')}"),
        rule_type=rule_type,
        geometry=geometry,
        status=status,
    ))
