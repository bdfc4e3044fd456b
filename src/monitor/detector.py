"""Per-vehicle geofence violation detection.

Each vehicle is a two-state machine (outside / inside its assigned
region) driven by one containment test per incoming sample. A
transition that the region's rule type considers reportable produces
a ViolationAlert, unless the same (vehicle, transition) pair already
alerted within the cooldown window. State advances on every accepted
sample whether or not an alert goes out.

Usage:
    detector = ViolationDetector(cooldown_s=300)
    alert = detector.evaluate(sample, region, vehicle_name="Truck 7")
    if alert is not None:
        dispatcher.dispatch(alert)
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from monitor.cooldown import AlertCooldown
from monitor.geofence import Region, RuleType, contains, validate_region
from monitor.rules import (
    Severity,
    Transition,
    alert_type,
    classify_transition,
    severity_for,
)
from shared.geo import GeoPoint
from shared.samples import PositionSample

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class VehicleHistory:
    """Ephemeral detection state for one vehicle."""
    vehicle_key: str
    region_id: int | str | None = None
    previous_position: GeoPoint | None = None
    current_position: GeoPoint | None = None
    was_inside: bool = False
    last_evaluated: datetime | None = None


@dataclass(frozen=True, slots=True)
class ViolationAlert:
    """A reportable geofence transition."""
    vehicle_key: str
    vehicle_name: str
    region_id: int | str
    region_name: str
    rule_triggered: RuleType
    transition: Transition
    severity: Severity
    message: str
    location: str       # "lat, lon" with 4 decimals
    position: GeoPoint
    timestamp: datetime

    @property
    def alert_type(self) -> str:
        return alert_type(self.rule_triggered, self.transition)

    def to_alert_record(self, vehicle_id: Any = None) -> dict[str, Any]:
        """Payload for the item store's ``alerts`` collection."""
        return {
            "vehicle_id": vehicle_id if vehicle_id is not None else self.vehicle_key,
            "alert_type": self.alert_type,
            "alert_message": self.message,
            "lokasi": self.location,
            "timestamp": self.timestamp.isoformat(),
        }

    def to_event_record(self, vehicle_id: Any = None) -> dict[str, Any]:
        """Payload for the item store's ``geofence_events`` collection."""
        return {
            "vehicle_id": vehicle_id if vehicle_id is not None else self.vehicle_key,
            "geofence_id": self.region_id,
            "event": self.alert_type,
            "event_timestamp": self.timestamp.isoformat(),
        }


@dataclass(slots=True)
class DetectorStats:
    """Detector counters."""
    evaluated: int = 0
    skipped_invalid: int = 0
    skipped_unassigned: int = 0
    skipped_stale: int = 0
    reseeded: int = 0
    alerts: int = 0
    suppressed: int = 0


def format_location(point: GeoPoint) -> str:
    return f"{point.lat:.4f}, {point.lon:.4f}"


def format_message(
    vehicle_name: str,
    region: Region,
    transition: Transition,
) -> str:
    prefix = "VIOLATION" if severity_for(region.rule_type) is Severity.VIOLATION else "NOTICE"
    verb = "entered" if transition is Transition.ENTER else "left"
    return (
        f"{prefix}: vehicle {vehicle_name} {verb} geofence {region.name} "
        f"({region.rule_type.value})"
    )


class ViolationDetector:
    """Tracks inside/outside state per vehicle and emits alerts.

    State lives in this instance only, so tests and sharded workers can
    each own one. Updates for a vehicle run under that vehicle's lock;
    different vehicles never contend. The vehicle table itself and the
    counters have their own short-held locks, so evaluate, forget_region
    and clear may run from different threads.
    """

    def __init__(self, cooldown_s: float = 300.0):
        self._cooldown = AlertCooldown(window_s=cooldown_s)
        self._histories: dict[str, VehicleHistory] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()   # guards _locks and _histories membership
        self._stats_lock = threading.Lock()
        self._stats = DetectorStats()

    @property
    def stats(self) -> DetectorStats:
        return self._stats

    @property
    def cooldown(self) -> AlertCooldown:
        return self._cooldown

    @property
    def tracked_vehicles(self) -> list[str]:
        with self._locks_guard:
            return list(self._histories)

    def _count(self, name: str, n: int = 1) -> None:
        with self._stats_lock:
            setattr(self._stats, name, getattr(self._stats, name) + n)

    def _lock_for(self, vehicle_key: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(vehicle_key)
            if lock is None:
                lock = self._locks[vehicle_key] = threading.Lock()
            return lock

    def evaluate(
        self,
        sample: PositionSample,
        region: Region | None,
        vehicle_name: str | None = None,
    ) -> ViolationAlert | None:
        """Process one sample against the vehicle's assigned region.

        Returns the alert to publish, or None. Invalid samples, missing
        or inactive regions, invalid geometry and samples older than
        the last evaluated one leave state untouched.
        """
        if not sample.is_valid or not sample.vehicle_key:
            self._count("skipped_invalid")
            logger.debug("Skipping invalid sample for %r", sample.vehicle_key)
            return None

        if region is None or not region.is_active:
            self._count("skipped_unassigned")
            return None

        region = validate_region(region)
        if region is None:
            self._count("skipped_unassigned")
            return None

        key = sample.vehicle_key
        point = sample.point
        with self._lock_for(key):
            history = self._histories.get(key)
            if history is not None and history.last_evaluated is not None:
                late = sample.timestamp < history.last_evaluated
                repeat = (
                    sample.timestamp == history.last_evaluated
                    and point == history.current_position
                    and history.region_id == region.id
                )
                if late or repeat:
                    self._count("skipped_stale")
                    logger.debug("Dropping %s sample for %s at %s",
                                 "late" if late else "repeated", key, sample.timestamp)
                    return None

            is_inside = contains(point, region)

            if history is None:
                history = VehicleHistory(vehicle_key=key, region_id=region.id)
                with self._locks_guard:
                    self._histories[key] = history
                was_inside = False
            elif history.region_id != region.id:
                # Containment against the old region means nothing here.
                logger.info("Vehicle %s reassigned %s -> %s, re-seeding state",
                            key, history.region_id, region.id)
                history.region_id = region.id
                history.previous_position = None
                history.current_position = None
                was_inside = is_inside
                self._count("reseeded")
            else:
                was_inside = history.was_inside

            transition = classify_transition(region.rule_type, was_inside, is_inside)
            alert = None
            if transition is not None:
                if self._cooldown.allow((key, transition), sample.timestamp):
                    alert = self._build_alert(sample, point, region, transition, vehicle_name)
                    self._count("alerts")
                    logger.info("%s", alert.message)
                else:
                    self._count("suppressed")
                    logger.debug("Suppressed %s %s for %s (cooldown)",
                                 region.rule_type.value, transition.value, key)

            history.was_inside = is_inside
            history.previous_position = history.current_position
            history.current_position = point
            history.last_evaluated = sample.timestamp
            self._count("evaluated")

        return alert

    def _build_alert(
        self,
        sample: PositionSample,
        point: GeoPoint,
        region: Region,
        transition: Transition,
        vehicle_name: str | None,
    ) -> ViolationAlert:
        name = vehicle_name or sample.vehicle_key
        return ViolationAlert(
            vehicle_key=sample.vehicle_key,
            vehicle_name=name,
            region_id=region.id,
            region_name=region.name,
            rule_triggered=region.rule_type,
            transition=transition,
            severity=severity_for(region.rule_type),
            message=format_message(name, region, transition),
            location=format_location(point),
            position=point,
            timestamp=sample.timestamp,
        )

    def status(self, vehicle_key: str) -> VehicleHistory | None:
        """Copy of a vehicle's current history, for inspection."""
        with self._lock_for(vehicle_key):
            history = self._histories.get(vehicle_key)
            return dataclasses.replace(history) if history is not None else None

    def forget_region(self, region_id: int | str) -> int:
        """Detach histories from a deleted region.

        Affected vehicles re-seed on their next sample. Returns how
        many histories were touched.
        """
        with self._locks_guard:
            snapshot = list(self._histories.items())
        count = 0
        for key, history in snapshot:
            with self._lock_for(key):
                if history.region_id == region_id:
                    history.region_id = None
                    count += 1
        if count:
            logger.info("Region %s removed, %d vehicle histories detached", region_id, count)
        return count

    def reset_vehicle(self, vehicle_key: str) -> None:
        with self._lock_for(vehicle_key), self._locks_guard:
            self._histories.pop(vehicle_key, None)
        logger.info("State reset for vehicle %s", vehicle_key)

    def clear(self) -> None:
        """Drop all vehicle state and cooldowns."""
        with self._locks_guard:
            keys = list(self._histories)
        for key in keys:
            with self._lock_for(key), self._locks_guard:
                self._histories.pop(key, None)
        self._cooldown.reset()
        with self._stats_lock:
            self._stats = DetectorStats()
