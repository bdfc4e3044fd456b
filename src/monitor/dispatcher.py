"""Alert delivery with retry.

The detector has already advanced its state by the time an alert gets
here; a failed delivery only loses the outward notification. Retries
happen in this module and nowhere else.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Protocol

from monitor.detector import ViolationAlert

logger = logging.getLogger(__name__)


class AlertSink(Protocol):
    """Destination for alerts (item-store API, notifier, ...)."""

    async def publish(self, alert: ViolationAlert, vehicle_id: Any = None) -> bool: ...


class EventSink(Protocol):
    """Destination for the compact geofence event log."""

    async def publish_event(self, alert: ViolationAlert, vehicle_id: Any = None) -> bool: ...


@dataclass(slots=True)
class DispatchStats:
    """Delivery statistics."""
    published: int = 0
    failed: int = 0
    retries: int = 0
    events_published: int = 0
    events_failed: int = 0
    evicted: int = 0         # undelivered alerts pushed out of a full queue


class AlertDispatcher:
    """Forwards alerts to a sink, retrying failed deliveries.

    Usage:
        dispatcher = AlertDispatcher(client, max_retries=3)
        ok = await dispatcher.dispatch(alert, vehicle_id=12)
    """

    def __init__(
        self,
        sink: AlertSink,
        event_sink: EventSink | None = None,
        max_retries: int = 3,
        retry_delay_s: float = 1.0,
        max_undelivered: int = 500,
    ):
        self._sink = sink
        self._event_sink = event_sink
        self._max_retries = max_retries
        self._retry_delay = retry_delay_s
        self._stats = DispatchStats()
        self._undelivered: deque[tuple[ViolationAlert, Any]] = deque(maxlen=max_undelivered)

    @property
    def stats(self) -> DispatchStats:
        return self._stats

    @property
    def undelivered(self) -> list[ViolationAlert]:
        """Alerts that exhausted their retries."""
        return [alert for alert, _ in self._undelivered]

    async def _attempt(self, publish, alert: ViolationAlert, vehicle_id: Any, what: str) -> bool:
        for attempt in range(self._max_retries + 1):
            try:
                if await publish(alert, vehicle_id):
                    return True
                logger.warning("%s publish rejected (attempt %d/%d) for %s",
                               what, attempt + 1, self._max_retries + 1, alert.vehicle_key)
            except Exception as e:
                logger.warning("%s publish failed (attempt %d/%d) for %s: %s",
                               what, attempt + 1, self._max_retries + 1, alert.vehicle_key, e)
            if attempt < self._max_retries:
                self._stats.retries += 1
                await asyncio.sleep(self._retry_delay)
        return False

    async def dispatch(self, alert: ViolationAlert, vehicle_id: Any = None) -> bool:
        """Deliver one alert. Returns True if the alert sink accepted it."""
        ok = await self._attempt(self._sink.publish, alert, vehicle_id, "Alert")
        if ok:
            self._stats.published += 1
        else:
            self._stats.failed += 1
            self._queue(alert, vehicle_id)
            logger.error("Alert for %s dropped after %d attempts: %s",
                         alert.vehicle_key, self._max_retries + 1, alert.message)

        if self._event_sink is not None:
            if await self._attempt(self._event_sink.publish_event, alert, vehicle_id, "Event"):
                self._stats.events_published += 1
            else:
                self._stats.events_failed += 1

        return ok

    def _queue(self, alert: ViolationAlert, vehicle_id: Any) -> None:
        if self._undelivered and len(self._undelivered) == self._undelivered.maxlen:
            evicted, _ = self._undelivered[0]
            self._stats.evicted += 1
            logger.error("Undelivered queue full, discarding alert for %s at %s",
                         evicted.vehicle_key, evicted.timestamp)
        self._undelivered.append((alert, vehicle_id))

    async def redeliver(self) -> int:
        """Give queued alerts one more attempt each, oldest first.

        No retries or delays here. The first failure ends the pass and
        leaves the rest queued for the next call, so a sink that is
        still down costs one request per poll cycle.
        Returns the number delivered this time.
        """
        delivered = 0
        while self._undelivered:
            alert, vehicle_id = self._undelivered[0]
            try:
                ok = await self._sink.publish(alert, vehicle_id)
            except Exception as e:
                logger.warning("Redelivery failed for %s: %s", alert.vehicle_key, e)
                ok = False
            if not ok:
                break
            self._undelivered.popleft()
            self._stats.published += 1
            self._stats.failed -= 1
            delivered += 1
        if delivered:
            logger.info("Redelivered %d alerts, %d still queued", delivered, len(self._undelivered))
        return delivered

    def summary(self) -> str:
        s = self._stats
        return (
            f"Dispatcher: {s.published} published, {s.failed} failed, "
            f"{s.retries} retries, {s.events_published} events"
        )
