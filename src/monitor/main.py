"""Polling loop for live geofence monitoring.

Every poll interval:
- read vehicle -> geofence assignments
- fetch the latest samples for assigned vehicles
- fetch and re-validate each assigned geofence
- run each online vehicle's newest sample through the detector
- hand resulting alerts to the dispatcher
"""

from __future__ import annotations

import asyncio
import logging
import signal
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Protocol

from monitor.config import MonitorConfig, load_config
from monitor.detector import ViolationAlert, ViolationDetector
from monitor.dispatcher import AlertDispatcher
from monitor.geofence import Region
from monitor.health import MonitorHealth
from monitor.item_store import FetchError, ItemStoreClient, VehicleAssignment
from shared.samples import PositionSample, latest_per_vehicle

logger = logging.getLogger(__name__)


class FleetSource(Protocol):
    """Read side of the item store used by the poll loop."""

    async def fetch_vehicles(self) -> list[VehicleAssignment]: ...

    async def fetch_latest_samples(
        self, vehicle_keys: Iterable[str], since: datetime | None = None,
    ) -> list[PositionSample]: ...

    async def fetch_active_region(self, region_id: Any) -> Region | None: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MonitorService:
    """One detector, one dispatcher, driven by a periodic poll."""

    def __init__(
        self,
        source: FleetSource,
        dispatcher: AlertDispatcher,
        config: MonitorConfig | None = None,
        detector: ViolationDetector | None = None,
        health: MonitorHealth | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._config = config or MonitorConfig()
        self._source = source
        self._dispatcher = dispatcher
        self._detector = detector or ViolationDetector(
            cooldown_s=self._config.detector.cooldown_s,
        )
        self._health = health or MonitorHealth(
            max_cycle_ms=self._config.poll_interval_s * 1000,
        )
        self._clock = clock
        self._running = False

    @property
    def detector(self) -> ViolationDetector:
        return self._detector

    @property
    def health(self) -> MonitorHealth:
        return self._health

    def is_online(self, sample: PositionSample, now: datetime) -> bool:
        age_s = (now - sample.timestamp).total_seconds()
        return age_s <= self._config.detector.online_window_s

    async def run_cycle(self) -> list[ViolationAlert]:
        """Poll once and return the alerts that were emitted.

        FetchError propagates after being recorded; a failed fetch is
        never read as a containment signal.
        """
        t0 = time.monotonic()
        now = self._clock()
        try:
            vehicles = await self._source.fetch_vehicles()
            assigned = [v for v in vehicles if v.region_id is not None]
            since = now - timedelta(seconds=self._config.detector.online_window_s)
            samples = await self._source.fetch_latest_samples(
                (v.vehicle_key for v in assigned), since=since,
            )
            regions: dict[Any, Region | None] = {}
            for region_id in {v.region_id for v in assigned}:
                regions[region_id] = await self._source.fetch_active_region(region_id)
        except FetchError:
            self._health.record_cycle(False, (time.monotonic() - t0) * 1000)
            raise

        latest = latest_per_vehicle(samples)
        emitted: list[tuple[ViolationAlert, Any]] = []
        for vehicle in assigned:
            sample = latest.get(vehicle.vehicle_key)
            if sample is None:
                continue
            if not self.is_online(sample, now):
                logger.debug("Vehicle %s offline (last sample %s)", vehicle.vehicle_key, sample.timestamp)
                continue
            alert = self._detector.evaluate(
                sample, regions.get(vehicle.region_id), vehicle_name=vehicle.name,
            )
            if alert is not None:
                emitted.append((alert, vehicle.vehicle_id))

        dropped = 0
        for alert, vehicle_id in emitted:
            if not await self._dispatcher.dispatch(alert, vehicle_id):
                dropped += 1

        self._health.record_cycle(
            True,
            (time.monotonic() - t0) * 1000,
            samples=len(latest),
            alerts=len(emitted),
            alerts_dropped=dropped,
        )
        return [alert for alert, _ in emitted]

    async def run(self, max_cycles: int | None = None) -> None:
        """Poll until stop() is called (or max_cycles have run)."""
        self._running = True
        interval = self._config.poll_interval_s
        cycles = 0
        logger.info("Monitor running, polling every %.0fs", interval)
        while self._running:
            t0 = time.monotonic()
            if self._dispatcher.undelivered:
                await self._dispatcher.redeliver()
            try:
                alerts = await self.run_cycle()
                if alerts:
                    logger.info("Cycle %d: %d alerts", cycles + 1, len(alerts))
            except FetchError as e:
                logger.warning("Cycle %d: no fresh data (%s)", cycles + 1, e)

            cycles += 1
            if cycles % 20 == 0:
                self._health.log_status()
            if max_cycles is not None and cycles >= max_cycles:
                break

            remaining = interval - (time.monotonic() - t0)
            if remaining > 0:
                await asyncio.sleep(remaining)
        self._running = False

    def stop(self) -> None:
        logger.info("Shutdown requested")
        self._running = False


async def _serve(config: MonitorConfig) -> None:
    async with ItemStoreClient(config.api) as client:
        dispatcher = AlertDispatcher(
            client,
            event_sink=client if config.dispatch.publish_events else None,
            max_retries=config.dispatch.max_retries,
            retry_delay_s=config.dispatch.retry_delay_s,
            max_undelivered=config.dispatch.max_undelivered,
        )
        service = MonitorService(client, dispatcher, config)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, service.stop)

        try:
            await service.run()
        finally:
            service.health.log_status()
            logger.info("Monitor shutdown. %s", dispatcher.summary())


def main() -> None:
    """Entry point for the fleet geofence monitor."""
    config = load_config()

    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    logger.info("Item store: %s", config.api.base_url)
    asyncio.run(_serve(config))


if __name__ == "__main__":
    main()
