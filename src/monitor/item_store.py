"""Async client for the fleet item-store REST API.

Implements the collaborators the detector needs: latest and ranged
position samples, geofence lookup, the vehicle -> geofence assignment,
and alert / geofence-event publishing. Collections follow the
``/items/<collection>`` convention with ``{"data": ...}`` envelopes.

Read calls raise FetchError on timeouts, transport errors and non-2xx
answers; callers decide what a failed fetch means. Publish calls
report failure as False so the dispatcher can retry.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable

import aiohttp

from monitor.config import ApiConfig
from monitor.detector import ViolationAlert
from monitor.geofence import Region, region_from_record
from shared.samples import PositionSample, sample_from_record

logger = logging.getLogger(__name__)

VEHICLES = "vehicle"
SAMPLES = "vehicle_datas"
GEOFENCES = "geofence"
ALERTS = "alerts"
GEOFENCE_EVENTS = "geofence_events"


class FetchError(RuntimeError):
    """A read from the item store failed (transport, timeout, HTTP status)."""


@dataclass(frozen=True, slots=True)
class VehicleAssignment:
    """A vehicle and the geofence it is assigned to, if any."""
    vehicle_id: Any
    name: str
    vehicle_key: str            # gps_id, the key samples are filed under
    region_id: int | str | None = None


def _iso(dt: datetime) -> str:
    return dt.isoformat()


def assignment_from_record(record: dict[str, Any]) -> VehicleAssignment | None:
    key = record.get("gps_id")
    if key is None or not str(key).strip():
        return None
    region_id = record.get("geofence_id")
    if isinstance(region_id, dict):
        # expanded relation
        region_id = region_id.get("geofence_id")
    return VehicleAssignment(
        vehicle_id=record.get("vehicle_id"),
        name=str(record.get("name") or f"Vehicle {record.get('vehicle_id')}"),
        vehicle_key=str(key).strip(),
        region_id=region_id if region_id not in ("", None) else None,
    )


class ItemStoreClient:
    """Item-store API client.

    Usage:
        async with ItemStoreClient(config.api) as client:
            samples = await client.fetch_latest_samples(["GPS-01"])
    """

    def __init__(self, config: ApiConfig, session: aiohttp.ClientSession | None = None):
        self._config = config
        self._base = config.base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> ItemStoreClient:
        if self._session is None:
            headers = {"Content-Type": "application/json"}
            if self._config.token:
                headers["Authorization"] = f"Bearer {self._config.token}"
            self._session = aiohttp.ClientSession(
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self._config.timeout_s),
            )
            self._owns_session = True
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    def _url(self, collection: str, item_id: Any = None) -> str:
        url = f"{self._base}/items/{collection}"
        return url if item_id is None else f"{url}/{item_id}"

    async def _get(self, url: str, params: dict[str, Any] | None = None) -> Any:
        if self._session is None:
            raise FetchError("Client is not open")
        try:
            async with self._session.get(url, params=params) as resp:
                if resp.status == 404:
                    return None
                if resp.status >= 300:
                    body = await resp.text()
                    raise FetchError(f"GET {url} -> HTTP {resp.status}: {body[:200]}")
                payload = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise FetchError(f"GET {url} failed: {e}") from e
        if isinstance(payload, dict) and "data" in payload:
            return payload["data"]
        return payload

    async def _get_items(self, collection: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        """Fetch all matching items, following pages when page_size > 0."""
        page_size = self._config.page_size
        url = self._url(collection)
        if page_size <= 0:
            data = await self._get(url, {**params, "limit": -1})
            return list(data or [])

        items: list[dict[str, Any]] = []
        page = 1
        while True:
            data = list(await self._get(url, {**params, "limit": page_size, "page": page}) or [])
            items.extend(data)
            if len(data) < page_size:
                return items
            page += 1

    async def fetch_vehicles(self) -> list[VehicleAssignment]:
        records = await self._get_items(VEHICLES, {})
        vehicles = []
        for record in records:
            assignment = assignment_from_record(record)
            if assignment is not None:
                vehicles.append(assignment)
        return vehicles

    async def fetch_latest_samples(
        self,
        vehicle_keys: Iterable[str],
        since: datetime | None = None,
    ) -> list[PositionSample]:
        """Most recent samples for the given vehicles, newest first.

        One request, capped at ``latest_limit`` rows and optionally
        restricted to samples at or after ``since``. Paging is not
        followed: only the newest rows matter here.
        """
        keys = [k for k in vehicle_keys if k]
        if not keys:
            return []
        params: dict[str, Any] = {
            "filter[gps_id][_in]": ",".join(keys),
            "sort": "-timestamp",
            "limit": self._config.latest_limit,
        }
        if since is not None:
            params["filter[timestamp][_gte]"] = _iso(since)
        records = list(await self._get(self._url(SAMPLES), params) or [])
        return [sample_from_record(r) for r in records]

    async def fetch_sample_range(
        self,
        vehicle_key: str,
        start: datetime,
        end: datetime,
    ) -> list[PositionSample]:
        """All samples of one vehicle between start and end, oldest first."""
        params = {
            "filter[gps_id][_eq]": vehicle_key,
            "filter[timestamp][_between]": f"{_iso(start)},{_iso(end)}",
            "sort": "timestamp",
        }
        records = await self._get_items(SAMPLES, params)
        logger.info("Fetched %d samples for %s between %s and %s",
                    len(records), vehicle_key, start, end)
        return [sample_from_record(r) for r in records]

    async def fetch_active_region(self, region_id: int | str) -> Region | None:
        """Fetch and re-validate a geofence. None if missing, invalid or inactive."""
        record = await self._get(self._url(GEOFENCES, region_id))
        if not isinstance(record, dict):
            return None
        region = region_from_record(record)
        if region is None or not region.is_active:
            return None
        return region

    async def _post(self, collection: str, payload: dict[str, Any]) -> bool:
        if self._session is None:
            logger.error("Cannot POST to %s: client is not open", collection)
            return False
        url = self._url(collection)
        try:
            async with self._session.post(url, json=payload) as resp:
                if resp.status < 300:
                    return True
                body = await resp.text()
                logger.warning("POST %s -> HTTP %d: %s", url, resp.status, body[:200])
                return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning("POST %s failed: %s", url, e)
            return False

    async def publish(self, alert: ViolationAlert, vehicle_id: Any = None) -> bool:
        return await self._post(ALERTS, alert.to_alert_record(vehicle_id))

    async def publish_event(self, alert: ViolationAlert, vehicle_id: Any = None) -> bool:
        return await self._post(GEOFENCE_EVENTS, alert.to_event_record(vehicle_id))
