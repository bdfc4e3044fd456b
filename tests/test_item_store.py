"""Tests for the item-store client, using a fake aiohttp session."""

import asyncio
from datetime import datetime, timedelta, timezone

import aiohttp
import pytest

from monitor.config import ApiConfig
from monitor.detector import ViolationAlert
from monitor.geofence import RuleType
from monitor.item_store import (
    ALERTS,
    GEOFENCE_EVENTS,
    FetchError,
    ItemStoreClient,
    assignment_from_record,
)
from monitor.rules import Severity, Transition
from shared.geo import GeoPoint

T0 = datetime(2025, 6, 1, 8, 0, tzinfo=timezone.utc)


class _FakeResponse:
    def __init__(self, status=200, payload=None, error=None):
        self.status = status
        self._payload = payload
        self._error = error

    async def __aenter__(self):
        if self._error is not None:
            raise self._error
        return self

    async def __aexit__(self, *exc):
        return False

    async def json(self):
        return self._payload

    async def text(self):
        return str(self._payload)


class _FakeSession:
    """Serves queued responses and records requests."""
    def __init__(self, responses=()):
        self.responses = list(responses)
        self.requests = []

    def _next(self):
        return self.responses.pop(0) if self.responses else _FakeResponse(200, {"data": []})

    def get(self, url, params=None):
        self.requests.append(("GET", url, params))
        return self._next()

    def post(self, url, json=None):
        self.requests.append(("POST", url, json))
        return self._next()

    async def close(self):
        pass


def _client(session, **cfg):
    return ItemStoreClient(ApiConfig(base_url="http://store/", **cfg), session=session)


def _alert():
    return ViolationAlert(
        vehicle_key="GPS-01",
        vehicle_name="Truck 7",
        region_id=4,
        region_name="Depot",
        rule_triggered=RuleType.FORBIDDEN,
        transition=Transition.ENTER,
        severity=Severity.VIOLATION,
        message="VIOLATION: vehicle Truck 7 entered geofence Depot (FORBIDDEN)",
        location="-6.2088, 106.8456",
        position=GeoPoint(-6.2088, 106.8456),
        timestamp=T0,
    )


CIRCLE_RECORD = {
    "geofence_id": 4,
    "name": "Depot",
    "type": "circle",
    "rule_type": "FORBIDDEN",
    "status": "active",
    "definition": {"center": [106.8456, -6.2088], "radius": 500},
}


class TestAssignmentFromRecord:
    def test_plain(self):
        a = assignment_from_record({"vehicle_id": 12, "name": "Truck 7",
                                    "gps_id": "GPS-01", "geofence_id": 4})
        assert a.vehicle_id == 12
        assert a.vehicle_key == "GPS-01"
        assert a.region_id == 4

    def test_expanded_relation(self):
        a = assignment_from_record({"vehicle_id": 12, "gps_id": "GPS-01",
                                    "geofence_id": {"geofence_id": 9, "name": "Yard"}})
        assert a.region_id == 9
        assert a.name == "Vehicle 12"

    def test_unassigned(self):
        a = assignment_from_record({"vehicle_id": 12, "gps_id": "GPS-01", "geofence_id": None})
        assert a.region_id is None

    def test_no_gps(self):
        assert assignment_from_record({"vehicle_id": 12, "gps_id": " "}) is None


class TestReads:
    def test_fetch_vehicles(self):
        session = _FakeSession([_FakeResponse(200, {"data": [
            {"vehicle_id": 1, "name": "A", "gps_id": "GPS-01", "geofence_id": 4},
            {"vehicle_id": 2, "name": "B", "gps_id": None},
        ]})])
        vehicles = asyncio.run(_client(session).fetch_vehicles())
        assert [v.vehicle_key for v in vehicles] == ["GPS-01"]
        method, url, params = session.requests[0]
        assert url == "http://store/items/vehicle"
        assert params["limit"] == -1

    def test_fetch_latest_samples(self):
        session = _FakeSession([_FakeResponse(200, {"data": [
            {"gps_id": "GPS-01", "timestamp": "2025-06-01T08:00:00Z",
             "latitude": "-6.2088", "longitude": "106.8456", "speed": 12},
        ]})])
        samples = asyncio.run(_client(session).fetch_latest_samples(["GPS-01", "GPS-02"]))
        assert samples[0].timestamp == T0
        assert samples[0].is_valid
        params = session.requests[0][2]
        assert params["filter[gps_id][_in]"] == "GPS-01,GPS-02"
        assert params["sort"] == "-timestamp"
        assert params["limit"] == 1000
        assert "filter[timestamp][_gte]" not in params

    def test_fetch_latest_bounded(self):
        # one capped request even with paging on, restricted to the online window
        session = _FakeSession([_FakeResponse(200, {"data": [{"gps_id": "GPS-01"}] * 50})])
        since = T0 - timedelta(minutes=15)
        client = _client(session, page_size=50, latest_limit=200)
        samples = asyncio.run(client.fetch_latest_samples(["GPS-01"], since=since))
        assert len(samples) == 50
        assert len(session.requests) == 1
        params = session.requests[0][2]
        assert params["limit"] == 200
        assert "page" not in params
        assert params["filter[timestamp][_gte]"] == since.isoformat()

    def test_fetch_latest_no_keys(self):
        session = _FakeSession()
        assert asyncio.run(_client(session).fetch_latest_samples([])) == []
        assert session.requests == []

    def test_fetch_sample_range(self):
        session = _FakeSession()
        end = datetime(2025, 6, 1, 18, 0, tzinfo=timezone.utc)
        asyncio.run(_client(session).fetch_sample_range("GPS-01", T0, end))
        params = session.requests[0][2]
        assert params["filter[gps_id][_eq]"] == "GPS-01"
        assert params["filter[timestamp][_between]"] == f"{T0.isoformat()},{end.isoformat()}"
        assert params["sort"] == "timestamp"

    def test_pagination(self):
        session = _FakeSession([
            _FakeResponse(200, {"data": [{"gps_id": "A"}, {"gps_id": "B"}]}),
            _FakeResponse(200, {"data": [{"gps_id": "C"}]}),
        ])
        samples = asyncio.run(
            _client(session, page_size=2).fetch_sample_range("A", T0, T0))
        assert len(samples) == 3
        assert [r[2]["page"] for r in session.requests] == [1, 2]

    def test_fetch_active_region(self):
        session = _FakeSession([_FakeResponse(200, {"data": CIRCLE_RECORD})])
        region = asyncio.run(_client(session).fetch_active_region(4))
        assert region.id == 4
        assert region.rule_type is RuleType.FORBIDDEN
        assert session.requests[0][1] == "http://store/items/geofence/4"

    def test_inactive_region_is_none(self):
        record = {**CIRCLE_RECORD, "status": "inactive"}
        session = _FakeSession([_FakeResponse(200, {"data": record})])
        assert asyncio.run(_client(session).fetch_active_region(4)) is None

    def test_missing_region_is_none(self):
        session = _FakeSession([_FakeResponse(404, {"errors": []})])
        assert asyncio.run(_client(session).fetch_active_region(4)) is None

    def test_http_error_raises(self):
        session = _FakeSession([_FakeResponse(500, "boom")])
        with pytest.raises(FetchError):
            asyncio.run(_client(session).fetch_vehicles())

    def test_transport_error_raises(self):
        session = _FakeSession([_FakeResponse(error=aiohttp.ClientConnectionError("refused"))])
        with pytest.raises(FetchError):
            asyncio.run(_client(session).fetch_vehicles())

    def test_timeout_raises(self):
        session = _FakeSession([_FakeResponse(error=asyncio.TimeoutError())])
        with pytest.raises(FetchError):
            asyncio.run(_client(session).fetch_vehicles())


class TestPublish:
    def test_publish_alert(self):
        session = _FakeSession([_FakeResponse(204)])
        assert asyncio.run(_client(session).publish(_alert(), vehicle_id=12))
        method, url, body = session.requests[0]
        assert method == "POST"
        assert url.endswith(f"/items/{ALERTS}")
        assert body["vehicle_id"] == 12
        assert body["alert_type"] == "violation_enter"
        assert body["lokasi"] == "-6.2088, 106.8456"

    def test_publish_event(self):
        session = _FakeSession([_FakeResponse(200)])
        assert asyncio.run(_client(session).publish_event(_alert()))
        _, url, body = session.requests[0]
        assert url.endswith(f"/items/{GEOFENCE_EVENTS}")
        assert body["geofence_id"] == 4

    def test_publish_rejected(self):
        session = _FakeSession([_FakeResponse(400, "bad payload")])
        assert not asyncio.run(_client(session).publish(_alert()))

    def test_publish_transport_error(self):
        session = _FakeSession([_FakeResponse(error=aiohttp.ClientConnectionError("reset"))])
        assert not asyncio.run(_client(session).publish(_alert()))
