"""Tests for position sample parsing and track preparation."""

import math
from datetime import datetime, timedelta, timezone

from shared.samples import (
    PositionSample,
    latest_per_vehicle,
    parse_timestamp,
    prepare_track,
    sample_from_record,
)

T0 = datetime(2025, 6, 1, 8, 0, tzinfo=timezone.utc)


def _sample(key="GPS-01", t=0, lat=-6.2, lon=106.8, speed=10.0):
    return PositionSample(
        vehicle_key=key,
        timestamp=T0 + timedelta(seconds=t) if t is not None else None,
        latitude=lat,
        longitude=lon,
        speed=speed,
    )


class TestPositionSample:
    def test_valid(self):
        assert _sample().is_valid

    def test_missing_timestamp_invalid(self):
        assert not _sample(t=None).is_valid

    def test_nan_coordinate_invalid(self):
        assert not _sample(lat=math.nan).is_valid

    def test_none_coordinate_invalid(self):
        assert not _sample(lon=None).is_valid
        assert _sample(lon=None).point is None

    def test_point(self):
        p = _sample(lat=-6.1, lon=106.9).point
        assert p.lat == -6.1
        assert p.lon == 106.9

    def test_has_speed(self):
        assert _sample(speed=0.0).has_speed
        assert not _sample(speed=None).has_speed


class TestParseTimestamp:
    def test_zulu(self):
        dt = parse_timestamp("2025-06-01T08:00:00Z")
        assert dt == T0

    def test_naive_is_utc(self):
        assert parse_timestamp("2025-06-01T08:00:00").tzinfo is not None

    def test_offset_preserved(self):
        dt = parse_timestamp("2025-06-01T15:00:00+07:00")
        assert dt == T0

    def test_garbage(self):
        assert parse_timestamp("yesterday") is None
        assert parse_timestamp("") is None
        assert parse_timestamp(None) is None
        assert parse_timestamp(1717228800) is None

    def test_datetime_passthrough(self):
        assert parse_timestamp(T0) is T0


class TestSampleFromRecord:
    def test_string_fields(self):
        s = sample_from_record({
            "gps_id": " GPS-01 ",
            "timestamp": "2025-06-01T08:00:00Z",
            "latitude": "-6.2088",
            "longitude": "106.8456",
            "speed": 42,
        })
        assert s.vehicle_key == "GPS-01"
        assert s.timestamp == T0
        assert s.latitude == -6.2088
        assert s.longitude == 106.8456
        assert s.speed == 42.0
        assert s.is_valid

    def test_bad_fields_become_none(self):
        s = sample_from_record({
            "gps_id": "GPS-01",
            "timestamp": None,
            "latitude": "abc",
            "longitude": "NaN",
            "speed": "",
        })
        assert s.timestamp is None
        assert s.latitude is None
        assert s.longitude is None
        assert s.speed is None
        assert not s.is_valid

    def test_missing_key(self):
        assert sample_from_record({}).vehicle_key == ""


class TestPrepareTrack:
    def test_filters_and_sorts(self):
        samples = [
            _sample(t=120),
            _sample(t=None),
            _sample(t=0),
            _sample(t=60, lat=math.inf),
            _sample(t=60),
        ]
        track = prepare_track(samples)
        assert [s.timestamp for s in track] == [
            T0, T0 + timedelta(seconds=60), T0 + timedelta(seconds=120),
        ]

    def test_stable_for_equal_timestamps(self):
        a = _sample(t=0, lat=-6.1)
        b = _sample(t=0, lat=-6.2)
        assert prepare_track([a, b]) == [a, b]

    def test_empty(self):
        assert prepare_track([]) == []


class TestLatestPerVehicle:
    def test_picks_newest_valid(self):
        samples = [
            _sample("A", t=0),
            _sample("A", t=90),
            _sample("A", t=120, lat=math.nan),
            _sample("B", t=30),
        ]
        latest = latest_per_vehicle(samples)
        assert latest["A"].timestamp == T0 + timedelta(seconds=90)
        assert latest["B"].timestamp == T0 + timedelta(seconds=30)

    def test_ignores_keyless(self):
        assert latest_per_vehicle([_sample(key="")]) == {}
