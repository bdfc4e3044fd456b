"""Tests for the alert cooldown window."""

from datetime import datetime, timedelta, timezone

from monitor.cooldown import AlertCooldown

T0 = datetime(2025, 6, 1, 8, 0, tzinfo=timezone.utc)
KEY = ("GPS-01", "enter")


class TestAlertCooldown:
    def test_first_allowed(self):
        cd = AlertCooldown(window_s=300)
        assert cd.allow(KEY, T0)
        assert cd.stats.allowed == 1

    def test_repeat_inside_window_suppressed(self):
        cd = AlertCooldown(window_s=300)
        cd.allow(KEY, T0)
        assert not cd.allow(KEY, T0 + timedelta(seconds=299))
        assert cd.stats.suppressed == 1

    def test_allowed_after_window(self):
        cd = AlertCooldown(window_s=300)
        cd.allow(KEY, T0)
        assert cd.allow(KEY, T0 + timedelta(seconds=300))

    def test_suppressed_does_not_extend_window(self):
        cd = AlertCooldown(window_s=300)
        cd.allow(KEY, T0)
        cd.allow(KEY, T0 + timedelta(seconds=200))
        assert cd.allow(KEY, T0 + timedelta(seconds=301))

    def test_keys_independent(self):
        cd = AlertCooldown(window_s=300)
        cd.allow(KEY, T0)
        assert cd.allow(("GPS-01", "exit"), T0)
        assert cd.allow(("GPS-02", "enter"), T0)

    def test_prune(self):
        cd = AlertCooldown(window_s=60)
        cd.allow("a", T0)
        cd.allow("b", T0 + timedelta(seconds=50))
        assert cd.prune(T0 + timedelta(seconds=70)) == 1
        assert len(cd) == 1
        assert cd.is_cooling("b", T0 + timedelta(seconds=70))

    def test_reset(self):
        cd = AlertCooldown()
        cd.allow(KEY, T0)
        cd.reset()
        assert len(cd) == 0
        assert cd.stats.allowed == 0
        assert cd.allow(KEY, T0)
