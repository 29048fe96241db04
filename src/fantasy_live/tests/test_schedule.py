from __future__ import annotations

from datetime import datetime, timezone

import pytest

from fantasy_live.schedule import IntervalPolicy, LiveWindow


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class TestIntervalPolicy:
    @pytest.mark.parametrize(
        "now,expected",
        [
            (utc(2024, 10, 13, 17, 0), 15.0),  # Sunday 13:00 ET
            (utc(2024, 10, 14, 3, 59), 15.0),  # Sunday 23:59 ET
            (utc(2024, 10, 13, 16, 59), 60.0),  # Sunday 12:59 ET
            (utc(2024, 10, 15, 0, 30), 15.0),  # Monday 20:30 ET
            (utc(2024, 10, 15, 16, 0), 60.0),  # Tuesday
        ],
    )
    def test_default_windows(self, now, expected):
        assert IntervalPolicy().interval_for(now) == expected

    def test_window_tier(self):
        policy = IntervalPolicy()
        assert policy.active_window(utc(2024, 10, 13, 17, 0)).tier == "sunday"
        assert policy.active_window(utc(2024, 10, 15, 0, 30)).tier == "monday"
        assert policy.active_window(utc(2024, 10, 15, 16, 0)) is None

    def test_naive_datetimes_are_utc(self):
        assert IntervalPolicy().interval_for(datetime(2024, 10, 13, 17, 0)) == 15.0

    def test_live_hours_disabled_uses_base(self):
        policy = IntervalPolicy(base_interval_seconds=45, live_hours=False)
        assert policy.interval_for(utc(2024, 10, 13, 17, 0)) == 45
        assert policy.interval_for(utc(2024, 10, 15, 16, 0)) == 45

    def test_from_config(self):
        policy = IntervalPolicy.from_config(
            {
                "base_interval_seconds": 20,
                "intervals": {"thursday": 10, "off_hours": 120},
                "windows": [{"day": "Thursday", "start_hour": 20, "end_hour": 23}],
            }
        )
        assert policy.windows == [LiveWindow(weekday=3, start_hour=20, end_hour=23, tier="thursday")]
        # Thursday 2024-10-17 20:15 ET
        assert policy.interval_for(utc(2024, 10, 18, 0, 15)) == 10
        assert policy.interval_for(utc(2024, 10, 13, 17, 0)) == 120
        assert policy.intervals["sunday"] == 15.0

    def test_unknown_tier_falls_back_to_base(self):
        policy = IntervalPolicy(
            base_interval_seconds=25,
            windows=[LiveWindow(weekday=5, start_hour=0, end_hour=23, tier="college")],
        )
        assert policy.interval_for(utc(2024, 10, 12, 18, 0)) == 25
