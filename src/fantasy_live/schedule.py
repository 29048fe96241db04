from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

WEEKDAYS = {
    "monday": 0,
    "tuesday": 1,
    "wednesday": 2,
    "thursday": 3,
    "friday": 4,
    "saturday": 5,
    "sunday": 6,
}


@dataclass(frozen=True)
class LiveWindow:
    weekday: int
    start_hour: int
    end_hour: int
    tier: str

    def contains(self, local: datetime) -> bool:
        # end hour is inclusive: 13-23 covers 13:00 through 23:59
        return local.weekday() == self.weekday and self.start_hour <= local.hour <= self.end_hour

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "LiveWindow":
        day = raw["day"]
        weekday = WEEKDAYS[day.lower()] if isinstance(day, str) else int(day)
        return cls(
            weekday=weekday,
            start_hour=int(raw["start_hour"]),
            end_hour=int(raw["end_hour"]),
            tier=raw.get("tier", str(day).lower()),
        )


DEFAULT_WINDOWS = (
    LiveWindow(weekday=6, start_hour=13, end_hour=23, tier="sunday"),
    LiveWindow(weekday=0, start_hour=20, end_hour=23, tier="monday"),
)


@dataclass
class IntervalPolicy:
    base_interval_seconds: float = 30.0
    live_hours: bool = True
    intervals: Dict[str, float] = field(default_factory=lambda: {"sunday": 15.0, "monday": 15.0, "off_hours": 60.0})
    windows: List[LiveWindow] = field(default_factory=lambda: list(DEFAULT_WINDOWS))
    timezone: str = "America/New_York"

    @classmethod
    def from_config(cls, raw: Dict[str, Any]) -> "IntervalPolicy":
        policy = cls()
        if "base_interval_seconds" in raw:
            policy.base_interval_seconds = float(raw["base_interval_seconds"])
        if "live_hours" in raw:
            policy.live_hours = bool(raw["live_hours"])
        if raw.get("intervals"):
            policy.intervals = {**policy.intervals, **{k: float(v) for k, v in raw["intervals"].items()}}
        if raw.get("windows"):
            policy.windows = [LiveWindow.from_dict(w) for w in raw["windows"]]
        if raw.get("timezone"):
            policy.timezone = raw["timezone"]
        return policy

    def active_window(self, now: Optional[datetime] = None) -> Optional[LiveWindow]:
        now = now or datetime.now(timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        local = now.astimezone(ZoneInfo(self.timezone))
        for window in self.windows:
            if window.contains(local):
                return window
        return None

    def interval_for(self, now: Optional[datetime] = None) -> float:
        if not self.live_hours:
            return self.base_interval_seconds
        window = self.active_window(now)
        if window is None:
            return self.intervals.get("off_hours", self.base_interval_seconds)
        return self.intervals.get(window.tier, self.base_interval_seconds)
