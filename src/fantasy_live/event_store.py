from __future__ import annotations

import logging
from collections import deque
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Callable, Deque, Dict, List, Optional

from .logging_utils import log_json
from .models import AttributedEvent
from .utils import utcnow


class EventCache:
    """Bounded per-league history of attributed events, newest first.

    Entries are never modified after ``record``; ``is_recent`` is computed
    when the events are read.
    """

    def __init__(
        self,
        capacity: int = 50,
        max_age_seconds: float = 24 * 3600,
        recent_window_seconds: float = 300,
        now_fn: Callable[[], datetime] = utcnow,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self.max_age = timedelta(seconds=max_age_seconds)
        self.recent_window = timedelta(seconds=recent_window_seconds)
        self._now = now_fn
        self._events: Dict[str, Deque[AttributedEvent]] = {}
        self._evicted = 0
        self._logger = logger or logging.getLogger(__name__)

    def record(self, event: AttributedEvent) -> None:
        league = self._events.setdefault(event.league_id, deque())
        if not league or event.timestamp >= league[0].timestamp:
            league.appendleft(event)
        else:
            # late arrival: keep newest-first ordering by event time
            index = next((i for i, existing in enumerate(league) if existing.timestamp <= event.timestamp), len(league))
            league.insert(index, event)
        while len(league) > self.capacity:
            league.pop()
            self._evicted += 1

    def get_recent_events(self, league_id: str, limit: Optional[int] = None) -> List[AttributedEvent]:
        league = self._events.get(league_id)
        if not league:
            return []
        items = list(league)[: limit if limit is not None else len(league)]
        now = self._now()
        out: List[AttributedEvent] = []
        for index, event in enumerate(items):
            recent = index == 0 and now - event.timestamp <= self.recent_window
            out.append(replace(event, is_recent=recent))
        return out

    def evict_stale(self) -> int:
        cutoff = self._now() - self.max_age
        removed = 0
        for league_id in list(self._events):
            league = self._events[league_id]
            while league and league[-1].timestamp < cutoff:
                league.pop()
                removed += 1
            if not league:
                del self._events[league_id]
        if removed:
            self._evicted += removed
            log_json(self._logger, "event_cache_evicted", removed=removed)
        return removed

    def clear(self, league_id: Optional[str] = None) -> None:
        if league_id is None:
            self._events.clear()
        else:
            self._events.pop(league_id, None)

    def __len__(self) -> int:
        return sum(len(league) for league in self._events.values())

    def get_cache_stats(self) -> Dict[str, Any]:
        oldest: Optional[datetime] = None
        newest: Optional[datetime] = None
        for league in self._events.values():
            if not league:
                continue
            if newest is None or league[0].timestamp > newest:
                newest = league[0].timestamp
            if oldest is None or league[-1].timestamp < oldest:
                oldest = league[-1].timestamp
        return {
            "total_events": len(self),
            "capacity_per_league": self.capacity,
            "events_by_league": {league_id: len(league) for league_id, league in self._events.items()},
            "evicted": self._evicted,
            "oldest_event": oldest.isoformat() if oldest else None,
            "newest_event": newest.isoformat() if newest else None,
        }
