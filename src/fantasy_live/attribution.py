from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .errors import AttributionSkipped, MappingUnresolved
from .event_store import EventCache
from .logging_utils import log_json
from .mapping import PlayerMappingService
from .models import AttributedEvent, CanonicalPlayerMapping, EventType, NormalizedScoringEvent, RosterEntry
from .pubsub import Subscribers
from .scoring import DEFAULT_SCORING, compute_points

DedupKey = Tuple[str, int, str, str, str]


class AttributionEngine:
    """Turns normalized scoring events into per-league fantasy events.

    Rosters and scoring rules are replaced wholesale by the orchestrator;
    the engine only reads them. Duplicate plays (the same player, play clock
    and event type in the same game) are suppressed per league for
    ``dedup_ttl_seconds``.
    """

    def __init__(
        self,
        cache: EventCache,
        mapping: Optional[PlayerMappingService] = None,
        scoring: Optional[Dict[str, Dict[str, float]]] = None,
        default_rules: Optional[Dict[str, float]] = None,
        dedup_ttl_seconds: float = 6 * 3600,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.cache = cache
        self.mapping = mapping
        self.default_rules = dict(default_rules or DEFAULT_SCORING)
        self.dedup_ttl_seconds = dedup_ttl_seconds
        self._clock = clock
        self._logger = logger or logging.getLogger(__name__)
        self._scoring: Dict[str, Dict[str, float]] = dict(scoring or {})
        self._rosters: List[RosterEntry] = []
        self._seen: Dict[str, Dict[DedupKey, float]] = {}
        self._subscribers: Subscribers[AttributedEvent] = Subscribers("attribution", self._logger)
        self.counters = {"attributed": 0, "duplicates": 0, "unmatched": 0, "skipped": 0}

    def set_rosters(self, rosters: Iterable[RosterEntry]) -> None:
        self._rosters = list(rosters)
        log_json(self._logger, "rosters_updated", rosters=len(self._rosters))

    def add_roster(self, roster: RosterEntry) -> None:
        self._rosters = [r for r in self._rosters if (r.league_id, r.team_id) != (roster.league_id, roster.team_id)]
        self._rosters.append(roster)

    @property
    def rosters(self) -> List[RosterEntry]:
        return list(self._rosters)

    def set_scoring_rules(self, league_id: str, rules: Dict[str, float]) -> None:
        self._scoring[league_id] = dict(rules)

    def rules_for(self, league_id: str) -> Dict[str, float]:
        return self._scoring.get(league_id) or self.default_rules

    def on_attribution(self, callback: Callable[[AttributedEvent], Any]) -> Callable[[], None]:
        return self._subscribers.subscribe(callback)

    async def attribute(self, event: NormalizedScoringEvent) -> List[AttributedEvent]:
        try:
            _validate(event)
            mapping = self._resolve(event)
            matches = self._match(event, mapping)
            points = {r.league_id: compute_points(event.stats, self.rules_for(r.league_id)) for r in matches}
        except (AttributionSkipped, AttributeError, TypeError, ValueError) as exc:
            self.counters["skipped"] += 1
            log_json(
                self._logger,
                "attribution_skipped",
                level=logging.WARNING,
                event_id=getattr(event, "event_id", None),
                error=str(exc),
            )
            return []
        except MappingUnresolved as exc:
            self.counters["unmatched"] += 1
            log_json(
                self._logger,
                "attribution_unmatched",
                event_id=event.event_id,
                provider=event.provider,
                platform=event.player_platform.value,
                player_id=event.raw_player_id,
                reason=str(exc),
            )
            return []

        player_id = mapping.player_id if mapping else f"{event.player_platform.value}:{event.raw_player_id}"
        player_name = event.player_name or (mapping.name if mapping else "")
        now = self._clock()
        out: List[AttributedEvent] = []
        for roster in matches:
            key: DedupKey = (event.game_key, event.period, event.clock, player_id, event.event_type.value)
            seen = self._seen.setdefault(roster.league_id, {})
            expiry = seen.get(key)
            if expiry is not None and expiry > now:
                self.counters["duplicates"] += 1
                log_json(
                    self._logger,
                    "attribution_duplicate",
                    level=logging.DEBUG,
                    league_id=roster.league_id,
                    event_id=event.event_id,
                    provider=event.provider,
                )
                continue
            seen[key] = now + self.dedup_ttl_seconds
            attributed = AttributedEvent(
                league_id=roster.league_id,
                team_id=roster.team_id,
                player_id=player_id,
                points=points[roster.league_id],
                description=f"{event.description} ({points[roster.league_id]:+g} pts)",
                timestamp=event.timestamp,
                event_type=event.event_type,
                event_id=event.event_id,
                play_key="|".join(str(part) for part in key),
                player_name=player_name,
                team_name=roster.team_name,
                provider=event.provider,
            )
            self.cache.record(attributed)
            out.append(attributed)
            self.counters["attributed"] += 1

        for attributed in out:
            log_json(
                self._logger,
                "event_attributed",
                league_id=attributed.league_id,
                team_id=attributed.team_id,
                player_id=attributed.player_id,
                event_type=attributed.event_type.value,
                points=attributed.points,
            )
            await self._subscribers.publish(attributed)
        return out

    async def attribute_batch(self, events: Iterable[NormalizedScoringEvent]) -> List[AttributedEvent]:
        out: List[AttributedEvent] = []
        for event in events:
            out.extend(await self.attribute(event))
        return out

    def prune_dedup(self) -> int:
        now = self._clock()
        removed = 0
        for league_id in list(self._seen):
            seen = self._seen[league_id]
            for key in [k for k, expiry in seen.items() if expiry <= now]:
                del seen[key]
                removed += 1
            if not seen:
                del self._seen[league_id]
        return removed

    def stats(self) -> Dict[str, Any]:
        return {
            **self.counters,
            "rosters": len(self._rosters),
            "dedup_keys": sum(len(v) for v in self._seen.values()),
        }

    def _resolve(self, event: NormalizedScoringEvent) -> Optional[CanonicalPlayerMapping]:
        if self.mapping is None:
            return None
        if event.canonical_player_id:
            mapping = self.mapping.get(event.canonical_player_id)
            if mapping is not None:
                return mapping
        return self.mapping.find_player_by_platform_id(event.player_platform, event.raw_player_id)

    def _match(self, event: NormalizedScoringEvent, mapping: Optional[CanonicalPlayerMapping]) -> List[RosterEntry]:
        if mapping is not None:
            matches = []
            for roster in self._rosters:
                candidates = {mapping.player_id, mapping.platform_id(roster.platform)}
                if candidates.intersection(roster.player_ids):
                    matches.append(roster)
            return matches
        matches = [
            roster
            for roster in self._rosters
            if roster.platform == event.player_platform and event.raw_player_id in roster.player_ids
        ]
        if not matches:
            raise MappingUnresolved(f"no mapping or roster for {event.player_platform.value}:{event.raw_player_id}")
        return matches


def _validate(event: NormalizedScoringEvent) -> None:
    if not isinstance(event, NormalizedScoringEvent):
        raise AttributionSkipped(f"not a scoring event: {type(event).__name__}")
    if not event.game_key or not event.raw_player_id:
        raise AttributionSkipped("event is missing its game key or player id")
    if not isinstance(event.event_type, EventType):
        raise AttributionSkipped(f"unknown event type {event.event_type!r}")
    if not isinstance(event.timestamp, datetime):
        raise AttributionSkipped(f"event timestamp is not a datetime: {event.timestamp!r}")
    if not isinstance(event.stats, dict):
        raise AttributionSkipped("event stats must be a mapping of stat deltas")
