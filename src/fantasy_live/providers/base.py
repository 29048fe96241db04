"""Shared poller machinery.

A provider subclass only knows how to list the games in progress and how to
turn one game's play-by-play payload into ``RawPlay`` records. Scheduling,
the circuit breaker, quota accounting, diffing against already-seen plays and
subscriber fan-out all live here.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from ..api_client import ApiClient
from ..errors import FeedError, HttpError, QuotaExceeded
from ..logging_utils import log_json
from ..models import EventType, NormalizedScoringEvent, Platform, RawPlay
from ..pubsub import Subscribers
from ..reliability import CircuitBreaker, CircuitConfig
from ..utils import utcnow
from .plays import BIG_PLAY_YARDS, MilestoneTracker, classify_play, normalize_clock, yardage_stats


class PollerStatus(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    CIRCUIT_OPEN = "circuit_open"
    QUOTA_EXCEEDED = "quota_exceeded"
    EMERGENCY_STOPPED = "emergency_stopped"


@dataclass
class GameRef:
    provider_game_id: str
    game_key: str
    away: str = ""
    home: str = ""
    status: str = ""


@dataclass
class GameCursor:
    last_play_id: Optional[str] = None
    seen: Set[str] = field(default_factory=set)


class ProviderPoller:
    provider = "base"
    platform = Platform.TANK01

    def __init__(
        self,
        client: ApiClient,
        circuit: Optional[CircuitBreaker] = None,
        mapping: Any = None,
        interval_seconds: float = 30,
        min_interval_seconds: float = 0,
        max_requests_per_minute: Optional[int] = None,
        big_play_yards: int = BIG_PLAY_YARDS,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.client = client
        self.circuit = circuit or CircuitBreaker(self.provider, CircuitConfig())
        self.mapping = mapping
        self.interval_seconds = interval_seconds
        self.min_interval_seconds = min_interval_seconds
        self.max_requests_per_minute = max_requests_per_minute
        self.big_play_yards = big_play_yards
        self.interval_provider: Optional[Callable[[], float]] = None
        self._logger = logger or logging.getLogger(f"fantasy_live.providers.{self.provider}")
        self._subscribers: Subscribers[NormalizedScoringEvent] = Subscribers(f"{self.provider}.scoring", self._logger)
        self._milestones = MilestoneTracker()
        self._cursors: Dict[str, GameCursor] = {}
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self._wake: Optional[asyncio.Event] = None
        self._tasks: Set[asyncio.Task] = set()
        self._generation = 0
        self._emergency_stop = False
        self.active_games: List[GameRef] = []
        self.last_error: Optional[str] = None
        self.last_poll_at: Optional[datetime] = None
        self.last_skip_reason: Optional[str] = None
        self.last_cycle_failures = 0
        self.cycles = 0
        self.events_emitted = 0

    # -- provider hooks ----------------------------------------------------

    def check_config(self) -> None:
        """Raise ``ConfigError`` when the provider cannot run."""

    async def fetch_active_games(self) -> List[GameRef]:
        raise NotImplementedError

    async def fetch_plays(self, game: GameRef) -> List[RawPlay]:
        raise NotImplementedError

    # -- controls ----------------------------------------------------------

    @property
    def quota(self):
        return self.client.quota

    @property
    def is_polling(self) -> bool:
        return self._task is not None

    @property
    def emergency_stopped(self) -> bool:
        return self._emergency_stop

    @property
    def status(self) -> PollerStatus:
        if self._emergency_stop:
            return PollerStatus.EMERGENCY_STOPPED
        if self.circuit.is_open:
            return PollerStatus.CIRCUIT_OPEN
        if self.quota.exhausted:
            return PollerStatus.QUOTA_EXCEEDED
        if self.is_polling:
            return PollerStatus.POLLING
        return PollerStatus.IDLE

    def current_interval(self) -> float:
        interval = self.interval_provider() if self.interval_provider else self.interval_seconds
        return max(self.min_interval_seconds, interval)

    def on_scoring_event(self, callback: Callable[[NormalizedScoringEvent], Any]) -> Callable[[], None]:
        return self._subscribers.subscribe(callback)

    def start_polling(self, interval_seconds: Optional[float] = None) -> bool:
        self.check_config()
        if self._emergency_stop:
            log_json(self._logger, "poll_start_refused", level=logging.WARNING, provider=self.provider, reason="emergency_stop")
            return False
        if self.is_polling:
            log_json(self._logger, "poll_start_refused", provider=self.provider, reason="already_polling")
            return False
        if interval_seconds is not None:
            self.interval_seconds = interval_seconds
        self._generation += 1
        self._wake = asyncio.Event()
        task = asyncio.get_running_loop().create_task(
            self._run_loop(self._generation, self._wake), name=f"{self.provider}-poller"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        self._task = task
        log_json(self._logger, "poll_started", provider=self.provider, interval_seconds=self.current_interval())
        return True

    def stop_polling(self) -> bool:
        if self._task is None:
            return False
        # a cycle already past its fetches sees the new generation and drops its results
        self._generation += 1
        if self._wake is not None:
            self._wake.set()
        self._task = None
        self._wake = None
        log_json(self._logger, "poll_stopped", provider=self.provider)
        return True

    async def join(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def manual_poll(self) -> List[NormalizedScoringEvent]:
        log_json(self._logger, "manual_poll", provider=self.provider)
        return await self._run_cycle(None)

    def emergency_stop(self) -> None:
        self._emergency_stop = True
        self.stop_polling()
        log_json(self._logger, "emergency_stop", level=logging.WARNING, provider=self.provider)

    def reset_emergency_stop(self) -> None:
        self._emergency_stop = False
        log_json(self._logger, "emergency_stop_reset", provider=self.provider)

    def reset_circuit_breaker(self) -> None:
        self.circuit.reset()
        log_json(self._logger, "circuit_reset", provider=self.provider)

    def reset_quota(self) -> None:
        self.quota.reset()

    def get_service_status(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "status": self.status.value,
            "is_polling": self.is_polling,
            "interval_seconds": self.current_interval(),
            "active_games": len(self.active_games),
            "emergency_stop": self._emergency_stop,
            "circuit_breaker": self.circuit.snapshot(),
            "requests": self.client.metrics.snapshot(),
            "quota": self.quota.snapshot(),
            "cycles": self.cycles,
            "events_emitted": self.events_emitted,
            "last_poll_at": self.last_poll_at.isoformat() if self.last_poll_at else None,
            "last_skip_reason": self.last_skip_reason,
            "last_error": self.last_error,
        }

    # -- cycle -------------------------------------------------------------

    async def _run_loop(self, generation: int, wake: asyncio.Event) -> None:
        while generation == self._generation:
            interval = self.current_interval()
            try:
                await self._run_cycle(generation)
            except Exception as exc:
                self.last_error = str(exc)
                self.circuit.record_failure()
                log_json(self._logger, "poll_cycle_error", level=logging.ERROR, exc_info=True, provider=self.provider, error=str(exc))
            if generation != self._generation:
                break
            try:
                await asyncio.wait_for(wake.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue
            break

    def _skip_reason(self) -> Optional[str]:
        if self._emergency_stop:
            return "emergency_stop"
        if self.circuit.is_open:
            return "circuit_open"
        if self.quota.exhausted:
            return "quota_exceeded"
        if self.max_requests_per_minute is not None:
            if self.client.metrics.requests_this_minute() >= self.max_requests_per_minute:
                return "minute_cap"
        return None

    async def _run_cycle(self, generation: Optional[int]) -> List[NormalizedScoringEvent]:
        async with self._lock:
            reason = self._skip_reason()
            self.last_skip_reason = reason
            self.last_cycle_failures = 0
            if reason is not None:
                log_json(self._logger, "poll_cycle_skipped", level=logging.DEBUG, provider=self.provider, reason=reason)
                return []

            self.last_poll_at = utcnow()
            games = await self._guarded(self.fetch_active_games())
            if games is None:
                return []

            fetched: List[Tuple[GameRef, List[RawPlay]]] = []
            for game in games:
                if self._skip_reason() is not None:
                    break
                plays = await self._guarded(self.fetch_plays(game))
                if plays is not None:
                    fetched.append((game, plays))

            if generation is not None and generation != self._generation:
                log_json(self._logger, "poll_cycle_discarded", provider=self.provider, games=len(fetched))
                return []

            self.active_games = list(games)
            events: List[NormalizedScoringEvent] = []
            for game, plays in fetched:
                events.extend(self._diff(game, plays))
            self._prune(games)
            self.cycles += 1
            self.events_emitted += len(events)
            log_json(
                self._logger,
                "poll_cycle_complete",
                provider=self.provider,
                active_games=len(games),
                new_events=len(events),
            )
            for event in events:
                await self._subscribers.publish(event)
            return events

    async def _guarded(self, call) -> Any:
        try:
            result = await call
        except QuotaExceeded as exc:
            self.last_error = str(exc)
            log_json(self._logger, "quota_exceeded", level=logging.WARNING, provider=self.provider, **self.quota.snapshot())
            return None
        except (FeedError, KeyError, TypeError, ValueError, AttributeError) as exc:
            # malformed payloads fail this request only, like HTTP errors
            self.last_error = str(exc)
            self.last_cycle_failures += 1
            self.circuit.record_failure()
            if isinstance(exc, HttpError) and exc.status == 429:
                self.circuit.trip(self.circuit.config.rate_limited_cooldown_seconds, reason="rate_limited")
            log_json(
                self._logger,
                "poll_request_failed",
                level=logging.WARNING,
                provider=self.provider,
                error=str(exc),
                error_type=type(exc).__name__,
                failure_count=self.circuit.failure_count,
            )
            return None
        self.circuit.record_success()
        return result

    def _diff(self, game: GameRef, plays: List[RawPlay]) -> List[NormalizedScoringEvent]:
        cursor = self._cursors.setdefault(game.game_key, GameCursor())
        events: List[NormalizedScoringEvent] = []
        for play in plays:
            if play.play_id in cursor.seen:
                continue
            cursor.seen.add(play.play_id)
            cursor.last_play_id = play.play_id
            if not play.player_id:
                continue
            events.extend(self._events_for(game, play))
        return events

    def _events_for(self, game: GameRef, play: RawPlay) -> List[NormalizedScoringEvent]:
        canonical = None
        if self.mapping is not None:
            canonical = self.mapping.find_player_by_platform_id(self.platform, play.player_id)
            if canonical is not None:
                play.player_name = play.player_name or canonical.name
                play.position = play.position or canonical.position
        player_key = canonical.player_id if canonical else play.player_id

        out: List[NormalizedScoringEvent] = []
        classified = classify_play(play, self.big_play_yards)
        if classified is not None:
            event_type, stats = classified
            out.append(self._make_event(game, play, event_type, stats, canonical, play.play_id))
        hit = self._milestones.add(game.game_key, player_key, yardage_stats(play))
        if hit is not None:
            out.append(
                self._make_event(game, play, EventType.STAT_MILESTONE, hit.stats, canonical, f"{play.play_id}:milestone")
            )
        return out

    def _make_event(
        self,
        game: GameRef,
        play: RawPlay,
        event_type: EventType,
        stats: Dict[str, float],
        canonical: Any,
        play_id: str,
    ) -> NormalizedScoringEvent:
        return NormalizedScoringEvent(
            event_id=f"{self.provider}-{game.provider_game_id}-{play_id}",
            provider=self.provider,
            game_key=game.game_key,
            provider_game_id=game.provider_game_id,
            play_id=play_id,
            period=play.period,
            clock=normalize_clock(play.clock),
            event_type=event_type,
            raw_player_id=str(play.player_id),
            player_platform=self.platform,
            description=play.description,
            stats=stats,
            canonical_player_id=canonical.player_id if canonical else None,
            player_name=play.player_name,
            position=play.position,
            team=play.team,
            scoring_play=play.scoring_play,
        )

    def _prune(self, games: List[GameRef]) -> None:
        live = {g.game_key for g in games}
        for game_key in [k for k in self._cursors if k not in live]:
            del self._cursors[game_key]
            self._milestones.forget_game(game_key)
