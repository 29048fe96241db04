from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import httpx

from .api_client import ApiClient, ApiConfig
from .attribution import AttributionEngine
from .config import Config, get_api_token
from .errors import ConfigError, FeedError
from .event_store import EventCache
from .hybrid import HybridCoordinator
from .logging_utils import log_json
from .mapping import PlayerMappingService
from .mapping_store import DynamoMappingStore, MemoryMappingStore
from .models import AttributedEvent, LeagueConfig, Platform, RosterEntry
from .providers import poller_class
from .providers.base import ProviderPoller
from .providers.sleeper import SleeperRosterSource
from .providers.tank01 import Tank01Api, rapidapi_headers
from .reliability import CircuitBreaker, CircuitConfig
from .schedule import IntervalPolicy
from .scoring import merge_rules
from .utils import utcnow


class Orchestrator:
    def __init__(
        self,
        cfg: Config,
        logger: logging.Logger,
        transports: Optional[Dict[str, httpx.AsyncBaseTransport]] = None,
        now_fn: Callable[[], datetime] = utcnow,
    ) -> None:
        self.cfg = cfg
        self.logger = logger
        self._transports = transports or {}
        self._now = now_fn
        self.policy = IntervalPolicy.from_config(cfg.polling)
        self.clients: Dict[str, ApiClient] = {}

        primary = self._build_poller(cfg.primary_provider)
        backup = self._build_poller(cfg.backup_provider)

        mapping_cfg = cfg.mapping
        fetch_players = None
        if "tank01" in cfg.providers:
            fetch_players = Tank01Api(self._client("tank01")).player_list
        self.mapping = PlayerMappingService(
            self._build_store(),
            fetch_players=fetch_players,
            batch_size=mapping_cfg.get("batch_size", 500),
            sync_max_age_hours=mapping_cfg.get("sync_max_age_hours", 24),
            inactive_retention_days=mapping_cfg.get("inactive_retention_days", 30),
        )
        for poller in (primary, backup):
            poller.mapping = self.mapping

        events_cfg = cfg.events
        self.cache = EventCache(
            capacity=events_cfg.get("cache_capacity", 50),
            max_age_seconds=events_cfg.get("max_age_hours", 24) * 3600,
            recent_window_seconds=events_cfg.get("recent_window_seconds", 300),
        )
        self.attribution = AttributionEngine(
            self.cache,
            mapping=self.mapping,
            default_rules=merge_rules(cfg.scoring.get("default")),
            dedup_ttl_seconds=events_cfg.get("dedup_ttl_hours", 6) * 3600,
        )

        hybrid_cfg = cfg.polling.get("hybrid", {})
        self.coordinator = HybridCoordinator(
            primary,
            backup,
            primary_live_events=hybrid_cfg.get("primary_live_events", True),
            backup_interval_factor=hybrid_cfg.get("backup_interval_factor", 1.4),
            restart_delay_seconds=hybrid_cfg.get("restart_delay_seconds", 1.0),
        )
        self.coordinator.set_interval_provider(self.current_interval)
        self.coordinator.on_scoring_event(self.attribution.attribute)

        self.sleeper: Optional[SleeperRosterSource] = None
        if "sleeper" in cfg.providers:
            self.sleeper = SleeperRosterSource(self._client("sleeper"))

    # -- wiring ------------------------------------------------------------

    def _client(self, name: str) -> ApiClient:
        if name in self.clients:
            return self.clients[name]
        raw = self.cfg.provider(name)
        api_cfg = ApiConfig.from_dict(raw)
        headers: Dict[str, str] = {}
        if name == "tank01":
            api_key = self._token(name)
            if api_key:
                headers = rapidapi_headers(api_cfg.base_url, api_key)
        client = ApiClient(name, api_cfg, headers=headers, transport=self._transports.get(name))
        self.clients[name] = client
        return client

    def _token(self, name: str) -> Optional[str]:
        try:
            return get_api_token(name)
        except ConfigError:
            # surfaced by start_polling
            return None

    def _build_poller(self, name: str) -> ProviderPoller:
        raw = self.cfg.provider(name)
        cls = poller_class(name)
        breaker_cfg = {**self.cfg.circuit_breaker, **raw.get("circuit_breaker", {})}
        circuit = CircuitBreaker(
            name,
            CircuitConfig(**{k: v for k, v in breaker_cfg.items() if k in CircuitConfig.__dataclass_fields__}),
        )
        kwargs: Dict[str, Any] = {
            "circuit": circuit,
            "interval_seconds": self.policy.base_interval_seconds,
            "min_interval_seconds": raw.get("min_poll_interval_seconds", 0),
            "max_requests_per_minute": raw.get("max_requests_per_minute"),
            "big_play_yards": raw.get("big_play_yards", 20),
        }
        if name == "tank01":
            kwargs["api_key"] = self._token(name)
        return cls(self._client(name), **kwargs)

    def _build_store(self):
        mapping_cfg = self.cfg.mapping
        if mapping_cfg.get("store") == "dynamodb":
            return DynamoMappingStore(
                self.cfg.region,
                table_name=mapping_cfg.get("table"),
                sync_table_name=mapping_cfg.get("sync_table"),
            )
        return MemoryMappingStore()

    # -- controls ----------------------------------------------------------

    def current_interval(self) -> float:
        return self.policy.interval_for(self._now())

    async def start(self, interval_seconds: Optional[float] = None) -> bool:
        self.mapping.load()
        if self.cfg.mapping.get("sync_on_start", True) and self.mapping.needs_sync():
            try:
                await self.sync_players()
            except FeedError as exc:
                log_json(self.logger, "startup_sync_failed", level=logging.WARNING, error=str(exc))
        await self.load_rosters()
        started = self.coordinator.start_polling(interval_seconds)
        log_json(self.logger, "orchestrator_started", started=started, interval_seconds=self.current_interval())
        return started

    def stop(self) -> None:
        self.coordinator.stop_polling()

    async def manual_poll(self) -> Dict[str, Dict[str, Any]]:
        return await self.coordinator.manual_poll()

    def emergency_stop_polling(self) -> None:
        self.coordinator.emergency_stop()
        log_json(self.logger, "emergency_stop_polling", level=logging.WARNING)

    def reset_emergency_stop(self) -> None:
        self.coordinator.reset_emergency_stop()

    async def sync_players(self, force_update: bool = False) -> Dict[str, int]:
        return await self.mapping.sync_all_players(force_update=force_update)

    def cleanup_players(self) -> int:
        return self.mapping.cleanup_inactive_players()

    async def load_rosters(self) -> List[RosterEntry]:
        rosters: List[RosterEntry] = []
        for league in self.cfg.leagues:
            if not league.enabled:
                continue
            try:
                roster = await self._load_league(league)
            except FeedError as exc:
                log_json(
                    self.logger,
                    "roster_load_failed",
                    level=logging.WARNING,
                    league_id=league.league_id,
                    platform=league.platform.value,
                    error=str(exc),
                )
                continue
            if roster is not None:
                rosters.append(roster)
        self.attribution.set_rosters(rosters)
        return rosters

    async def _load_league(self, league: LeagueConfig) -> Optional[RosterEntry]:
        overrides = self.cfg.scoring.get(league.league_id)
        if league.roster:
            if overrides:
                self.attribution.set_scoring_rules(league.league_id, merge_rules(overrides, self.attribution.default_rules))
            return RosterEntry(
                league_id=league.league_id,
                platform=league.platform,
                team_id=league.league_id,
                player_ids=tuple(league.roster),
                team_name=league.custom_team_name or "",
            )
        if league.platform == Platform.SLEEPER and self.sleeper is not None:
            fetched = await self.sleeper.fetch_league(league)
            rules = merge_rules(fetched.scoring_settings, self.attribution.default_rules)
            self.attribution.set_scoring_rules(league.league_id, merge_rules(overrides, rules))
            return fetched.roster
        log_json(
            self.logger,
            "roster_unavailable",
            level=logging.WARNING,
            league_id=league.league_id,
            platform=league.platform.value,
        )
        return None

    # -- reads -------------------------------------------------------------

    def get_recent_events(self, league_id: str, limit: Optional[int] = None) -> List[AttributedEvent]:
        return self.cache.get_recent_events(league_id, limit)

    def get_cache_stats(self) -> Dict[str, Any]:
        return self.cache.get_cache_stats()

    def get_service_status(self) -> Dict[str, Any]:
        window = self.policy.active_window(self._now())
        return {
            "interval_seconds": self.current_interval(),
            "live_window": window.tier if window else None,
            "coordinator": self.coordinator.get_service_status(),
            "mapping": self.mapping.stats(),
            "attribution": self.attribution.stats(),
            "cache": self.cache.get_cache_stats(),
        }

    # -- lifecycle ---------------------------------------------------------

    async def run_forever(self, maintenance_interval_seconds: float = 300) -> None:
        await self.start()
        while True:
            await asyncio.sleep(maintenance_interval_seconds)
            self.cache.evict_stale()
            self.attribution.prune_dedup()
            if self.mapping.needs_sync():
                try:
                    await self.sync_players()
                except FeedError as exc:
                    log_json(self.logger, "scheduled_sync_failed", level=logging.WARNING, error=str(exc))

    async def close(self) -> None:
        self.stop()
        for poller in (self.coordinator.primary, self.coordinator.backup):
            await poller.join()
        for client in self.clients.values():
            await client.close()
