"""Canonical player identities across providers.

The service keeps an in-memory index of ``(platform, platform id) -> player``
in front of a durable store. Full syncs pull the Tank01 player list, keep the
players worth tracking, and upsert them in fixed-size batches; a batch that
fails to persist is left out of the in-memory index too, so the two never
disagree.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from datetime import date, datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from botocore.exceptions import BotoCoreError, ClientError

from .errors import ConfigError, FeedError
from .logging_utils import log_json
from .models import CanonicalPlayerMapping, Platform, SyncMetadata
from .utils import chunked, utcnow

PlayerFetcher = Callable[[], Awaitable[List[Dict[str, Any]]]]

PLATFORM_FIELDS = {
    Platform.ESPN.value: "espnID",
    Platform.SLEEPER.value: "sleeperBotID",
    Platform.YAHOO.value: "yahooPlayerID",
}


def parse_last_game(value: Any) -> Optional[date]:
    """``20241013_KC@SF`` -> 2024-10-13."""
    if not value:
        return None
    try:
        return datetime.strptime(str(value)[:8], "%Y%m%d").date()
    except ValueError:
        return None


def is_active_player(raw: Dict[str, Any], today: date, active_within_days: int = 400) -> bool:
    if str(raw.get("isFreeAgent", "False")).lower() != "true":
        return True
    last_game = parse_last_game(raw.get("lastGamePlayed"))
    if last_game is not None:
        return (today - last_game).days <= active_within_days
    return any(raw.get(field) for field in PLATFORM_FIELDS.values())


def mapping_from_tank01(raw: Dict[str, Any], now: datetime, is_active: bool = True) -> Optional[CanonicalPlayerMapping]:
    player_id = str(raw.get("playerID") or "").strip()
    if not player_id:
        return None
    name = raw.get("longName") or raw.get("espnName") or ""
    platform_ids = {Platform.TANK01.value: player_id}
    for platform, field in PLATFORM_FIELDS.items():
        value = raw.get(field)
        if value not in (None, ""):
            platform_ids[platform] = str(value).strip()
    alternate = [n for n in (raw.get("espnName"), raw.get("cbsLongName")) if n and n != name]
    return CanonicalPlayerMapping(
        player_id=player_id,
        name=name,
        team=raw.get("team", ""),
        position=raw.get("pos", ""),
        platform_ids=platform_ids,
        alternate_names=sorted(set(alternate)),
        is_active=is_active,
        last_game_played=parse_last_game(raw.get("lastGamePlayed")),
        last_updated=now,
    )


class PlayerMappingService:
    def __init__(
        self,
        store: Any,
        fetch_players: Optional[PlayerFetcher] = None,
        batch_size: int = 500,
        sync_max_age_hours: float = 24,
        inactive_retention_days: int = 30,
        active_within_days: int = 400,
        now_fn: Callable[[], datetime] = utcnow,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.store = store
        self._fetch_players = fetch_players
        self.batch_size = batch_size
        self.sync_max_age = timedelta(hours=sync_max_age_hours)
        self.inactive_retention = timedelta(days=inactive_retention_days)
        self.active_within_days = active_within_days
        self._now = now_fn
        self._logger = logger or logging.getLogger(__name__)
        self._by_id: Dict[str, CanonicalPlayerMapping] = {}
        self._index: Dict[Tuple[str, str], str] = {}
        self._misses: set = set()
        self._loaded = False
        self.lookups = 0
        self.cache_hits = 0

    def __len__(self) -> int:
        return len(self._by_id)

    def load(self) -> int:
        staged = self._stage(self.store.all())
        self._commit(staged)
        self._loaded = True
        log_json(self._logger, "player_mappings_loaded", count=len(self._by_id))
        return len(self._by_id)

    def get(self, player_id: str) -> Optional[CanonicalPlayerMapping]:
        return self._by_id.get(player_id)

    def find_player_by_platform_id(self, platform: Any, platform_id: Any) -> Optional[CanonicalPlayerMapping]:
        platform = Platform.parse(platform)
        key = (platform.value, str(platform_id))
        self.lookups += 1
        player_id = self._index.get(key)
        if player_id is not None:
            self.cache_hits += 1
            return self._by_id[player_id]
        if key in self._misses:
            return None
        try:
            mapping = self.store.find_by_platform_id(platform, key[1])
        except (BotoCoreError, ClientError) as exc:
            log_json(self._logger, "player_lookup_failed", level=logging.WARNING, platform=key[0], platform_id=key[1], error=str(exc))
            return None
        if mapping is None:
            self._misses.add(key)
            return None
        self._commit(self._stage([mapping]))
        return self._by_id.get(mapping.player_id)

    def upsert_players(self, records: Iterable[CanonicalPlayerMapping]) -> int:
        """Write mappings through to the store, then index them.

        Raises whatever the store raises; nothing is indexed in that case.
        """
        staged = self._stage(records)
        if not staged:
            return 0
        self.store.put_batch(staged)
        self._commit(staged)
        return len(staged)

    def needs_sync(self) -> bool:
        last = self.last_completed_sync()
        if last is None or last.completed_at is None:
            return True
        return self._now() - last.completed_at > self.sync_max_age

    def last_completed_sync(self) -> Optional[SyncMetadata]:
        for meta in self.store.list_syncs():
            if meta.status == "completed":
                return meta
        return None

    def sync_history(self, limit: int = 10) -> List[SyncMetadata]:
        return self.store.list_syncs()[:limit]

    async def sync_all_players(self, force_update: bool = False) -> Dict[str, int]:
        if not force_update and not self.needs_sync():
            log_json(self._logger, "player_sync_skipped", reason="recent_sync")
            return {"total": len(self._by_id), "active": sum(1 for m in self._by_id.values() if m.is_active)}
        if self._fetch_players is None:
            raise ConfigError("No player source configured for mapping sync")
        if not self._loaded:
            # conflicts and deactivation are judged against what the store already holds
            self.load()

        now = self._now()
        meta = SyncMetadata(sync_id=uuid.uuid4().hex, sync_type="full", started_at=now)
        self.store.save_sync(meta)
        log_json(self._logger, "player_sync_start", sync_id=meta.sync_id, force=force_update)

        try:
            players = await self._fetch_players()
        except FeedError as exc:
            self._finish_sync(meta, "failed", error=str(exc))
            raise
        meta.api_requests_used = 1

        today = now.date()
        active: List[CanonicalPlayerMapping] = []
        for raw in players:
            if not isinstance(raw, dict) or not is_active_player(raw, today, self.active_within_days):
                continue
            mapping = mapping_from_tank01(raw, now)
            if mapping is not None:
                active.append(mapping)
        meta.total_players = len(players)

        written = 0
        seen: set = set()
        for number, batch in enumerate(chunked(active, self.batch_size), start=1):
            try:
                written += self.upsert_players(batch)
            except Exception as exc:
                meta.failed_batches += 1
                log_json(
                    self._logger,
                    "player_sync_batch_failed",
                    level=logging.ERROR,
                    sync_id=meta.sync_id,
                    batch=number,
                    size=len(batch),
                    error=str(exc),
                )
                continue
            seen.update(m.player_id for m in batch)
            log_json(self._logger, "player_sync_batch", sync_id=meta.sync_id, batch=number, size=len(batch))

        if not meta.failed_batches:
            self._deactivate_missing(seen)

        meta.active_players = written
        status = "failed" if meta.failed_batches else "completed"
        error = f"{meta.failed_batches} batch(es) failed" if meta.failed_batches else None
        self._finish_sync(meta, status, error=error)
        return {"total": meta.total_players, "active": written}

    def cleanup_inactive_players(self) -> int:
        cutoff = self._now() - self.inactive_retention
        doomed = [
            m.player_id
            for m in self.store.all()
            if not m.is_active and (m.last_updated is None or m.last_updated < cutoff)
        ]
        if not doomed:
            return 0
        self.store.delete(doomed)
        for player_id in doomed:
            self._forget(player_id)
        log_json(self._logger, "player_cleanup", removed=len(doomed))
        return len(doomed)

    def stats(self) -> Dict[str, Any]:
        last = self.last_completed_sync()
        return {
            "cached_players": len(self._by_id),
            "lookups": self.lookups,
            "cache_hits": self.cache_hits,
            "last_sync": last.completed_at.isoformat() if last and last.completed_at else None,
            "needs_sync": self.needs_sync(),
        }

    def _deactivate_missing(self, seen: set) -> None:
        missing = [replace(m, is_active=False) for pid, m in self._by_id.items() if pid not in seen and m.is_active]
        if missing:
            self.store.put_batch(missing)
            self._commit(self._stage(missing))
            log_json(self._logger, "player_sync_deactivated", count=len(missing))

    def _finish_sync(self, meta: SyncMetadata, status: str, error: Optional[str] = None) -> None:
        meta.status = status
        meta.completed_at = self._now()
        meta.error_message = error
        self.store.save_sync(meta)
        log_json(
            self._logger,
            "player_sync_complete" if status == "completed" else "player_sync_failed",
            level=logging.INFO if status == "completed" else logging.ERROR,
            sync_id=meta.sync_id,
            total=meta.total_players,
            active=meta.active_players,
            failed_batches=meta.failed_batches,
            error=error,
        )

    def _stage(self, records: Iterable[CanonicalPlayerMapping]) -> List[CanonicalPlayerMapping]:
        """Copy incoming records and strip platform ids claimed by someone else.

        The newest claim on a platform id wins; the previous holder loses that
        id and is included in the returned list so it gets rewritten too.
        """
        staged: Dict[str, CanonicalPlayerMapping] = {}
        claims: Dict[Tuple[str, str], str] = {}
        for record in records:
            mapping = replace(record, platform_ids=dict(record.platform_ids))
            staged[mapping.player_id] = mapping
            for platform, platform_id in list(mapping.platform_ids.items()):
                key = (platform, platform_id)
                owner = claims.get(key) or self._index.get(key)
                if owner and owner != mapping.player_id:
                    loser = staged.get(owner)
                    if loser is None and owner in self._by_id:
                        current = self._by_id[owner]
                        loser = replace(current, platform_ids=dict(current.platform_ids))
                        staged[owner] = loser
                    if loser is not None and loser.platform_ids.get(platform) == platform_id:
                        del loser.platform_ids[platform]
                    log_json(
                        self._logger,
                        "player_mapping_conflict",
                        level=logging.WARNING,
                        platform=platform,
                        platform_id=platform_id,
                        previous_player=owner,
                        player=mapping.player_id,
                    )
                claims[key] = mapping.player_id
        return list(staged.values())

    def _commit(self, staged: List[CanonicalPlayerMapping]) -> None:
        for mapping in staged:
            self._forget(mapping.player_id)
        for mapping in staged:
            self._by_id[mapping.player_id] = mapping
            for platform, platform_id in mapping.platform_ids.items():
                self._index[(platform, platform_id)] = mapping.player_id
                self._misses.discard((platform, platform_id))

    def _forget(self, player_id: str) -> None:
        previous = self._by_id.pop(player_id, None)
        if previous is None:
            return
        for platform, platform_id in previous.platform_ids.items():
            if self._index.get((platform, platform_id)) == player_id:
                del self._index[(platform, platform_id)]
