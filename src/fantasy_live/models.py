"""Canonical records passed between pollers, the mapping service, the
attribution engine and the event cache.

Every provider adapts its payloads into these shapes at its own boundary;
nothing downstream of a poller knows which API an event came from beyond the
``provider`` tag.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .utils import utcnow


class EventType(str, Enum):
    PASSING_TD = "passing_td"
    RUSHING_TD = "rushing_td"
    RECEIVING_TD = "receiving_td"
    FIELD_GOAL = "field_goal"
    SAFETY = "safety"
    TURNOVER = "turnover"
    BIG_PLAY = "big_play"
    STAT_MILESTONE = "stat_milestone"


class Platform(str, Enum):
    TANK01 = "tank01"
    ESPN = "espn"
    SLEEPER = "sleeper"
    YAHOO = "yahoo"

    @classmethod
    def parse(cls, value: Any) -> "Platform":
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().lower())


@dataclass
class RawPlay:
    """One provider play-by-play entry after field extraction."""

    play_id: str
    game_id: str
    player_id: Optional[str]
    team: str
    play_type: str
    description: str
    period: int
    clock: str
    yards: int = 0
    scoring_play: bool = False
    yard_line: Optional[int] = None
    player_name: str = ""
    position: str = ""


@dataclass(frozen=True)
class NormalizedScoringEvent:
    event_id: str
    provider: str
    game_key: str
    provider_game_id: str
    play_id: str
    period: int
    clock: str
    event_type: EventType
    raw_player_id: str
    player_platform: Platform
    description: str
    stats: Dict[str, float] = field(default_factory=dict)
    canonical_player_id: Optional[str] = None
    player_name: str = ""
    position: str = ""
    team: str = ""
    scoring_play: bool = True
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def player_id(self) -> str:
        return self.canonical_player_id or self.raw_player_id

    def as_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "provider": self.provider,
            "game_key": self.game_key,
            "provider_game_id": self.provider_game_id,
            "play_id": self.play_id,
            "period": self.period,
            "clock": self.clock,
            "event_type": self.event_type.value,
            "player_id": self.player_id,
            "raw_player_id": self.raw_player_id,
            "player_platform": self.player_platform.value,
            "player_name": self.player_name,
            "team": self.team,
            "description": self.description,
            "stats": dict(self.stats),
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class CanonicalPlayerMapping:
    player_id: str
    name: str
    team: str = ""
    position: str = ""
    platform_ids: Dict[str, str] = field(default_factory=dict)
    alternate_names: List[str] = field(default_factory=list)
    is_active: bool = True
    last_game_played: Optional[date] = None
    last_updated: Optional[datetime] = None

    def platform_id(self, platform: Platform) -> Optional[str]:
        return self.platform_ids.get(platform.value)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "player_id": self.player_id,
            "name": self.name,
            "team": self.team,
            "position": self.position,
            "platform_ids": dict(self.platform_ids),
            "alternate_names": list(self.alternate_names),
            "is_active": self.is_active,
            "last_game_played": self.last_game_played.isoformat() if self.last_game_played else None,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "CanonicalPlayerMapping":
        last_game = payload.get("last_game_played")
        last_updated = payload.get("last_updated")
        return cls(
            player_id=payload["player_id"],
            name=payload.get("name", ""),
            team=payload.get("team", ""),
            position=payload.get("position", ""),
            platform_ids=dict(payload.get("platform_ids") or {}),
            alternate_names=list(payload.get("alternate_names") or []),
            is_active=bool(payload.get("is_active", True)),
            last_game_played=date.fromisoformat(last_game) if last_game else None,
            last_updated=datetime.fromisoformat(last_updated) if last_updated else None,
        )


@dataclass
class SyncMetadata:
    sync_id: str
    sync_type: str
    started_at: datetime
    status: str = "in_progress"
    completed_at: Optional[datetime] = None
    total_players: int = 0
    active_players: int = 0
    failed_batches: int = 0
    api_requests_used: int = 0
    error_message: Optional[str] = None


@dataclass
class LeagueConfig:
    league_id: str
    platform: Platform
    enabled: bool = True
    custom_team_name: Optional[str] = None
    platform_username: Optional[str] = None
    roster: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "LeagueConfig":
        return cls(
            league_id=str(raw["league_id"]),
            platform=Platform.parse(raw["platform"]),
            enabled=bool(raw.get("enabled", True)),
            custom_team_name=raw.get("custom_team_name"),
            platform_username=raw.get("platform_username"),
            roster=[str(p) for p in raw.get("roster") or []],
        )


@dataclass(frozen=True)
class RosterEntry:
    league_id: str
    platform: Platform
    team_id: str
    player_ids: Tuple[str, ...]
    team_name: str = ""


@dataclass(frozen=True)
class AttributedEvent:
    league_id: str
    team_id: str
    player_id: str
    points: float
    description: str
    timestamp: datetime
    event_type: EventType
    event_id: str
    play_key: str
    player_name: str = ""
    team_name: str = ""
    provider: str = ""
    is_recent: bool = True

    def as_dict(self) -> Dict[str, Any]:
        return {
            "league_id": self.league_id,
            "team_id": self.team_id,
            "team_name": self.team_name,
            "player_id": self.player_id,
            "player_name": self.player_name,
            "points": self.points,
            "description": self.description,
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "event_id": self.event_id,
            "provider": self.provider,
            "is_recent": self.is_recent,
        }
