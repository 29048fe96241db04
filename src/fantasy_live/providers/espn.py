from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from ..models import Platform, RawPlay
from ..utils import to_int
from .base import GameRef, ProviderPoller
from .plays import make_game_key

LIVE_STATES = ("in", "halftime", "delayed")
GAME_DAY_TZ = ZoneInfo("America/New_York")


def parse_event_date(value: str) -> Optional[date]:
    """ESPN event timestamps are UTC; game keys use the US Eastern date."""
    for fmt in ("%Y-%m-%dT%H:%MZ", "%Y-%m-%dT%H:%M:%SZ"):
        try:
            moment = datetime.strptime(value, fmt).replace(tzinfo=timezone.utc)
        except (TypeError, ValueError):
            continue
        return moment.astimezone(GAME_DAY_TZ).date()
    return None


def _team_abbreviations(event: Dict[str, Any]) -> Dict[str, str]:
    teams: Dict[str, str] = {}
    for competition in event.get("competitions") or []:
        for competitor in competition.get("competitors") or []:
            side = competitor.get("homeAway")
            abbr = (competitor.get("team") or {}).get("abbreviation")
            if side and abbr:
                teams[side] = abbr
    return teams


def _event_state(event: Dict[str, Any]) -> str:
    status = event.get("status") or {}
    if not status:
        competitions = event.get("competitions") or [{}]
        status = competitions[0].get("status") or {}
    return str(((status.get("type") or {}).get("state")) or "").lower()


def parse_play(raw: Dict[str, Any], game_id: str) -> Optional[RawPlay]:
    play_id = raw.get("id")
    text = raw.get("text") or ""
    if not play_id or not text:
        return None
    participants = raw.get("participants") or []
    athlete = (participants[0].get("athlete") or {}) if participants else {}
    start = raw.get("start") or {}
    yard_line = start.get("yardsToEndzone")
    return RawPlay(
        play_id=str(play_id),
        game_id=game_id,
        player_id=str(athlete["id"]) if athlete.get("id") else None,
        team=str((athlete.get("team") or {}).get("abbreviation") or (athlete.get("team") or {}).get("id") or ""),
        play_type=(raw.get("type") or {}).get("text", ""),
        description=text,
        period=to_int((raw.get("period") or {}).get("number"), default=1),
        clock=(raw.get("clock") or {}).get("displayValue", ""),
        yards=to_int(raw.get("statYardage")),
        scoring_play=bool(raw.get("scoringPlay")),
        yard_line=to_int(yard_line) if yard_line is not None else None,
        player_name=athlete.get("displayName", ""),
        position=(athlete.get("position") or {}).get("abbreviation", ""),
    )


def plays_from_summary(summary: Dict[str, Any], game_id: str) -> List[RawPlay]:
    drives = summary.get("drives") or {}
    raw_plays: List[Dict[str, Any]] = []
    for drive in drives.get("previous") or []:
        raw_plays.extend(drive.get("plays") or [])
    current = drives.get("current") or {}
    raw_plays.extend(current.get("plays") or [])

    plays: List[RawPlay] = []
    seen = set()
    for raw in sorted(raw_plays, key=lambda p: to_int(p.get("sequenceNumber"))):
        play = parse_play(raw, game_id)
        # the current drive is also repeated at the end of "previous" once it ends
        if play is None or play.play_id in seen:
            continue
        seen.add(play.play_id)
        plays.append(play)
    return plays


class EspnPoller(ProviderPoller):
    """Public ESPN scoreboard + game summary feed. No credentials, no quota."""

    provider = "espn"
    platform = Platform.ESPN

    async def fetch_active_games(self) -> List[GameRef]:
        data = await self.client.get_json("/scoreboard")
        active: List[GameRef] = []
        for event in (data or {}).get("events") or []:
            if _event_state(event) not in LIVE_STATES:
                continue
            teams = _team_abbreviations(event)
            game_date = parse_event_date(event.get("date", ""))
            game_id = str(event.get("id"))
            if game_date and teams.get("away") and teams.get("home"):
                game_key = make_game_key(game_date, teams["away"], teams["home"])
            else:
                game_key = f"espn-{game_id}"
            active.append(
                GameRef(
                    provider_game_id=game_id,
                    game_key=game_key,
                    away=teams.get("away", ""),
                    home=teams.get("home", ""),
                    status=_event_state(event),
                )
            )
        return active

    async def fetch_plays(self, game: GameRef) -> List[RawPlay]:
        summary = await self.client.get_json("/summary", {"event": game.provider_game_id})
        return plays_from_summary(summary or {}, game.provider_game_id)
