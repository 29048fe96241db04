from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..api_client import ApiClient
from ..errors import ConfigError
from ..logging_utils import log_json
from ..models import LeagueConfig, Platform, RosterEntry


@dataclass
class SleeperLeague:
    roster: RosterEntry
    scoring_settings: Dict[str, float] = field(default_factory=dict)
    league_name: str = ""


class SleeperRosterSource:
    """Resolves a configured user's roster in a Sleeper league.

    The user is found by matching ``platform_username`` against the league
    members' ``username`` or ``display_name``; the roster is the one they own.
    """

    def __init__(self, client: ApiClient, logger: Optional[logging.Logger] = None) -> None:
        self.client = client
        self._logger = logger or logging.getLogger(__name__)

    async def fetch_league(self, league: LeagueConfig) -> SleeperLeague:
        if not league.platform_username:
            raise ConfigError(f"league {league.league_id}: platform_username is required for Sleeper rosters")
        info = await self.client.get_json(f"/league/{league.league_id}")
        users = await self.client.get_json(f"/league/{league.league_id}/users")
        rosters = await self.client.get_json(f"/league/{league.league_id}/rosters")

        wanted = league.platform_username.strip().lower()
        user = next(
            (
                u
                for u in users or []
                if wanted in (str(u.get("username") or "").lower(), str(u.get("display_name") or "").lower())
            ),
            None,
        )
        if user is None:
            raise ConfigError(f"league {league.league_id}: no member named {league.platform_username}")

        owned = next((r for r in rosters or [] if r.get("owner_id") == user.get("user_id")), None)
        if owned is None:
            raise ConfigError(f"league {league.league_id}: {league.platform_username} has no roster")

        team_name = (
            league.custom_team_name
            or (user.get("metadata") or {}).get("team_name")
            or user.get("display_name")
            or league.platform_username
        )
        entry = RosterEntry(
            league_id=league.league_id,
            platform=Platform.SLEEPER,
            team_id=str(owned.get("roster_id")),
            player_ids=tuple(str(p) for p in owned.get("players") or []),
            team_name=team_name,
        )
        scoring = {k: float(v) for k, v in ((info or {}).get("scoring_settings") or {}).items() if _is_number(v)}
        log_json(
            self._logger,
            "sleeper_roster_loaded",
            league_id=league.league_id,
            team_id=entry.team_id,
            players=len(entry.player_ids),
        )
        return SleeperLeague(roster=entry, scoring_settings=scoring, league_name=(info or {}).get("name", ""))


def _is_number(value: Any) -> bool:
    try:
        float(value)
    except (TypeError, ValueError):
        return False
    return True
