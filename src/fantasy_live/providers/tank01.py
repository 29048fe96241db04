from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from ..api_client import ApiClient
from ..errors import ConfigError
from ..models import Platform, RawPlay
from ..utils import to_int
from .base import GameRef, ProviderPoller
from .plays import make_game_key

_GAME_ID = re.compile(r"^(\d{8})_([A-Z]+)@([A-Z]+)$")


def rapidapi_headers(base_url: str, api_key: str) -> Dict[str, str]:
    return {
        "X-RapidAPI-Key": api_key,
        "X-RapidAPI-Host": urlparse(base_url).netloc,
    }


class Tank01Api:
    """Thin wrapper over the Tank01 NFL endpoints the pipeline uses."""

    def __init__(self, client: ApiClient) -> None:
        self.client = client

    async def scores(self) -> Dict[str, Any]:
        data = await self.client.get_json("/getNFLScoresOnly")
        body = (data or {}).get("body") or {}
        # keyed by game id, or occasionally a plain list
        if isinstance(body, list):
            return {g.get("gameID"): g for g in body if isinstance(g, dict)}
        return body

    async def box_score(self, game_id: str) -> Dict[str, Any]:
        data = await self.client.get_json("/getNFLBoxScore", {"gameID": game_id, "playByPlay": "true"})
        return (data or {}).get("body") or {}

    async def player_list(self) -> List[Dict[str, Any]]:
        data = await self.client.get_json("/getNFLPlayerList")
        body = (data or {}).get("body") or []
        return [p for p in body if isinstance(p, dict)]


def is_game_live(game: Dict[str, Any]) -> bool:
    status = str(game.get("gameStatus") or "")
    return str(game.get("gameStatusCode")) == "1" or "Live" in status or "In Progress" in status


def game_key_from_id(game_id: str) -> str:
    match = _GAME_ID.match(game_id or "")
    if not match:
        return game_id
    day, away, home = match.groups()
    return make_game_key(datetime.strptime(day, "%Y%m%d").date(), away, home)


def parse_quarter(value: Any) -> int:
    """`1st`..`4th` map to 1-4; overtime counts on from 5 the way ESPN numbers it."""
    text = str(value or "").strip().upper()
    if "OT" in text:
        return 4 + to_int(re.sub(r"\D", "", text), default=1)
    return to_int(re.sub(r"\D", "", text), default=1)


def parse_play(raw: Dict[str, Any], game_id: str, index: int) -> Optional[RawPlay]:
    description = raw.get("playDescription") or raw.get("play") or ""
    play_id = raw.get("playID") or f"{game_id}-{index}"
    if not description:
        return None
    yard_line = raw.get("yardLine")
    return RawPlay(
        play_id=str(play_id),
        game_id=game_id,
        player_id=str(raw["playerID"]) if raw.get("playerID") else None,
        team=raw.get("team", ""),
        play_type=raw.get("playType", ""),
        description=description,
        period=parse_quarter(raw.get("quarter")),
        clock=str(raw.get("gameClock") or raw.get("playClock") or ""),
        yards=to_int(raw.get("yards")),
        scoring_play=str(raw.get("isScoringPlay", "")).lower() == "true",
        yard_line=to_int(yard_line) if yard_line not in (None, "") else None,
    )


class Tank01Poller(ProviderPoller):
    provider = "tank01"
    platform = Platform.TANK01

    def __init__(self, client: ApiClient, api_key: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(client, **kwargs)
        self.api = Tank01Api(client)
        self.api_key = api_key

    def check_config(self) -> None:
        if not self.api_key:
            raise ConfigError("Tank01 API key is not configured; set TANK01_API_KEY or RAPIDAPI_KEY")

    async def fetch_active_games(self) -> List[GameRef]:
        games = await self.api.scores()
        active: List[GameRef] = []
        for game_id, game in games.items():
            if not isinstance(game, dict) or not is_game_live(game):
                continue
            game_id = str(game.get("gameID") or game_id)
            active.append(
                GameRef(
                    provider_game_id=game_id,
                    game_key=game_key_from_id(game_id),
                    away=game.get("away", ""),
                    home=game.get("home", ""),
                    status=str(game.get("gameStatus") or ""),
                )
            )
        return active

    async def fetch_plays(self, game: GameRef) -> List[RawPlay]:
        body = await self.api.box_score(game.provider_game_id)
        raw_plays = body.get("playByPlay") or []
        plays = []
        for index, raw in enumerate(raw_plays):
            if not isinstance(raw, dict):
                continue
            play = parse_play(raw, game.provider_game_id, index)
            if play is not None:
                plays.append(play)
        return plays
