"""Shared test fixtures for the fantasy_live test suite.

Provides moto-based DynamoDB tables, provider payloads shaped like the real
Tank01 / ESPN / Sleeper responses, and a small fake HTTP feed that records
every request it serves.
"""

from __future__ import annotations

import os
from typing import Any, Callable, Dict, List, Optional

import boto3
import httpx
import pytest
from moto import mock_aws

from fantasy_live.api_client import ApiClient, ApiConfig
from fantasy_live.config import Config


# ---------------------------------------------------------------------------
# AWS credential safety: prevent accidental real AWS calls
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True, scope="session")
def aws_credentials():
    """Set fake AWS credentials for the entire test session."""
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_SECURITY_TOKEN"] = "testing"
    os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "us-east-1"
    yield
    for key in (
        "AWS_ACCESS_KEY_ID",
        "AWS_SECRET_ACCESS_KEY",
        "AWS_SECURITY_TOKEN",
        "AWS_SESSION_TOKEN",
        "AWS_DEFAULT_REGION",
    ):
        os.environ.pop(key, None)


@pytest.fixture()
def tank01_key(monkeypatch):
    monkeypatch.setenv("TANK01_API_KEY", "test-key")
    return "test-key"


# ---------------------------------------------------------------------------
# Moto-based DynamoDB tables
# ---------------------------------------------------------------------------

@pytest.fixture()
def dynamodb_tables():
    """Create the player mapping and sync metadata tables.

    Yields the boto3 DynamoDB client.
    """
    with mock_aws():
        client = boto3.client("dynamodb", region_name="us-east-1")
        client.create_table(
            TableName="fantasy_player_mappings",
            KeySchema=[{"AttributeName": "player_id", "KeyType": "HASH"}],
            AttributeDefinitions=[{"AttributeName": "player_id", "AttributeType": "S"}],
            BillingMode="PAY_PER_REQUEST",
        )
        client.create_table(
            TableName="fantasy_sync_metadata",
            KeySchema=[{"AttributeName": "sync_id", "KeyType": "HASH"}],
            AttributeDefinitions=[{"AttributeName": "sync_id", "AttributeType": "S"}],
            BillingMode="PAY_PER_REQUEST",
        )
        yield client


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

FAST_RETRY = {
    "max_attempts": 1,
    "base_delay_seconds": 0.001,
    "max_delay_seconds": 0.01,
}


@pytest.fixture()
def sample_config() -> Config:
    """Return a Config with fast retries and no minimum poll interval."""
    return Config({
        "region": "us-east-1",
        "primary_provider": "tank01",
        "backup_provider": "espn",
        "providers": {
            "tank01": {
                "base_url": "https://tank01.test",
                "rate_limit_per_sec": 1000,
                "daily_quota": 100,
                "retry": dict(FAST_RETRY),
            },
            "espn": {
                "base_url": "https://espn.test",
                "rate_limit_per_sec": 1000,
                "retry": dict(FAST_RETRY),
            },
            "sleeper": {
                "base_url": "https://sleeper.test",
                "rate_limit_per_sec": 1000,
                "retry": dict(FAST_RETRY),
            },
        },
        "circuit_breaker": {"failure_threshold": 5, "cooldown_seconds": 120},
        "polling": {
            "base_interval_seconds": 0.01,
            "live_hours": False,
            "hybrid": {"restart_delay_seconds": 0.0},
        },
        "mapping": {"store": "memory", "sync_on_start": False},
        "events": {"cache_capacity": 10, "dedup_ttl_hours": 6},
        "scoring": {"L1": {"rush_td": 6, "rush_yd": 0}},
        "leagues": [
            {"league_id": "L1", "platform": "tank01", "roster": ["4362628"], "custom_team_name": "Team One"},
            {"league_id": "S1", "platform": "sleeper", "platform_username": "coach"},
            {"league_id": "Y1", "platform": "yahoo", "enabled": False},
        ],
    })


# ---------------------------------------------------------------------------
# Provider payloads
# ---------------------------------------------------------------------------

TANK01_GAME_ID = "20241013_KC@SF"
ESPN_GAME_ID = "401671789"


def tank01_play(play_id: str, player_id: str, description: str, play_type: str = "Pass",
                quarter: str = "1st", clock: str = "10:32", yards: str = "0", scoring: bool = False,
                **extra: Any) -> Dict[str, Any]:
    return {
        "playID": play_id,
        "gameID": TANK01_GAME_ID,
        "playerID": player_id,
        "team": "KC",
        "playType": play_type,
        "playDescription": description,
        "quarter": quarter,
        "gameClock": clock,
        "yards": yards,
        "isScoringPlay": "True" if scoring else "False",
        **extra,
    }


@pytest.fixture()
def tank01_scores() -> Dict[str, Any]:
    return {
        "statusCode": 200,
        "body": {
            TANK01_GAME_ID: {
                "gameID": TANK01_GAME_ID,
                "away": "KC",
                "home": "SF",
                "gameStatus": "Live - In Progress",
                "gameStatusCode": "1",
            },
            "20241013_DET@DAL": {
                "gameID": "20241013_DET@DAL",
                "away": "DET",
                "home": "DAL",
                "gameStatus": "Completed",
                "gameStatusCode": "2",
            },
        },
    }


@pytest.fixture()
def tank01_plays() -> List[Dict[str, Any]]:
    return [
        tank01_play("1", "3139477", "P. Mahomes pass short right to T. Kelce for 8 yards", yards="8"),
        tank01_play(
            "2", "4362628", "I. Pacheco rush up the middle for 12 yards, TOUCHDOWN",
            play_type="Rush", yards="12", scoring=True,
        ),
        tank01_play(
            "3", "15795", "H. Butker 45 yard field goal is GOOD",
            play_type="Field Goal", quarter="2nd", clock="1:05", scoring=True,
        ),
    ]


@pytest.fixture()
def tank01_players() -> List[Dict[str, Any]]:
    return [
        {
            "playerID": "4362628",
            "longName": "Isiah Pacheco",
            "team": "KC",
            "pos": "RB",
            "espnID": "4361529",
            "sleeperBotID": "8205",
            "yahooPlayerID": "35865",
            "isFreeAgent": "False",
            "lastGamePlayed": "20241013_KC@SF",
        },
        {
            "playerID": "3139477",
            "longName": "Patrick Mahomes",
            "espnName": "Pat Mahomes",
            "team": "KC",
            "pos": "QB",
            "espnID": "3139477",
            "sleeperBotID": "4046",
            "isFreeAgent": "False",
            "lastGamePlayed": "20241013_KC@SF",
        },
        {
            "playerID": "9999001",
            "longName": "Long Gone",
            "pos": "WR",
            "isFreeAgent": "True",
            "lastGamePlayed": "20190105_NE@NYJ",
        },
    ]


def espn_play(play_id: str, seq: int, athlete_id: str, name: str, text: str, type_text: str = "Rush",
              period: int = 1, clock: str = "10:32", yards: int = 0, scoring: bool = False,
              position: str = "RB") -> Dict[str, Any]:
    return {
        "id": play_id,
        "sequenceNumber": str(seq),
        "type": {"text": type_text},
        "text": text,
        "period": {"number": period},
        "clock": {"displayValue": clock},
        "scoringPlay": scoring,
        "statYardage": yards,
        "participants": [
            {
                "athlete": {
                    "id": athlete_id,
                    "displayName": name,
                    "position": {"abbreviation": position},
                    "team": {"id": "12", "abbreviation": "KC"},
                }
            }
        ],
    }


@pytest.fixture()
def espn_scoreboard() -> Dict[str, Any]:
    return {
        "events": [
            {
                "id": ESPN_GAME_ID,
                "date": "2024-10-13T20:25Z",
                "status": {"type": {"state": "in"}},
                "competitions": [
                    {
                        "competitors": [
                            {"homeAway": "home", "team": {"abbreviation": "SF"}},
                            {"homeAway": "away", "team": {"abbreviation": "KC"}},
                        ]
                    }
                ],
            },
            {
                "id": "401671790",
                "date": "2024-10-13T17:00Z",
                "status": {"type": {"state": "post"}},
                "competitions": [],
            },
        ]
    }


@pytest.fixture()
def espn_summary() -> Dict[str, Any]:
    touchdown = espn_play(
        "40167178901", 101, "4361529", "Isiah Pacheco",
        "Isiah Pacheco rush up the middle for 12 yards, TOUCHDOWN.", yards=12, scoring=True,
    )
    return {
        "drives": {
            "previous": [
                {
                    "plays": [
                        espn_play(
                            "40167178900", 100, "3139477", "Patrick Mahomes",
                            "Patrick Mahomes pass short right to Travis Kelce for 8 yards",
                            type_text="Pass Reception", yards=8, position="QB",
                        ),
                        touchdown,
                    ]
                }
            ],
            "current": {"plays": [touchdown]},
        }
    }


# ---------------------------------------------------------------------------
# Fake HTTP feed
# ---------------------------------------------------------------------------

class FakeFeed:
    """Routes requests by path to canned JSON and records every call.

    ``fail_status`` makes every request answer with that status instead.
    """

    def __init__(self, routes: Optional[Dict[str, Any]] = None) -> None:
        self.routes: Dict[str, Any] = dict(routes or {})
        self.calls: List[httpx.Request] = []
        self.fail_status: Optional[int] = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        if self.fail_status is not None:
            return httpx.Response(self.fail_status, json={"error": "boom"})
        route = self.routes.get(request.url.path)
        if route is None:
            return httpx.Response(404, json={"error": "not found"})
        payload = route(request) if callable(route) else route
        return httpx.Response(200, json=payload)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def paths(self) -> List[str]:
        return [r.url.path for r in self.calls]


@pytest.fixture()
def tank01_feed(tank01_scores, tank01_plays, tank01_players) -> FakeFeed:
    return FakeFeed({
        "/getNFLScoresOnly": tank01_scores,
        "/getNFLBoxScore": {"body": {"gameID": TANK01_GAME_ID, "playByPlay": tank01_plays}},
        "/getNFLPlayerList": {"body": tank01_players},
    })


@pytest.fixture()
def espn_feed(espn_scoreboard, espn_summary) -> FakeFeed:
    return FakeFeed({
        "/scoreboard": espn_scoreboard,
        "/summary": espn_summary,
    })


@pytest.fixture()
def make_client() -> Callable[..., ApiClient]:
    """Factory for ApiClients backed by a FakeFeed."""
    def _make(name: str, feed: FakeFeed, **overrides: Any) -> ApiClient:
        cfg = {
            "base_url": f"https://{name}.test",
            "rate_limit_per_sec": 1000,
            "retry": dict(FAST_RETRY),
        }
        cfg.update(overrides)
        client = ApiClient(name, ApiConfig(**cfg), transport=feed.transport)
        return client

    return _make


@pytest.fixture()
def sleeper_feed() -> FakeFeed:
    return FakeFeed({
        "/league/S1": {
            "name": "Sunday Money",
            "scoring_settings": {"rush_td": 6.0, "rec": 1.0, "rush_yd": 0.1, "bonus_rush_yd_100": 3.0, "note": "x"},
        },
        "/league/S1/users": [
            {"user_id": "u2", "username": "rival", "display_name": "Rival"},
            {"user_id": "u1", "username": "coach", "display_name": "Coach", "metadata": {"team_name": "Tush Push"}},
        ],
        "/league/S1/rosters": [
            {"roster_id": 1, "owner_id": "u2", "players": ["4046"]},
            {"roster_id": 3, "owner_id": "u1", "players": ["8205", "4046"]},
        ],
    })
