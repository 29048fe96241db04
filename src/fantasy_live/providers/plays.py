"""Provider-independent play classification.

Stat deltas use Sleeper's stat keys so that a league's ``scoring_settings``
can be applied to them directly.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Optional, Tuple

from ..models import EventType, RawPlay

BIG_PLAY_YARDS = 20

TEAM_ALIASES = {
    "WAS": "WSH",
    "JAC": "JAX",
    "LA": "LAR",
    "LVR": "LV",
    "OAK": "LV",
    "SD": "LAC",
}

MILESTONES: Dict[str, List[Tuple[int, str]]] = {
    "pass_yd": [(300, "bonus_pass_yd_300"), (400, "bonus_pass_yd_400")],
    "rush_yd": [(100, "bonus_rush_yd_100"), (200, "bonus_rush_yd_200")],
    "rec_yd": [(100, "bonus_rec_yd_100"), (200, "bonus_rec_yd_200")],
}

_FG_DISTANCE = re.compile(r"(\d+)[\s-]*(?:yd|yard)", re.IGNORECASE)
_RECEIVER_HINTS = ("caught", "reception", "pass from")


def normalize_team(abbr: str) -> str:
    abbr = (abbr or "").strip().upper()
    return TEAM_ALIASES.get(abbr, abbr)


def make_game_key(game_date: date, away: str, home: str) -> str:
    return f"{game_date:%Y%m%d}_{normalize_team(away)}@{normalize_team(home)}"


def normalize_clock(clock: str) -> str:
    clock = (clock or "").strip()
    if ":" not in clock:
        return clock
    minutes, seconds = clock.split(":", 1)
    try:
        return f"{int(minutes)}:{int(seconds):02d}"
    except ValueError:
        return clock


def field_goal_bucket(distance: int) -> str:
    if distance < 20:
        return "fgm_0_19"
    if distance < 30:
        return "fgm_20_29"
    if distance < 40:
        return "fgm_30_39"
    if distance < 50:
        return "fgm_40_49"
    return "fgm_50p"


def _is_pass(play: RawPlay, text: str) -> bool:
    return "pass" in play.play_type.lower() or "pass" in text


def _is_rush(play: RawPlay, text: str) -> bool:
    ptype = play.play_type.lower()
    return "rush" in ptype or "run" in ptype or "rush" in text or " run " in text


def _is_receiver(play: RawPlay, text: str) -> bool:
    if play.position:
        return play.position.upper() != "QB"
    return any(hint in text for hint in _RECEIVER_HINTS)


def yardage_stats(play: RawPlay) -> Dict[str, float]:
    """Yardage credited to the play's player, whatever the play's outcome."""
    text = play.description.lower()
    if not play.yards:
        return {}
    if _is_pass(play, text):
        if _is_receiver(play, text):
            return {"rec_yd": float(play.yards), "rec": 1.0}
        return {"pass_yd": float(play.yards)}
    if _is_rush(play, text):
        return {"rush_yd": float(play.yards)}
    return {}


def classify_play(play: RawPlay, big_play_yards: int = BIG_PLAY_YARDS) -> Optional[Tuple[EventType, Dict[str, float]]]:
    text = play.description.lower()
    ptype = play.play_type.lower()

    if "no good" not in text and ("field goal" in text or "field goal" in ptype):
        if "good" in text or play.scoring_play:
            distance = _field_goal_distance(play)
            return EventType.FIELD_GOAL, {"fgm": 1.0, field_goal_bucket(distance): 1.0}
        return None

    if "touchdown" in text or " td" in text:
        if "intercept" in text:
            return EventType.TURNOVER, {"pass_int": 1.0}
        if "fumble" in text and not _is_rush(play, text) and not _is_pass(play, text):
            return EventType.TURNOVER, {"fum_lost": 1.0}
        yards = yardage_stats(play)
        if _is_pass(play, text):
            if _is_receiver(play, text):
                return EventType.RECEIVING_TD, {**yards, "rec_td": 1.0}
            return EventType.PASSING_TD, {**yards, "pass_td": 1.0}
        return EventType.RUSHING_TD, {**yards, "rush_td": 1.0}

    if "safety" in text:
        return EventType.SAFETY, {"safe": 1.0}

    if "intercept" in text:
        return EventType.TURNOVER, {"pass_int": 1.0}

    if "fumble" in text:
        return EventType.TURNOVER, {"fum_lost": 1.0}

    if play.yards >= big_play_yards:
        stats = yardage_stats(play)
        if stats:
            return EventType.BIG_PLAY, stats
    return None


def _field_goal_distance(play: RawPlay) -> int:
    match = _FG_DISTANCE.search(play.description)
    if match:
        return int(match.group(1))
    if play.yard_line is not None:
        # line of scrimmage plus end zone and holder depth
        return play.yard_line + 17
    return 35


@dataclass
class MilestoneHit:
    stats: Dict[str, float]
    totals: Dict[str, float]


class MilestoneTracker:
    """Accumulates per-game yardage for each player and reports thresholds
    as they are crossed."""

    def __init__(self, thresholds: Optional[Dict[str, List[Tuple[int, str]]]] = None) -> None:
        self.thresholds = thresholds or MILESTONES
        self._totals: Dict[Tuple[str, str], Dict[str, float]] = {}

    def add(self, game_key: str, player_id: str, stats: Dict[str, float]) -> Optional[MilestoneHit]:
        totals = self._totals.setdefault((game_key, player_id), {})
        crossed: Dict[str, float] = {}
        for stat, limits in self.thresholds.items():
            delta = stats.get(stat)
            if not delta:
                continue
            before = totals.get(stat, 0.0)
            after = before + delta
            totals[stat] = after
            for threshold, bonus_key in limits:
                if before < threshold <= after:
                    crossed[bonus_key] = 1.0
        if not crossed:
            return None
        return MilestoneHit(stats=crossed, totals=dict(totals))

    def forget_game(self, game_key: str) -> None:
        for key in [k for k in self._totals if k[0] == game_key]:
            del self._totals[key]
