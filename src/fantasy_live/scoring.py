from __future__ import annotations

from typing import Dict, Mapping, Optional

# Standard Sleeper/Yahoo weights, keyed by Sleeper stat names.
DEFAULT_SCORING: Dict[str, float] = {
    "pass_yd": 0.04,
    "pass_td": 4.0,
    "pass_int": -2.0,
    "rush_yd": 0.1,
    "rush_td": 6.0,
    "rec": 0.0,
    "rec_yd": 0.1,
    "rec_td": 6.0,
    "fum_lost": -2.0,
    "fgm_0_19": 3.0,
    "fgm_20_29": 3.0,
    "fgm_30_39": 3.0,
    "fgm_40_49": 4.0,
    "fgm_50p": 5.0,
    "safe": 2.0,
    "bonus_rush_yd_100": 0.0,
    "bonus_rec_yd_100": 0.0,
    "bonus_pass_yd_300": 0.0,
}


def merge_rules(overrides: Optional[Mapping[str, float]] = None, base: Optional[Mapping[str, float]] = None) -> Dict[str, float]:
    rules = dict(DEFAULT_SCORING if base is None else base)
    for key, value in (overrides or {}).items():
        try:
            rules[key] = float(value)
        except (TypeError, ValueError):
            continue
    return rules


def compute_points(stats: Mapping[str, float], rules: Mapping[str, float]) -> float:
    """Fantasy points for a stat delta. Stats without a weight score zero.

    ``fgm`` is the generic made-field-goal count; it only scores when a league
    weights it and no distance bucket is present in the same delta.
    """
    total = 0.0
    has_bucket = any(key.startswith("fgm_") for key in stats)
    for key, value in stats.items():
        if key == "fgm" and has_bucket:
            continue
        total += float(value) * float(rules.get(key, 0.0))
    return round(total, 2)
