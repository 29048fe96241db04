from __future__ import annotations

from fantasy_live.pubsub import Subscribers
from fantasy_live.scoring import DEFAULT_SCORING, compute_points, merge_rules


class TestScoring:
    def test_rushing_touchdown_with_yards(self):
        assert compute_points({"rush_td": 1, "rush_yd": 12}, DEFAULT_SCORING) == 7.2

    def test_unweighted_stats_score_zero(self):
        assert compute_points({"rec": 1, "rec_yd": 8}, {"rec_td": 6}) == 0

    def test_field_goal_bucket_beats_generic_make(self):
        rules = merge_rules({"fgm": 3})
        assert compute_points({"fgm": 1, "fgm_40_49": 1}, rules) == 4
        assert compute_points({"fgm": 1}, rules) == 3

    def test_turnover_is_negative(self):
        assert compute_points({"pass_int": 1}, DEFAULT_SCORING) == -2

    def test_merge_rules(self):
        rules = merge_rules({"rec": "0.5", "bad": "n/a"})
        assert rules["rec"] == 0.5
        assert "bad" not in rules
        assert rules["rush_td"] == 6
        assert DEFAULT_SCORING["rec"] == 0.0

    def test_merge_onto_custom_base(self):
        assert merge_rules({"rush_td": 4}, base={"rec": 1}) == {"rec": 1, "rush_td": 4.0}


class TestSubscribers:
    async def test_error_boundary_and_unsubscribe(self):
        subs = Subscribers("test")
        seen = []

        async def async_cb(item):
            seen.append(("async", item))

        def failing(item):
            raise RuntimeError("boom")

        unsubscribe = subs.subscribe(async_cb)
        subs.subscribe(failing)
        subs.subscribe(lambda item: seen.append(("sync", item)))
        assert await subs.publish(1) == 2
        assert seen == [("async", 1), ("sync", 1)]

        unsubscribe()
        assert len(subs) == 2
        await subs.publish(2)
        assert seen[-1] == ("sync", 2)
