"""Tests for the leaderboard aggregator."""
from __future__ import annotations

import datetime as dt

import duckdb
import pytest

from conftest import add_match, predict, settle
from tipster.leaderboard import LeaderboardAggregator, LeaderboardFilters
from tipster.scoring import ScoringEngine


@pytest.fixture()
def league(seeded):
    """
    Match 1 (PL) ends 1-1: charlie exact (9), alpha/bravo 0.
    Match 2 (BL1) ends 2-0: alpha and bravo right (quota 3 + bonuses), charlie wrong.
    """
    add_match(seeded, 2, competition="BL1", hours_to_kickoff=48)
    predict(seeded, 2, "alpha", 2, 0)
    predict(seeded, 2, "bravo", 1, 0)
    predict(seeded, 2, "charlie", 0, 1)
    settle(seeded, 1, 1, 1)
    settle(seeded, 2, 2, 0)
    return seeded


def by_model(entries):
    return {e.model_id: e for e in entries}


class TestLeaderboard:

    def test_metrics(self, league):
        entries = by_model(LeaderboardAggregator(league).get_leaderboard())
        # match 2 quotas: 2 x H, 1 x A -> H=3
        alpha = entries["alpha"]
        assert (alpha.total_predictions, alpha.scored_predictions) == (2, 2)
        assert alpha.total_points == 3 + 1 + 3
        assert alpha.correct_tendencies == 1
        assert alpha.exact_scores == 1
        assert alpha.avg_points == 3.5
        assert alpha.accuracy == 50.0
        assert alpha.exact_accuracy == 50.0

        charlie = entries["charlie"]
        assert charlie.total_points == 9
        assert charlie.correct_goal_diffs == 1
        assert charlie.current_streak == -1

        bravo = entries["bravo"]
        assert bravo.total_points == 3
        assert bravo.correct_tendencies == 1
        assert bravo.exact_scores == 0

    def test_ranking_order(self, league):
        entries = LeaderboardAggregator(league).get_leaderboard()
        assert [e.model_id for e in entries] == ["charlie", "alpha", "bravo"]
        assert [e.rank for e in entries] == [1, 2, 3]

    def test_ties_are_deterministic(self, seeded):
        settle(seeded, 1, 0, 3)  # nobody scores anything
        entries = LeaderboardAggregator(seeded).get_leaderboard()
        assert [e.model_id for e in entries] == ["alpha", "bravo", "charlie"]
        assert all(e.accuracy == 0.0 and e.avg_points == 0.0 for e in entries)

    def test_pending_predictions_are_ignored(self, seeded):
        assert LeaderboardAggregator(seeded).get_leaderboard() == []

    def test_rescoring_does_not_double_count(self, league):
        before = by_model(LeaderboardAggregator(league).get_leaderboard())
        ScoringEngine(league).score_match(1)
        ScoringEngine(league).score_match(2)
        after = by_model(LeaderboardAggregator(league).get_leaderboard())
        assert {k: v.total_points for k, v in after.items()} == {k: v.total_points for k, v in before.items()}

    def test_competition_filter(self, league):
        entries = by_model(LeaderboardAggregator(league).get_leaderboard(
            LeaderboardFilters(competition="BL1")))
        assert entries["alpha"].total_predictions == 1
        assert entries["charlie"].total_points == 0

    def test_time_window(self, league):
        since = league.now() + dt.timedelta(hours=36)
        entries = LeaderboardAggregator(league).get_leaderboard(LeaderboardFilters(since=since))
        assert all(e.total_predictions == 1 for e in entries)
        until = league.now() + dt.timedelta(hours=36)
        entries = LeaderboardAggregator(league).get_leaderboard(LeaderboardFilters(until=until))
        assert by_model(entries)["charlie"].total_points == 9

    def test_active_only(self, league):
        league.connect().execute("UPDATE models SET active = FALSE WHERE model_id = 'charlie'")
        agg = LeaderboardAggregator(league)
        assert "charlie" not in by_model(agg.get_leaderboard())
        assert "charlie" in by_model(agg.get_leaderboard(LeaderboardFilters(active_only=False)))

    def test_min_predictions_and_limit(self, league):
        from tipster import pipeline

        add_match(league, 3)
        pipeline.register_model(league, "delta")
        predict(league, 3, "delta", 0, 0)
        settle(league, 3, 0, 0)

        agg = LeaderboardAggregator(league)
        assert "delta" in by_model(agg.get_leaderboard())
        assert "delta" not in by_model(agg.get_leaderboard(LeaderboardFilters(min_predictions=2)))
        assert len(agg.get_leaderboard(LeaderboardFilters(limit=2))) == 2


class TestModelStats:

    def test_stats(self, league):
        stats = LeaderboardAggregator(league).get_model_stats("charlie")
        assert (stats.scored_predictions, stats.total_points, stats.exact_scores) == (2, 9, 1)

    def test_no_scored_predictions(self, seeded):
        stats = LeaderboardAggregator(seeded).get_model_stats("alpha")
        assert (stats.total_predictions, stats.scored_predictions, stats.accuracy) == (0, 0, 0.0)

    def test_unknown(self, seeded):
        assert LeaderboardAggregator(seeded).get_model_stats("nobody") is None

    def test_queries_close_their_cursors(self, league, monkeypatch):
        opened = []
        connect = league.connect

        def tracking_connect():
            con = connect()
            opened.append(con)
            return con

        monkeypatch.setattr(league, "connect", tracking_connect)
        agg = LeaderboardAggregator(league)
        agg.get_leaderboard(LeaderboardFilters())
        agg.get_model_stats("alpha")

        assert len(opened) == 2
        for con in opened:
            with pytest.raises(duckdb.ConnectionException):
                con.execute("SELECT 1")
