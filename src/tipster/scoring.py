"""
Quota scoring of finished matches.

Points per prediction:
- tendency: the quota locked for the actual outcome, if the predicted
  outcome (H/D/A) is right
- goal difference bonus: +1 when predicted home-away difference matches
- exact score bonus: +3 when both scores match (always implies +1 above)

Maximum is 6 + 1 + 3 = 10.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

import duckdb

from tipster.context import AppContext
from tipster.counters import invalidate_match_caches
from tipster.db import fetch_dict, fetch_dicts, retry_on_conflict, run_in_transaction, to_db_ts
from tipster.quota import Quotas
from tipster.records import Match, Prediction, Result, derive_result
from tipster.streaks import StreakEvent, StreakTracker, classify

log = logging.getLogger(__name__)

EXACT_SCORE_BONUS = 3
GOAL_DIFF_BONUS = 1
UPSET_MARGIN_PCT = 5.0


@dataclass(frozen=True)
class ScoreBreakdown:
    tendency_points: int
    goal_diff_bonus: int
    exact_score_bonus: int
    total_points: int

    @property
    def event(self) -> StreakEvent:
        return classify(self.tendency_points, self.exact_score_bonus)


def score_prediction(
    predicted_home: int,
    predicted_away: int,
    predicted_result: Result,
    actual_home: int,
    actual_away: int,
    quotas: Quotas,
) -> ScoreBreakdown:
    actual = derive_result(actual_home, actual_away)
    tendency = quotas.for_result(actual) if predicted_result == actual else 0
    exact = EXACT_SCORE_BONUS if (predicted_home == actual_home and predicted_away == actual_away) else 0
    goal_diff = GOAL_DIFF_BONUS if (predicted_home - predicted_away) == (actual_home - actual_away) else 0
    return ScoreBreakdown(
        tendency_points=tendency,
        goal_diff_bonus=goal_diff,
        exact_score_bonus=exact,
        total_points=tendency + goal_diff + exact,
    )


def get_underdog(home_win_pct: Optional[float], away_win_pct: Optional[float]) -> Optional[str]:
    """'home' / 'away' for the side with the clearly lower win chance, else None."""
    if home_win_pct is None or away_win_pct is None:
        return None
    if abs(home_win_pct - away_win_pct) < UPSET_MARGIN_PCT:
        return None
    return "home" if home_win_pct < away_win_pct else "away"


def is_upset_result(home_win_pct: Optional[float], away_win_pct: Optional[float],
                    actual_home: int, actual_away: int) -> bool:
    underdog = get_underdog(home_win_pct, away_win_pct)
    if underdog == "home":
        return actual_home > actual_away
    if underdog == "away":
        return actual_away > actual_home
    return False


@dataclass
class MatchScoringResult:
    match_id: int
    skipped: bool = False
    reason: Optional[str] = None
    scored: int = 0
    already_scored: int = 0
    failed: list[dict] = field(default_factory=list)
    total_points_awarded: int = 0
    quotas: Optional[Quotas] = None
    is_upset: Optional[bool] = None
    cache_invalidated: bool = False

    def as_dict(self) -> dict:
        return {
            "match_id": self.match_id,
            "skipped": self.skipped,
            "reason": self.reason,
            "scored": self.scored,
            "already_scored": self.already_scored,
            "failed": self.failed,
            "total_points_awarded": self.total_points_awarded,
            "quotas": self.quotas.as_dict() if self.quotas else None,
            "is_upset": self.is_upset,
            "cache_invalidated": self.cache_invalidated,
        }


class ScoringEngine:
    """
    Scores every pending prediction of a finished match against its locked quotas.

    Example usage:
        engine = ScoringEngine(ctx)
        result = engine.score_match(match_id)
        if result.skipped:
            log.info("not scored: %s", result.reason)
    """

    def __init__(self, ctx: AppContext, streaks: Optional[StreakTracker] = None):
        self.ctx = ctx
        self.streaks = streaks or StreakTracker(ctx)

    def score_match(self, match_id: int) -> MatchScoringResult:
        with self.ctx.connect() as con:
            row = fetch_dict(con, "SELECT * FROM matches WHERE match_id = ?", [match_id])
            if row is None:
                return self._skip(match_id, "match_not_found")
            match = Match.from_row(row)
            if match.status != "finished":
                return self._skip(match_id, "match_not_finished")
            if not match.has_final_score:
                return self._skip(match_id, "no_final_score")
            if not match.quotas_locked:
                # quotas must come from the pre-kickoff distribution, never from after the fact
                return self._skip(match_id, "quotas_not_locked")

            predictions = [
                Prediction.from_row(r) for r in fetch_dicts(con, """
                    SELECT * FROM predictions
                    WHERE match_id = ? AND status <> 'void'
                    ORDER BY prediction_id
                """, [match_id])
            ]
            if not predictions:
                return self._skip(match_id, "no_predictions")

            quotas = Quotas(match.quota_home, match.quota_draw, match.quota_away)
            result = MatchScoringResult(match_id=match_id, quotas=quotas)
            result.is_upset = self._flag_upset(con, match)

            for pred in predictions:
                if pred.status != "pending":
                    result.already_scored += 1
                    continue
                try:
                    breakdown = score_prediction(
                        pred.predicted_home, pred.predicted_away, pred.predicted_result,
                        match.home_score, match.away_score, quotas,
                    )
                    applied = run_in_transaction(
                        con, lambda c, p=pred, b=breakdown: self._apply(c, p, b),
                        operation="score_prediction", entity_id=pred.prediction_id,
                    )
                except Exception as exc:
                    log.error("failed to score prediction %s (model %s, match %s): %s",
                              pred.prediction_id, pred.model_id, match_id, exc)
                    result.failed.append({
                        "prediction_id": pred.prediction_id,
                        "model_id": pred.model_id,
                        "error": str(exc),
                    })
                    continue

                if not applied:
                    result.already_scored += 1
                    continue
                result.scored += 1
                result.total_points_awarded += breakdown.total_points
                if breakdown.exact_score_bonus:
                    log.info("exact score %d-%d by %s = %d pts (tendency %d)",
                             pred.predicted_home, pred.predicted_away, pred.model_id,
                             breakdown.total_points, breakdown.tendency_points)

        if result.scored:
            result.cache_invalidated = invalidate_match_caches(self.ctx.counters, match_id)

        if result.failed:
            log.warning("match %s: scored %d, %d failed (%d pts)", match_id,
                        result.scored, len(result.failed), result.total_points_awarded)
        else:
            log.info("match %s: scored %d, %d already scored (%d pts)", match_id,
                     result.scored, result.already_scored, result.total_points_awarded)
        return result

    def _apply(self, con: duckdb.DuckDBPyConnection, pred: Prediction, breakdown: ScoreBreakdown) -> bool:
        """Compare-and-swap pending -> scored, then the model's streak, in one transaction."""
        rows = con.execute("""
            UPDATE predictions
            SET tendency_points = ?, goal_diff_bonus = ?, exact_score_bonus = ?,
                total_points = ?, status = 'scored', scored_at = ?
            WHERE prediction_id = ? AND status = 'pending'
            RETURNING prediction_id
        """, [
            breakdown.tendency_points, breakdown.goal_diff_bonus, breakdown.exact_score_bonus,
            breakdown.total_points, to_db_ts(self.ctx.now()), pred.prediction_id,
        ]).fetchall()
        if not rows:
            return False
        self.streaks.apply_in_transaction(con, pred.model_id, breakdown.event)
        return True

    def _flag_upset(self, con: duckdb.DuckDBPyConnection, match: Match) -> bool:
        upset = is_upset_result(match.home_win_pct, match.away_win_pct,
                                match.home_score, match.away_score)
        if match.is_upset != upset:
            retry_on_conflict(
                lambda: con.execute("UPDATE matches SET is_upset = ? WHERE match_id = ?",
                                    [upset, match.match_id]),
                operation="flag_upset", entity_id=match.match_id,
            )
        if upset:
            log.info("match %s was an upset (home %.0f%%, away %.0f%%)",
                     match.match_id, match.home_win_pct, match.away_win_pct)
        return upset

    def _skip(self, match_id: int, reason: str) -> MatchScoringResult:
        log.info("match %s not scored: %s", match_id, reason)
        return MatchScoringResult(match_id=match_id, skipped=True, reason=reason)

    def score_pending_matches(self) -> list[MatchScoringResult]:
        """Score every finished match that still has pending predictions."""
        with self.ctx.connect() as con:
            match_ids = [r[0] for r in con.execute("""
                SELECT m.match_id
                FROM matches m
                WHERE m.status = 'finished'
                  AND EXISTS (
                      SELECT 1 FROM predictions p
                      WHERE p.match_id = m.match_id AND p.status = 'pending'
                  )
                ORDER BY m.kickoff DESC NULLS LAST, m.match_id
            """).fetchall()]

        results = []
        for match_id in match_ids:
            try:
                results.append(self.score_match(match_id))
            except Exception as exc:
                log.error("scoring match %s failed: %s", match_id, exc)
                results.append(MatchScoringResult(match_id=match_id, skipped=True, reason=f"error: {exc}"))
        return results

    def void_prediction(self, prediction_id: int) -> bool:
        """pending -> void. False when the prediction is missing or already terminal."""
        with self.ctx.connect() as con:
            rows = retry_on_conflict(
                lambda: con.execute("""
                    UPDATE predictions SET status = 'void'
                    WHERE prediction_id = ? AND status = 'pending'
                    RETURNING prediction_id
                """, [prediction_id]).fetchall(),
                operation="void_prediction", entity_id=prediction_id,
            )
        return bool(rows)

    def void_match_predictions(self, match_id: int) -> int:
        with self.ctx.connect() as con:
            rows = retry_on_conflict(
                lambda: con.execute("""
                    UPDATE predictions SET status = 'void'
                    WHERE match_id = ? AND status = 'pending'
                    RETURNING prediction_id
                """, [match_id]).fetchall(),
                operation="void_match_predictions", entity_id=match_id,
            )
        if rows:
            log.info("voided %d pending predictions on match %s", len(rows), match_id)
        return len(rows)
