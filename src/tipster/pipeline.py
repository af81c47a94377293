"""
Write path around scoring: models, matches, predictions and quota locking.

Lifecycle of a match:
    upsert_match -> record_prediction (per model, before kickoff)
    -> lock_quotas (once, before kickoff) -> finish_match -> ScoringEngine
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Optional

import duckdb

from tipster.context import AppContext
from tipster.db import fetch_dict, from_db_ts, retry_on_conflict, run_in_transaction, to_db_ts
from tipster.errors import ValidationError
from tipster.quota import OutcomeCounts, Quotas, QuotaStrategy, calculate_quotas, get_quota_strategy
from tipster.records import (
    MATCH_STATUSES,
    Match,
    parse_predicted_score,
    validate_kickoff,
    validate_probability_pct,
    validate_score,
)

log = logging.getLogger(__name__)


def register_model(ctx: AppContext, model_id: str, display_name: str | None = None,
                   provider: str | None = None, active: bool = True) -> None:
    if not model_id or not model_id.strip():
        raise ValidationError("model_id must not be empty", field="model_id", value=model_id)
    with ctx.connect() as con:
        retry_on_conflict(
            lambda: con.execute("""
                INSERT INTO models (model_id, display_name, provider, active, created_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (model_id) DO UPDATE SET
                    display_name = excluded.display_name,
                    provider = excluded.provider,
                    active = excluded.active
            """, [model_id, display_name or model_id, provider, active, to_db_ts(ctx.now())]),
            operation="register_model", entity_id=model_id,
        )


def upsert_match(
    ctx: AppContext,
    match_id: int,
    *,
    competition: str | None,
    kickoff: datetime,
    home_team: str | None,
    away_team: str | None,
    status: str = "scheduled",
    home_win_pct: Any = None,
    away_win_pct: Any = None,
) -> Match:
    """Insert or refresh a fixture. Scores and locked quotas are never touched here."""
    if status not in MATCH_STATUSES:
        raise ValidationError(f"unknown match status {status!r}", field="status", value=status)
    kickoff = validate_kickoff(kickoff, ctx.now())
    home_pct = validate_probability_pct(home_win_pct, "home_win_pct")
    away_pct = validate_probability_pct(away_win_pct, "away_win_pct")

    def _txn(con: duckdb.DuckDBPyConnection) -> dict:
        existing = fetch_dict(con, "SELECT status FROM matches WHERE match_id = ?", [match_id])
        if existing is None:
            con.execute("""
                INSERT INTO matches (match_id, competition, kickoff, home_team, away_team,
                                     status, home_win_pct, away_win_pct)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, [match_id, competition, to_db_ts(kickoff), home_team, away_team,
                  status, home_pct, away_pct])
        else:
            # a finished match keeps its status; only finish_match sets it
            new_status = existing["status"] if existing["status"] == "finished" else status
            con.execute("""
                UPDATE matches
                SET competition = ?, kickoff = ?, home_team = ?, away_team = ?, status = ?,
                    home_win_pct = COALESCE(?, home_win_pct),
                    away_win_pct = COALESCE(?, away_win_pct)
                WHERE match_id = ?
            """, [competition, to_db_ts(kickoff), home_team, away_team, new_status,
                  home_pct, away_pct, match_id])
        return fetch_dict(con, "SELECT * FROM matches WHERE match_id = ?", [match_id])

    with ctx.connect() as con:
        row = run_in_transaction(con, _txn, operation="upsert_match", entity_id=match_id)
    return Match.from_row(row)


def record_prediction(ctx: AppContext, match_id: int, model_id: str, payload: Any,
                      monitor=None) -> int:
    """
    Validate a model's raw output and store it as a pending prediction.

    When a ModelHealthMonitor is passed, the outcome is reported to it: a
    stored prediction counts as a success, a malformed one as a failure.
    Returns the new prediction_id.
    """
    try:
        score = parse_predicted_score(payload)
    except ValidationError as exc:
        if monitor is not None:
            monitor.record_model_failure(model_id, f"invalid prediction: {exc}")
        raise

    with ctx.connect() as con:
        match = fetch_dict(con, "SELECT status, kickoff, quota_home FROM matches WHERE match_id = ?", [match_id])
        if match is None:
            raise ValidationError(f"unknown match {match_id}", field="match_id", value=match_id)
        if match["status"] != "scheduled" or match["quota_home"] is not None:
            raise ValidationError(
                f"match {match_id} no longer accepts predictions (status={match['status']})",
                field="match_id", value=match_id,
            )
        if from_db_ts(match["kickoff"]) <= ctx.now():
            raise ValidationError(
                f"match {match_id} has kicked off, predictions are closed",
                field="match_id", value=match_id,
            )
        if fetch_dict(con, "SELECT 1 AS x FROM models WHERE model_id = ?", [model_id]) is None:
            raise ValidationError(f"unknown model {model_id}", field="model_id", value=model_id)
        try:
            row = retry_on_conflict(
                lambda: con.execute("""
                    INSERT INTO predictions (match_id, model_id, predicted_home, predicted_away,
                                             predicted_result, status, created_at)
                    VALUES (?, ?, ?, ?, ?, 'pending', ?)
                    RETURNING prediction_id
                """, [match_id, model_id, score.home, score.away, score.result,
                      to_db_ts(ctx.now())]).fetchall()[0],
                operation="record_prediction", entity_id=f"{match_id}/{model_id}",
            )
        except duckdb.ConstraintException:
            raise ValidationError(
                f"model {model_id} already predicted match {match_id}",
                field="model_id", value=model_id,
            ) from None

    if monitor is not None:
        monitor.record_model_success(model_id)
    log.debug("prediction %s: %s %d-%d on match %s", row[0], model_id, score.home, score.away, match_id)
    return int(row[0])


def lock_quotas(ctx: AppContext, match_id: int, strategy: Optional[QuotaStrategy] = None) -> Quotas:
    """
    Compute quotas from the current prediction distribution and persist them once.

    Locking is idempotent: a second call returns the quotas already stored.
    """
    strategy = strategy or get_quota_strategy(ctx.settings.quota_strategy)

    def _txn(con: duckdb.DuckDBPyConnection) -> Quotas:
        match = fetch_dict(con, "SELECT quota_home, quota_draw, quota_away FROM matches WHERE match_id = ?",
                           [match_id])
        if match is None:
            raise ValidationError(f"unknown match {match_id}", field="match_id", value=match_id)
        if match["quota_home"] is not None:
            return Quotas(match["quota_home"], match["quota_draw"], match["quota_away"])

        results = [r[0] for r in con.execute("""
            SELECT predicted_result FROM predictions
            WHERE match_id = ? AND status <> 'void'
        """, [match_id]).fetchall()]
        counts = OutcomeCounts.from_results(results)
        quotas = calculate_quotas(counts, strategy)
        con.execute("""
            UPDATE matches
            SET quota_home = ?, quota_draw = ?, quota_away = ?, quotas_locked_at = ?
            WHERE match_id = ? AND quota_home IS NULL
        """, [quotas.home, quotas.draw, quotas.away, to_db_ts(ctx.now()), match_id])
        log.info("match %s quotas locked H=%d D=%d A=%d (%d/%d/%d of %d predictions)",
                 match_id, quotas.home, quotas.draw, quotas.away,
                 counts.home, counts.draw, counts.away, counts.total)
        return quotas

    with ctx.connect() as con:
        return run_in_transaction(con, _txn, operation="lock_quotas", entity_id=match_id)


def lock_due_quotas(ctx: AppContext, within: timedelta = timedelta(minutes=30)) -> dict[int, Quotas]:
    """
    Lock quotas for every match kicking off within *within*.

    Matches that already went live or finished without locked quotas are
    included so they can still be settled; postponed and cancelled ones are not.
    """
    cutoff = to_db_ts(ctx.now() + within)
    with ctx.connect() as con:
        match_ids = [r[0] for r in con.execute("""
            SELECT match_id FROM matches
            WHERE status NOT IN ('postponed', 'cancelled')
              AND quota_home IS NULL AND kickoff <= ?
            ORDER BY kickoff, match_id
        """, [cutoff]).fetchall()]

    locked = {}
    for match_id in match_ids:
        try:
            locked[match_id] = lock_quotas(ctx, match_id)
        except Exception as exc:
            log.error("locking quotas for match %s failed: %s", match_id, exc)
    return locked


def finish_match(ctx: AppContext, match_id: int, home_score: Any, away_score: Any) -> bool:
    """
    Record the final score. Scores are set once.

    Returns True when this call finished the match, False when the same
    score was already stored. A different stored score is a ValidationError.
    """
    home = validate_score(home_score, "home_score")
    away = validate_score(away_score, "away_score")

    with ctx.connect() as con:
        rows = retry_on_conflict(
            lambda: con.execute("""
                UPDATE matches
                SET home_score = ?, away_score = ?, status = 'finished', finished_at = ?
                WHERE match_id = ? AND home_score IS NULL AND away_score IS NULL
                RETURNING match_id
            """, [home, away, to_db_ts(ctx.now()), match_id]).fetchall(),
            operation="finish_match", entity_id=match_id,
        )
        if rows:
            log.info("match %s finished %d-%d", match_id, home, away)
            return True

        existing = fetch_dict(con, "SELECT home_score, away_score FROM matches WHERE match_id = ?", [match_id])
    if existing is None:
        raise ValidationError(f"unknown match {match_id}", field="match_id", value=match_id)
    if (existing["home_score"], existing["away_score"]) != (home, away):
        raise ValidationError(
            f"match {match_id} already finished "
            f"{existing['home_score']}-{existing['away_score']}, refusing {home}-{away}",
            field="score", value=(home, away),
        )
    return False
