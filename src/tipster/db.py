from __future__ import annotations
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, TypeVar

import duckdb

from tipster.errors import ConcurrencyConflict

log = logging.getLogger(__name__)

T = TypeVar("T")

SCHEMA_SQL = r"""
CREATE SEQUENCE IF NOT EXISTS prediction_id_seq START 1;

CREATE TABLE IF NOT EXISTS models (
  model_id VARCHAR PRIMARY KEY,
  display_name VARCHAR,
  provider VARCHAR,
  active BOOLEAN NOT NULL DEFAULT TRUE,
  -- health (written by ModelHealthMonitor only)
  auto_disabled BOOLEAN NOT NULL DEFAULT FALSE,
  consecutive_failures INT NOT NULL DEFAULT 0,
  last_failure_at TIMESTAMP,
  last_success_at TIMESTAMP,
  auto_disabled_at TIMESTAMP,
  failure_reason VARCHAR,
  -- streaks (written by StreakTracker only)
  current_streak INT NOT NULL DEFAULT 0,
  current_streak_type VARCHAR NOT NULL DEFAULT 'none'
    CHECK (current_streak_type IN ('none', 'tendency', 'exact')),
  current_exact_run INT NOT NULL DEFAULT 0,
  best_streak INT NOT NULL DEFAULT 0,
  worst_streak INT NOT NULL DEFAULT 0,
  best_exact_streak INT NOT NULL DEFAULT 0,
  best_tendency_streak INT NOT NULL DEFAULT 0,
  created_at TIMESTAMP
);

CREATE TABLE IF NOT EXISTS matches (
  match_id BIGINT PRIMARY KEY,
  competition VARCHAR,
  kickoff TIMESTAMP,
  home_team VARCHAR,
  away_team VARCHAR,
  home_score INT,
  away_score INT,
  status VARCHAR NOT NULL DEFAULT 'scheduled'
    CHECK (status IN ('scheduled', 'live', 'finished', 'postponed', 'cancelled')),
  -- quotas are locked once before kickoff and never recomputed
  quota_home INT CHECK (quota_home BETWEEN 2 AND 6),
  quota_draw INT CHECK (quota_draw BETWEEN 2 AND 6),
  quota_away INT CHECK (quota_away BETWEEN 2 AND 6),
  quotas_locked_at TIMESTAMP,
  home_win_pct DOUBLE,
  away_win_pct DOUBLE,
  is_upset BOOLEAN,
  finished_at TIMESTAMP
);

CREATE TABLE IF NOT EXISTS predictions (
  prediction_id BIGINT PRIMARY KEY DEFAULT nextval('prediction_id_seq'),
  match_id BIGINT NOT NULL,
  model_id VARCHAR NOT NULL,
  predicted_home INT NOT NULL CHECK (predicted_home BETWEEN 0 AND 20),
  predicted_away INT NOT NULL CHECK (predicted_away BETWEEN 0 AND 20),
  predicted_result VARCHAR NOT NULL CHECK (predicted_result IN ('H', 'D', 'A')),
  tendency_points INT,
  goal_diff_bonus INT CHECK (goal_diff_bonus IN (0, 1)),
  exact_score_bonus INT CHECK (exact_score_bonus IN (0, 3)),
  total_points INT,
  status VARCHAR NOT NULL DEFAULT 'pending'
    CHECK (status IN ('pending', 'scored', 'void')),
  created_at TIMESTAMP,
  scored_at TIMESTAMP,
  UNIQUE (match_id, model_id),
  CHECK (total_points IS NULL
         OR total_points = tendency_points + goal_diff_bonus + exact_score_bonus),
  CHECK (exact_score_bonus IS NULL OR exact_score_bonus = 0 OR goal_diff_bonus = 1)
);

CREATE INDEX IF NOT EXISTS idx_predictions_match ON predictions(match_id);
CREATE INDEX IF NOT EXISTS idx_predictions_model ON predictions(model_id);
"""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_db_ts(value: datetime | None) -> datetime | None:
    """Naive UTC datetime for TIMESTAMP columns."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def from_db_ts(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def connect(db_path: str) -> duckdb.DuckDBPyConnection:
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    con = duckdb.connect(db_path)
    con.execute(SCHEMA_SQL)
    return con


def fetch_dicts(con: duckdb.DuckDBPyConnection, sql: str, params: list | None = None) -> list[dict]:
    rel = con.execute(sql, params or [])
    cols = [d[0] for d in rel.description]
    return [dict(zip(cols, row)) for row in rel.fetchall()]


def fetch_dict(con: duckdb.DuckDBPyConnection, sql: str, params: list | None = None) -> dict | None:
    rows = fetch_dicts(con, sql, params)
    return rows[0] if rows else None


def _rollback_quietly(con: duckdb.DuckDBPyConnection) -> None:
    # DuckDB already ends the transaction when COMMIT itself fails
    try:
        con.rollback()
    except duckdb.Error as exc:
        log.debug("rollback skipped: %s", exc)


def retry_on_conflict(
    fn: Callable[[], T],
    *,
    operation: str,
    entity_id=None,
    retries: int = 8,
    backoff: float = 0.02,
) -> T:
    """Run *fn*, retrying when DuckDB reports a write-write conflict.

    Raises ConcurrencyConflict once *retries* attempts have all conflicted.
    """
    for attempt in range(1, retries + 1):
        try:
            return fn()
        except duckdb.TransactionException as exc:
            log.debug("%s conflict (attempt %d/%d, entity=%s): %s",
                      operation, attempt, retries, entity_id, exc)
            time.sleep(backoff * attempt)
    raise ConcurrencyConflict(operation, retries, entity_id)


def run_in_transaction(
    con: duckdb.DuckDBPyConnection,
    fn: Callable[[duckdb.DuckDBPyConnection], T],
    *,
    operation: str,
    entity_id=None,
    retries: int = 8,
    backoff: float = 0.02,
) -> T:
    """Run *fn(con)* inside BEGIN/COMMIT, rolling back and retrying on conflicts.

    DuckDB aborts one side of any write-write conflict on the same row, so a
    read-modify-write done here never loses an update.
    """
    def _attempt() -> T:
        con.begin()
        try:
            result = fn(con)
            con.commit()
            return result
        except BaseException:
            _rollback_quietly(con)
            raise

    return retry_on_conflict(
        _attempt, operation=operation, entity_id=entity_id,
        retries=retries, backoff=backoff,
    )
