"""
Shared fixtures for the tipster test suite.

Provides:
    - A controllable UTC clock
    - A SQLite counter store in a temp directory, driven by that clock
    - An AppContext around an in-memory DuckDB database
    - Seeded models and a match with three pre-kickoff predictions
"""
from __future__ import annotations

import os
import datetime as dt

import pytest

# ---------------------------------------------------------------------------
# Patch settings BEFORE any tipster imports so config.settings() never touches disk
# ---------------------------------------------------------------------------
os.environ.setdefault("API_FOOTBALL_KEY", "test-token-af")
os.environ.setdefault("DB_PATH", ":memory:")
os.environ.setdefault("COUNTER_DB_PATH", "off")

NOW = dt.datetime(2026, 3, 14, 12, 0, tzinfo=dt.timezone.utc)


class FakeClock:
    """Callable clock returning an aware UTC datetime; advance() moves it forward."""

    def __init__(self, now: dt.datetime = NOW):
        self.current = now

    def __call__(self) -> dt.datetime:
        return self.current

    def advance(self, **kwargs) -> dt.datetime:
        self.current = self.current + dt.timedelta(**kwargs)
        return self.current

    def epoch(self) -> float:
        return self.current.timestamp()


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def counters(tmp_path, clock):
    from tipster.counters import SqliteCounterStore
    return SqliteCounterStore(str(tmp_path / "counters.db"), clock=clock.epoch)


@pytest.fixture()
def ctx(counters, clock):
    """AppContext on a fresh in-memory database with the full schema."""
    from tipster import db
    from tipster.config import Settings
    from tipster.context import AppContext

    c = AppContext(
        base_con=db.connect(":memory:"),
        counters=counters,
        settings=Settings(db_path=":memory:", counter_db_path=None),
        clock=clock,
    )
    yield c
    c.close()


# ---------------------------------------------------------------------------
# Seed helpers
# ---------------------------------------------------------------------------
MODELS = ["alpha", "bravo", "charlie"]


def add_match(ctx, match_id: int, *, hours_to_kickoff: float = 24, competition: str = "PL",
              home_win_pct=None, away_win_pct=None):
    from tipster import pipeline
    return pipeline.upsert_match(
        ctx, match_id,
        competition=competition,
        kickoff=ctx.now() + dt.timedelta(hours=hours_to_kickoff),
        home_team=f"Home {match_id}",
        away_team=f"Away {match_id}",
        home_win_pct=home_win_pct,
        away_win_pct=away_win_pct,
    )


def predict(ctx, match_id: int, model_id: str, home: int, away: int) -> int:
    from tipster import pipeline
    return pipeline.record_prediction(ctx, match_id, model_id, {"home_score": home, "away_score": away})


def settle(ctx, match_id: int, home: int, away: int):
    """Lock quotas (if not yet locked), finish and score a match."""
    from tipster import pipeline
    from tipster.scoring import ScoringEngine
    pipeline.lock_quotas(ctx, match_id)
    pipeline.finish_match(ctx, match_id, home, away)
    return ScoringEngine(ctx).score_match(match_id)


@pytest.fixture()
def seeded(ctx):
    """Three models and match 1 with predictions alpha 2-1, bravo 1-0, charlie 1-1."""
    from tipster import pipeline

    for m in MODELS:
        pipeline.register_model(ctx, m, display_name=m.title(), provider="test")
    add_match(ctx, 1)
    predict(ctx, 1, "alpha", 2, 1)
    predict(ctx, 1, "bravo", 1, 0)
    predict(ctx, 1, "charlie", 1, 1)
    return ctx


def fetch_prediction(ctx, match_id: int, model_id: str) -> dict:
    from tipster.db import fetch_dict
    with ctx.connect() as con:
        return fetch_dict(con, "SELECT * FROM predictions WHERE match_id = ? AND model_id = ?",
                          [match_id, model_id])


def fetch_model(ctx, model_id: str) -> dict:
    from tipster.db import fetch_dict
    with ctx.connect() as con:
        return fetch_dict(con, "SELECT * FROM models WHERE model_id = ?", [model_id])
