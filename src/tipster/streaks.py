"""Per-model win/loss streaks.

A positive current_streak counts consecutive correct tendencies, a negative
one consecutive misses. While a winning run lasts its displayed quality can
only move up (tendency -> exact), never back down.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Literal, Optional

import duckdb

from tipster.context import AppContext
from tipster.db import fetch_dict, run_in_transaction
from tipster.errors import ValidationError

log = logging.getLogger(__name__)

StreakEvent = Literal["exact", "tendency", "wrong"]
STREAK_EVENTS = ("exact", "tendency", "wrong")

_STREAK_COLUMNS = (
    "current_streak", "current_streak_type", "current_exact_run",
    "best_streak", "worst_streak", "best_exact_streak", "best_tendency_streak",
)


@dataclass(frozen=True)
class StreakState:
    current_streak: int = 0
    current_streak_type: str = "none"
    current_exact_run: int = 0
    best_streak: int = 0
    worst_streak: int = 0
    best_exact_streak: int = 0
    best_tendency_streak: int = 0

    @classmethod
    def from_row(cls, row: dict) -> "StreakState":
        return cls(**{c: (row.get(c) if row.get(c) is not None else getattr(cls, c)) for c in _STREAK_COLUMNS})


def classify(tendency_points: int, exact_score_bonus: int) -> StreakEvent:
    if exact_score_bonus > 0:
        return "exact"
    if tendency_points > 0:
        return "tendency"
    return "wrong"


def apply_event(state: StreakState, event: StreakEvent) -> StreakState:
    """Next streak state after one scored prediction."""
    if event not in STREAK_EVENTS:
        raise ValidationError(f"unknown streak event {event!r}", field="event", value=event)

    if event == "wrong":
        streak = state.current_streak - 1 if state.current_streak < 0 else -1
        return replace(
            state,
            current_streak=streak,
            current_streak_type="none",
            current_exact_run=0,
            worst_streak=min(state.worst_streak, streak),
        )

    if state.current_streak > 0:
        streak = state.current_streak + 1
        if event == "exact" or state.current_streak_type == "exact":
            streak_type = "exact"
        else:
            streak_type = "tendency"
    else:
        streak = 1
        streak_type = event

    exact_run = state.current_exact_run + 1 if event == "exact" else 0
    return replace(
        state,
        current_streak=streak,
        current_streak_type=streak_type,
        current_exact_run=exact_run,
        best_streak=max(state.best_streak, streak),
        best_exact_streak=max(state.best_exact_streak, exact_run),
        best_tendency_streak=max(state.best_tendency_streak, streak),
    )


class StreakTracker:
    """Persists streak transitions, one serializable read-modify-write per event."""

    def __init__(self, ctx: AppContext):
        self.ctx = ctx

    def apply_in_transaction(self, con: duckdb.DuckDBPyConnection, model_id: str,
                             event: StreakEvent) -> Optional[StreakState]:
        """Read-modify-write inside the caller's open transaction."""
        if event not in STREAK_EVENTS:
            raise ValidationError(f"unknown streak event {event!r}", field="event", value=event)
        row = fetch_dict(
            con, f"SELECT {', '.join(_STREAK_COLUMNS)} FROM models WHERE model_id = ?", [model_id]
        )
        if row is None:
            log.warning("streak update skipped: unknown model %s", model_id)
            return None
        new = apply_event(StreakState.from_row(row), event)
        con.execute(f"""
            UPDATE models SET {', '.join(f'{col} = ?' for col in _STREAK_COLUMNS)}
            WHERE model_id = ?
        """, [getattr(new, col) for col in _STREAK_COLUMNS] + [model_id])
        log.debug("streak %s: %s -> %+d (%s)", model_id, event,
                  new.current_streak, new.current_streak_type)
        return new

    def record(self, model_id: str, event: StreakEvent) -> Optional[StreakState]:
        """Apply *event* to *model_id*'s streak. Returns the new state, None for unknown models."""
        with self.ctx.connect() as con:
            return run_in_transaction(
                con, lambda c: self.apply_in_transaction(c, model_id, event),
                operation="streak_update", entity_id=model_id,
            )

    def get_state(self, model_id: str) -> Optional[StreakState]:
        with self.ctx.connect() as con:
            row = fetch_dict(
                con, f"SELECT {', '.join(_STREAK_COLUMNS)} FROM models WHERE model_id = ?", [model_id]
            )
        return StreakState.from_row(row) if row else None
