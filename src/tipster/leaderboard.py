"""Ranked per-model statistics, computed on demand from scored predictions."""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Optional

from tipster.context import AppContext
from tipster.db import fetch_dict, fetch_dicts, to_db_ts

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class LeaderboardFilters:
    since: Optional[datetime] = None
    until: Optional[datetime] = None
    competition: Optional[str] = None
    active_only: bool = True
    min_predictions: int = 0
    limit: Optional[int] = None


@dataclass
class LeaderboardEntry:
    rank: int
    model_id: str
    display_name: Optional[str]
    provider: Optional[str]
    total_predictions: int
    scored_predictions: int
    correct_tendencies: int
    correct_goal_diffs: int
    exact_scores: int
    total_points: int
    avg_points: float
    accuracy: float
    exact_accuracy: float
    current_streak: int
    current_streak_type: str
    best_streak: int

    def as_dict(self) -> dict:
        return asdict(self)


def _pct(numerator: int, denominator: int) -> float:
    if not denominator:
        return 0.0
    return round(100.0 * numerator / denominator, 1)


_AGGREGATES = """
    COUNT(*) AS total_predictions,
    COUNT(p.total_points) AS scored_predictions,
    COUNT(*) FILTER (WHERE p.tendency_points > 0) AS correct_tendencies,
    COUNT(*) FILTER (WHERE p.goal_diff_bonus = 1) AS correct_goal_diffs,
    COUNT(*) FILTER (WHERE p.exact_score_bonus = 3) AS exact_scores,
    COALESCE(SUM(p.total_points), 0) AS total_points
"""


def _entry_from_row(r: dict, rank: int = 0) -> LeaderboardEntry:
    scored = int(r["scored_predictions"])
    total_points = int(r["total_points"])
    return LeaderboardEntry(
        rank=rank,
        model_id=r["model_id"],
        display_name=r.get("display_name"),
        provider=r.get("provider"),
        total_predictions=int(r["total_predictions"]),
        scored_predictions=scored,
        correct_tendencies=int(r["correct_tendencies"]),
        correct_goal_diffs=int(r["correct_goal_diffs"]),
        exact_scores=int(r["exact_scores"]),
        total_points=total_points,
        avg_points=round(total_points / scored, 2) if scored else 0.0,
        accuracy=_pct(int(r["correct_tendencies"]), scored),
        exact_accuracy=_pct(int(r["exact_scores"]), scored),
        current_streak=r.get("current_streak") or 0,
        current_streak_type=r.get("current_streak_type") or "none",
        best_streak=r.get("best_streak") or 0,
    )


class LeaderboardAggregator:
    def __init__(self, ctx: AppContext):
        self.ctx = ctx

    def get_leaderboard(self, filters: Optional[LeaderboardFilters] = None) -> list[LeaderboardEntry]:
        f = filters or LeaderboardFilters()
        where = ["p.status = 'scored'"]
        params: list = []
        if f.since is not None:
            where.append("m.kickoff >= ?")
            params.append(to_db_ts(f.since))
        if f.until is not None:
            where.append("m.kickoff < ?")
            params.append(to_db_ts(f.until))
        if f.competition:
            where.append("m.competition = ?")
            params.append(f.competition)
        if f.active_only:
            where.append("mo.active")

        with self.ctx.connect() as con:
            rows = fetch_dicts(con, f"""
                SELECT mo.model_id, mo.display_name, mo.provider,
                       mo.current_streak, mo.current_streak_type, mo.best_streak,
                       {_AGGREGATES}
                FROM predictions p
                JOIN matches m ON m.match_id = p.match_id
                JOIN models mo ON mo.model_id = p.model_id
                WHERE {' AND '.join(where)}
                GROUP BY mo.model_id, mo.display_name, mo.provider,
                         mo.current_streak, mo.current_streak_type, mo.best_streak
            """, params)

        entries = [_entry_from_row(r) for r in rows]
        entries = [e for e in entries if e.total_predictions >= f.min_predictions]
        entries.sort(key=lambda e: (-e.avg_points, -e.total_points, -e.total_predictions, e.model_id))
        if f.limit is not None:
            entries = entries[:f.limit]
        for i, e in enumerate(entries, start=1):
            e.rank = i
        log.debug("leaderboard: %d models (%s)", len(entries), f)
        return entries

    def get_model_stats(self, model_id: str) -> Optional[LeaderboardEntry]:
        """All-time stats for one model; zeroed when nothing is scored yet, None if unknown."""
        with self.ctx.connect() as con:
            row = fetch_dict(con, f"""
                SELECT mo.model_id, mo.display_name, mo.provider,
                       mo.current_streak, mo.current_streak_type, mo.best_streak,
                       {_AGGREGATES}
                FROM models mo
                LEFT JOIN predictions p ON p.model_id = mo.model_id AND p.status = 'scored'
                WHERE mo.model_id = ?
                GROUP BY mo.model_id, mo.display_name, mo.provider,
                         mo.current_streak, mo.current_streak_type, mo.best_streak
            """, [model_id])
        if row is None:
            return None
        # COUNT(*) sees the NULL-extended row of a model with no scored predictions
        row["total_predictions"] = row["scored_predictions"]
        return _entry_from_row(row)
