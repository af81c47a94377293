"""Typed records and validation at the ingestion boundary.

Raw payloads (LLM output, provider JSON) are turned into the dataclasses
below or rejected with ValidationError; nothing untyped travels further.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Literal, Optional

from tipster.db import from_db_ts
from tipster.errors import ValidationError

Result = Literal["H", "D", "A"]
RESULTS: tuple[Result, ...] = ("H", "D", "A")

MATCH_STATUSES = ("scheduled", "live", "finished", "postponed", "cancelled")
PREDICTION_STATUSES = ("pending", "scored", "void")

MAX_GOALS = 20
EARLIEST_KICKOFF = datetime(2000, 1, 1, tzinfo=timezone.utc)
MAX_KICKOFF_AHEAD = timedelta(days=730)
MIN_ODDS = 1.0
MAX_ODDS = 1000.0


def derive_result(home: int, away: int) -> Result:
    """H if home > away, A if away > home, else D."""
    if home > away:
        return "H"
    if home < away:
        return "A"
    return "D"


# ---------------------------------------------------------------------------
# Validators
# ---------------------------------------------------------------------------

def validate_score(value: Any, field: str) -> int:
    """Goals must be an integer in [0, 20]."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{field} must be a number, got {value!r}", field=field, value=value)
    if isinstance(value, float):
        if not value.is_integer():
            raise ValidationError(f"{field} must be a whole number, got {value!r}", field=field, value=value)
        value = int(value)
    if value < 0 or value > MAX_GOALS:
        raise ValidationError(f"{field} out of range [0, {MAX_GOALS}]: {value}", field=field, value=value)
    return value


def validate_kickoff(kickoff: datetime, now: datetime) -> datetime:
    if kickoff.tzinfo is None:
        kickoff = kickoff.replace(tzinfo=timezone.utc)
    if kickoff < EARLIEST_KICKOFF or kickoff > now + MAX_KICKOFF_AHEAD:
        raise ValidationError(f"kickoff out of range: {kickoff.isoformat()}", field="kickoff", value=kickoff)
    return kickoff


def validate_odds(value: Any, field: str) -> float:
    try:
        odds = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} is not a number: {value!r}", field=field, value=value) from None
    if not (MIN_ODDS < odds < MAX_ODDS):
        raise ValidationError(f"{field} out of range ({MIN_ODDS}, {MAX_ODDS}): {odds}", field=field, value=value)
    return odds


def validate_probability_pct(value: Any, field: str) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip().rstrip("%")
        if not value:
            return None
    try:
        pct = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} is not a percentage: {value!r}", field=field, value=value) from None
    if not 0.0 <= pct <= 100.0:
        raise ValidationError(f"{field} out of range [0, 100]: {pct}", field=field, value=value)
    return pct


# ---------------------------------------------------------------------------
# Core entities
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PredictedScore:
    home: int
    away: int
    result: Result


def parse_predicted_score(payload: Any) -> PredictedScore:
    """Validate a producer payload such as ``{"home_score": 2, "away_score": 1}``.

    Accepts snake_case, camelCase and bare ``home``/``away`` keys. An explicit
    ``predicted_result`` must agree with the score.
    """
    if not isinstance(payload, dict):
        raise ValidationError(f"prediction payload must be an object, got {type(payload).__name__}")

    home = payload.get("home_score", payload.get("homeScore", payload.get("home")))
    away = payload.get("away_score", payload.get("awayScore", payload.get("away")))
    home = validate_score(home, "predicted_home")
    away = validate_score(away, "predicted_away")

    result = derive_result(home, away)
    given = payload.get("predicted_result", payload.get("predictedResult"))
    if given is not None and given != result:
        raise ValidationError(
            f"predicted_result {given!r} contradicts score {home}-{away}",
            field="predicted_result", value=given,
        )
    return PredictedScore(home, away, result)


@dataclass
class Match:
    match_id: int
    competition: Optional[str]
    kickoff: Optional[datetime]
    home_team: Optional[str]
    away_team: Optional[str]
    status: str = "scheduled"
    home_score: Optional[int] = None
    away_score: Optional[int] = None
    quota_home: Optional[int] = None
    quota_draw: Optional[int] = None
    quota_away: Optional[int] = None
    home_win_pct: Optional[float] = None
    away_win_pct: Optional[float] = None
    is_upset: Optional[bool] = None

    @property
    def quotas_locked(self) -> bool:
        return None not in (self.quota_home, self.quota_draw, self.quota_away)

    @property
    def has_final_score(self) -> bool:
        return self.home_score is not None and self.away_score is not None

    @classmethod
    def from_row(cls, row: dict) -> "Match":
        return cls(
            match_id=row["match_id"],
            competition=row.get("competition"),
            kickoff=from_db_ts(row.get("kickoff")),
            home_team=row.get("home_team"),
            away_team=row.get("away_team"),
            status=row.get("status") or "scheduled",
            home_score=row.get("home_score"),
            away_score=row.get("away_score"),
            quota_home=row.get("quota_home"),
            quota_draw=row.get("quota_draw"),
            quota_away=row.get("quota_away"),
            home_win_pct=row.get("home_win_pct"),
            away_win_pct=row.get("away_win_pct"),
            is_upset=row.get("is_upset"),
        )


@dataclass
class Prediction:
    prediction_id: int
    match_id: int
    model_id: str
    predicted_home: int
    predicted_away: int
    predicted_result: Result
    status: str = "pending"
    tendency_points: Optional[int] = None
    goal_diff_bonus: Optional[int] = None
    exact_score_bonus: Optional[int] = None
    total_points: Optional[int] = None

    @classmethod
    def from_row(cls, row: dict) -> "Prediction":
        return cls(
            prediction_id=row["prediction_id"],
            match_id=row["match_id"],
            model_id=row["model_id"],
            predicted_home=row["predicted_home"],
            predicted_away=row["predicted_away"],
            predicted_result=row["predicted_result"],
            status=row["status"],
            tendency_points=row.get("tendency_points"),
            goal_diff_bonus=row.get("goal_diff_bonus"),
            exact_score_bonus=row.get("exact_score_bonus"),
            total_points=row.get("total_points"),
        )


@dataclass
class Model:
    model_id: str
    display_name: Optional[str] = None
    provider: Optional[str] = None
    active: bool = True
    auto_disabled: bool = False
    consecutive_failures: int = 0
    last_failure_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None
    auto_disabled_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    current_streak: int = 0
    current_streak_type: str = "none"
    best_streak: int = 0
    worst_streak: int = 0
    best_exact_streak: int = 0
    best_tendency_streak: int = 0

    @classmethod
    def from_row(cls, row: dict) -> "Model":
        return cls(
            model_id=row["model_id"],
            display_name=row.get("display_name"),
            provider=row.get("provider"),
            active=bool(row.get("active", True)),
            auto_disabled=bool(row.get("auto_disabled")),
            consecutive_failures=row.get("consecutive_failures") or 0,
            last_failure_at=from_db_ts(row.get("last_failure_at")),
            last_success_at=from_db_ts(row.get("last_success_at")),
            auto_disabled_at=from_db_ts(row.get("auto_disabled_at")),
            failure_reason=row.get("failure_reason"),
            current_streak=row.get("current_streak") or 0,
            current_streak_type=row.get("current_streak_type") or "none",
            best_streak=row.get("best_streak") or 0,
            worst_streak=row.get("worst_streak") or 0,
            best_exact_streak=row.get("best_exact_streak") or 0,
            best_tendency_streak=row.get("best_tendency_streak") or 0,
        )


# ---------------------------------------------------------------------------
# Provider payloads (pre-match analysis sections)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class OddsRecord:
    kind: Literal["odds"]
    bookmaker: str
    home: float
    draw: float
    away: float


@dataclass(frozen=True)
class InjuryRecord:
    kind: Literal["injury"]
    team: str
    player: str
    reason: Optional[str]


@dataclass(frozen=True)
class HeadToHeadRecord:
    kind: Literal["h2h"]
    played: int
    home_wins: int
    draws: int
    away_wins: int


def _entries(payload: Any, section: str) -> list:
    """The "response" list of a provider payload; ValidationError if it is not one."""
    if not isinstance(payload, dict):
        raise ValidationError("payload is not an object", field=section, value=type(payload).__name__)
    entries = payload.get("response") or []
    if not isinstance(entries, list):
        raise ValidationError("response is not a list", field=section, value=type(entries).__name__)
    return entries


def _obj(value: Any, section: str) -> dict:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValidationError("expected an object", field=section, value=value)
    return value


def _list(value: Any, section: str) -> list:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError("expected a list", field=section, value=value)
    return value


def parse_odds(payload: dict) -> Optional[OddsRecord]:
    """First bookmaker's "Match Winner" market, or None when absent."""
    for entry in _entries(payload, "odds"):
        for bookmaker in _list(_obj(entry, "odds").get("bookmakers"), "odds"):
            bookmaker = _obj(bookmaker, "odds")
            for bet in _list(bookmaker.get("bets"), "odds"):
                bet = _obj(bet, "odds")
                if bet.get("name") != "Match Winner":
                    continue
                values = [_obj(v, "odds") for v in _list(bet.get("values"), "odds")]
                prices = {v.get("value"): v.get("odd") for v in values}
                try:
                    home, draw, away = prices["Home"], prices["Draw"], prices["Away"]
                except KeyError:
                    raise ValidationError("Match Winner market incomplete", field="odds", value=prices) from None
                return OddsRecord(
                    kind="odds",
                    bookmaker=str(bookmaker.get("name") or "unknown"),
                    home=validate_odds(home, "odds_home"),
                    draw=validate_odds(draw, "odds_draw"),
                    away=validate_odds(away, "odds_away"),
                )
    return None


def parse_injuries(payload: dict) -> list[InjuryRecord]:
    out = []
    for entry in _entries(payload, "injuries"):
        entry = _obj(entry, "injuries")
        player_info = _obj(entry.get("player"), "injuries")
        player = player_info.get("name")
        team = _obj(entry.get("team"), "injuries").get("name")
        if not player or not team:
            raise ValidationError("injury entry without player or team", field="injuries", value=entry)
        out.append(InjuryRecord(
            kind="injury", team=team, player=player,
            reason=player_info.get("reason"),
        ))
    return out


def parse_head_to_head(payload: dict, home_team_id: int) -> HeadToHeadRecord:
    """Summarise previous meetings from the point of view of *home_team_id*."""
    played = home_wins = draws = away_wins = 0
    for fixture in _entries(payload, "head_to_head"):
        fixture = _obj(fixture, "head_to_head")
        goals = _obj(fixture.get("goals"), "head_to_head")
        teams = _obj(fixture.get("teams"), "head_to_head")
        gh, ga = goals.get("home"), goals.get("away")
        if gh is None or ga is None:
            continue
        gh = validate_score(gh, "h2h_home_goals")
        ga = validate_score(ga, "h2h_away_goals")
        played += 1
        if gh == ga:
            draws += 1
            continue
        winner = _obj(teams.get("home" if gh > ga else "away"), "head_to_head")
        if winner.get("id") == home_team_id:
            home_wins += 1
        else:
            away_wins += 1
    return HeadToHeadRecord(kind="h2h", played=played, home_wins=home_wins,
                            draws=draws, away_wins=away_wins)
