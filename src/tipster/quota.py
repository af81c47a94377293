"""Dynamic per-outcome quotas (Kicktipp style).

Rarer picks are worth more: the fewer models that predicted an outcome
before kickoff, the more tendency points that outcome pays if it happens.
Quotas are computed once at lock time and persisted; nothing here touches
the database.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Iterable

from tipster.errors import ValidationError
from tipster.records import Result

MIN_QUOTA = 2
MAX_QUOTA = 6
NEUTRAL_QUOTA = 4

# (count of models picking this outcome, total non-void predictions) -> quota
QuotaStrategy = Callable[[int, int], int]


@dataclass(frozen=True)
class OutcomeCounts:
    home: int = 0
    draw: int = 0
    away: int = 0

    @property
    def total(self) -> int:
        return self.home + self.draw + self.away

    @classmethod
    def from_results(cls, results: Iterable[str]) -> "OutcomeCounts":
        counts = {"H": 0, "D": 0, "A": 0}
        for r in results:
            if r not in counts:
                raise ValidationError(f"unknown predicted result {r!r}", field="predicted_result", value=r)
            counts[r] += 1
        return cls(home=counts["H"], draw=counts["D"], away=counts["A"])


@dataclass(frozen=True)
class Quotas:
    home: int
    draw: int
    away: int

    def for_result(self, result: Result) -> int:
        return {"H": self.home, "D": self.draw, "A": self.away}[result]

    def as_dict(self) -> dict:
        return {"home": self.home, "draw": self.draw, "away": self.away}


def clamp_quota(value: int) -> int:
    return max(MIN_QUOTA, min(MAX_QUOTA, int(value)))


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def linear_quota(count: int, total: int) -> int:
    """round(6 - 4 * share), clamped to [2, 6]; 4 when nobody predicted."""
    if total <= 0:
        return NEUTRAL_QUOTA
    share = count / total
    return clamp_quota(_round_half_up(MAX_QUOTA - 4 * share))


def rarity_bucket_quota(count: int, total: int) -> int:
    """Step function over the share of models: >75% 2, >50% 3, >25% 4, >10% 5, else 6."""
    if total <= 0:
        return NEUTRAL_QUOTA
    pct = 100.0 * count / total
    if pct > 75:
        return 2
    if pct > 50:
        return 3
    if pct > 25:
        return 4
    if pct > 10:
        return 5
    return 6


STRATEGIES: dict[str, QuotaStrategy] = {
    "linear": linear_quota,
    "rarity": rarity_bucket_quota,
}


def get_quota_strategy(name: str) -> QuotaStrategy:
    try:
        return STRATEGIES[name]
    except KeyError:
        raise ValidationError(
            f"unknown quota strategy {name!r} (known: {', '.join(sorted(STRATEGIES))})",
            field="quota_strategy", value=name,
        ) from None


def calculate_quotas(counts: OutcomeCounts, strategy: QuotaStrategy = linear_quota) -> Quotas:
    n = counts.total
    return Quotas(
        home=clamp_quota(strategy(counts.home, n)),
        draw=clamp_quota(strategy(counts.draw, n)),
        away=clamp_quota(strategy(counts.away, n)),
    )
