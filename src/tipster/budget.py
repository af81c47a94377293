"""
Daily request budget for API-Football.

The free tier allows a fixed number of requests per UTC day. Every outbound
request first calls BudgetGuard.check_and_increment_budget(), which bumps a
per-day counter in one atomic incr and refuses once the limit is passed.

If the counter store is down the guard fails open: the request goes ahead
and a warning is logged.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from tipster.counters import CounterStore, CounterStoreError
from tipster.db import utcnow
from tipster.errors import BudgetExceededError

log = logging.getLogger(__name__)

DEFAULT_KEY_PREFIX = "api-football:daily-budget"
LOG_EVERY = 10
WARN_RATIO = 0.9


def next_midnight_utc(now: datetime) -> datetime:
    now = now.astimezone(timezone.utc) if now.tzinfo else now.replace(tzinfo=timezone.utc)
    return datetime(now.year, now.month, now.day, tzinfo=timezone.utc) + timedelta(days=1)


def seconds_until_midnight_utc(now: datetime) -> int:
    """Whole seconds until the next UTC midnight, never less than 1."""
    return max(1, int((next_midnight_utc(now) - now).total_seconds()))


@dataclass(frozen=True)
class BudgetStatus:
    used: int
    limit: int
    remaining: int
    reset_time: datetime

    @property
    def exhausted(self) -> bool:
        return self.used >= self.limit


class BudgetGuard:
    def __init__(
        self,
        store: Optional[CounterStore],
        limit: int = 100,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.limit = limit
        self.key_prefix = key_prefix
        self.clock = clock

    def key_for(self, now: datetime) -> str:
        return f"{self.key_prefix}:{now.astimezone(timezone.utc).strftime('%Y-%m-%d')}"

    def check_and_increment_budget(self) -> int:
        """
        Count one request against today's budget.

        Returns the post-increment count, or 0 when the store is unavailable.
        Raises BudgetExceededError once the count passes the limit.
        """
        now = self.clock()
        if self.store is None:
            log.warning("budget: no counter store, failing open")
            return 0

        key = self.key_for(now)
        try:
            count = self.store.incr(key)
            if count == 1:
                self.store.expire(key, seconds_until_midnight_utc(now))
        except CounterStoreError as exc:
            log.warning("budget: counter store unavailable, failing open: %s", exc)
            return 0

        if count > self.limit:
            reset = next_midnight_utc(now)
            log.error("API-Football budget exhausted (%d/%d), resets %s",
                      count, self.limit, reset.isoformat())
            raise BudgetExceededError(reset, count, self.limit)

        if count % LOG_EVERY == 0 or count > self.limit * WARN_RATIO:
            level = logging.WARNING if count > self.limit * WARN_RATIO else logging.INFO
            log.log(level, "API-Football budget: %d/%d used today", count, self.limit)
        return count

    def get_budget_status(self) -> Optional[BudgetStatus]:
        """Read-only view of today's usage; None when the store cannot be read."""
        if self.store is None:
            return None
        now = self.clock()
        try:
            used = self.store.get(self.key_for(now)) or 0
        except CounterStoreError as exc:
            log.warning("budget: cannot read status: %s", exc)
            return None
        return BudgetStatus(
            used=used,
            limit=self.limit,
            remaining=max(self.limit - used, 0),
            reset_time=next_midnight_utc(now),
        )
