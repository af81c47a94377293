from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from tipster.budget import BudgetGuard
from tipster.config import Settings, settings
from tipster.counters import counter_store_from_settings
from tipster.errors import ExternalSourceError, RateLimitError
from tipster.providers.ratelimit import TRANSIENT_ERRORS, RateLimiter, retry_request

log = logging.getLogger(__name__)

SOURCE = "api-football"
DEFAULT_RETRY_AFTER = 60.0


def _retry_after(r: httpx.Response) -> float:
    raw = r.headers.get("Retry-After") or r.headers.get("retry-after")
    try:
        return max(float(raw), 0.0) if raw is not None else DEFAULT_RETRY_AFTER
    except ValueError:
        return DEFAULT_RETRY_AFTER


@dataclass
class ApiFootballClient:
    """
    Budget-gated API-Football client.

    Every HTTP attempt (retries included) is counted against the daily
    budget before it is sent.
    """
    base: str
    key: str
    budget: BudgetGuard
    timeout: float = 15.0
    limiter: Optional[RateLimiter] = None
    transport: Optional[httpx.BaseTransport] = field(default=None, repr=False)

    def _headers(self) -> Dict[str, str]:
        return {"x-apisports-key": self.key}

    def _send(self, url: str, params: Dict[str, Any]) -> httpx.Response:
        self.budget.check_and_increment_budget()
        if self.limiter is not None:
            self.limiter.wait()
        with httpx.Client(timeout=self.timeout, headers=self._headers(), transport=self.transport) as c:
            return c.get(url, params=params)

    def get(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        url = self.base.rstrip("/") + path
        try:
            r = retry_request(lambda: self._send(url, params), label="API-Football")
        except TRANSIENT_ERRORS as exc:
            raise ExternalSourceError(SOURCE, f"{path}: {exc}") from exc

        if r.status_code == 429:
            retry_after = _retry_after(r)
            log.warning("API-Football rate limited on %s, retry after %.0fs", path, retry_after)
            raise RateLimitError(SOURCE, retry_after)
        if r.status_code >= 400:
            raise ExternalSourceError(SOURCE, f"{path}: HTTP {r.status_code}", status_code=r.status_code)

        try:
            data = r.json()
        except ValueError as exc:
            raise ExternalSourceError(SOURCE, f"{path}: invalid JSON") from exc

        if not isinstance(data, dict):
            raise ExternalSourceError(SOURCE, f"{path}: unexpected body", status_code=r.status_code)
        # API-Football reports quota and auth problems in the body with HTTP 200
        errors = data.get("errors")
        if errors:
            raise ExternalSourceError(SOURCE, f"{path}: {errors}", status_code=r.status_code)
        return data

    def odds(self, fixture_id: int) -> Dict[str, Any]:
        return self.get("/odds", {"fixture": fixture_id})

    def injuries(self, fixture_id: int) -> Dict[str, Any]:
        return self.get("/injuries", {"fixture": fixture_id})

    def head_to_head(self, home_team_id: int, away_team_id: int, last: int = 10) -> Dict[str, Any]:
        return self.get("/fixtures/headtohead", {"h2h": f"{home_team_id}-{away_team_id}", "last": last})


def client_from_settings(s: Settings | None = None, budget: BudgetGuard | None = None) -> ApiFootballClient:
    s = s or settings()
    if not s.api_football_key:
        raise RuntimeError("Missing env var API_FOOTBALL_KEY")
    if budget is None:
        budget = BudgetGuard(counter_store_from_settings(s), limit=s.api_football_daily_limit)
    return ApiFootballClient(
        base=s.api_football_base,
        key=s.api_football_key,
        budget=budget,
        timeout=s.http_timeout,
        limiter=RateLimiter(max_calls=10, period_seconds=60),
    )
