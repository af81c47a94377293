"""Error taxonomy shared by every tipster component.

Each error carries enough context (ids, counts, timestamps) for the caller
to log it and decide between retrying and skipping.
"""
from __future__ import annotations

from datetime import datetime


class TipsterError(Exception):
    """Base class for all errors raised by this package."""


class ValidationError(TipsterError):
    """Malformed input rejected before it reaches persistence."""

    def __init__(self, message: str, *, field: str | None = None, value=None):
        super().__init__(message)
        self.field = field
        self.value = value


class ConcurrencyConflict(TipsterError):
    """A transaction kept conflicting after all retries were used."""

    def __init__(self, operation: str, attempts: int, entity_id=None):
        super().__init__(
            f"{operation} conflicted {attempts} times"
            + (f" (entity={entity_id})" if entity_id is not None else "")
        )
        self.operation = operation
        self.attempts = attempts
        self.entity_id = entity_id


class BudgetExceededError(TipsterError):
    """The daily external API budget is used up; defer the call until reset_time."""

    def __init__(self, reset_time: datetime, count: int, limit: int):
        super().__init__(
            f"API-Football daily budget exceeded ({count}/{limit}). "
            f"Resets at {reset_time.isoformat()}"
        )
        self.reset_time = reset_time
        self.count = count
        self.limit = limit


class ExternalSourceError(TipsterError):
    """A single external data source failed; only its section is lost."""

    def __init__(self, source: str, detail: str, *, status_code: int | None = None):
        super().__init__(f"{source}: {detail}")
        self.source = source
        self.detail = detail
        self.status_code = status_code


class RateLimitError(ExternalSourceError):
    """The provider answered 429; the caller's backoff layer owns the retry."""

    def __init__(self, source: str, retry_after: float, detail: str = "rate limited"):
        super().__init__(source, detail, status_code=429)
        self.retry_after = retry_after
