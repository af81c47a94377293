"""
Operational health of prediction models.

Every invocation of a model is reported here. After `threshold` failures in a
row the model is auto-disabled and the scheduler stops calling it until it is
re-enabled by hand or recovered on probation after a cooldown.

All counters are updated with a single UPDATE ... RETURNING, so concurrent
failures of the same model can never lose an increment.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import duckdb

from tipster.context import AppContext
from tipster.counters import invalidate_model_caches
from tipster.db import fetch_dicts, retry_on_conflict, to_db_ts
from tipster.errors import ConcurrencyConflict
from tipster.records import Model

log = logging.getLogger(__name__)

MAX_REASON_LENGTH = 500


@dataclass(frozen=True)
class FailureOutcome:
    auto_disabled: bool
    consecutive_failures: int


def should_skip_model_due_to_health(model: Model) -> bool:
    return bool(model.auto_disabled)


class ModelHealthMonitor:
    def __init__(self, ctx: AppContext, threshold: Optional[int] = None):
        self.ctx = ctx
        self.threshold = threshold or ctx.settings.model_failure_threshold

    def record_model_success(self, model_id: str) -> bool:
        """
        Reset the failure run and lift an auto-disable.

        Returns False when the write could not be made.
        """
        try:
            with self.ctx.connect() as con:
                rows = retry_on_conflict(
                    lambda: con.execute("""
                        UPDATE models
                        SET consecutive_failures = 0, last_success_at = ?,
                            auto_disabled = FALSE, auto_disabled_at = NULL, failure_reason = NULL
                        WHERE model_id = ?
                        RETURNING model_id
                    """, [to_db_ts(self.ctx.now()), model_id]).fetchall(),
                    operation="record_model_success", entity_id=model_id,
                )
        except (duckdb.Error, ConcurrencyConflict) as exc:
            log.warning("health: could not record success for %s: %s", model_id, exc)
            return False
        if not rows:
            log.warning("health: success reported for unknown model %s", model_id)
            return False
        return True

    def record_model_failure(self, model_id: str, reason: str) -> FailureOutcome:
        """
        Count one failure and auto-disable on reaching the threshold.

        Only the call that crosses the threshold reports auto_disabled=True,
        so callers alert exactly once per disable.
        """
        reason = (reason or "")[:MAX_REASON_LENGTH]
        now = to_db_ts(self.ctx.now())
        t = self.threshold
        try:
            with self.ctx.connect() as con:
                rows = retry_on_conflict(
                    lambda: con.execute("""
                        UPDATE models
                        SET consecutive_failures = COALESCE(consecutive_failures, 0) + 1,
                            last_failure_at = ?,
                            failure_reason = ?,
                            auto_disabled = CASE
                                WHEN COALESCE(consecutive_failures, 0) + 1 >= ? THEN TRUE
                                ELSE auto_disabled
                            END,
                            auto_disabled_at = CASE
                                WHEN COALESCE(consecutive_failures, 0) + 1 = ? THEN ?
                                ELSE auto_disabled_at
                            END
                        WHERE model_id = ?
                        RETURNING consecutive_failures, auto_disabled
                    """, [now, reason, t, t, now, model_id]).fetchall(),
                    operation="record_model_failure", entity_id=model_id,
                )
        except (duckdb.Error, ConcurrencyConflict) as exc:
            log.warning("health: could not record failure for %s: %s", model_id, exc)
            return FailureOutcome(auto_disabled=False, consecutive_failures=0)

        if not rows:
            log.warning("health: failure reported for unknown model %s", model_id)
            return FailureOutcome(auto_disabled=False, consecutive_failures=0)

        failures, disabled = int(rows[0][0]), bool(rows[0][1])
        flipped = disabled and failures == t
        if flipped:
            log.error("model %s auto-disabled after %d consecutive failures: %s",
                      model_id, failures, reason)
            invalidate_model_caches(self.ctx.counters)
        else:
            log.info("model %s failure %d/%d: %s", model_id, failures, t, reason)
        return FailureOutcome(auto_disabled=flipped, consecutive_failures=failures)

    def re_enable_model(self, model_id: str) -> bool:
        """Manual override: clear the disable flag and the failure run."""
        with self.ctx.connect() as con:
            rows = retry_on_conflict(
                lambda: con.execute("""
                    UPDATE models
                    SET auto_disabled = FALSE, auto_disabled_at = NULL,
                        consecutive_failures = 0, failure_reason = NULL
                    WHERE model_id = ?
                    RETURNING model_id
                """, [model_id]).fetchall(),
                operation="re_enable_model", entity_id=model_id,
            )
        if not rows:
            return False
        log.info("model %s re-enabled", model_id)
        invalidate_model_caches(self.ctx.counters)
        return True

    def get_models_with_health(self) -> list[Model]:
        with self.ctx.connect() as con:
            rows = fetch_dicts(con, "SELECT * FROM models WHERE active ORDER BY model_id")
        return [Model.from_row(r) for r in rows]

    def get_auto_disabled_model_ids(self) -> list[str]:
        with self.ctx.connect() as con:
            return [r[0] for r in con.execute(
                "SELECT model_id FROM models WHERE auto_disabled ORDER BY model_id"
            ).fetchall()]

    def recover_disabled_models(self, cooldown: Optional[timedelta] = None) -> list[str]:
        """
        Put models that have sat out the cooldown back on probation.

        consecutive_failures is left at threshold - 1, so one more failure
        disables the model again straight away.
        """
        if cooldown is None:
            cooldown = timedelta(minutes=self.ctx.settings.model_recovery_cooldown_minutes)
        cutoff = to_db_ts(self.ctx.now() - cooldown)
        probation = max(self.threshold - 1, 0)
        with self.ctx.connect() as con:
            rows = retry_on_conflict(
                lambda: con.execute("""
                    UPDATE models
                    SET auto_disabled = FALSE, auto_disabled_at = NULL,
                        consecutive_failures = ?
                    WHERE auto_disabled AND active
                      AND (auto_disabled_at IS NULL OR auto_disabled_at <= ?)
                    RETURNING model_id
                """, [probation, cutoff]).fetchall(),
                operation="recover_disabled_models",
            )
        recovered = sorted(r[0] for r in rows)
        if recovered:
            log.info("recovered %d models on probation: %s", len(recovered), ", ".join(recovered))
            invalidate_model_caches(self.ctx.counters)
        return recovered
