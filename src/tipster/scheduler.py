"""
Background scheduler for the settlement cycle.

Uses APScheduler cron jobs; every run is logged to the job_runs table.

Job types:
- lock: lock quotas for matches kicking off soon
- settle: score every finished match with pending predictions
- recover: put auto-disabled models back on probation after the cooldown
"""
from __future__ import annotations
import json
import logging
from datetime import timedelta
from enum import Enum
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from tipster import pipeline
from tipster.context import AppContext
from tipster.db import fetch_dicts, to_db_ts
from tipster.health import ModelHealthMonitor
from tipster.scoring import ScoringEngine

log = logging.getLogger(__name__)

DEFAULT_JOBS = {
    "lock": "*/5 * * * *",
    "settle": "*/15 * * * *",
    "recover": "0 * * * *",
}


class JobStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class SettlementScheduler:
    """
    Example usage:
        scheduler = SettlementScheduler(AppContext.from_settings())
        scheduler.add_job("settle", "*/10 * * * *")
        scheduler.start()
    """

    def __init__(self, ctx: AppContext, scheduler: Optional[BackgroundScheduler] = None):
        self.ctx = ctx
        self.scheduler = scheduler or BackgroundScheduler(timezone="UTC")
        self._ensure_schema()

    def _ensure_schema(self):
        with self.ctx.connect() as con:
            con.execute("CREATE SEQUENCE IF NOT EXISTS job_runs_seq START 1")
            con.execute("""
                CREATE TABLE IF NOT EXISTS job_runs (
                    run_id BIGINT PRIMARY KEY DEFAULT nextval('job_runs_seq'),
                    job_type VARCHAR NOT NULL,
                    status VARCHAR NOT NULL,
                    started_at TIMESTAMP,
                    completed_at TIMESTAMP,
                    duration_seconds DOUBLE,
                    error_message VARCHAR,
                    result_json VARCHAR
                )
            """)

    def _job_funcs(self) -> dict[str, Callable[[], dict]]:
        return {
            "lock": self._job_lock,
            "settle": self._job_settle,
            "recover": self._job_recover,
        }

    def add_job(self, job_type: str, cron_schedule: str) -> None:
        if job_type not in self._job_funcs():
            raise ValueError(f"Invalid job_type: {job_type}")
        # pending jobs are not deduplicated before start()
        if self.scheduler.get_job(job_type) is not None:
            self.scheduler.remove_job(job_type)
        self.scheduler.add_job(
            self.run_job,
            trigger=CronTrigger.from_crontab(cron_schedule, timezone="UTC"),
            id=job_type,
            args=[job_type],
            replace_existing=True,
            max_instances=1,
            misfire_grace_time=600,
        )

    def add_default_jobs(self) -> None:
        for job_type, cron in DEFAULT_JOBS.items():
            self.add_job(job_type, cron)

    def run_job(self, job_type: str) -> Optional[dict]:
        """Execute one job now and log the run. Never raises."""
        started_at = self.ctx.now()
        result = None
        error_message = None
        try:
            result = self._job_funcs()[job_type]()
            status = JobStatus.SUCCESS
        except Exception as e:
            status = JobStatus.FAILED
            error_message = str(e)
            log.error("Job %s failed: %s", job_type, error_message)

        completed_at = self.ctx.now()
        try:
            with self.ctx.connect() as con:
                con.execute("""
                    INSERT INTO job_runs
                    (job_type, status, started_at, completed_at, duration_seconds, error_message, result_json)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                """, [job_type, status.value, to_db_ts(started_at), to_db_ts(completed_at),
                      (completed_at - started_at).total_seconds(), error_message,
                      json.dumps(result) if result else None])
        except Exception as e:
            log.warning("Could not record run of %s: %s", job_type, e)
        return result

    def _job_lock(self) -> dict:
        locked = pipeline.lock_due_quotas(self.ctx, within=timedelta(minutes=30))
        return {"locked": sorted(locked)}

    def _job_settle(self) -> dict:
        results = ScoringEngine(self.ctx).score_pending_matches()
        return {
            "matches": len(results),
            "scored": sum(r.scored for r in results),
            "failed": sum(len(r.failed) for r in results),
            "points": sum(r.total_points_awarded for r in results),
        }

    def _job_recover(self) -> dict:
        return {"recovered": ModelHealthMonitor(self.ctx).recover_disabled_models()}

    def list_jobs(self) -> list[dict]:
        return [
            {"job_id": job.id, "next_run_at": getattr(job, "next_run_time", None)}
            for job in self.scheduler.get_jobs()
        ]

    def get_job_history(self, job_type: str, limit: int = 10) -> list[dict]:
        with self.ctx.connect() as con:
            return fetch_dicts(con, """
                SELECT job_type, status, started_at, duration_seconds, error_message, result_json
                FROM job_runs
                WHERE job_type = ?
                ORDER BY run_id DESC
                LIMIT ?
            """, [job_type, limit])

    def start(self) -> None:
        if not self.scheduler.running:
            self.scheduler.start()
            log.info("Scheduler started with %d jobs", len(self.scheduler.get_jobs()))

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown()
            log.info("Scheduler stopped")
