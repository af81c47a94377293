"""Scheduler sub-commands: start, run, history."""
from __future__ import annotations

import time

import typer

from tipster.cli._shared import console, _context

app = typer.Typer(help="Job scheduling commands.")


@app.command()
def start():
    """Run lock / settle / recover on their cron schedules until interrupted."""
    from tipster.scheduler import SettlementScheduler

    ctx = _context()
    scheduler = SettlementScheduler(ctx)
    scheduler.add_default_jobs()
    scheduler.start()
    console.print("[green]Scheduler started[/green]")
    for job in scheduler.list_jobs():
        console.print(f"  - {job['job_id']:10s} (next: {job['next_run_at']})")

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        console.print("Stopping...")
    finally:
        scheduler.stop()
        ctx.close()


@app.command()
def run(job_type: str):
    """Run one job (lock, settle, recover) immediately."""
    from tipster.scheduler import SettlementScheduler

    ctx = _context()
    try:
        scheduler = SettlementScheduler(ctx)
        if job_type not in ("lock", "settle", "recover"):
            console.print(f"[red]Invalid job type:[/red] {job_type}")
            raise typer.Exit(code=1)
        result = scheduler.run_job(job_type)
    finally:
        ctx.close()
    console.print(f"[green]{job_type}[/green] {result}")


@app.command()
def history(job_type: str, limit: int = 10):
    """Show recent runs of a job."""
    from rich.table import Table
    from tipster.scheduler import SettlementScheduler

    ctx = _context()
    try:
        rows = SettlementScheduler(ctx).get_job_history(job_type, limit=limit)
    finally:
        ctx.close()

    table = Table(title=f"Job History: {job_type}")
    table.add_column("Started")
    table.add_column("Status")
    table.add_column("Duration", justify="right")
    table.add_column("Error")
    for r in rows:
        table.add_row(
            str(r["started_at"]),
            r["status"],
            f"{r['duration_seconds']:.2f}s" if r["duration_seconds"] is not None else "-",
            (r["error_message"] or "")[:60],
        )
    console.print(table)
