"""Tipster CLI, organised into sub-command groups.

Usage examples:
    tipster score pending            # score every finished match
    tipster score lock-quotas 1234   # lock quotas before kickoff
    tipster models health            # failure counters per model
    tipster budget status            # API-Football usage today
    tipster stats leaderboard        # ranked models
    tipster scheduler start          # run lock/settle/recover on cron
"""
from __future__ import annotations

import typer

from tipster.cli._shared import _setup_logging
from tipster.cli.score_cmds import app as _score_app
from tipster.cli.models_cmds import app as _models_app
from tipster.cli.budget_cmds import app as _budget_app
from tipster.cli.stats_cmds import app as _stats_app
from tipster.cli.scheduler_cmds import app as _scheduler_app

app = typer.Typer(add_completion=False, help="Quota scoring, streaks and model health for AI football tips.")


@app.callback()
def main(verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging")):
    _setup_logging(verbose)


app.add_typer(_score_app, name="score")
app.add_typer(_models_app, name="models")
app.add_typer(_budget_app, name="budget")
app.add_typer(_stats_app, name="stats")
app.add_typer(_scheduler_app, name="scheduler")


if __name__ == "__main__":
    app()
