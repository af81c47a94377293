"""Stats sub-commands: leaderboard, model."""
from __future__ import annotations

import typer

from tipster.cli._shared import console, _context

app = typer.Typer(help="Leaderboard and per-model statistics.")


@app.command()
def leaderboard(
    competition: str = typer.Option(None, help="Only matches of this competition."),
    days: int = typer.Option(None, help="Only matches kicked off in the last N days."),
    min_predictions: int = typer.Option(0, help="Hide models with fewer scored predictions."),
    include_inactive: bool = typer.Option(False, "--all", help="Include deactivated models."),
    limit: int = typer.Option(None, help="Show at most N models."),
):
    """Rank models by average points per scored prediction."""
    from datetime import timedelta
    from rich.table import Table
    from tipster.leaderboard import LeaderboardAggregator, LeaderboardFilters

    ctx = _context()
    try:
        since = ctx.now() - timedelta(days=days) if days else None
        entries = LeaderboardAggregator(ctx).get_leaderboard(LeaderboardFilters(
            since=since,
            competition=competition,
            active_only=not include_inactive,
            min_predictions=min_predictions,
            limit=limit,
        ))
    finally:
        ctx.close()

    title = "Leaderboard" + (f" {competition}" if competition else "") + (f" ({days} days)" if days else "")
    table = Table(title=title)
    table.add_column("#", justify="right")
    table.add_column("Model", style="cyan")
    table.add_column("N", justify="right")
    table.add_column("Pts", justify="right")
    table.add_column("Avg", justify="right")
    table.add_column("Tendency %", justify="right")
    table.add_column("Exact %", justify="right")
    table.add_column("Streak", justify="right")

    for e in entries:
        table.add_row(
            str(e.rank),
            e.display_name or e.model_id,
            str(e.total_predictions),
            str(e.total_points),
            f"{e.avg_points:.2f}",
            f"{e.accuracy:.1f}",
            f"{e.exact_accuracy:.1f}",
            f"{e.current_streak:+d}" + (f" {e.current_streak_type}" if e.current_streak_type != "none" else ""),
        )
    console.print(table)


@app.command()
def model(model_id: str):
    """All-time stats and streak records of one model."""
    from tipster.leaderboard import LeaderboardAggregator
    from tipster.streaks import StreakTracker

    ctx = _context()
    try:
        stats = LeaderboardAggregator(ctx).get_model_stats(model_id)
        streak = StreakTracker(ctx).get_state(model_id)
    finally:
        ctx.close()
    if stats is None:
        console.print(f"[red]Unknown model:[/red] {model_id}")
        raise typer.Exit(code=1)

    console.print(f"\n[cyan]{stats.display_name or model_id}[/cyan]")
    console.print(f"  Scored: {stats.scored_predictions}, points {stats.total_points} (avg {stats.avg_points:.2f})")
    console.print(f"  Tendency: {stats.correct_tendencies} ({stats.accuracy:.1f}%)")
    console.print(f"  Exact: {stats.exact_scores} ({stats.exact_accuracy:.1f}%)")
    console.print(f"  Streak: {streak.current_streak:+d} ({streak.current_streak_type}), "
                  f"best {streak.best_streak}, worst {streak.worst_streak}, "
                  f"best exact run {streak.best_exact_streak}")
