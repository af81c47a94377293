"""Scoring sub-commands: match, pending, lock-quotas, void."""
from __future__ import annotations

import typer

from tipster.cli._shared import console, _context

app = typer.Typer(help="Quota locking and scoring of finished matches.")


def _print_result(result) -> None:
    if result.skipped:
        console.print(f"[yellow]Match {result.match_id} skipped:[/yellow] {result.reason}")
        return
    q = result.quotas
    console.print(f"[green]Match {result.match_id}:[/green] scored {result.scored}, "
                  f"{result.total_points_awarded} pts"
                  + (" [magenta](upset)[/magenta]" if result.is_upset else ""))
    console.print(f"  quotas H={q.home} D={q.draw} A={q.away}, already scored {result.already_scored}")
    for f in result.failed:
        console.print(f"  [red]prediction {f['prediction_id']} ({f['model_id']}):[/red] {f['error']}")
    if result.scored and not result.cache_invalidated:
        console.print("  [yellow]cache invalidation failed; views may be stale until TTL[/yellow]")


@app.command()
def match(match_id: int):
    """Score all pending predictions of one finished match."""
    from tipster.scoring import ScoringEngine

    ctx = _context()
    try:
        result = ScoringEngine(ctx).score_match(match_id)
    finally:
        ctx.close()
    _print_result(result)
    if result.failed:
        raise typer.Exit(code=1)


@app.command()
def pending():
    """Score every finished match that still has pending predictions."""
    from tipster.scoring import ScoringEngine

    ctx = _context()
    try:
        results = ScoringEngine(ctx).score_pending_matches()
    finally:
        ctx.close()
    if not results:
        console.print("Nothing to score.")
        return
    for r in results:
        _print_result(r)
    console.print(f"[cyan]{sum(r.scored for r in results)} predictions scored "
                  f"across {len(results)} matches[/cyan]")


@app.command("lock-quotas")
def lock_quotas(
    match_id: int,
    strategy: str = typer.Option(None, help="Quota strategy (linear, rarity); defaults to QUOTA_STRATEGY."),
):
    """Lock quotas for a match from its current prediction distribution."""
    from tipster import pipeline
    from tipster.errors import ValidationError
    from tipster.quota import get_quota_strategy

    ctx = _context()
    try:
        q = pipeline.lock_quotas(ctx, match_id, get_quota_strategy(strategy) if strategy else None)
    except ValidationError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)
    finally:
        ctx.close()
    console.print(f"[green]Match {match_id} quotas:[/green] H={q.home} D={q.draw} A={q.away}")


@app.command()
def void(prediction_id: int):
    """Void a pending prediction."""
    from tipster.scoring import ScoringEngine

    ctx = _context()
    try:
        ok = ScoringEngine(ctx).void_prediction(prediction_id)
    finally:
        ctx.close()
    if ok:
        console.print(f"[green]Prediction {prediction_id} voided[/green]")
    else:
        console.print(f"[yellow]Prediction {prediction_id} is not pending[/yellow]")
        raise typer.Exit(code=1)
