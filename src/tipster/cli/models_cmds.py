"""Model health sub-commands: health, re-enable, recover."""
from __future__ import annotations

import typer

from tipster.cli._shared import console, _context

app = typer.Typer(help="Model health and auto-disable management.")


@app.command()
def health():
    """Show failure counters and disable state for active models."""
    from rich.table import Table
    from tipster.health import ModelHealthMonitor

    ctx = _context()
    try:
        models = ModelHealthMonitor(ctx).get_models_with_health()
    finally:
        ctx.close()

    table = Table(title="Model Health")
    table.add_column("Model", style="cyan")
    table.add_column("Status")
    table.add_column("Failures", justify="right")
    table.add_column("Last failure")
    table.add_column("Last success")
    table.add_column("Reason")

    for m in models:
        status = "[red]disabled[/red]" if m.auto_disabled else "[green]ok[/green]"
        table.add_row(
            m.model_id,
            status,
            str(m.consecutive_failures),
            m.last_failure_at.strftime("%Y-%m-%d %H:%M") if m.last_failure_at else "-",
            m.last_success_at.strftime("%Y-%m-%d %H:%M") if m.last_success_at else "-",
            (m.failure_reason or "")[:60],
        )
    console.print(table)


@app.command("re-enable")
def re_enable(model_id: str):
    """Clear the auto-disable flag and failure count of a model."""
    from tipster.health import ModelHealthMonitor

    ctx = _context()
    try:
        ok = ModelHealthMonitor(ctx).re_enable_model(model_id)
    finally:
        ctx.close()
    if not ok:
        console.print(f"[red]Unknown model:[/red] {model_id}")
        raise typer.Exit(code=1)
    console.print(f"[green]{model_id} re-enabled[/green]")


@app.command()
def recover(cooldown_minutes: int = typer.Option(None, help="Override MODEL_RECOVERY_COOLDOWN_MINUTES.")):
    """Put auto-disabled models back on probation after the cooldown."""
    from datetime import timedelta
    from tipster.health import ModelHealthMonitor

    ctx = _context()
    try:
        cooldown = timedelta(minutes=cooldown_minutes) if cooldown_minutes is not None else None
        recovered = ModelHealthMonitor(ctx).recover_disabled_models(cooldown)
    finally:
        ctx.close()
    if recovered:
        console.print(f"[green]Recovered:[/green] {', '.join(recovered)}")
    else:
        console.print("No models eligible for recovery.")
