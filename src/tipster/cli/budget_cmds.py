"""Budget sub-commands: status."""
from __future__ import annotations

import typer

from tipster.cli._shared import console

app = typer.Typer(help="External API request budget.")


@app.command()
def status():
    """Show today's API-Football request usage."""
    from tipster.budget import BudgetGuard
    from tipster.config import settings
    from tipster.counters import counter_store_from_settings

    s = settings()
    guard = BudgetGuard(counter_store_from_settings(s), limit=s.api_football_daily_limit)
    st = guard.get_budget_status()
    if st is None:
        console.print("[yellow]Counter store unavailable; budget is not enforced (fail-open).[/yellow]")
        raise typer.Exit(code=1)

    colour = "red" if st.exhausted else ("yellow" if st.used > 0.9 * st.limit else "green")
    console.print(f"\n[cyan]API-Football budget[/cyan]")
    console.print(f"  Used:      [{colour}]{st.used}/{st.limit}[/{colour}]")
    console.print(f"  Remaining: {st.remaining}")
    console.print(f"  Resets:    {st.reset_time.strftime('%Y-%m-%d %H:%M')} UTC")
