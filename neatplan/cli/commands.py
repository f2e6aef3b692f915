"""NeatPlan CLI commands for maintenance and inspection."""

from __future__ import annotations

import asyncio
import datetime as dt
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(help="NeatPlan cleaning schedule tracker", no_args_is_help=True)
console = Console()

_STATUS_STYLES = {
    "OVERDUE": "red",
    "PENDING": "yellow",
    "COMPLETED": "green",
    "PAUSED": "dim",
}


def _async_run(coro):
    """Run an async coroutine, disposing of the database engine afterwards."""
    from neatplan.database import close_db

    async def _main():
        try:
            return await coro
        finally:
            await close_db()

    return asyncio.run(_main())


def _parse_now(value: Optional[str]) -> Optional[dt.datetime]:
    if value is None:
        return None
    try:
        parsed = dt.datetime.fromisoformat(value)
    except ValueError:
        raise typer.BadParameter(f"Not an ISO-8601 timestamp: {value}") from None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=dt.UTC)


@app.callback()
def _main() -> None:
    from neatplan.logging_config import setup_logging

    setup_logging()


@app.command("init-db")
def init_db() -> None:
    """Create the database tables."""
    from neatplan.database import init_db as _init_db

    _async_run(_init_db())
    console.print("[green]✓[/green] Database initialized")


@app.command("check-schedules")
def check_schedules(
    now: Optional[str] = typer.Option(None, "--now", help="Evaluate at this ISO timestamp instead of the clock"),
) -> None:
    """Run one overdue sweep and print what changed."""
    from neatplan.database import init_db as _init_db
    from neatplan.modules.scheduler.jobs import sweep_and_notify

    at = _parse_now(now)

    async def _run():
        await _init_db()
        return await sweep_and_notify(now=at)

    result = _async_run(_run())
    console.print(
        f"[bold]Sweep at {result.now:%Y-%m-%d %H:%M} UTC:[/bold] "
        f"examined {result.examined}, updated {result.updated}"
    )
    if result.transitions:
        table = Table(title="Status changes")
        table.add_column("Transition", style="cyan")
        table.add_column("Count", justify="right")
        for transition, count in sorted(result.transitions.items()):
            table.add_row(transition, str(count))
        console.print(table)


@app.command()
def due(
    days: int = typer.Option(7, "--days", "-d", min=0, help="Look this many days ahead"),
) -> None:
    """List assignments due within the next N days."""
    from neatplan.database import init_db as _init_db
    from neatplan.modules.schedules.engine import frequency_label
    from neatplan.modules.schedules.service import ScheduleService

    async def _run():
        await _init_db()
        service = ScheduleService()
        await service.refresh_statuses()
        return await service.list_due(dt.timedelta(days=days))

    rows = _async_run(_run())
    if not rows:
        console.print(f"[dim]Nothing due in the next {days} day(s).[/dim]")
        return

    table = Table(title=f"Due within {days} day(s)")
    table.add_column("Kind", style="dim")
    table.add_column("Subject", style="cyan")
    table.add_column("Schedule")
    table.add_column("Frequency")
    table.add_column("Next due")
    table.add_column("Status")
    for kind, assignment in rows:
        style = _STATUS_STYLES.get(assignment.status, "")
        table.add_row(
            kind.value,
            assignment.subject.name,
            assignment.schedule.title,
            frequency_label(assignment.frequency),
            f"{assignment.next_due:%Y-%m-%d %H:%M}",
            f"[{style}]{assignment.status}[/{style}]" if style else assignment.status,
        )
    console.print(table)


@app.command("suggest-frequency")
def suggest_frequency(text: str = typer.Argument(..., help="Frequency wording, e.g. 'twice weekly'")) -> None:
    """Show which frequency a piece of schedule wording maps to."""
    from neatplan.modules.schedules.engine import frequency_label, map_frequency_string_to_enum

    frequency = map_frequency_string_to_enum(text)
    console.print(f"{text!r} → [bold]{frequency.value}[/bold] ({frequency_label(frequency)})")


@app.command()
def serve() -> None:
    """Start the API server."""
    from neatplan.main import run

    run()


if __name__ == "__main__":
    app()
