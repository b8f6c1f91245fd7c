"""
Root Typer application for the ``nodesched`` command.

Typical crontab entry::

    * * * * * nodesched run --database /var/lib/nodesched/nodesched.db
"""

from __future__ import annotations

from datetime import datetime

import typer
from rich.table import Table

from nodesched import __version__
from nodesched.cli.db import app as db_app
from nodesched.cli.utils import console, err_console, get_connection, make_settings, print_json, print_mapping
from nodesched.core.errors import ScheduleError
from nodesched.core.timestamps import ensure_utc
from nodesched.scheduling.driver import build_driver
from nodesched.scheduling.health import check_scheduler_health
from nodesched.scheduling.recurrence import upcoming_runs

app = typer.Typer(
    name="nodesched",
    help="node-scheduler - run server schedules against node agents.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"node-scheduler {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """node-scheduler CLI - process due schedules, inspect health."""


# ── Commands ─────────────────────────────────────────────────────────────


@app.command()
def run(
    force: bool = typer.Option(False, "--force", "-f", help="Ignore the run interval"),
    database: str | None = typer.Option(None, "--database", "-d", help="Database path"),
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Process every due schedule once."""
    settings = make_settings(database)
    conn = get_connection(settings)
    try:
        report = build_driver(conn, settings).run(force=force)
    finally:
        conn.close()

    if report is None:
        if json_out:
            print_json({"ran": False})
        else:
            console.print("[yellow]Not due yet[/yellow] (use --force to run anyway)")
        return

    if json_out:
        print_json({"ran": True, **report.to_dict()})
    elif report.disabled:
        console.print("[yellow]Schedules are disabled[/yellow]")
    else:
        print_mapping(
            {
                "due": report.schedules_due,
                "executed": report.executed,
                "skipped": report.skipped,
                "failed": report.failed,
                "duration_ms": report.duration_ms,
            },
            title="Scheduler Run",
        )

    if report.error:
        err_console.print(f"[bold red]Error[/bold red]: {report.error}")
        raise typer.Exit(code=1)


@app.command("next-run")
def next_run(
    minute: str = typer.Argument(..., help="Minute field"),
    hour: str = typer.Argument(..., help="Hour field"),
    day_of_month: str = typer.Argument(..., help="Day-of-month field"),
    month: str = typer.Argument(..., help="Month field"),
    day_of_week: str = typer.Argument(..., help="Day-of-week field"),
    after: str | None = typer.Option(None, "--after", "-a", help="ISO 8601 anchor (default: now)"),
    count: int = typer.Option(1, "--count", "-n", min=1, help="Number of fire times"),
    timezone: str = typer.Option("UTC", "--timezone", "-z", help="Zone the fields are read in"),
) -> None:
    """Show the next fire time(s) for five cron fields."""
    anchor: datetime | None = None
    if after:
        try:
            anchor = ensure_utc(datetime.fromisoformat(after))
        except ValueError as e:
            err_console.print(f"[bold red]Error[/bold red]: invalid --after value {after!r}")
            raise typer.Exit(code=1) from e

    try:
        runs = upcoming_runs(
            minute, hour, day_of_month, month, day_of_week, anchor, count=count, timezone=timezone
        )
    except ScheduleError as e:
        err_console.print(f"[bold red]Error[/bold red]: {e.message}")
        raise typer.Exit(code=1) from e

    for fire_time in runs:
        typer.echo(fire_time.isoformat())


@app.command()
def health(
    database: str | None = typer.Option(None, "--database", "-d", help="Database path"),
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Report heartbeat freshness and schedule state. Exits 1 when unhealthy."""
    settings = make_settings(database)
    conn = get_connection(settings)
    try:
        report = check_scheduler_health(conn, settings)
    finally:
        conn.close()

    if json_out:
        print_json(report.to_dict())
    else:
        status = "[green]healthy[/green]" if report.healthy else "[bold red]unhealthy[/bold red]"
        console.print(f"Scheduler: {status}")

        table = Table(title="Checks")
        table.add_column("Check", style="bold cyan")
        table.add_column("Result")
        for name, ok in report.checks.items():
            table.add_row(name, "[green]ok[/green]" if ok else "[red]fail[/red]")
        console.print(table)

        if report.heartbeat:
            print_mapping(report.heartbeat, title="Heartbeat")
        print_mapping(report.schedules, title="Schedules")
        for warning in report.warnings:
            console.print(f"[yellow]warning[/yellow] {warning}")
        for error in report.errors:
            console.print(f"[red]error[/red] {error}")

    if not report.healthy:
        raise typer.Exit(code=1)


# ── Sub-command registration ─────────────────────────────────────────────

app.add_typer(db_app, name="db", help="Database operations.")
