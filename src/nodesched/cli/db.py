"""
CLI: ``nodesched db`` - database management commands.
"""

from __future__ import annotations

import typer

from nodesched.cli.utils import console, get_connection, make_settings, print_json
from nodesched.core.schema import SCHEDULER_TABLES, create_tables

app = typer.Typer(no_args_is_help=True)


@app.command()
def init(
    database: str | None = typer.Option(None, "--database", "-d", help="Database path"),
) -> None:
    """Create the scheduler tables (safe to run repeatedly)."""
    settings = make_settings(database)
    conn = get_connection(settings)
    try:
        create_tables(conn)
    finally:
        conn.close()
    console.print(f"[green]Initialized[/green] {settings.database_path}")


@app.command()
def tables(
    database: str | None = typer.Option(None, "--database", "-d", help="Database path"),
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Show row counts for the scheduler tables."""
    settings = make_settings(database)
    conn = get_connection(settings)
    try:
        counts = {
            table: conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
            for table in SCHEDULER_TABLES.values()
        }
    finally:
        conn.close()

    if json_out:
        print_json(counts)
        return
    for table, count in counts.items():
        console.print(f"{table:<24} {count}")
