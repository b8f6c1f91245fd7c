"""
CLI utility helpers - settings, connections and output.
"""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from nodesched.core.errors import ConfigError
from nodesched.core.logging import configure_logging
from nodesched.core.settings import SchedulerSettings, load_settings

console = Console()
err_console = Console(stderr=True)


# ── Settings / connection helpers ────────────────────────────────────────


def make_settings(database: str | None = None, **overrides: Any) -> SchedulerSettings:
    """Load settings, applying CLI overrides; exits with code 2 on bad config."""
    if database:
        overrides["database_path"] = Path(database)
    try:
        settings = load_settings(**overrides)
    except ConfigError as e:
        err_console.print(f"[bold red]Configuration error[/bold red]: {e.message}")
        raise typer.Exit(code=2) from e
    configure_logging(level=settings.log_level, json_format=settings.json_logs)
    return settings


def get_connection(settings: SchedulerSettings) -> sqlite3.Connection:
    """Open the SQLite database named in settings."""
    path = Path(settings.database_path)
    if path.parent and not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
    return sqlite3.connect(str(path))


# ── Output helpers ───────────────────────────────────────────────────────


def print_json(payload: Any) -> None:
    console.print_json(json.dumps(payload, default=str))


def print_mapping(data: dict[str, Any], title: str = "") -> None:
    """Render a flat mapping as a two-column table."""
    table = Table(title=title or None, show_header=False)
    table.add_column("Field", style="bold cyan")
    table.add_column("Value")
    for key, value in data.items():
        table.add_row(str(key), "" if value is None else str(value))
    console.print(table)
