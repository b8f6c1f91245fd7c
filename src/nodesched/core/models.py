"""Scheduler records and the task action variant.

Manifesto:
    Schedules, tasks, servers, nodes and backups need typed dataclass
    representations so the runner and executor never pass raw rows around.
    Task actions are stored as free strings; they are parsed once into a
    closed set of variants so dispatch can be checked for exhaustiveness.

Tags:
    models, scheduling, dataclasses, cron, task-actions

Doc-Types:
    api-reference, data-model
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from nodesched.core.errors import TaskPayloadError

# ---------------------------------------------------------------------------
# server_schedules
# ---------------------------------------------------------------------------


@dataclass
class Schedule:
    """Schedule definition row (``server_schedules``)."""

    id: int = 0
    server_id: int = 0
    name: str = ""
    cron_minute: str = "*"
    cron_hour: str = "*"
    cron_day_of_month: str = "*"
    cron_month: str = "*"
    cron_day_of_week: str = "*"
    is_active: bool = True
    is_processing: bool = False
    only_when_online: bool = False
    next_run_at: datetime | None = None
    last_run_at: datetime | None = None

    @property
    def cron_fields(self) -> tuple[str, str, str, str, str]:
        """Fields in minute, hour, day-of-month, month, day-of-week order."""
        return (
            self.cron_minute,
            self.cron_hour,
            self.cron_day_of_month,
            self.cron_month,
            self.cron_day_of_week,
        )

    @property
    def cron_expression(self) -> str:
        return " ".join(self.cron_fields)


# ---------------------------------------------------------------------------
# server_schedule_tasks
# ---------------------------------------------------------------------------


@dataclass
class Task:
    """Schedule task row (``server_schedule_tasks``)."""

    id: int = 0
    schedule_id: int = 0
    sequence_id: int = 0
    action: str = ""
    payload: str | None = None


# ---------------------------------------------------------------------------
# servers / nodes (read-only)
# ---------------------------------------------------------------------------


@dataclass
class Server:
    """Managed server row (``servers``)."""

    id: int = 0
    uuid: str = ""
    name: str = ""
    node_id: int | None = None
    status: str | None = None
    backup_limit: int = 0  # 0 = unlimited


@dataclass
class Node:
    """Agent host row (``nodes``)."""

    id: int = 0
    fqdn: str = ""
    daemon_listen: int = 8080
    scheme: str = "https"
    daemon_token: str | None = None


# ---------------------------------------------------------------------------
# server_backups
# ---------------------------------------------------------------------------


@dataclass
class Backup:
    """Backup record row (``server_backups``)."""

    id: int = 0
    server_id: int = 0
    uuid: str = ""
    name: str = ""
    ignored_files: str = "[]"  # JSON array
    disk: str = "wings"
    is_successful: bool = False
    is_locked: bool = False
    created_at: str = ""


# ---------------------------------------------------------------------------
# Agent responses
# ---------------------------------------------------------------------------


@dataclass
class AgentResponse:
    """Result of one node agent call.

    ``status_code`` is the HTTP status, or 0 when no response arrived.
    ``error`` is set whenever the call did not succeed.
    """

    status_code: int
    data: Any = None
    error: str | None = None

    def is_successful(self) -> bool:
        return 200 <= self.status_code < 300 and self.error is None


# ---------------------------------------------------------------------------
# Run summary
# ---------------------------------------------------------------------------


@dataclass
class RunSummary:
    """Counts for one completed schedule run."""

    schedule_id: int
    executed: int = 0
    failed: int = 0
    skipped: int = 0
    total: int = 0
    duration_ms: int = 0
    next_run_at: datetime | None = None
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "schedule_id": self.schedule_id,
            "executed": self.executed,
            "failed": self.failed,
            "skipped": self.skipped,
            "total": self.total,
            "duration_ms": self.duration_ms,
            "next_run_at": self.next_run_at.isoformat() if self.next_run_at else None,
            "errors": list(self.errors),
        }


# ---------------------------------------------------------------------------
# Task actions
# ---------------------------------------------------------------------------


class PowerSignal(str, Enum):
    """Power signals understood by the node agent."""

    START = "start"
    STOP = "stop"
    RESTART = "restart"
    KILL = "kill"

    @classmethod
    def parse(cls, value: str | None) -> PowerSignal:
        """Parse a signal name, trimmed and case-insensitive.

        Raises:
            TaskPayloadError: If the value is not a known signal.
        """
        normalized = (value or "").strip().lower()
        try:
            return cls(normalized)
        except ValueError:
            raise TaskPayloadError(
                f"Invalid power action: {value!r}",
                context={"payload": value},
            ) from None


@dataclass(frozen=True, slots=True)
class PowerAction:
    signal: PowerSignal


@dataclass(frozen=True, slots=True)
class BackupAction:
    ignored_files: str = "[]"  # normalized JSON array


@dataclass(frozen=True, slots=True)
class CommandAction:
    command: str


@dataclass(frozen=True, slots=True)
class InstallAction:
    pass


@dataclass(frozen=True, slots=True)
class ReinstallAction:
    pass


@dataclass(frozen=True, slots=True)
class UnknownAction:
    action: str


TaskAction = (
    PowerAction
    | BackupAction
    | CommandAction
    | InstallAction
    | ReinstallAction
    | UnknownAction
)


def parse_task_action(action: str, payload: str | None) -> TaskAction:
    """
    Turn a stored ``(action, payload)`` pair into a task action.

    ``power`` reads its signal from the payload; ``start``, ``stop``,
    ``restart`` and ``kill`` are shorthands for it. ``update`` maps to a
    reinstall. Unrecognized actions become ``UnknownAction`` rather than
    an error.

    Raises:
        TaskPayloadError: If a power payload names no known signal.
    """
    name = (action or "").strip().lower()
    match name:
        case "power":
            return PowerAction(PowerSignal.parse(payload))
        case "start" | "stop" | "restart" | "kill":
            return PowerAction(PowerSignal(name))
        case "backup":
            return BackupAction(normalize_ignored_files(payload))
        case "command":
            return CommandAction(payload or "")
        case "install":
            return InstallAction()
        case "update":
            return ReinstallAction()
        case _:
            return UnknownAction(action)


_IGNORED_SPLIT = re.compile(r"[\r\n,]+")


def normalize_ignored_files(payload: str | None) -> str:
    """
    Normalize a backup task's ignored-files payload to a JSON array string.

    Accepts either a JSON array (non-string and empty items are dropped) or
    free text with one pattern per line or comma.

    Examples:
        >>> normalize_ignored_files("a.txt\\nb.txt")
        '["a.txt", "b.txt"]'
        >>> normalize_ignored_files("")
        '[]'
        >>> normalize_ignored_files('["x.txt", ""]')
        '["x.txt"]'
    """
    text = (payload or "").strip()
    if not text:
        return "[]"

    try:
        decoded = json.loads(text)
    except ValueError:
        decoded = None

    if isinstance(decoded, dict):
        decoded = list(decoded.values())
    if isinstance(decoded, list):
        return json.dumps([item for item in decoded if isinstance(item, str) and item != ""])

    parts = [part.strip() for part in _IGNORED_SPLIT.split(text)]
    return json.dumps([part for part in parts if part])
