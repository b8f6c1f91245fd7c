"""Repositories - SQLite implementations of the scheduler's stores.

Manifesto:
    Persistence is a pure data concern that belongs in repositories, not
    in the runner.  Each repository takes a ``Connection`` so tests run
    against in-memory SQLite and callers never see raw rows.

Tags:
    scheduling, repository, sqlite, compare-and-swap

Doc-Types:
    api-reference, architecture-diagram


┌──────────────────────────────────────────────────────────────────────────────┐
│  REPOSITORIES                                                                 │
│                                                                               │
│  ScheduleRepository  (server_schedules)                                       │
│  ├── get_due_schedules(now) → list[Schedule]                                  │
│  ├── get_schedule(id) → Schedule | None                                       │
│  ├── try_acquire(id, now) → bool  UPDATE … SET is_processing = 1              │
│  │                              WHERE id = ? AND is_processing = 0            │
│  │                                AND next_run_at <= now                      │
│  ├── release(id) → bool                                                       │
│  ├── update_schedule(id, **fields) → bool                                     │
│  └── list_processing() → list[Schedule]                                       │
│                                                                               │
│  TaskRepository      (server_schedule_tasks)  ordered by sequence_id, id      │
│  ServerRepository    (servers, nodes)         read-only lookups               │
│  BackupRepository    (server_backups)                                         │
│  ActivityRepository  (server_activities)                                      │
│  HeartbeatRepository (timed_tasks)                                            │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from typing import Any

from nodesched.core.errors import StoreError
from nodesched.core.logging import get_logger
from nodesched.core.models import Backup, Node, Schedule, Server, Task
from nodesched.core.protocols import Connection
from nodesched.core.timestamps import from_db_timestamp, to_db_timestamp, utc_now

logger = get_logger(__name__)


def _encode(value: Any) -> Any:
    """Convert a Python value to its column representation."""
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, datetime):
        return to_db_timestamp(value)
    return value


# ---------------------------------------------------------------------------
# Schedules
# ---------------------------------------------------------------------------

_SCHEDULE_COLUMNS = [
    "id",
    "server_id",
    "name",
    "cron_minute",
    "cron_hour",
    "cron_day_of_month",
    "cron_month",
    "cron_day_of_week",
    "is_active",
    "is_processing",
    "only_when_online",
    "next_run_at",
    "last_run_at",
]

# Columns update_schedule() may write
_SCHEDULE_UPDATABLE = frozenset(_SCHEDULE_COLUMNS) - {"id"}


class ScheduleRepository:
    """Schedule lookup, per-row locking and next-run bookkeeping.

    Example:
        >>> repo = ScheduleRepository(conn)
        >>> now = utc_now()
        >>> for schedule in repo.get_due_schedules(now):
        ...     if repo.try_acquire(schedule.id, now):
        ...         try:
        ...             ...
        ...         finally:
        ...             repo.release(schedule.id)
    """

    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    # === Lookup ===

    def get_due_schedules(self, now: datetime) -> list[Schedule]:
        """Get all schedules that are due for execution.

        A schedule is due if:
        - is_active = 1
        - is_processing = 0
        - next_run_at <= now

        Stored values are compared through SQLite's ``datetime()``, so rows
        written as ``YYYY-MM-DD HH:MM:SS`` order correctly against ISO text.

        Returns:
            Due schedules ordered by next_run_at, then id
        """
        cursor = self._execute(
            f"""
            SELECT {', '.join(_SCHEDULE_COLUMNS)} FROM server_schedules
            WHERE is_active = 1 AND is_processing = 0
              AND next_run_at IS NOT NULL AND datetime(next_run_at) <= datetime(?)
            ORDER BY datetime(next_run_at), id
            """,
            (to_db_timestamp(now),),
        )
        return [self._row_to_schedule(row) for row in cursor.fetchall()]

    def get_schedule(self, schedule_id: int) -> Schedule | None:
        cursor = self._execute(
            f"SELECT {', '.join(_SCHEDULE_COLUMNS)} FROM server_schedules WHERE id = ?",
            (schedule_id,),
        )
        row = cursor.fetchone()
        if not row:
            return None
        return self._row_to_schedule(row)

    def list_processing(self) -> list[Schedule]:
        """Schedules currently flagged as processing."""
        cursor = self._execute(
            f"SELECT {', '.join(_SCHEDULE_COLUMNS)} FROM server_schedules "
            "WHERE is_processing = 1 ORDER BY id"
        )
        return [self._row_to_schedule(row) for row in cursor.fetchall()]

    # === Locking ===

    def try_acquire(self, schedule_id: int, now: datetime | None = None) -> bool:
        """Flip is_processing from 0 to 1.

        The conditional UPDATE is the whole lock: of any number of
        concurrent callers exactly one sees rowcount == 1.

        With ``now``, the row must also still be due. A caller holding a
        stale snapshot loses once another run has advanced next_run_at.
        """
        if now is None:
            cursor = self._execute(
                "UPDATE server_schedules SET is_processing = 1 WHERE id = ? AND is_processing = 0",
                (schedule_id,),
                commit=True,
            )
        else:
            cursor = self._execute(
                """
                UPDATE server_schedules SET is_processing = 1
                WHERE id = ? AND is_processing = 0
                  AND next_run_at IS NOT NULL AND datetime(next_run_at) <= datetime(?)
                """,
                (schedule_id, to_db_timestamp(now)),
                commit=True,
            )
        acquired = cursor.rowcount == 1
        if not acquired:
            logger.debug("schedule_lock_busy", schedule_id=schedule_id)
        return acquired

    def release(self, schedule_id: int) -> bool:
        cursor = self._execute(
            "UPDATE server_schedules SET is_processing = 0 WHERE id = ?",
            (schedule_id,),
            commit=True,
        )
        return cursor.rowcount > 0

    # === Updates ===

    def update_schedule(self, schedule_id: int, **fields: Any) -> bool:
        """Write the given columns.

        Returns:
            True if the schedule exists and was updated

        Raises:
            StoreError: On unknown columns or database failure
        """
        if not fields:
            return False

        unknown = set(fields) - _SCHEDULE_UPDATABLE
        if unknown:
            raise StoreError(
                f"Unknown schedule fields: {', '.join(sorted(unknown))}",
                context={"schedule_id": schedule_id},
            )

        set_parts = [f"{name} = ?" for name in fields]
        params = [_encode(value) for value in fields.values()]
        set_parts.append("updated_at = ?")
        params.append(to_db_timestamp(utc_now()))
        params.append(schedule_id)

        cursor = self._execute(
            f"UPDATE server_schedules SET {', '.join(set_parts)} WHERE id = ?",
            tuple(params),
            commit=True,
        )
        return cursor.rowcount > 0

    # === Helpers ===

    def _execute(self, sql: str, params: tuple = (), commit: bool = False) -> Any:
        try:
            cursor = self.conn.execute(sql, params)
            if commit:
                self.conn.commit()
            return cursor
        except sqlite3.Error as e:
            raise StoreError(f"Schedule store failure: {e}", cause=e) from e

    def _row_to_schedule(self, row: tuple) -> Schedule:
        data = dict(zip(_SCHEDULE_COLUMNS, row, strict=False))
        for flag in ("is_active", "is_processing", "only_when_online"):
            data[flag] = bool(data[flag])
        data["next_run_at"] = from_db_timestamp(data["next_run_at"])
        data["last_run_at"] = from_db_timestamp(data["last_run_at"])
        return Schedule(**data)


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------

_TASK_COLUMNS = ["id", "schedule_id", "sequence_id", "action", "payload"]


class TaskRepository:
    """Read-only access to schedule tasks."""

    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    def get_tasks_by_schedule_id(self, schedule_id: int) -> list[Task]:
        """Tasks of a schedule, ordered by sequence_id then id."""
        try:
            cursor = self.conn.execute(
                f"""
                SELECT {', '.join(_TASK_COLUMNS)} FROM server_schedule_tasks
                WHERE schedule_id = ?
                ORDER BY sequence_id, id
                """,
                (schedule_id,),
            )
            rows = cursor.fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"Task store failure: {e}", cause=e) from e
        return [Task(**dict(zip(_TASK_COLUMNS, row, strict=False))) for row in rows]


# ---------------------------------------------------------------------------
# Servers and nodes
# ---------------------------------------------------------------------------

_SERVER_COLUMNS = ["id", "uuid", "name", "node_id", "status", "backup_limit"]
_NODE_COLUMNS = ["id", "fqdn", "daemon_listen", "scheme", "daemon_token"]


class ServerRepository:
    """Read-only lookups of servers and the nodes hosting them."""

    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    def get_server_by_id(self, server_id: int) -> Server | None:
        row = self._fetch_one(
            f"SELECT {', '.join(_SERVER_COLUMNS)} FROM servers WHERE id = ?", (server_id,)
        )
        if not row:
            return None
        data = dict(zip(_SERVER_COLUMNS, row, strict=False))
        data["backup_limit"] = int(data["backup_limit"] or 0)
        return Server(**data)

    def get_node_by_id(self, node_id: int) -> Node | None:
        row = self._fetch_one(
            f"SELECT {', '.join(_NODE_COLUMNS)} FROM nodes WHERE id = ?", (node_id,)
        )
        if not row:
            return None
        return Node(**dict(zip(_NODE_COLUMNS, row, strict=False)))

    def _fetch_one(self, sql: str, params: tuple) -> Any:
        try:
            return self.conn.execute(sql, params).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"Server store failure: {e}", cause=e) from e


# ---------------------------------------------------------------------------
# Backups
# ---------------------------------------------------------------------------

_BACKUP_COLUMNS = [
    "id",
    "server_id",
    "uuid",
    "name",
    "ignored_files",
    "disk",
    "is_successful",
    "is_locked",
    "created_at",
]

_BACKUP_REQUIRED = ("server_id", "uuid", "name")


class BackupRepository:
    """Backup records; the scheduler creates them and removes ones the agent refused."""

    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    def create_backup(self, **fields: Any) -> int | None:
        """Insert a backup record.

        Returns:
            New backup id, or None if required fields are missing or the
            insert failed
        """
        missing = [name for name in _BACKUP_REQUIRED if not fields.get(name)]
        unknown = set(fields) - set(_BACKUP_COLUMNS)
        if missing or unknown:
            logger.error(
                "backup_record_invalid",
                missing=missing,
                unknown=sorted(unknown),
            )
            return None

        fields.setdefault("created_at", utc_now())
        columns = list(fields)
        try:
            cursor = self.conn.execute(
                f"INSERT INTO server_backups ({', '.join(columns)}) "
                f"VALUES ({', '.join('?' for _ in columns)})",
                tuple(_encode(fields[name]) for name in columns),
            )
            self.conn.commit()
        except sqlite3.Error as e:
            logger.error("backup_record_insert_failed", error=str(e), server_id=fields.get("server_id"))
            return None
        return cursor.lastrowid

    def delete_backup(self, backup_id: int) -> bool:
        try:
            cursor = self.conn.execute("DELETE FROM server_backups WHERE id = ?", (backup_id,))
            self.conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Backup store failure: {e}", cause=e) from e
        return cursor.rowcount > 0

    def get_backups_by_server_id(self, server_id: int) -> list[Backup]:
        try:
            rows = self.conn.execute(
                f"SELECT {', '.join(_BACKUP_COLUMNS)} FROM server_backups "
                "WHERE server_id = ? ORDER BY id",
                (server_id,),
            ).fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"Backup store failure: {e}", cause=e) from e

        backups = []
        for row in rows:
            data = dict(zip(_BACKUP_COLUMNS, row, strict=False))
            data["is_successful"] = bool(data["is_successful"])
            data["is_locked"] = bool(data["is_locked"])
            backups.append(Backup(**data))
        return backups


# ---------------------------------------------------------------------------
# Activities
# ---------------------------------------------------------------------------


class ActivityRepository:
    """Per-server audit events (``server_activities``)."""

    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    def create_activity(
        self,
        server_id: int,
        node_id: int | None,
        event: str,
        metadata: dict[str, Any],
    ) -> int | None:
        try:
            cursor = self.conn.execute(
                """
                INSERT INTO server_activities (server_id, node_id, event, metadata, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    server_id,
                    node_id,
                    event,
                    json.dumps(metadata, default=str),
                    to_db_timestamp(utc_now()),
                ),
            )
            self.conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Activity store failure: {e}", cause=e) from e
        return cursor.lastrowid

    def list_activities(self, server_id: int, event: str | None = None) -> list[dict[str, Any]]:
        """Activities for a server, oldest first, with metadata decoded."""
        sql = "SELECT id, server_id, node_id, event, metadata, created_at FROM server_activities WHERE server_id = ?"
        params: tuple = (server_id,)
        if event is not None:
            sql += " AND event = ?"
            params = (server_id, event)
        rows = self.conn.execute(sql + " ORDER BY id", params).fetchall()
        return [
            {
                "id": row[0],
                "server_id": row[1],
                "node_id": row[2],
                "event": row[3],
                "metadata": json.loads(row[4]) if row[4] else {},
                "created_at": row[5],
            }
            for row in rows
        ]


# ---------------------------------------------------------------------------
# Heartbeats
# ---------------------------------------------------------------------------

_HEARTBEAT_COLUMNS = [
    "task_name",
    "last_run_at",
    "last_run_success",
    "last_run_message",
    "run_count",
    "failure_count",
]


class HeartbeatRepository:
    """Driver health record (``timed_tasks``), one row per job name."""

    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    def mark_run(self, job_name: str, success: bool, message: str | None = None) -> None:
        """Record that the job ran, bumping run and failure counters."""
        failure = 0 if success else 1
        self.conn.execute(
            """
            INSERT INTO timed_tasks (
                task_name, last_run_at, last_run_success, last_run_message,
                run_count, failure_count
            ) VALUES (?, ?, ?, ?, 1, ?)
            ON CONFLICT(task_name) DO UPDATE SET
                last_run_at = excluded.last_run_at,
                last_run_success = excluded.last_run_success,
                last_run_message = excluded.last_run_message,
                run_count = timed_tasks.run_count + 1,
                failure_count = timed_tasks.failure_count + excluded.failure_count
            """,
            (job_name, to_db_timestamp(utc_now()), 1 if success else 0, message, failure),
        )
        self.conn.commit()

    def get(self, job_name: str) -> dict[str, Any] | None:
        row = self.conn.execute(
            f"SELECT {', '.join(_HEARTBEAT_COLUMNS)} FROM timed_tasks WHERE task_name = ?",
            (job_name,),
        ).fetchone()
        if not row:
            return None
        data = dict(zip(_HEARTBEAT_COLUMNS, row, strict=False))
        data["last_run_at"] = from_db_timestamp(data["last_run_at"])
        data["last_run_success"] = (
            None if data["last_run_success"] is None else bool(data["last_run_success"])
        )
        return data
