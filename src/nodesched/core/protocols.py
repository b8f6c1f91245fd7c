"""
Collaborator protocols for node-scheduler.

The runner, executor and driver depend on these shapes only. The SQLite
repositories in ``nodesched.scheduling.repository`` and the HTTP client in
``nodesched.agent.client`` satisfy them; tests substitute in-memory fakes.

Architecture:
    ::

        protocols.py
        ├── Connection      - sync DB connection (sqlite3.Connection fits)
        ├── ScheduleStore   - due lookup, compare-and-swap lock, updates
        ├── TaskStore       - ordered tasks per schedule
        ├── ServerLookup    - server by id
        ├── NodeLookup      - node by id
        ├── BackupStore     - backup records for quota and bookkeeping
        ├── ActivityLog     - per-server audit events
        ├── HeartbeatSink   - driver health record
        └── AgentClient     - remote operations on one node agent

Tags:
    protocol, contracts, structural-typing, scheduler

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from nodesched.core.models import AgentResponse, Backup, Node, Schedule, Server, Task

# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@runtime_checkable
class Connection(Protocol):
    """
    Minimal synchronous connection interface.

    ``execute`` returns a cursor exposing ``fetchone()``, ``fetchall()``,
    ``rowcount`` and ``lastrowid``; ``sqlite3.Connection`` satisfies it.
    """

    def execute(self, sql: str, params: Any = ()) -> Any:
        ...

    def executemany(self, sql: str, params: Any) -> Any:
        ...

    def commit(self) -> None:
        ...

    def rollback(self) -> None:
        ...


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


@runtime_checkable
class ScheduleStore(Protocol):
    def get_due_schedules(self, now: datetime) -> list[Schedule]:
        """Active, unlocked schedules with next_run_at <= now, oldest first."""
        ...

    def get_schedule(self, schedule_id: int) -> Schedule | None:
        ...

    def try_acquire(self, schedule_id: int, now: datetime | None = None) -> bool:
        """Atomically flip is_processing false→true. True only for the winner.

        With ``now``, only while next_run_at <= now.
        """
        ...

    def release(self, schedule_id: int) -> bool:
        ...

    def update_schedule(self, schedule_id: int, **fields: Any) -> bool:
        ...


@runtime_checkable
class TaskStore(Protocol):
    def get_tasks_by_schedule_id(self, schedule_id: int) -> list[Task]:
        ...


@runtime_checkable
class ServerLookup(Protocol):
    def get_server_by_id(self, server_id: int) -> Server | None:
        ...


@runtime_checkable
class NodeLookup(Protocol):
    def get_node_by_id(self, node_id: int) -> Node | None:
        ...


@runtime_checkable
class BackupStore(Protocol):
    def create_backup(self, **fields: Any) -> int | None:
        """Insert a backup record. Returns the new id, or None on failure."""
        ...

    def delete_backup(self, backup_id: int) -> bool:
        ...

    def get_backups_by_server_id(self, server_id: int) -> list[Backup]:
        ...


@runtime_checkable
class ActivityLog(Protocol):
    def create_activity(
        self,
        server_id: int,
        node_id: int | None,
        event: str,
        metadata: dict[str, Any],
    ) -> int | None:
        ...


@runtime_checkable
class HeartbeatSink(Protocol):
    def mark_run(self, job_name: str, success: bool, message: str | None = None) -> None:
        ...


# ---------------------------------------------------------------------------
# Agent
# ---------------------------------------------------------------------------


@runtime_checkable
class AgentClient(Protocol):
    """Remote operations on the node agent hosting a server."""

    def power(self, server_uuid: str, signal: str) -> AgentResponse:
        ...

    def start_server(self, server_uuid: str) -> AgentResponse:
        ...

    def stop_server(self, server_uuid: str) -> AgentResponse:
        ...

    def restart_server(self, server_uuid: str) -> AgentResponse:
        ...

    def kill_server(self, server_uuid: str) -> AgentResponse:
        ...

    def send_commands(self, server_uuid: str, commands: list[str]) -> AgentResponse:
        ...

    def install_server(self, server_uuid: str) -> AgentResponse:
        ...

    def reinstall_server(self, server_uuid: str) -> AgentResponse:
        ...

    def create_backup(
        self,
        server_uuid: str,
        adapter: str,
        backup_uuid: str,
        ignore: str | None = None,
    ) -> AgentResponse:
        ...

    def close(self) -> None:
        ...
