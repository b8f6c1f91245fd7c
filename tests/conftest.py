"""
Shared pytest fixtures for node-scheduler tests.

This module provides:
- An in-memory SQLite database with the scheduler schema
- A seeding helper for nodes, servers, schedules, tasks and backups
- A recording fake for the node agent client
- Settings isolated from the process environment
"""

import logging
import sqlite3
from datetime import UTC, datetime
from typing import Any

import pytest
import structlog

from nodesched.core.models import AgentResponse
from nodesched.core.schema import create_tables
from nodesched.core.settings import SchedulerSettings
from nodesched.core.timestamps import to_db_timestamp

# Fixed "now" used across runner/driver tests
NOW = datetime(2024, 1, 1, 3, 0, 30, tzinfo=UTC)


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(autouse=True)
def _restore_logging():
    """Undo configure_logging() calls made by a test (CLI commands make them)."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()
    root.handlers[:] = handlers
    root.setLevel(level)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def db_conn():
    """In-memory SQLite database with all scheduler tables."""
    conn = sqlite3.connect(":memory:")
    create_tables(conn)
    yield conn
    conn.close()


class Seeder:
    """Insert rows with sensible defaults; returns the new id."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def _insert(self, table: str, fields: dict[str, Any]) -> int:
        columns = list(fields)
        values = [to_db_timestamp(v) if isinstance(v, datetime) else v for v in fields.values()]
        cursor = self.conn.execute(
            f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)})",
            values,
        )
        self.conn.commit()
        return cursor.lastrowid

    def node(self, **fields: Any) -> int:
        data = {"fqdn": "node1.example.com", "scheme": "https", "daemon_listen": 8080, "daemon_token": "secret"}
        data.update(fields)
        return self._insert("nodes", data)

    def server(self, **fields: Any) -> int:
        data = {
            "uuid": f"srv-{self._count('servers') + 1}",
            "name": "Survival",
            "status": "running",
            "backup_limit": 0,
        }
        data.update(fields)
        if "node_id" not in data:
            data["node_id"] = self.node()
        return self._insert("servers", data)

    def schedule(self, **fields: Any) -> int:
        data = {
            "name": "Nightly",
            "cron_minute": "0",
            "cron_hour": "3",
            "cron_day_of_month": "*",
            "cron_month": "*",
            "cron_day_of_week": "*",
            "is_active": 1,
            "is_processing": 0,
            "only_when_online": 0,
            "next_run_at": datetime(2024, 1, 1, 3, 0, tzinfo=UTC),
        }
        data.update(fields)
        if "server_id" not in data:
            data["server_id"] = self.server()
        return self._insert("server_schedules", data)

    def task(self, schedule_id: int, action: str, payload: str | None = None, sequence_id: int = 1) -> int:
        return self._insert(
            "server_schedule_tasks",
            {"schedule_id": schedule_id, "sequence_id": sequence_id, "action": action, "payload": payload},
        )

    def backup(self, server_id: int, **fields: Any) -> int:
        data = {"server_id": server_id, "uuid": f"bk-{self._count('server_backups') + 1}", "name": "old"}
        data.update(fields)
        return self._insert("server_backups", data)

    def _count(self, table: str) -> int:
        return self.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]


@pytest.fixture
def seed(db_conn) -> Seeder:
    return Seeder(db_conn)


# =============================================================================
# Settings
# =============================================================================


@pytest.fixture
def settings(tmp_path) -> SchedulerSettings:
    """Settings that ignore NODESCHED_* variables and .env files."""
    return SchedulerSettings(
        _env_file=None,
        database_path=tmp_path / "nodesched.db",
        schedules_enabled=True,
        cron_force=False,
        interval_seconds=60,
        timezone="UTC",
        online_status="running",
        backup_adapter="wings",
    )


# =============================================================================
# Agent fake
# =============================================================================


class FakeAgent:
    """Records every call; answers 200 unless told otherwise.

    ``responses`` maps a method name to the AgentResponse it returns;
    ``raises`` maps a method name to an exception it raises.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple]] = []
        self.responses: dict[str, AgentResponse] = {}
        self.raises: dict[str, Exception] = {}
        self.closed = False

    def _answer(self, method: str, *args: Any) -> AgentResponse:
        self.calls.append((method, args))
        if method in self.raises:
            raise self.raises[method]
        return self.responses.get(method, AgentResponse(status_code=200, data={}))

    def power(self, server_uuid, signal):
        return self._answer("power", server_uuid, signal)

    def start_server(self, server_uuid):
        return self._answer("power", server_uuid, "start")

    def stop_server(self, server_uuid):
        return self._answer("power", server_uuid, "stop")

    def restart_server(self, server_uuid):
        return self._answer("power", server_uuid, "restart")

    def kill_server(self, server_uuid):
        return self._answer("power", server_uuid, "kill")

    def send_commands(self, server_uuid, commands):
        return self._answer("send_commands", server_uuid, list(commands))

    def install_server(self, server_uuid):
        return self._answer("install_server", server_uuid)

    def reinstall_server(self, server_uuid):
        return self._answer("reinstall_server", server_uuid)

    def create_backup(self, server_uuid, adapter, backup_uuid, ignore=None):
        return self._answer("create_backup", server_uuid, adapter, backup_uuid, ignore)

    def close(self):
        self.closed = True

    @property
    def method_names(self) -> list[str]:
        return [name for name, _ in self.calls]


@pytest.fixture
def fake_agent() -> FakeAgent:
    return FakeAgent()


@pytest.fixture
def agent_factory(fake_agent):
    """Agent factory handing out the shared fake; records the nodes asked for."""
    nodes = []

    def factory(node):
        nodes.append(node)
        return fake_agent

    factory.nodes = nodes
    return factory


@pytest.fixture
def clock():
    return lambda: NOW
