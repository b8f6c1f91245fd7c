"""
SQLite schema for the reference stores.

The scheduler itself only reads and advances schedules; the remaining
tables mirror what the hosting panel owns so that the scheduler can run
end to end against a single SQLite file.

The scheduler writes timestamps as ISO 8601 UTC text at second precision.
Rows written by other tools as ``YYYY-MM-DD HH:MM:SS`` (UTC) are also
accepted: due comparisons go through SQLite's ``datetime()``.

Tags:
    schema, ddl, sqlite, scheduler

Doc-Types:
    - API Reference
    - Data Model
"""

from __future__ import annotations

from nodesched.core.protocols import Connection

# =============================================================================
# TABLE NAMES
# =============================================================================

SCHEDULER_TABLES = {
    "schedules": "server_schedules",
    "tasks": "server_schedule_tasks",
    "servers": "servers",
    "nodes": "nodes",
    "backups": "server_backups",
    "activities": "server_activities",
    "heartbeats": "timed_tasks",
    "cron_jobs": "cron_jobs",
}


# =============================================================================
# DDL STATEMENTS
# =============================================================================

SCHEDULER_DDL = {
    # -------------------------------------------------------------------------
    # Read-only to the scheduler
    # -------------------------------------------------------------------------
    "nodes": """
        CREATE TABLE IF NOT EXISTS nodes (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL DEFAULT '',
            fqdn TEXT NOT NULL,
            scheme TEXT NOT NULL DEFAULT 'https',
            daemon_listen INTEGER NOT NULL DEFAULT 8080,
            daemon_token TEXT
        )
    """,
    "servers": """
        CREATE TABLE IF NOT EXISTS servers (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            uuid TEXT NOT NULL UNIQUE,
            name TEXT NOT NULL DEFAULT '',
            node_id INTEGER REFERENCES nodes(id),
            status TEXT,
            backup_limit INTEGER NOT NULL DEFAULT 0
        )
    """,
    # -------------------------------------------------------------------------
    # Schedules: locked and advanced by the scheduler
    # -------------------------------------------------------------------------
    "schedules": """
        CREATE TABLE IF NOT EXISTS server_schedules (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            server_id INTEGER NOT NULL REFERENCES servers(id),
            name TEXT NOT NULL,
            cron_minute TEXT NOT NULL DEFAULT '*',
            cron_hour TEXT NOT NULL DEFAULT '*',
            cron_day_of_month TEXT NOT NULL DEFAULT '*',
            cron_month TEXT NOT NULL DEFAULT '*',
            cron_day_of_week TEXT NOT NULL DEFAULT '*',
            is_active INTEGER NOT NULL DEFAULT 1,
            is_processing INTEGER NOT NULL DEFAULT 0,
            only_when_online INTEGER NOT NULL DEFAULT 0,
            last_run_at TEXT,
            next_run_at TEXT,
            created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%S+00:00', 'now')),
            updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%S+00:00', 'now'))
        )
    """,
    "schedules_idx_due": """
        CREATE INDEX IF NOT EXISTS idx_server_schedules_due
        ON server_schedules(is_active, is_processing, next_run_at)
    """,
    "tasks": """
        CREATE TABLE IF NOT EXISTS server_schedule_tasks (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            schedule_id INTEGER NOT NULL REFERENCES server_schedules(id),
            sequence_id INTEGER NOT NULL DEFAULT 1,
            action TEXT NOT NULL,
            payload TEXT,
            created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%S+00:00', 'now'))
        )
    """,
    "tasks_idx_schedule": """
        CREATE INDEX IF NOT EXISTS idx_server_schedule_tasks_schedule
        ON server_schedule_tasks(schedule_id, sequence_id)
    """,
    # -------------------------------------------------------------------------
    # Written by the scheduler
    # -------------------------------------------------------------------------
    "backups": """
        CREATE TABLE IF NOT EXISTS server_backups (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            server_id INTEGER NOT NULL REFERENCES servers(id),
            uuid TEXT NOT NULL UNIQUE,
            name TEXT NOT NULL,
            ignored_files TEXT NOT NULL DEFAULT '[]',
            disk TEXT NOT NULL DEFAULT 'wings',
            is_successful INTEGER NOT NULL DEFAULT 0,
            is_locked INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%S+00:00', 'now'))
        )
    """,
    "activities": """
        CREATE TABLE IF NOT EXISTS server_activities (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            server_id INTEGER NOT NULL,
            node_id INTEGER,
            event TEXT NOT NULL,
            metadata TEXT,
            created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%S+00:00', 'now'))
        )
    """,
    "activities_idx_server": """
        CREATE INDEX IF NOT EXISTS idx_server_activities_server
        ON server_activities(server_id, created_at)
    """,
    # -------------------------------------------------------------------------
    # Driver bookkeeping
    # -------------------------------------------------------------------------
    "heartbeats": """
        CREATE TABLE IF NOT EXISTS timed_tasks (
            task_name TEXT PRIMARY KEY,
            last_run_at TEXT,
            last_run_success INTEGER,
            last_run_message TEXT,
            run_count INTEGER NOT NULL DEFAULT 0,
            failure_count INTEGER NOT NULL DEFAULT 0
        )
    """,
    "cron_jobs": """
        CREATE TABLE IF NOT EXISTS cron_jobs (
            job_name TEXT PRIMARY KEY,
            interval_seconds INTEGER NOT NULL,
            last_triggered_at TEXT
        )
    """,
}


def create_tables(conn: Connection) -> None:
    """
    Create all scheduler tables.

    Safe to call multiple times (CREATE IF NOT EXISTS).
    """
    for _name, ddl in SCHEDULER_DDL.items():
        conn.execute(ddl)
    conn.commit()


__all__ = ["SCHEDULER_TABLES", "SCHEDULER_DDL", "create_tables"]
