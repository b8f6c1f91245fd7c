"""Scheduler health checks.

Reads what the driver leaves behind (the heartbeat row, schedule flags) and
turns it into a report an operator or monitoring probe can act on.

┌──────────────────────────────────────────────────────────────────────────────┐
│  SCHEDULER HEALTH                                                             │
│                                                                               │
│  1. Heartbeat recorded:  does timed_tasks have a row for the job?             │
│  2. Heartbeat recent:    last_run_at within 3 × interval                      │
│  3. Last run succeeded:  last_run_success = 1                                 │
│  4. Schedule state:      active / overdue / processing counts                 │
│                          processing rows are listed as warnings; a crash      │
│                          mid-run leaves is_processing = 1 behind              │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from nodesched.core.logging import get_logger
from nodesched.core.protocols import Connection
from nodesched.core.settings import SchedulerSettings
from nodesched.core.timestamps import ensure_utc, to_db_timestamp, utc_now
from nodesched.scheduling.repository import HeartbeatRepository, ScheduleRepository

logger = get_logger(__name__)


@dataclass
class SchedulerHealthReport:
    """Complete scheduler health report."""

    healthy: bool
    checks: dict[str, bool] = field(default_factory=dict)
    heartbeat: dict[str, Any] = field(default_factory=dict)
    schedules: dict[str, int] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "healthy": self.healthy,
            "checks": self.checks,
            "heartbeat": self.heartbeat,
            "schedules": self.schedules,
            "warnings": self.warnings,
            "errors": self.errors,
        }


def check_scheduler_health(
    conn: Connection,
    settings: SchedulerSettings,
    now: datetime | None = None,
) -> SchedulerHealthReport:
    """Build a health report from the heartbeat and schedule tables.

    Args:
        conn: Database connection
        settings: Supplies job name and driver interval
        now: Evaluation time (defaults to the clock)
    """
    report = SchedulerHealthReport(healthy=True)
    now = ensure_utc(now) if now is not None else utc_now()
    max_age = settings.interval_seconds * 3

    # === Heartbeat ===
    beat = HeartbeatRepository(conn).get(settings.job_name)
    report.checks["heartbeat_recorded"] = beat is not None
    if beat is None:
        report.checks["heartbeat_recent"] = False
        report.checks["last_run_succeeded"] = False
        report.errors.append(f"No heartbeat recorded for {settings.job_name}")
    else:
        last_run_at = beat["last_run_at"]
        age = (now - last_run_at).total_seconds() if last_run_at else None
        report.heartbeat = {
            "job_name": settings.job_name,
            "last_run_at": to_db_timestamp(last_run_at),
            "age_seconds": age,
            "last_run_success": beat["last_run_success"],
            "last_run_message": beat["last_run_message"],
            "run_count": beat["run_count"],
            "failure_count": beat["failure_count"],
        }

        recent = age is not None and age <= max_age
        report.checks["heartbeat_recent"] = recent
        if not recent:
            report.errors.append(
                f"Last heartbeat is stale (threshold: {max_age}s)"
            )

        succeeded = bool(beat["last_run_success"])
        report.checks["last_run_succeeded"] = succeeded
        if not succeeded:
            report.errors.append(f"Last run failed: {beat['last_run_message']}")

    # === Schedule State ===
    repo = ScheduleRepository(conn)
    processing = repo.list_processing()
    report.schedules["active"] = conn.execute(
        "SELECT COUNT(*) FROM server_schedules WHERE is_active = 1"
    ).fetchone()[0]
    report.schedules["overdue"] = len(repo.get_due_schedules(now))
    report.schedules["processing"] = len(processing)

    for schedule in processing:
        report.warnings.append(f"Schedule {schedule.id} ({schedule.name}) is flagged as processing")

    if not settings.schedules_enabled:
        report.warnings.append("Schedules are disabled")

    if report.errors:
        report.healthy = False

    logger.debug("health_checked", healthy=report.healthy, errors=len(report.errors))
    return report
