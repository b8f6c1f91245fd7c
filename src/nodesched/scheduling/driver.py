"""Scheduler driver - the throttled batch entrypoint.

Manifesto:
    The host crontab calls the driver every minute (or more often).  The
    driver decides whether this invocation may run, hands every due
    schedule to the runner one at a time, and always leaves a heartbeat
    behind so operators can tell a quiet scheduler from a dead one.

Tags:
    scheduling, driver, cron, throttle, heartbeat, batch

Doc-Types:
    api-reference


┌──────────────────────────────────────────────────────────────────────────┐
│  SchedulerDriver.run(force)                                               │
│                                                                           │
│   CronThrottle.should_run() ── no ──► None (no heartbeat)                 │
│           │ yes                                                           │
│   schedules_enabled? ── no ──► heartbeat ok "Schedules are disabled"      │
│           │ yes                                                           │
│   get_due_schedules(now) ─► for each: ScheduleRunner.run()                │
│           │                                                               │
│   heartbeat ok / failed (batch exception) ──► DriverReport                │
└──────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from nodesched.core.logging import get_logger
from nodesched.core.protocols import Connection, HeartbeatSink, ScheduleStore
from nodesched.core.result import Failed, Skipped, Succeeded
from nodesched.core.settings import SchedulerSettings
from nodesched.core.timestamps import utc_now
from nodesched.scheduling.executor import TaskExecutor
from nodesched.scheduling.repository import (
    ActivityRepository,
    BackupRepository,
    HeartbeatRepository,
    ScheduleRepository,
    ServerRepository,
    TaskRepository,
)
from nodesched.scheduling.runner import AgentFactory, ScheduleRunner
from nodesched.scheduling.throttle import CronThrottle

logger = get_logger(__name__)

HEARTBEAT_OK_MESSAGE = "Processed schedules heartbeat"
DISABLED_MESSAGE = "Schedules are disabled"


@dataclass
class DriverReport:
    """Outcome of one accepted driver tick."""

    started_at: datetime
    schedules_due: int = 0
    executed: int = 0
    skipped: int = 0
    failed: int = 0
    duration_ms: int = 0
    disabled: bool = False
    error: str | None = None
    skip_reasons: dict[str, int] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "started_at": self.started_at.isoformat(),
            "schedules_due": self.schedules_due,
            "executed": self.executed,
            "skipped": self.skipped,
            "failed": self.failed,
            "duration_ms": self.duration_ms,
            "disabled": self.disabled,
            "error": self.error,
            "skip_reasons": dict(self.skip_reasons),
        }


class SchedulerDriver:
    """Run every due schedule once per accepted tick.

    Args:
        schedules: Source of due schedules
        runner: Runs each schedule
        heartbeat: Receives the per-tick health record
        throttle: Window guard; None disables throttling
        settings: Job name, global switch and force default
        clock: Time source
    """

    def __init__(
        self,
        schedules: ScheduleStore,
        runner: ScheduleRunner,
        heartbeat: HeartbeatSink,
        throttle: CronThrottle | None = None,
        settings: SchedulerSettings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.schedules = schedules
        self.runner = runner
        self.heartbeat = heartbeat
        self.throttle = throttle
        self.settings = settings or SchedulerSettings()
        self.clock = clock

    def run(self, force: bool = False) -> DriverReport | None:
        """Process due schedules if this tick is accepted.

        Args:
            force: Bypass the throttle (also enabled by ``cron_force``)

        Returns:
            DriverReport, or None when the throttle rejected the tick.
            Never raises for batch failures; they are recorded in the
            heartbeat and in ``DriverReport.error``.
        """
        force = force or self.settings.cron_force
        job_name = self.settings.job_name
        started = time.perf_counter()
        report = DriverReport(started_at=self.clock())

        try:
            if self.throttle is not None and not self.throttle.should_run(report.started_at, force=force):
                logger.debug("driver_not_due", job_name=job_name)
                return None

            if not self.settings.schedules_enabled:
                logger.info("schedules_disabled", job_name=job_name)
                report.disabled = True
                message = DISABLED_MESSAGE
            else:
                self._process_batch(report)
                message = HEARTBEAT_OK_MESSAGE
            success = True
        except Exception as e:
            logger.exception("driver_batch_failed", job_name=job_name, error=str(e))
            report.error = str(e)
            message = str(e)
            success = False

        report.duration_ms = int((time.perf_counter() - started) * 1000)
        self._mark_heartbeat(job_name, success, message)

        logger.info("driver_tick_completed", job_name=job_name, **report.to_dict())
        return report

    # === Batch ===

    def _process_batch(self, report: DriverReport) -> None:
        due = self.schedules.get_due_schedules(report.started_at)
        report.schedules_due = len(due)
        if not due:
            logger.debug("no_schedules_due")
            return

        logger.info("schedules_due", count=len(due))
        for schedule in due:
            try:
                outcome = self.runner.run(schedule)
            except Exception as e:
                logger.exception("schedule_runner_crashed", schedule_id=schedule.id, error=str(e))
                outcome = Failed(e)

            match outcome:
                case Succeeded():
                    report.executed += 1
                case Skipped(reason):
                    report.skipped += 1
                    report.skip_reasons[reason] = report.skip_reasons.get(reason, 0) + 1
                case Failed():
                    report.failed += 1

    def _mark_heartbeat(self, job_name: str, success: bool, message: str) -> None:
        try:
            self.heartbeat.mark_run(job_name, success, message)
        except Exception as e:
            logger.error("heartbeat_failed", job_name=job_name, error=str(e))


def build_driver(
    conn: Connection,
    settings: SchedulerSettings,
    agent_factory: AgentFactory | None = None,
) -> SchedulerDriver:
    """Wire a driver over the SQLite repositories sharing ``conn``."""
    schedules = ScheduleRepository(conn)
    servers = ServerRepository(conn)
    activities = ActivityRepository(conn)
    executor = TaskExecutor(activities, BackupRepository(conn), settings.backup_adapter)
    runner = ScheduleRunner(
        schedules=schedules,
        tasks=TaskRepository(conn),
        servers=servers,
        nodes=servers,
        executor=executor,
        activities=activities,
        settings=settings,
        agent_factory=agent_factory,
    )
    return SchedulerDriver(
        schedules=schedules,
        runner=runner,
        heartbeat=HeartbeatRepository(conn),
        throttle=CronThrottle(conn, settings.job_name, settings.interval_seconds),
        settings=settings,
    )
