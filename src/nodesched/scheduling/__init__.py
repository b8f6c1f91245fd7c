"""Scheduler package for node-scheduler.

Manifesto:
    A cron-driven batch that touches remote servers needs more than a loop
    over due rows.  It needs a per-schedule compare-and-swap so overlapping
    invocations never run the same schedule twice, per-task failure
    isolation so one unreachable agent does not cancel the rest, and a
    heartbeat so a silent scheduler can be told apart from an idle one.

┌──────────────────────────────────────────────────────────────────────────────┐
│  Quick Start:                                                                 │
│                                                                               │
│   from nodesched.core.schema import create_tables                             │
│   from nodesched.core.settings import SchedulerSettings                       │
│   from nodesched.scheduling import build_driver                               │
│                                                                               │
│   conn = sqlite3.connect("nodesched.db")                                      │
│   create_tables(conn)                                                         │
│   report = build_driver(conn, SchedulerSettings()).run()                      │
│                                                                               │
│  Flow:                                                                        │
│   SchedulerDriver ─► ScheduleRepository.get_due_schedules                     │
│         │                                                                     │
│         └─► ScheduleRunner.run ─► TaskExecutor.execute ─► HttpAgentClient     │
│                    │                                                          │
│                    └─► next_run_at ─► update_schedule ─► activity log         │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from nodesched.scheduling.driver import DriverReport, SchedulerDriver, build_driver
from nodesched.scheduling.executor import TaskExecutor
from nodesched.scheduling.health import SchedulerHealthReport, check_scheduler_health
from nodesched.scheduling.recurrence import (
    format_cron_expression,
    next_run_at,
    upcoming_runs,
    validate_cron_fields,
)
from nodesched.scheduling.repository import (
    ActivityRepository,
    BackupRepository,
    HeartbeatRepository,
    ScheduleRepository,
    ServerRepository,
    TaskRepository,
)
from nodesched.scheduling.runner import ScheduleOutcome, ScheduleRunner
from nodesched.scheduling.throttle import CronThrottle

__all__ = [
    # Driver
    "SchedulerDriver",
    "DriverReport",
    "build_driver",
    "CronThrottle",
    # Runner / executor
    "ScheduleRunner",
    "ScheduleOutcome",
    "TaskExecutor",
    # Recurrence
    "next_run_at",
    "upcoming_runs",
    "format_cron_expression",
    "validate_cron_fields",
    # Repositories
    "ScheduleRepository",
    "TaskRepository",
    "ServerRepository",
    "BackupRepository",
    "ActivityRepository",
    "HeartbeatRepository",
    # Health
    "SchedulerHealthReport",
    "check_scheduler_health",
]
