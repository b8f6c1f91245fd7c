"""Schedule runner - lock, gate, execute and advance one schedule.

Manifesto:
    One schedule run is a small state machine.  Whatever happens inside
    it, the caller gets a ``ScheduleOutcome`` back and the schedule's
    processing flag is cleared again; a broken schedule never stalls the
    batch or stays locked.

Tags:
    scheduling, runner, state-machine, compare-and-swap, activities

Doc-Types:
    api-reference, architecture-diagram


┌──────────────────────────────────────────────────────────────────────────────┐
│  ScheduleRunner.run(schedule)                                                 │
│                                                                               │
│   Idle ──try_acquire()──► Locked                                              │
│    │  (busy, stale         │                                                 │
│    │   or lock error)       │                                                 │
│    ▼                        ├─ server missing ─────────► Skipped(server_not_found)
│   Skipped(locked)           │                                                 │
│                             ├─ cron fields invalid ────► Failed(ScheduleError)│
│                             │     nothing dispatched                          │
│                             │                                                 │
│                             ├─ only_when_online and offline                   │
│                             │     persist next_run_at                         │
│                             │     "schedule_skipped_offline" ─► Skipped(server_offline)
│                             │                                                 │
│                             └─ Executing                                      │
│                                   tasks by sequence_id (stable)               │
│                                   each → TaskExecutor.execute                 │
│                                   persist last_run_at, next_run_at            │
│                                   "schedule_executed" ───────► Succeeded(RunSummary)
│                                                                               │
│   any exception after Locked ─────────────────────────────────► Failed(error) │
│   finally: release()                                                          │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import datetime
from typing import Any

from nodesched.agent.client import HttpAgentClient
from nodesched.core.errors import StoreError
from nodesched.core.logging import LogContext, get_logger
from nodesched.core.models import Node, RunSummary, Schedule, Server, Task
from nodesched.core.protocols import (
    ActivityLog,
    AgentClient,
    NodeLookup,
    ScheduleStore,
    ServerLookup,
    TaskStore,
)
from nodesched.core.result import Failed, Outcome, Skipped, Succeeded, TaskOutcome
from nodesched.core.settings import SchedulerSettings
from nodesched.core.timestamps import format_display, to_db_timestamp, utc_now
from nodesched.scheduling.executor import TaskExecutor
from nodesched.scheduling.recurrence import next_run_at

logger = get_logger(__name__)

ScheduleOutcome = Outcome[RunSummary]
AgentFactory = Callable[[Node], AgentClient]


def _default_agent_factory(settings: SchedulerSettings) -> AgentFactory:
    return lambda node: HttpAgentClient.for_node(node, settings)


class ScheduleRunner:
    """Run a single due schedule.

    Example:
        >>> runner = ScheduleRunner(
        ...     schedules=ScheduleRepository(conn),
        ...     tasks=TaskRepository(conn),
        ...     servers=ServerRepository(conn),
        ...     nodes=ServerRepository(conn),
        ...     executor=TaskExecutor(activities, backups),
        ...     activities=activities,
        ...     settings=SchedulerSettings(),
        ... )
        >>> outcome = runner.run(schedule)
    """

    def __init__(
        self,
        schedules: ScheduleStore,
        tasks: TaskStore,
        servers: ServerLookup,
        nodes: NodeLookup,
        executor: TaskExecutor,
        activities: ActivityLog,
        settings: SchedulerSettings | None = None,
        agent_factory: AgentFactory | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.schedules = schedules
        self.tasks = tasks
        self.servers = servers
        self.nodes = nodes
        self.executor = executor
        self.activities = activities
        self.settings = settings or SchedulerSettings()
        self.agent_factory = agent_factory or _default_agent_factory(self.settings)
        self.clock = clock

    def run(self, schedule: Schedule) -> ScheduleOutcome:
        """Run ``schedule`` if its lock can be taken. Never raises."""
        now = self.clock()
        try:
            acquired = self.schedules.try_acquire(schedule.id, now)
        except Exception as e:
            logger.warning("schedule_lock_failed", schedule_id=schedule.id, error=str(e))
            return Skipped("locked", {"schedule_id": schedule.id, "error": str(e)})

        if not acquired:
            logger.info("schedule_locked", schedule_id=schedule.id)
            return Skipped("locked", {"schedule_id": schedule.id})

        try:
            with LogContext(schedule_id=schedule.id, server_id=schedule.server_id):
                return self._run_locked(schedule, now)
        except Exception as e:
            logger.exception("schedule_failed", schedule_id=schedule.id, error=str(e))
            return Failed(e)
        finally:
            self._release(schedule.id)

    # === State machine ===

    def _run_locked(self, schedule: Schedule, now: datetime) -> ScheduleOutcome:
        started = time.perf_counter()

        server = self.servers.get_server_by_id(schedule.server_id)
        if server is None:
            logger.warning("schedule_server_not_found", schedule_id=schedule.id)
            return Skipped("server_not_found", {"server_id": schedule.server_id})

        # raises ScheduleError before any task is dispatched
        next_run = self._next_run(schedule, now)

        if schedule.only_when_online and not self._is_online(server):
            return self._skip_offline(schedule, server, next_run)

        tasks = sorted(self.tasks.get_tasks_by_schedule_id(schedule.id), key=lambda t: t.sequence_id)
        if not tasks:
            logger.info("schedule_has_no_tasks", schedule_id=schedule.id)

        summary = RunSummary(schedule_id=schedule.id, total=len(tasks))
        agent = self._open_agent(server) if tasks else None
        try:
            for task in tasks:
                outcome = self._execute_task(task, server, agent)
                match outcome:
                    case Succeeded():
                        summary.executed += 1
                    case Skipped():
                        summary.skipped += 1
                    case Failed(error):
                        summary.failed += 1
                        summary.errors.append(f"task {task.id}: {error}")
        finally:
            if agent is not None:
                agent.close()

        summary.next_run_at = next_run
        self._persist(schedule.id, next_run_at=summary.next_run_at, last_run_at=now)
        summary.duration_ms = int((time.perf_counter() - started) * 1000)

        self._record(
            server,
            "schedule_executed",
            {
                "schedule_id": schedule.id,
                "schedule_name": schedule.name,
                "executed_tasks": summary.executed,
                "failed_tasks": summary.failed,
                "skipped_tasks": summary.skipped,
                "total_tasks": summary.total,
                "execution_time": format_display(now),
                "duration_ms": summary.duration_ms,
            },
        )
        logger.info(
            "schedule_executed",
            schedule_id=schedule.id,
            executed=summary.executed,
            failed=summary.failed,
            skipped=summary.skipped,
            next_run_at=to_db_timestamp(summary.next_run_at),
        )
        return Succeeded(summary)

    def _skip_offline(self, schedule: Schedule, server: Server, next_run: datetime) -> ScheduleOutcome:
        self._persist(schedule.id, next_run_at=next_run)
        self._record(
            server,
            "schedule_skipped_offline",
            {
                "schedule_id": schedule.id,
                "schedule_name": schedule.name,
                "reason": "server_offline",
                "next_run_at": to_db_timestamp(next_run),
            },
        )
        logger.info(
            "schedule_skipped_offline",
            schedule_id=schedule.id,
            status=server.status,
            next_run_at=to_db_timestamp(next_run),
        )
        return Skipped("server_offline", {"next_run_at": next_run})

    # === Helpers ===

    def _is_online(self, server: Server) -> bool:
        return (server.status or "offline").strip().lower() == self.settings.online_status

    def _next_run(self, schedule: Schedule, now: datetime) -> datetime:
        return next_run_at(
            *schedule.cron_fields,
            schedule.next_run_at or now,
            timezone=self.settings.timezone,
            not_before=now,
        )

    def _persist(self, schedule_id: int, **fields: Any) -> None:
        if not self.schedules.update_schedule(schedule_id, **fields):
            raise StoreError(
                "Failed to update schedule",
                context={"schedule_id": schedule_id, "fields": sorted(fields)},
            )

    def _open_agent(self, server: Server) -> AgentClient | None:
        if server.node_id is None:
            logger.warning("server_has_no_node", server_id=server.id)
            return None
        node = self.nodes.get_node_by_id(server.node_id)
        if node is None:
            logger.warning("node_not_found", server_id=server.id, node_id=server.node_id)
            return None
        return self.agent_factory(node)

    def _execute_task(self, task: Task, server: Server, agent: AgentClient | None) -> TaskOutcome:
        try:
            return self.executor.execute(task, server, agent)
        except Exception as e:
            logger.exception("task_crashed", task_id=task.id, error=str(e))
            return Failed(e)

    def _release(self, schedule_id: int) -> None:
        try:
            self.schedules.release(schedule_id)
        except Exception as e:
            logger.error("schedule_release_failed", schedule_id=schedule_id, error=str(e))

    def _record(self, server: Server, event: str, metadata: dict[str, Any]) -> None:
        try:
            self.activities.create_activity(server.id, server.node_id, event, metadata)
        except Exception as e:
            logger.warning("activity_log_failed", event_name=event, server_id=server.id, error=str(e))
