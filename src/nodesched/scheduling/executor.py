"""Task executor - run one schedule task against a server's node agent.

Manifesto:
    A task is the smallest unit of scheduled work.  Whatever happens to it
    (agent refusal, bad payload, full backup quota) is reported as a
    ``TaskOutcome`` so the runner can keep going with the next task.

Tags:
    scheduling, executor, dispatch, backups, agent

Doc-Types:
    api-reference


┌──────────────────────────────────────────────────────────────────────────┐
│  TaskExecutor.execute(task, server, agent)                                │
│                                                                           │
│   record "task_executed" activity                                         │
│           │                                                               │
│   parse_task_action(action, payload) ──► TaskPayloadError → Failed        │
│           │                                                               │
│   match action:                                                           │
│     PowerAction      → agent.power(signal)                                │
│     CommandAction    → agent.send_commands([command])                     │
│     InstallAction    → agent.install_server                               │
│     ReinstallAction  → agent.reinstall_server                             │
│     BackupAction     → quota check → backup record → agent.create_backup  │
│     UnknownAction    → Skipped("unknown_action")                          │
└──────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

from typing import Any, assert_never
from uuid import uuid4

from nodesched.core.errors import (
    AgentAuthenticationError,
    AgentConnectionError,
    AgentError,
    AgentRequestError,
    AgentTimeoutError,
    SchedulerError,
    StoreError,
)
from nodesched.core.logging import get_logger
from nodesched.core.models import (
    AgentResponse,
    BackupAction,
    CommandAction,
    InstallAction,
    PowerAction,
    ReinstallAction,
    Server,
    Task,
    UnknownAction,
    parse_task_action,
)
from nodesched.core.protocols import ActivityLog, AgentClient, BackupStore
from nodesched.core.result import Failed, Skipped, Succeeded, TaskOutcome
from nodesched.core.timestamps import format_display, utc_now

logger = get_logger(__name__)


def agent_error_from_response(response: AgentResponse) -> AgentError:
    """Classify a failed agent response."""
    message = response.error or f"HTTP {response.status_code}"
    context = {"status_code": response.status_code}
    if response.status_code == 0:
        if message.startswith("Request timed out"):
            return AgentTimeoutError(message, context=context)
        return AgentConnectionError(message, context=context)
    if response.status_code in (401, 403):
        return AgentAuthenticationError(message, context=context)
    return AgentRequestError(message, context=context)


class TaskExecutor:
    """Dispatch schedule tasks to node agents.

    Args:
        activities: Where audit events are recorded
        backups: Backup records, for quota checks and bookkeeping
        backup_adapter: Storage adapter name sent with backup requests
    """

    def __init__(
        self,
        activities: ActivityLog,
        backups: BackupStore,
        backup_adapter: str = "wings",
    ) -> None:
        self.activities = activities
        self.backups = backups
        self.backup_adapter = backup_adapter

    def execute(self, task: Task, server: Server, agent: AgentClient | None) -> TaskOutcome:
        """Run one task.

        Args:
            task: Task to run
            server: Server the task's schedule belongs to
            agent: Client for the server's node, or None when no node is
                reachable; agent-bound actions then fail

        Returns:
            Succeeded, Skipped or Failed. Only programming errors escape.
        """
        self._record(
            server,
            "task_executed",
            {
                "task_id": task.id,
                "action": task.action,
                "sequence_id": task.sequence_id,
                "execution_time": format_display(utc_now()),
            },
        )

        try:
            action = parse_task_action(task.action, task.payload)
        except SchedulerError as e:
            logger.error("task_payload_invalid", task_id=task.id, action=task.action, error=e.message)
            return Failed(e.with_context(task_id=task.id, server_uuid=server.uuid))

        if isinstance(action, UnknownAction):
            logger.warning("task_action_unknown", task_id=task.id, action=action.action)
            return Skipped("unknown_action", {"task_id": task.id, "action": action.action})

        # backups check their quota before they need an agent
        if agent is None and not isinstance(action, BackupAction):
            return self._agent_unavailable(task, server)

        try:
            outcome = self._dispatch(action, task, server, agent)
        except SchedulerError as e:
            outcome = Failed(e.with_context(task_id=task.id, server_uuid=server.uuid))

        match outcome:
            case Succeeded():
                logger.info("task_succeeded", task_id=task.id, action=task.action, server_id=server.id)
            case Failed(error):
                logger.error(
                    "task_failed",
                    task_id=task.id,
                    action=task.action,
                    server_id=server.id,
                    error=str(error),
                )
            case Skipped(reason):
                logger.info("task_skipped", task_id=task.id, action=task.action, reason=reason)
        return outcome

    # === Dispatch ===

    def _dispatch(
        self,
        action: PowerAction | BackupAction | CommandAction | InstallAction | ReinstallAction,
        task: Task,
        server: Server,
        agent: AgentClient | None,
    ) -> TaskOutcome:
        match action:
            case PowerAction(signal):
                return self._check(agent.power(server.uuid, signal.value))
            case CommandAction(command):
                return self._check(agent.send_commands(server.uuid, [command]))
            case InstallAction():
                return self._check(agent.install_server(server.uuid))
            case ReinstallAction():
                return self._check(agent.reinstall_server(server.uuid))
            case BackupAction(ignored_files):
                return self._backup(task, server, agent, ignored_files)
            case _:
                assert_never(action)

    def _check(self, response: AgentResponse) -> TaskOutcome:
        if response.is_successful():
            return Succeeded(None)
        return Failed(agent_error_from_response(response))

    def _backup(
        self, task: Task, server: Server, agent: AgentClient | None, ignored_files: str
    ) -> TaskOutcome:
        current = len(self.backups.get_backups_by_server_id(server.id))
        limit = server.backup_limit

        if limit > 0 and current >= limit:
            logger.info(
                "backup_skipped_limit",
                server_id=server.id,
                current_backups=current,
                backup_limit=limit,
            )
            self._record(
                server,
                "schedule_backup_skipped_limit",
                {"current_backups": current, "backup_limit": limit},
            )
            return Skipped("backup_limit", {"current_backups": current, "backup_limit": limit})

        if agent is None:
            return self._agent_unavailable(task, server)

        backup_uuid = str(uuid4())
        backup_id = self.backups.create_backup(
            server_id=server.id,
            uuid=backup_uuid,
            name=f"Scheduled backup at {format_display(utc_now())}",
            ignored_files=ignored_files,
            disk=self.backup_adapter,
            is_successful=False,
            is_locked=True,
        )
        if not backup_id:
            return Failed(
                StoreError("Failed to create backup record", context={"server_id": server.id})
            )

        response = agent.create_backup(server.uuid, self.backup_adapter, backup_uuid, ignored_files)
        if not response.is_successful():
            self.backups.delete_backup(backup_id)
            return Failed(agent_error_from_response(response).with_context(backup_uuid=backup_uuid))

        self._record(
            server,
            "schedule_backup_started",
            {"backup_uuid": backup_uuid, "backup_id": backup_id, "schedule_triggered": True},
        )
        return Succeeded(None)

    def _agent_unavailable(self, task: Task, server: Server) -> Failed:
        logger.error("task_agent_unavailable", task_id=task.id, server_id=server.id)
        return Failed(
            AgentConnectionError(
                f"Node not found for server: {server.name}",
                context={"task_id": task.id, "server_uuid": server.uuid, "node_id": server.node_id},
            )
        )

    # === Activities ===

    def _record(self, server: Server, event: str, metadata: dict[str, Any]) -> None:
        try:
            self.activities.create_activity(server.id, server.node_id, event, metadata)
        except Exception as e:
            logger.warning("activity_log_failed", event_name=event, server_id=server.id, error=str(e))
