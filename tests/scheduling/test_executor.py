"""Tests for TaskExecutor."""

import json

import pytest

from nodesched.core.errors import (
    AgentAuthenticationError,
    AgentConnectionError,
    AgentRequestError,
    AgentTimeoutError,
    StoreError,
    TaskPayloadError,
)
from nodesched.core.models import AgentResponse, Task
from nodesched.core.result import Failed, Skipped, Succeeded
from nodesched.scheduling.executor import TaskExecutor, agent_error_from_response
from nodesched.scheduling.repository import ActivityRepository, BackupRepository, ServerRepository


@pytest.fixture
def activities(db_conn):
    return ActivityRepository(db_conn)


@pytest.fixture
def backups(db_conn):
    return BackupRepository(db_conn)


@pytest.fixture
def executor(activities, backups):
    return TaskExecutor(activities, backups, backup_adapter="wings")


@pytest.fixture
def server(db_conn, seed):
    return ServerRepository(db_conn).get_server_by_id(seed.server(name="Survival"))


def make_task(action, payload=None, task_id=1, sequence_id=1):
    return Task(id=task_id, schedule_id=1, sequence_id=sequence_id, action=action, payload=payload)


class TestDispatch:
    """Test action routing to the agent."""

    def test_power_payload(self, executor, server, fake_agent):
        outcome = executor.execute(make_task("power", "restart"), server, fake_agent)
        assert outcome == Succeeded(None)
        assert fake_agent.calls == [("power", (server.uuid, "restart"))]

    @pytest.mark.parametrize("name", ["start", "stop", "restart", "kill"])
    def test_power_shorthand(self, executor, server, fake_agent, name):
        executor.execute(make_task(name), server, fake_agent)
        assert fake_agent.calls == [("power", (server.uuid, name))]

    def test_command(self, executor, server, fake_agent):
        executor.execute(make_task("command", "say Restarting in 5 minutes"), server, fake_agent)
        assert fake_agent.calls == [("send_commands", (server.uuid, ["say Restarting in 5 minutes"]))]

    def test_install(self, executor, server, fake_agent):
        executor.execute(make_task("install"), server, fake_agent)
        assert fake_agent.method_names == ["install_server"]

    def test_update_reinstalls(self, executor, server, fake_agent):
        executor.execute(make_task("update"), server, fake_agent)
        assert fake_agent.method_names == ["reinstall_server"]

    def test_task_executed_activity(self, executor, server, fake_agent, activities):
        executor.execute(make_task("command", "save-all", task_id=9, sequence_id=3), server, fake_agent)

        events = activities.list_activities(server.id, event="task_executed")
        assert len(events) == 1
        metadata = events[0]["metadata"]
        assert metadata["task_id"] == 9
        assert metadata["action"] == "command"
        assert metadata["sequence_id"] == 3
        assert "execution_time" in metadata
        assert events[0]["node_id"] == server.node_id


class TestFailures:
    """Test failure and skip outcomes."""

    def test_agent_refusal(self, executor, server, fake_agent):
        fake_agent.responses["power"] = AgentResponse(500, error="Server error: disk full")

        outcome = executor.execute(make_task("restart"), server, fake_agent)

        assert isinstance(outcome, Failed)
        assert isinstance(outcome.error, AgentRequestError)
        assert outcome.message == "Server error: disk full"
        assert outcome.error.context["status_code"] == 500

    def test_invalid_power_payload(self, executor, server, fake_agent):
        outcome = executor.execute(make_task("power", "explode"), server, fake_agent)

        assert isinstance(outcome, Failed)
        assert isinstance(outcome.error, TaskPayloadError)
        assert fake_agent.calls == []

    def test_unknown_action_is_skipped(self, executor, server, fake_agent, activities):
        outcome = executor.execute(make_task("teleport"), server, fake_agent)

        assert isinstance(outcome, Skipped)
        assert outcome.reason == "unknown_action"
        assert fake_agent.calls == []
        # still audited
        assert len(activities.list_activities(server.id, event="task_executed")) == 1

    def test_unknown_action_without_agent_is_skipped(self, executor, server):
        assert isinstance(executor.execute(make_task("teleport"), server, None), Skipped)

    def test_missing_agent(self, executor, server):
        outcome = executor.execute(make_task("restart"), server, None)

        assert isinstance(outcome, Failed)
        assert isinstance(outcome.error, AgentConnectionError)
        assert outcome.message == "Node not found for server: Survival"

    def test_agent_scheduler_error_becomes_failed(self, executor, server, fake_agent):
        fake_agent.raises["install_server"] = AgentTimeoutError("Request timed out: read")
        outcome = executor.execute(make_task("install"), server, fake_agent)
        assert isinstance(outcome, Failed)
        assert outcome.error.context["server_uuid"] == server.uuid

    def test_unexpected_exception_propagates(self, executor, server, fake_agent):
        fake_agent.raises["install_server"] = RuntimeError("bug")
        with pytest.raises(RuntimeError):
            executor.execute(make_task("install"), server, fake_agent)

    def test_activity_failure_does_not_fail_task(self, db_conn, backups, server, fake_agent):
        class BrokenActivities:
            def create_activity(self, *args):
                raise StoreError("down")

        outcome = TaskExecutor(BrokenActivities(), backups).execute(make_task("start"), server, fake_agent)
        assert outcome == Succeeded(None)


class TestBackups:
    """Test backup tasks."""

    def test_backup_created(self, executor, server, fake_agent, backups, activities):
        outcome = executor.execute(make_task("backup", "logs\ncache"), server, fake_agent)

        assert outcome == Succeeded(None)
        records = backups.get_backups_by_server_id(server.id)
        assert len(records) == 1
        record = records[0]
        assert record.is_locked is True
        assert record.is_successful is False
        assert record.disk == "wings"
        assert json.loads(record.ignored_files) == ["logs", "cache"]
        assert record.name.startswith("Scheduled backup at ")

        method, args = fake_agent.calls[0]
        assert method == "create_backup"
        assert args == (server.uuid, "wings", record.uuid, '["logs", "cache"]')

        started = activities.list_activities(server.id, event="schedule_backup_started")
        assert started[0]["metadata"] == {
            "backup_uuid": record.uuid,
            "backup_id": record.id,
            "schedule_triggered": True,
        }

    def test_quota_reached(self, db_conn, seed, executor, fake_agent, backups, activities):
        server_id = seed.server(backup_limit=2)
        seed.backup(server_id)
        seed.backup(server_id)
        server = ServerRepository(db_conn).get_server_by_id(server_id)

        outcome = executor.execute(make_task("backup"), server, fake_agent)

        assert isinstance(outcome, Skipped)
        assert outcome.reason == "backup_limit"
        assert fake_agent.calls == []
        assert len(backups.get_backups_by_server_id(server_id)) == 2
        skipped = activities.list_activities(server_id, event="schedule_backup_skipped_limit")
        assert skipped[0]["metadata"] == {"current_backups": 2, "backup_limit": 2}

    def test_zero_limit_is_unlimited(self, db_conn, seed, executor, fake_agent, backups):
        server_id = seed.server(backup_limit=0)
        for _ in range(5):
            seed.backup(server_id)
        server = ServerRepository(db_conn).get_server_by_id(server_id)

        assert executor.execute(make_task("backup"), server, fake_agent) == Succeeded(None)
        assert len(backups.get_backups_by_server_id(server_id)) == 6

    def test_agent_refusal_removes_record(self, executor, server, fake_agent, backups):
        fake_agent.responses["create_backup"] = AgentResponse(409, error="HTTP 409: backup in progress")

        outcome = executor.execute(make_task("backup"), server, fake_agent)

        assert isinstance(outcome, Failed)
        assert "backup_uuid" in outcome.error.context
        assert backups.get_backups_by_server_id(server.id) == []

    def test_record_creation_failure(self, activities, server, fake_agent):
        class FullBackups:
            def get_backups_by_server_id(self, server_id):
                return []

            def create_backup(self, **fields):
                return None

            def delete_backup(self, backup_id):
                raise AssertionError("nothing to delete")

        outcome = TaskExecutor(activities, FullBackups()).execute(make_task("backup"), server, fake_agent)

        assert isinstance(outcome, Failed)
        assert isinstance(outcome.error, StoreError)
        assert fake_agent.calls == []

    def test_missing_agent_creates_no_record(self, executor, server, backups):
        outcome = executor.execute(make_task("backup"), server, None)
        assert isinstance(outcome, Failed)
        assert isinstance(outcome.error, AgentConnectionError)
        assert backups.get_backups_by_server_id(server.id) == []

    def test_quota_reached_without_agent_is_skipped(self, db_conn, seed, executor, backups, activities):
        server_id = seed.server(backup_limit=1)
        seed.backup(server_id)
        server = ServerRepository(db_conn).get_server_by_id(server_id)

        outcome = executor.execute(make_task("backup"), server, None)

        assert isinstance(outcome, Skipped)
        assert outcome.reason == "backup_limit"
        assert len(backups.get_backups_by_server_id(server_id)) == 1
        assert activities.list_activities(server_id, event="schedule_backup_skipped_limit")

    def test_adapter_setting(self, activities, backups, server, fake_agent):
        TaskExecutor(activities, backups, backup_adapter="s3").execute(make_task("backup"), server, fake_agent)
        assert fake_agent.calls[0][1][1] == "s3"
        assert backups.get_backups_by_server_id(server.id)[0].disk == "s3"


class TestAgentErrorFromResponse:
    """Test response classification."""

    def test_timeout(self):
        error = agent_error_from_response(AgentResponse(0, error="Request timed out: read"))
        assert isinstance(error, AgentTimeoutError)
        assert error.retryable is True

    def test_connection(self):
        error = agent_error_from_response(AgentResponse(0, error="Connection failed: refused"))
        assert isinstance(error, AgentConnectionError)

    @pytest.mark.parametrize("code", [401, 403])
    def test_auth(self, code):
        assert isinstance(agent_error_from_response(AgentResponse(code, error="x")), AgentAuthenticationError)

    def test_other(self):
        error = agent_error_from_response(AgentResponse(404, error="Endpoint not found: /x"))
        assert isinstance(error, AgentRequestError)
        assert error.context == {"status_code": 404}
        assert error.message == "Endpoint not found: /x"

    def test_missing_error_text(self):
        assert agent_error_from_response(AgentResponse(502)).message == "HTTP 502"
