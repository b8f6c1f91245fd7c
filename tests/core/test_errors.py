"""Tests for the scheduler error hierarchy."""

import pytest

from nodesched.core.errors import (
    AgentAuthenticationError,
    AgentConnectionError,
    AgentError,
    AgentRequestError,
    AgentTimeoutError,
    ConfigError,
    ErrorCategory,
    ScheduleError,
    SchedulerError,
    StoreError,
    TaskPayloadError,
    categorize_error,
    is_retryable,
)


class TestSchedulerError:
    """Test the base error type."""

    def test_defaults(self):
        """Base error is INTERNAL and not retryable."""
        err = SchedulerError("boom")
        assert err.message == "boom"
        assert str(err) == "boom"
        assert err.category == ErrorCategory.INTERNAL
        assert err.retryable is False
        assert err.context == {}

    def test_with_context_is_fluent(self):
        """with_context merges keys and returns the same instance."""
        err = AgentRequestError("Server error: disk full")
        same = err.with_context(server_uuid="a1b2").with_context(action="backup")
        assert same is err
        assert err.context == {"server_uuid": "a1b2", "action": "backup"}

    def test_cause_is_chained(self):
        """cause is kept and set as __cause__."""
        original = OSError("disk")
        err = StoreError("write failed", cause=original)
        assert err.cause is original
        assert err.__cause__ is original

    def test_to_dict(self):
        """to_dict includes context and cause only when present."""
        err = ScheduleError("bad cron")
        assert err.to_dict() == {
            "error_type": "ScheduleError",
            "message": "bad cron",
            "category": "SCHEDULE",
            "retryable": False,
        }

        err = StoreError("oops", context={"schedule_id": 3}, cause=RuntimeError("x"))
        data = err.to_dict()
        assert data["context"] == {"schedule_id": 3}
        assert data["cause"] == "x"

    def test_overrides(self):
        """Explicit category and retryable win over class defaults."""
        err = StoreError("locked", retryable=True, category=ErrorCategory.INTERNAL)
        assert err.retryable is True
        assert err.category == ErrorCategory.INTERNAL


class TestCategories:
    """Test class-level categories and retry flags."""

    @pytest.mark.parametrize(
        "cls,category,retryable",
        [
            (ConfigError, ErrorCategory.CONFIG, False),
            (ScheduleError, ErrorCategory.SCHEDULE, False),
            (TaskPayloadError, ErrorCategory.VALIDATION, False),
            (StoreError, ErrorCategory.STORE, False),
            (AgentConnectionError, ErrorCategory.AGENT, True),
            (AgentTimeoutError, ErrorCategory.AGENT, True),
            (AgentAuthenticationError, ErrorCategory.AGENT, False),
            (AgentRequestError, ErrorCategory.AGENT, False),
        ],
    )
    def test_defaults_per_class(self, cls, category, retryable):
        err = cls("x")
        assert err.category == category
        assert err.retryable is retryable

    def test_agent_errors_share_base(self):
        """All agent failures can be caught as AgentError."""
        for cls in (AgentConnectionError, AgentTimeoutError, AgentAuthenticationError, AgentRequestError):
            assert issubclass(cls, AgentError)


class TestHelpers:
    """Test is_retryable and categorize_error."""

    def test_is_retryable(self):
        assert is_retryable(AgentTimeoutError("slow")) is True
        assert is_retryable(TaskPayloadError("bad")) is False
        assert is_retryable(ConnectionError()) is True
        assert is_retryable(TimeoutError()) is True
        assert is_retryable(KeyError("x")) is False

    def test_categorize_error(self):
        assert categorize_error(StoreError("x")) == ErrorCategory.STORE
        assert categorize_error(ConnectionError()) == ErrorCategory.AGENT
        assert categorize_error(ValueError()) == ErrorCategory.VALIDATION
        assert categorize_error(RuntimeError()) == ErrorCategory.UNKNOWN
