"""
Core primitives for node-scheduler.

Modules:
    errors       SchedulerError hierarchy with category and retry semantics
    result       Succeeded / Skipped / Failed outcomes
    models       Dataclass records and the task action variant
    protocols    Store and agent contracts
    schema       SQLite DDL for the reference stores
    timestamps   UTC helpers and the storage timestamp format
    logging      structlog configuration
    settings     pydantic-settings configuration
"""

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
from nodesched.core.logging import LogContext, configure_logging, get_logger
from nodesched.core.result import Failed, Outcome, Skipped, Succeeded, TaskOutcome

__all__ = [
    # errors
    "ErrorCategory",
    "SchedulerError",
    "ConfigError",
    "ScheduleError",
    "TaskPayloadError",
    "StoreError",
    "AgentError",
    "AgentConnectionError",
    "AgentTimeoutError",
    "AgentAuthenticationError",
    "AgentRequestError",
    "is_retryable",
    "categorize_error",
    # result
    "Outcome",
    "TaskOutcome",
    "Succeeded",
    "Skipped",
    "Failed",
    # logging
    "configure_logging",
    "get_logger",
    "LogContext",
]
