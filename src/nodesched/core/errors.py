"""
Structured error types for node-scheduler.

Every failure the scheduler can observe is classified here so the runner
and driver can decide what to count, what to log, and what is worth a
retry on the next tick.

Manifesto:
    - **Typed hierarchy:** agent failures, store failures and bad task
      payloads are different things and deserve different classes
    - **Explicit retry semantics:** each error knows whether trying again
      later can help
    - **Rich context:** errors carry schedule/server/task identifiers for
      structured logging
    - **Error chaining:** the original exception is kept as ``cause``

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       SchedulerError                             │
        │  (category, retryable, context, cause)                           │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  ConfigError       ScheduleError      TaskPayloadError           │
        │  (CONFIG)          (SCHEDULE)         (VALIDATION)               │
        │                                                                  │
        │  StoreError        AgentError                                    │
        │  (STORE)           (AGENT)                                       │
        │                        │                                         │
        │            AgentConnectionError   (retryable)                    │
        │            AgentTimeoutError      (retryable)                    │
        │            AgentAuthenticationError                              │
        │            AgentRequestError                                     │
        └─────────────────────────────────────────────────────────────────┘

Skips are not errors. A schedule whose server is offline, a backup over
quota or a schedule locked by another runner is reported through
``nodesched.core.result.Skipped`` instead.

Tags:
    errors, exception-hierarchy, retry-logic, error-context, scheduler

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Error categories used for classification in logs and heartbeats."""

    AGENT = "AGENT"               # Remote node agent refused or was unreachable
    STORE = "STORE"               # Schedule/task/backup/activity persistence
    SCHEDULE = "SCHEDULE"         # Cron expression, schedule state
    VALIDATION = "VALIDATION"     # Task payloads
    CONFIG = "CONFIG"             # Settings
    INTERNAL = "INTERNAL"         # Bugs, unexpected state
    UNKNOWN = "UNKNOWN"           # Uncategorized


class SchedulerError(Exception):
    """
    Base exception for all node-scheduler errors.

    Carries:
    - **category:** ErrorCategory for classification
    - **retryable:** whether a later attempt may succeed
    - **context:** free-form identifiers (schedule_id, server_uuid, ...)
    - **cause:** the underlying exception, also chained as ``__cause__``

    Examples:
        >>> err = AgentRequestError("Server error: disk full").with_context(
        ...     server_uuid="a1b2", action="backup"
        ... )
        >>> err.to_dict()["context"]
        {'server_uuid': 'a1b2', 'action': 'backup'}
        >>> err.retryable
        False
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context: dict[str, Any] = dict(context or {})
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> SchedulerError:
        """Add context to this error (fluent API)."""
        self.context.update(kwargs)
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.context:
            result["context"] = dict(self.context)
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION / SCHEDULE ERRORS
# =============================================================================


class ConfigError(SchedulerError):
    """Invalid or missing settings."""

    default_category = ErrorCategory.CONFIG


class ScheduleError(SchedulerError):
    """Schedule definition or state error (e.g. unparseable cron fields)."""

    default_category = ErrorCategory.SCHEDULE


class TaskPayloadError(SchedulerError):
    """A task's payload cannot be turned into an action (e.g. bad power signal)."""

    default_category = ErrorCategory.VALIDATION


# =============================================================================
# STORE ERRORS
# =============================================================================


class StoreError(SchedulerError):
    """Persistence failure in one of the scheduler's stores."""

    default_category = ErrorCategory.STORE


# =============================================================================
# AGENT ERRORS
# =============================================================================


class AgentError(SchedulerError):
    """
    The node agent did not perform the requested operation.

    Raised by the task executor when an ``AgentResponse`` is not successful;
    the message is the remote error text.
    """

    default_category = ErrorCategory.AGENT


class AgentConnectionError(AgentError):
    """Agent unreachable, or no node is configured for the server."""

    default_retryable = True


class AgentTimeoutError(AgentError):
    """Agent call exceeded the configured timeout."""

    default_retryable = True


class AgentAuthenticationError(AgentError):
    """Agent rejected the node token (401/403)."""


class AgentRequestError(AgentError):
    """Agent answered with an error status."""


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, SchedulerError):
        return error.retryable
    return isinstance(error, (ConnectionError, TimeoutError))


def categorize_error(error: Exception) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, SchedulerError):
        return error.category
    if isinstance(error, (ConnectionError, TimeoutError)):
        return ErrorCategory.AGENT
    if isinstance(error, ValueError):
        return ErrorCategory.VALIDATION
    return ErrorCategory.UNKNOWN


__all__ = [
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
]
