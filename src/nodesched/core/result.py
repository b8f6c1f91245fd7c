"""
Three-way outcome envelope for tasks and schedule runs.

A scheduled task or schedule run can end in exactly one of three ways: it
did its work, it deliberately did nothing, or it failed. Encoding the
middle case as an exception (or as a failure) loses information the
runner needs for its counters, so outcomes travel as values.

Manifesto:
    - **Explicit over Implicit:** skips and failures are return values, not
      exceptions callers might forget to catch
    - **Skips are not failures:** an offline server or a full backup quota
      is an expected condition with a reason string
    - **Batch-friendly:** one failed task must not abort the schedule;
      outcomes are tallied with ``tally_outcomes()``

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                       Outcome[T]                              │
        ├──────────────────┬──────────────────┬────────────────────────┤
        │  Succeeded[T]    │  Skipped         │  Failed                │
        ├──────────────────┼──────────────────┼────────────────────────┤
        │ • value: T       │ • reason: str    │ • error: Exception     │
        │                  │ • context: dict  │                        │
        └──────────────────┴──────────────────┴────────────────────────┘

Examples:
    >>> from nodesched.core.result import Succeeded, Skipped, Failed
    >>> outcome = Skipped("server_offline")
    >>> match outcome:
    ...     case Succeeded(value):
    ...         print("ran")
    ...     case Skipped(reason):
    ...         print(f"skipped: {reason}")
    ...     case Failed(error):
    ...         print(f"failed: {error}")
    skipped: server_offline

Tags:
    result-pattern, outcome, error-handling, scheduler

Doc-Types:
    - API Reference
    - Design Patterns Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from nodesched.core.errors import SchedulerError


T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Succeeded(Generic[T]):
    """The operation did its work."""

    value: T = None  # type: ignore[assignment]

    def is_succeeded(self) -> bool:
        return True

    def is_skipped(self) -> bool:
        return False

    def is_failed(self) -> bool:
        return False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        value = self.value.to_dict() if hasattr(self.value, "to_dict") else self.value
        return {"status": "succeeded", "value": value}

    def __repr__(self) -> str:
        return f"Succeeded({self.value!r})"


@dataclass(frozen=True, slots=True)
class Skipped:
    """
    The operation deliberately did nothing.

    ``reason`` is a short machine-readable token (``locked``,
    ``server_offline``, ``server_not_found``, ``backup_limit``,
    ``unknown_action``); ``context`` carries whatever explains it.
    """

    reason: str
    context: dict[str, Any] = field(default_factory=dict)

    def is_succeeded(self) -> bool:
        return False

    def is_skipped(self) -> bool:
        return True

    def is_failed(self) -> bool:
        return False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        result: dict[str, Any] = {"status": "skipped", "reason": self.reason}
        if self.context:
            result["context"] = dict(self.context)
        return result

    def __repr__(self) -> str:
        return f"Skipped({self.reason!r})"


@dataclass(frozen=True, slots=True)
class Failed:
    """The operation failed. ``error`` is preferably a ``SchedulerError``."""

    error: Exception

    def is_succeeded(self) -> bool:
        return False

    def is_skipped(self) -> bool:
        return False

    def is_failed(self) -> bool:
        return True

    @property
    def message(self) -> str:
        return str(self.error)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        if isinstance(self.error, SchedulerError):
            return {"status": "failed", "error": self.error.to_dict()}
        return {
            "status": "failed",
            "error": {
                "error_type": type(self.error).__name__,
                "message": str(self.error),
            },
        }

    def __repr__(self) -> str:
        return f"Failed({self.error!r})"


Outcome = Succeeded[T] | Skipped | Failed

# Per-task outcome; the success value is unused.
TaskOutcome = Succeeded[None] | Skipped | Failed


# =============================================================================
# UTILITIES
# =============================================================================


def is_succeeded(outcome: Outcome[Any]) -> bool:
    return isinstance(outcome, Succeeded)


def is_skipped(outcome: Outcome[Any]) -> bool:
    return isinstance(outcome, Skipped)


def is_failed(outcome: Outcome[Any]) -> bool:
    return isinstance(outcome, Failed)


def tally_outcomes(outcomes: list[Outcome[Any]]) -> tuple[int, int, int]:
    """
    Count outcomes by kind.

    Args:
        outcomes: Outcomes in any order

    Returns:
        Tuple of (succeeded, skipped, failed)
    """
    succeeded = skipped = failed = 0
    for outcome in outcomes:
        match outcome:
            case Succeeded():
                succeeded += 1
            case Skipped():
                skipped += 1
            case Failed():
                failed += 1
    return succeeded, skipped, failed


__all__ = [
    "Outcome",
    "TaskOutcome",
    "Succeeded",
    "Skipped",
    "Failed",
    "is_succeeded",
    "is_skipped",
    "is_failed",
    "tally_outcomes",
]
