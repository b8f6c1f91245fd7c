"""Recurrence calculator - next fire time from five cron fields.

Manifesto:
    Next-run computation is a pure function of the cron fields, an anchor
    and a timezone.  Keeping it out of the runner means it can be tested
    exhaustively without a database and reused by the CLI.

Cron evaluation is delegated to croniter.  When both day-of-month and
day-of-week are restricted, a day matches if EITHER field matches
(standard cron semantics, croniter's ``day_or=True`` default).

Tags:
    scheduling, cron, croniter, recurrence, timezone

Doc-Types:
    api-reference


┌──────────────────────────────────────────────────────────────────────────┐
│  next_run_at(fields..., anchor, timezone, not_before)                     │
│                                                                           │
│   anchor (UTC) ──► truncate to minute ──► local tz ──► croniter.get_next  │
│                                                          │                │
│                                             UTC, truncated to minute      │
│                                                          │                │
│                           result <= not_before ? ──► recompute from it    │
└──────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

from datetime import UTC, datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter

from nodesched.core.errors import ScheduleError
from nodesched.core.timestamps import ensure_utc, utc_now


def format_cron_expression(
    minute: str,
    hour: str,
    day_of_month: str,
    month: str,
    day_of_week: str,
) -> str:
    """Join the five fields in minute, hour, day-of-month, month, day-of-week order.

    Raises:
        ScheduleError: If a field is empty or contains whitespace.
    """
    fields = []
    for label, value in (
        ("minute", minute),
        ("hour", hour),
        ("day_of_month", day_of_month),
        ("month", month),
        ("day_of_week", day_of_week),
    ):
        text = str(value).strip()
        if not text or any(ch.isspace() for ch in text):
            raise ScheduleError(
                f"Invalid cron {label} field: {value!r}",
                context={"field": label, "value": value},
            )
        fields.append(text)
    return " ".join(fields)


def validate_cron_fields(
    minute: str,
    hour: str,
    day_of_month: str,
    month: str,
    day_of_week: str,
) -> bool:
    """Check whether the five fields form an expression croniter accepts."""
    try:
        expression = format_cron_expression(minute, hour, day_of_month, month, day_of_week)
    except ScheduleError:
        return False
    return croniter.is_valid(expression)


def _resolve_zone(timezone: str) -> ZoneInfo:
    try:
        return ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ScheduleError(
            f"Unknown timezone: {timezone}",
            context={"timezone": timezone},
            cause=e,
        ) from e


def _next_after(expression: str, after: datetime, zone: ZoneInfo) -> datetime:
    start = ensure_utc(after).replace(second=0, microsecond=0).astimezone(zone)
    try:
        itr = croniter(expression, start)
        candidate = itr.get_next(datetime)
        result = ensure_utc(candidate).replace(second=0, microsecond=0)
        # croniter is exclusive of start, but a DST fold can map back onto it
        while result <= ensure_utc(after):
            result = ensure_utc(itr.get_next(datetime)).replace(second=0, microsecond=0)
    except (ValueError, KeyError) as e:
        raise ScheduleError(
            f"Invalid cron expression: {expression}",
            context={"expression": expression},
            cause=e,
        ) from e
    return result


def next_run_at(
    minute: str,
    hour: str,
    day_of_month: str,
    month: str,
    day_of_week: str,
    anchor: datetime | None = None,
    *,
    timezone: str = "UTC",
    not_before: datetime | None = None,
) -> datetime:
    """
    Compute the earliest fire time strictly after ``anchor``.

    Args:
        minute, hour, day_of_month, month, day_of_week: Cron fields
            (``*``, lists, ranges and steps)
        anchor: Reference instant; the clock is read only when None.
            Naive values are taken as UTC.
        timezone: IANA zone the fields are evaluated in
        not_before: If the computed time is not after this instant, the
            search restarts from it. Passing the current time keeps a
            schedule that fell behind from firing once per missed slot.

    Returns:
        Timezone-aware UTC datetime with seconds and microseconds zeroed.

    Raises:
        ScheduleError: If the expression or timezone is invalid.

    Examples:
        >>> next_run_at("0", "3", "*", "*", "*", datetime(2024, 1, 1, 2, 59, tzinfo=UTC))
        datetime.datetime(2024, 1, 1, 3, 0, tzinfo=datetime.timezone.utc)
    """
    expression = format_cron_expression(minute, hour, day_of_month, month, day_of_week)
    zone = _resolve_zone(timezone)

    base = ensure_utc(anchor) if anchor is not None else utc_now()
    result = _next_after(expression, base, zone)

    if not_before is not None:
        floor = ensure_utc(not_before)
        if result <= floor:
            result = _next_after(expression, floor, zone)

    return result


def upcoming_runs(
    minute: str,
    hour: str,
    day_of_month: str,
    month: str,
    day_of_week: str,
    anchor: datetime | None = None,
    *,
    count: int = 5,
    timezone: str = "UTC",
) -> list[datetime]:
    """The next ``count`` fire times after ``anchor``, in order."""
    runs: list[datetime] = []
    cursor = ensure_utc(anchor) if anchor is not None else utc_now()
    for _ in range(max(count, 0)):
        cursor = next_run_at(
            minute, hour, day_of_month, month, day_of_week, cursor, timezone=timezone
        )
        runs.append(cursor)
    return runs


__all__ = [
    "format_cron_expression",
    "validate_cron_fields",
    "next_run_at",
    "upcoming_runs",
]
