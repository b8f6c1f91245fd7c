"""Cron throttle - process-wide rate limit for the driver.

The host crontab may invoke the driver more often than ``interval`` (or
several hosts may share one database).  The throttle persists the last
accepted trigger in ``cron_jobs`` and claims a window with a single
conditional write, so two concurrent invocations cannot both win.

Tags:
    scheduling, throttle, rate-limit, sqlite

Doc-Types:
    api-reference
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta

from nodesched.core.errors import StoreError
from nodesched.core.logging import get_logger
from nodesched.core.protocols import Connection
from nodesched.core.timestamps import ensure_utc, from_db_timestamp, to_db_timestamp, utc_now

logger = get_logger(__name__)


class CronThrottle:
    """Accept at most one trigger per ``interval_seconds`` for ``job_name``.

    Example:
        >>> throttle = CronThrottle(conn, "server-schedule-processor", 60)
        >>> if throttle.should_run():
        ...     driver_batch()
    """

    def __init__(self, conn: Connection, job_name: str, interval_seconds: int) -> None:
        self.conn = conn
        self.job_name = job_name
        self.interval_seconds = interval_seconds

    def should_run(self, now: datetime | None = None, force: bool = False) -> bool:
        """Claim the current window.

        Args:
            now: Evaluation time (defaults to the clock)
            force: Record the trigger and accept regardless of the window

        Returns:
            True if this caller may run
        """
        now = ensure_utc(now) if now is not None else utc_now()
        now_ts = to_db_timestamp(now)
        cutoff_ts = to_db_timestamp(now - timedelta(seconds=self.interval_seconds))

        try:
            self.conn.execute(
                "INSERT OR IGNORE INTO cron_jobs (job_name, interval_seconds, last_triggered_at) "
                "VALUES (?, ?, NULL)",
                (self.job_name, self.interval_seconds),
            )
            if force:
                cursor = self.conn.execute(
                    "UPDATE cron_jobs SET last_triggered_at = ?, interval_seconds = ? "
                    "WHERE job_name = ?",
                    (now_ts, self.interval_seconds, self.job_name),
                )
            else:
                cursor = self.conn.execute(
                    """
                    UPDATE cron_jobs SET last_triggered_at = ?, interval_seconds = ?
                    WHERE job_name = ?
                      AND (last_triggered_at IS NULL OR last_triggered_at <= ?)
                    """,
                    (now_ts, self.interval_seconds, self.job_name, cutoff_ts),
                )
            self.conn.commit()
        except sqlite3.Error as e:
            raise StoreError(
                f"Throttle store failure: {e}",
                context={"job_name": self.job_name},
                cause=e,
            ) from e

        accepted = cursor.rowcount == 1
        if not accepted:
            logger.debug("cron_throttled", job_name=self.job_name, interval_seconds=self.interval_seconds)
        return accepted

    def last_triggered_at(self) -> datetime | None:
        row = self.conn.execute(
            "SELECT last_triggered_at FROM cron_jobs WHERE job_name = ?",
            (self.job_name,),
        ).fetchone()
        if not row:
            return None
        return from_db_timestamp(row[0])
