"""Settings for node-scheduler.

Configuration comes from ``NODESCHED_``-prefixed environment variables and
an optional ``.env`` file. Objects receive a ``SchedulerSettings`` instance
through their constructor; nothing reads the environment at import time.

Manifesto:
    - **Pydantic validation:** bad values fail at startup, not mid-batch
    - **Environment-driven:** ``NODESCHED_CRON_FORCE=1`` and friends
    - **Sensible defaults:** a once-a-minute driver against ``nodesched.db``

Examples:
    >>> from nodesched.core.settings import SchedulerSettings
    >>> settings = SchedulerSettings(interval_seconds=30)
    >>> settings.job_name
    'server-schedule-processor'

Tags:
    settings, configuration, pydantic, environment

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from nodesched.core.errors import ConfigError


class SchedulerSettings(BaseSettings):
    """Scheduler configuration.

    Fields
    ──────
    database_path     : SQLite file backing the reference stores
    log_level         : Structlog log level
    json_logs         : Force JSON (True) or console (False) logs; None = auto
    schedules_enabled : Global switch; False makes every tick a no-op
    cron_force        : Bypass the driver throttle
    job_name          : Throttle / heartbeat record name
    interval_seconds  : Minimum spacing between accepted driver ticks
    agent_*           : HTTP client options for node agents
    backup_adapter    : Storage adapter name passed to the agent for backups
    online_status     : Server status value that counts as online
    timezone          : Zone cron fields are evaluated in
    """

    model_config = SettingsConfigDict(
        env_prefix="NODESCHED_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Storage ──────────────────────────────────────────────────
    database_path: Path = Path("nodesched.db")

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool | None = None

    # ── Driver ───────────────────────────────────────────────────
    schedules_enabled: bool = True
    cron_force: bool = False
    job_name: str = "server-schedule-processor"
    interval_seconds: int = Field(default=60, ge=1)

    # ── Agent ────────────────────────────────────────────────────
    agent_timeout: float = Field(default=30.0, gt=0)
    agent_retries: int = Field(default=0, ge=0)
    agent_verify_tls: bool = True
    agent_user_agent: str = "node-scheduler/1.0"

    # ── Execution ────────────────────────────────────────────────
    backup_adapter: str = "wings"
    online_status: str = "running"
    timezone: str = "UTC"

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    @field_validator("online_status")
    @classmethod
    def _lower_status(cls, value: str) -> str:
        return value.strip().lower()


def load_settings(**overrides: Any) -> SchedulerSettings:
    """Build settings from the environment plus explicit overrides.

    Raises:
        ConfigError: If any value fails validation.
    """
    try:
        return SchedulerSettings(**overrides)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}", cause=e) from e
