"""Scheduler settings loaded from environment variables."""

import logging
import socket
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SchedulerSettings(BaseSettings):
    """Runtime configuration for the scheduler core. Values come from ``CRON_RUNNER_*`` variables."""

    # Storage
    database_url: str = Field(default="sqlite+aiosqlite:///cron_runner.db")

    # Due-time evaluation
    timezone: str = Field(default="UTC")
    due_tolerance_seconds: int = Field(default=60, ge=0)

    # Task cache
    cache_ttl_seconds: int = Field(default=24 * 60 * 60, gt=0)

    # Execution
    default_timeout_seconds: int = Field(default=60, gt=0)
    max_concurrent_executions: int = Field(default=50, gt=0)
    hostname: str = Field(default_factory=socket.gethostname)

    # Trigger
    tick_interval_seconds: float = Field(default=60.0, gt=0)

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(
        env_prefix="CRON_RUNNER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
