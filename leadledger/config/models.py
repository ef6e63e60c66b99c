"""Pydantic models used across Lead-Ledger configuration flow."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator


class ScheduleType(str, Enum):
    """Trigger modes for the periodic job processor."""

    CRON = "cron"
    INTERVAL = "interval"


class ScheduleConfig(BaseModel):
    """When `jobs watch` should drain the pending queue."""

    type: ScheduleType = Field(default=ScheduleType.INTERVAL)
    value: Any = Field(
        default=60,
        description="Cron expression or interval seconds, depending on type.",
    )

    @model_validator(mode="after")
    def _validate_value(self) -> "ScheduleConfig":
        if self.type is ScheduleType.CRON and not isinstance(self.value, str):
            raise ValueError("Cron schedule requires string expression")
        if self.type is ScheduleType.INTERVAL and not isinstance(self.value, (int, float, dict)):
            raise ValueError("Interval schedule requires seconds (int/float) or kwargs dict")
        return self


class WorkerConfig(BaseModel):
    """Bounded worker pool settings."""

    concurrency_limit: int = 5
    inter_batch_delay_ms: int = 500
    claim_batch_size: int = 200
    # None disables the stale-running sweep before each run
    stale_after_seconds: int | None = 3600
    progress_every: int = 10

    @model_validator(mode="after")
    def _validate_bounds(self) -> "WorkerConfig":
        if self.concurrency_limit < 1:
            raise ValueError("concurrency_limit must be >= 1")
        if self.inter_batch_delay_ms < 0:
            raise ValueError("inter_batch_delay_ms must be >= 0")
        if self.claim_batch_size < 1:
            raise ValueError("claim_batch_size must be >= 1")
        if self.stale_after_seconds is not None and self.stale_after_seconds <= 0:
            raise ValueError("stale_after_seconds must be > 0 or null")
        if self.progress_every < 1:
            raise ValueError("progress_every must be >= 1")
        return self


class ImportConfig(BaseModel):
    """File import settings."""

    chunk_size: int = 50
    default_source: str = "import"

    @field_validator("chunk_size")
    @classmethod
    def _positive_chunk(cls, value: int) -> int:
        if value < 1:
            raise ValueError("chunk_size must be >= 1")
        return value

    @field_validator("default_source")
    @classmethod
    def _strip_source(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("default_source cannot be empty")
        return value


class ScraperConfig(BaseModel):
    """HTTP settings for the default page scraper."""

    timeout: float = 15.0
    user_agent: str | None = None
    follow_redirects: bool = True
    extra_headers: dict[str, str] = Field(default_factory=dict)


class GlobalConfig(BaseModel):
    """Global controls shared across tenants."""

    database_path: Path = Field(default=Path("data/leadledger.db"))
    default_tenant_id: str | None = None
    enable_progress_bar: bool = True
    worker: WorkerConfig = Field(default_factory=WorkerConfig)
    importer: ImportConfig = Field(default_factory=ImportConfig)
    scraper: ScraperConfig = Field(default_factory=ScraperConfig)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)

    @field_validator("database_path", mode="before")
    @classmethod
    def _coerce_path(cls, value: Any) -> Path:
        return Path(value)

    def resolved_database_path(self, base_dir: Path) -> Path:
        """Return the database path relative to the project root."""

        if not self.database_path.is_absolute():
            return (base_dir / self.database_path).resolve()
        return self.database_path


__all__ = [
    "GlobalConfig",
    "ImportConfig",
    "ScheduleConfig",
    "ScheduleType",
    "ScraperConfig",
    "WorkerConfig",
]
