"""Configuration package exports."""

from .loader import ConfigLocator, ConfigRepository
from .models import (
    GlobalConfig,
    ImportConfig,
    ScheduleConfig,
    ScheduleType,
    ScraperConfig,
    WorkerConfig,
)

__all__ = [
    "ConfigLocator",
    "ConfigRepository",
    "GlobalConfig",
    "ImportConfig",
    "ScheduleConfig",
    "ScheduleType",
    "ScraperConfig",
    "WorkerConfig",
]
