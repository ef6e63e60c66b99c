"""structlog setup: JSON lines on the console, an app log, an error log and one file per tenant."""

from __future__ import annotations

import logging
import logging.config
import os
from collections import deque
from pathlib import Path
from typing import Any, Iterable

import structlog

ROOT_LOGGER = "leadledger"
JSON_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

_configured = False


def log_dir() -> Path:
    home = os.environ.get("LEADLEDGER_HOME")
    base = Path(home).expanduser().resolve() if home else Path(__file__).resolve().parents[1]
    return base / "logs"


def _tenant_log_path(tenant_id: str) -> Path:
    return log_dir() / "tenants" / f"{tenant_id}.log"


def _file_handler(path: Path, level: str) -> dict[str, Any]:
    path.touch(exist_ok=True)
    return {
        "class": "logging.FileHandler",
        "level": level,
        "filename": str(path),
        "encoding": "utf-8",
        "formatter": "json",
    }


def _stdlib_config(level: str, directory: Path) -> dict[str, Any]:
    handlers = {
        "console": {"class": "logging.StreamHandler", "level": level, "formatter": "json"},
        "app_file": _file_handler(directory / "leadledger.log", "INFO"),
        "error_file": _file_handler(directory / "error.log", "ERROR"),
    }
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {"()": "pythonjsonlogger.jsonlogger.JsonFormatter", "fmt": JSON_FORMAT}
        },
        "handlers": handlers,
        "loggers": {
            ROOT_LOGGER: {"handlers": list(handlers), "level": level, "propagate": False}
        },
    }


def configure_logging(verbose: bool = False) -> structlog.BoundLogger:
    """Install handlers once and return the application logger."""

    global _configured
    if not _configured:
        directory = log_dir()
        (directory / "tenants").mkdir(parents=True, exist_ok=True)
        level = "DEBUG" if verbose else "INFO"
        logging.config.dictConfig(_stdlib_config(level, directory))
        structlog.configure(
            processors=[
                structlog.contextvars.merge_contextvars,
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )
        _configured = True
    return structlog.get_logger(ROOT_LOGGER)


def tenant_logger(tenant_id: str, verbose: bool = False) -> structlog.BoundLogger:
    """Logger for one tenant; its events also land in ``logs/tenants/<id>.log``."""

    configure_logging(verbose)
    path = _tenant_log_path(tenant_id)
    path.parent.mkdir(parents=True, exist_ok=True)
    name = f"{ROOT_LOGGER}.tenant.{tenant_id}"
    stdlib_logger = logging.getLogger(name)
    attached = {
        handler.baseFilename
        for handler in stdlib_logger.handlers
        if isinstance(handler, logging.FileHandler)
    }
    if str(path) not in attached:
        handler = logging.FileHandler(path, encoding="utf-8")
        handler.setLevel(logging.INFO)
        parent = logging.getLogger(ROOT_LOGGER)
        if parent.handlers:
            handler.setFormatter(parent.handlers[0].formatter)
        stdlib_logger.addHandler(handler)
    return structlog.get_logger(name).bind(tenant_id=tenant_id)


def tail_log(path: Path, line_count: int = 100) -> list[str]:
    if not path.exists():
        return []
    with path.open("r", encoding="utf-8", errors="ignore") as stream:
        return list(deque(stream, maxlen=line_count))


def available_tenant_logs() -> Iterable[Path]:
    folder = log_dir() / "tenants"
    return sorted(folder.glob("*.log")) if folder.is_dir() else []


__all__ = [
    "available_tenant_logs",
    "configure_logging",
    "log_dir",
    "tail_log",
    "tenant_logger",
]
