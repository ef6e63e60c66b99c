"""Locate the Lead-Ledger home directory and read or write its global config."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .models import GlobalConfig

HOME_ENV = "LEADLEDGER_HOME"
GLOBAL_CONFIG_FILENAME = "global_config.yaml"
YAML_SUFFIXES = frozenset({".yaml", ".yml"})


def _read_file(path: Path) -> dict[str, Any]:
    """Parse a YAML or JSON config file; anything but a mapping is rejected."""

    raw = path.read_text(encoding="utf-8")
    data = (yaml.safe_load(raw) or {}) if path.suffix in YAML_SUFFIXES else json.loads(raw)
    if isinstance(data, dict):
        return data
    raise ValueError(f"{path} must hold a mapping at the top level, got {type(data).__name__}")


def _write_file(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix in YAML_SUFFIXES:
        text = yaml.safe_dump(payload, allow_unicode=True, sort_keys=False)
    else:
        text = json.dumps(payload, indent=2, ensure_ascii=False)
    path.write_text(text, encoding="utf-8")


@dataclass(slots=True)
class ConfigLocator:
    """Directory layout under the home directory.

    ``LEADLEDGER_HOME`` wins over ``project_root``; with neither set the
    checkout root is used. ``data/`` and ``logs/`` are created eagerly.
    """

    project_root: Path | None = None
    data_dir: Path | None = None
    logs_dir: Path | None = None

    def __post_init__(self) -> None:
        override = os.environ.get(HOME_ENV)
        if override:
            home = Path(override).expanduser()
        else:
            home = self.project_root or Path(__file__).resolve().parents[2]
        self.project_root = home.resolve()
        self.data_dir = self.project_root / "data"
        self.logs_dir = self.project_root / "logs"
        for directory in (self.data_dir, self.logs_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def global_config_path(self) -> Path:
        return self.data_dir / GLOBAL_CONFIG_FILENAME


class ConfigRepository:
    """Cached access to ``GlobalConfig``; a missing file is written with defaults."""

    def __init__(self, locator: ConfigLocator | None = None) -> None:
        self.locator = locator or ConfigLocator()
        self._cached: GlobalConfig | None = None

    def load_global_config(self) -> GlobalConfig:
        if self._cached is None:
            path = self.locator.global_config_path()
            if path.exists():
                self._cached = GlobalConfig.model_validate(_read_file(path))
            else:
                self.save_global_config(GlobalConfig())
        return self._cached

    def save_global_config(self, config: GlobalConfig) -> None:
        _write_file(self.locator.global_config_path(), config.model_dump(mode="json"))
        self._cached = config

    def database_path(self) -> Path:
        return self.load_global_config().resolved_database_path(self.locator.project_root)


__all__ = ["ConfigLocator", "ConfigRepository", "GLOBAL_CONFIG_FILENAME"]
