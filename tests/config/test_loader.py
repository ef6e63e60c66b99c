from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from leadledger.config.loader import ConfigLocator, ConfigRepository
from leadledger.config.models import GlobalConfig, WorkerConfig


def test_config_locator_uses_env_and_creates_directories(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("LEADLEDGER_HOME", str(tmp_path))
    locator = ConfigLocator()
    assert locator.project_root == tmp_path.resolve()
    assert locator.data_dir == tmp_path.resolve() / "data"
    assert locator.logs_dir.exists()
    assert locator.global_config_path() == tmp_path.resolve() / "data" / "global_config.yaml"


def test_missing_global_config_is_created_with_defaults(temp_config_repository: ConfigRepository) -> None:
    config = temp_config_repository.load_global_config()
    assert config == GlobalConfig()
    path = temp_config_repository.locator.global_config_path()
    assert path.exists()
    payload = yaml.safe_load(path.read_text(encoding="utf-8"))
    assert payload["worker"]["concurrency_limit"] == 5
    assert payload["worker"]["inter_batch_delay_ms"] == 500
    assert payload["worker"]["claim_batch_size"] == 200


def test_config_repository_global_roundtrip(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("LEADLEDGER_HOME", raising=False)
    repo = ConfigRepository(ConfigLocator(project_root=tmp_path))
    config = GlobalConfig(
        default_tenant_id="tenant-a",
        enable_progress_bar=False,
        worker=WorkerConfig(concurrency_limit=3, inter_batch_delay_ms=0),
    )
    repo.save_global_config(config)
    fresh = ConfigRepository(ConfigLocator(project_root=tmp_path))
    assert fresh.load_global_config() == config


def test_database_path_is_resolved_under_home(temp_config_repository: ConfigRepository, tmp_path: Path) -> None:
    assert temp_config_repository.database_path() == tmp_path.resolve() / "data" / "leadledger.db"


def test_json_config_must_be_mapping(tmp_path: Path) -> None:
    from leadledger.config.loader import _read_file

    path = tmp_path / "config.json"
    path.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(ValueError):
        _read_file(path)
