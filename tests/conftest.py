"""Shared fixtures: temporary SQLite store, seeded tenants and config repository."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Iterable

import pytest

from leadledger.config import ConfigLocator, ConfigRepository
from leadledger.engine.identity import MappedRecord, map_record
from leadledger.infra import SQLiteManager, Store, Tenant, TenantRegistry


@pytest.fixture
def sqlite_manager() -> Iterable[SQLiteManager]:
    manager = SQLiteManager()
    yield manager
    manager.close_all()


@pytest.fixture
def store(tmp_path: Path, sqlite_manager: SQLiteManager) -> Store:
    return Store.open(sqlite_manager, tmp_path / "leadledger.db")


@pytest.fixture
def tenant(store: Store) -> Tenant:
    return TenantRegistry(store).create("Acme Foods", tenant_id="tenant-a")


@pytest.fixture
def other_tenant(store: Store) -> Tenant:
    return TenantRegistry(store).create("Globex", tenant_id="tenant-b")


@pytest.fixture
def make_record() -> Callable[..., MappedRecord]:
    def _builder(default_source: str = "import", **fields: Any) -> MappedRecord:
        return map_record(fields, default_source)

    return _builder


@pytest.fixture
def temp_config_repository(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterable[ConfigRepository]:
    monkeypatch.setenv("LEADLEDGER_HOME", str(tmp_path))
    locator = ConfigLocator(project_root=tmp_path)
    repository = ConfigRepository(locator)
    yield repository
