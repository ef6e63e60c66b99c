from __future__ import annotations

import json
from pathlib import Path

import pytest

from leadledger.engine import JobStatus, ThreadPoolManager
from leadledger.errors import InvalidURLError, TenantContextError
from leadledger.infra import SQLiteManager
from leadledger.orchestrator import Orchestrator


class StubScheduler:
    def __init__(self) -> None:
        self.scheduled: list[tuple] = []
        self.started = False

    def schedule_processing(self, tenant_id, callback, schedule):
        self.scheduled.append((tenant_id, callback, schedule))
        return f"process::{tenant_id}"

    def start(self) -> None:
        self.started = True

    def shutdown(self) -> None:
        self.started = False


@pytest.fixture
def orchestrator(temp_config_repository):
    manager = SQLiteManager()
    scheduler = StubScheduler()
    orch = Orchestrator(
        config_repository=temp_config_repository,
        storage=manager,
        thread_pool=ThreadPoolManager(2),
        scheduler=scheduler,
        scrape=lambda url: {"name": url.rsplit("/", 1)[-1], "address": "Tokyo"},
    )
    orch.create_tenant("Acme", tenant_id="tenant-a")
    yield orch
    orch.close()
    manager.close_all()


def _write_json(path: Path, payload) -> Path:
    path.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
    return path


def test_import_then_reimport_updates_instead_of_inserting(orchestrator, tmp_path) -> None:
    path = _write_json(
        tmp_path / "stores.json",
        {"stores": [{"id": "s1", "name": "Ramen Ya", "address": "Osaka"}, {"name": "Cafe", "address": "Kyoto"}]},
    )
    first = orchestrator.import_file("tenant-a", path)
    assert (first.fetched, first.inserted, first.updated, first.error_count) == (2, 2, 0, 0)
    assert first.plan == {"insert": 2, "update_by_source": 0, "update_by_identity": 0}

    again = orchestrator.import_file("tenant-a", path)
    assert (again.inserted, again.updated) == (0, 2)
    assert again.plan["update_by_source"] == 2
    assert len(orchestrator.list_leads("tenant-a")) == 2


def test_same_entity_from_new_source_updates_by_identity(orchestrator, tmp_path) -> None:
    orchestrator.import_file("tenant-a", _write_json(tmp_path / "a.json", [{"name": "Cafe", "address": "Kyoto"}]))
    moved = _write_json(
        tmp_path / "b.json", [{"name": "CAFE ", "address": "kyoto", "url": "https://cafe.example", "phone": "075"}]
    )
    summary = orchestrator.import_file("tenant-a", moved)
    assert summary.plan["update_by_identity"] == 1
    (lead,) = orchestrator.list_leads("tenant-a")
    assert lead["source"] == "https://cafe.example"
    assert lead["data"]["phone"] == "075"


def test_import_csv_with_default_source(orchestrator, tmp_path) -> None:
    path = tmp_path / "leads.csv"
    path.write_text("name,address\nBar Luce,Nagoya\n", encoding="utf-8")
    summary = orchestrator.import_file("tenant-a", path, default_source="rocketnow")
    assert summary.inserted == 1
    (lead,) = orchestrator.list_leads("tenant-a")
    assert lead["source"] == "rocketnow://Bar-Luce-Nagoya"


def test_import_requires_known_tenant(orchestrator, tmp_path) -> None:
    path = _write_json(tmp_path / "a.json", [{"name": "X", "address": "Y"}])
    with pytest.raises(TenantContextError):
        orchestrator.import_file("nobody", path)
    with pytest.raises(TenantContextError):
        orchestrator.import_file(None, path)


def test_import_missing_file(orchestrator, tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        orchestrator.import_file("tenant-a", tmp_path / "absent.csv")


def test_tenants_do_not_see_each_other(orchestrator, tmp_path) -> None:
    orchestrator.create_tenant("Globex", tenant_id="tenant-b")
    path = _write_json(tmp_path / "a.json", [{"name": "Cafe", "address": "Kyoto"}])
    orchestrator.import_file("tenant-a", path)
    summary = orchestrator.import_file("tenant-b", path)
    assert summary.inserted == 1
    assert len(orchestrator.list_leads("tenant-a")) == 1
    assert len(orchestrator.list_leads("tenant-b")) == 1


def test_submit_validates_every_url_first(orchestrator) -> None:
    with pytest.raises(InvalidURLError):
        orchestrator.submit_jobs("tenant-a", ["https://ok.example", "nope"])
    assert orchestrator.list_jobs("tenant-a") == []


def test_process_pending_end_to_end(orchestrator) -> None:
    orchestrator.submit_jobs("tenant-a", ["https://shop.example/one", "https://shop.example/two"])
    summary = orchestrator.process_pending("tenant-a", inter_batch_delay_ms=0, progress_enabled=False)
    assert (summary.processed, summary.success) == (2, 2)
    assert orchestrator.job_counts("tenant-a")["completed"] == 2
    names = sorted(lead["data"]["name"] for lead in orchestrator.list_leads("tenant-a"))
    assert names == ["one", "two"]


def test_default_tenant_comes_from_config(orchestrator) -> None:
    orchestrator.global_config.default_tenant_id = "tenant-a"
    orchestrator.submit_jobs(None, ["https://shop.example/a"])
    assert len(orchestrator.list_jobs(None)) == 1


def test_cancel_retry_and_fail_stale_helpers(orchestrator) -> None:
    (job,) = orchestrator.submit_jobs("tenant-a", ["https://shop.example/a"])
    cancelled = orchestrator.cancel_job("tenant-a", job.id)
    assert cancelled.status is JobStatus.CANCELLED
    retried = orchestrator.retry_job("tenant-a", job.id)
    assert retried.status is JobStatus.PENDING
    assert orchestrator.fail_stale_jobs("tenant-a") == []


def test_register_schedule_uses_configured_schedule(orchestrator) -> None:
    job_id = orchestrator.register_schedule("tenant-a")
    assert job_id == "process::tenant-a"
    tenant_id, callback, schedule = orchestrator.scheduler.scheduled[0]
    assert tenant_id == "tenant-a"
    assert schedule == orchestrator.global_config.schedule
    assert orchestrator.scheduler.started
    with pytest.raises(TenantContextError):
        orchestrator.register_schedule("nobody")


def test_scheduled_run_logs_instead_of_raising(orchestrator) -> None:
    assert orchestrator.run_scheduled("nobody") is None
    orchestrator.submit_jobs("tenant-a", ["https://shop.example/a"])
    summary = orchestrator.run_scheduled("tenant-a")
    assert summary is not None and summary.success == 1
