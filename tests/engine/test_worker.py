from __future__ import annotations

import threading
import time
from datetime import timedelta

import pytest

from leadledger.engine.jobs import JobStatus, JobStore
from leadledger.engine.leads import LeadRepository
from leadledger.engine.thread_pool import ThreadPoolManager
from leadledger.engine.worker import WorkerPool


class FakeScraper:
    """Return a record per URL; URLs on ``bad.example`` raise."""

    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay
        self.active = 0
        self.peak = 0
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def __call__(self, url: str) -> dict:
        with self._lock:
            self.calls.append(url)
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            if "bad.example" in url:
                raise ConnectionError(f"cannot reach {url}")
            return {"name": url.rsplit("/", 1)[-1], "address": "Tokyo"}
        finally:
            with self._lock:
                self.active -= 1


class RecordingProgress:
    def __init__(self) -> None:
        self.total = None
        self.advanced: list[dict] = []
        self.closed = False

    def start(self, total: int) -> None:
        self.total = total

    def advance(self, **kwargs) -> None:
        self.advanced.append(kwargs)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def thread_pool():
    manager = ThreadPoolManager(default_workers=2)
    yield manager
    manager.shutdown()


def _submit(store, tenant_id, urls):
    jobs = JobStore(store)
    return [jobs.submit(tenant_id, url) for url in urls]


def test_jobs_run_in_chunks_with_delay_between(store, tenant, thread_pool) -> None:
    _submit(store, tenant.id, [f"https://shop.example/{index}" for index in range(12)])
    sleeps: list[float] = []
    scraper = FakeScraper(delay=0.02)
    pool = WorkerPool(store, scraper, thread_pool, sleep=sleeps.append)

    summary = pool.process_pending(tenant.id, concurrency_limit=5, inter_batch_delay_ms=500)

    assert summary.chunks == 3
    assert sleeps == [0.5, 0.5]
    assert summary.processed == 12
    assert summary.success == 12
    assert scraper.peak <= 5
    counts = JobStore(store).count_by_status(tenant.id)
    assert counts["completed"] == 12
    assert counts["pending"] == counts["running"] == 0


def test_no_pending_jobs_is_a_quiet_run(store, tenant, thread_pool) -> None:
    sleeps: list[float] = []
    summary = WorkerPool(store, FakeScraper(), thread_pool, sleep=sleeps.append).process_pending(tenant.id)
    assert summary.processed == 0
    assert summary.chunks == 0
    assert sleeps == []


def test_scrape_failure_marks_only_that_job_failed(store, tenant, thread_pool) -> None:
    good, bad = _submit(store, tenant.id, ["https://shop.example/good", "https://bad.example/x"])
    summary = WorkerPool(store, FakeScraper(), thread_pool, sleep=lambda _: None).process_pending(
        tenant.id, concurrency_limit=2
    )
    assert (summary.success, summary.failed) == (1, 1)

    jobs = JobStore(store)
    failed = jobs.get(tenant.id, bad.id)
    assert failed.status is JobStatus.FAILED
    assert "cannot reach" in failed.error
    assert failed.completed_at is not None
    assert jobs.get(tenant.id, good.id).status is JobStatus.COMPLETED

    leads = LeadRepository(store)
    assert leads.find_by_source(tenant.id, "https://bad.example/x") is None
    lead = leads.find_by_source(tenant.id, "https://shop.example/good")
    assert lead["scraping_job_id"] == good.id
    assert lead["identity_key"] == "name_address:good|tokyo"


def test_existing_lead_skips_insert_and_completes_job(store, tenant, thread_pool) -> None:
    url = "https://shop.example/known"
    store.insert_one("leads", LeadRepository.new_row(tenant.id, url, {"name": "Known"}, None))
    (job,) = _submit(store, tenant.id, [url])

    summary = WorkerPool(store, FakeScraper(), thread_pool, sleep=lambda _: None).process_pending(tenant.id)

    assert summary.skipped == 1
    done = JobStore(store).get(tenant.id, job.id)
    assert done.status is JobStatus.COMPLETED
    assert done.result == {"name": "Known"}
    assert LeadRepository(store).count(tenant.id) == 1


def test_non_mapping_result_fails_job(store, tenant, thread_pool) -> None:
    (job,) = _submit(store, tenant.id, ["https://shop.example/list"])
    pool = WorkerPool(store, lambda url: ["not", "a", "record"], thread_pool, sleep=lambda _: None)
    summary = pool.process_pending(tenant.id)
    assert summary.failed == 1
    assert JobStore(store).get(tenant.id, job.id).status is JobStatus.FAILED


def test_lost_claim_is_skipped(store, tenant, thread_pool) -> None:
    (job,) = _submit(store, tenant.id, ["https://shop.example/a"])
    claimed = JobStore(store).claim_pending(tenant.id)[0]
    JobStore(store).mark_running(tenant.id, job.id)

    scraper = FakeScraper()
    outcome = WorkerPool(store, scraper, thread_pool).process_job(tenant.id, claimed)
    assert outcome.status == "skipped"
    assert scraper.calls == []


def test_claim_batch_size_limits_one_run(store, tenant, thread_pool) -> None:
    _submit(store, tenant.id, [f"https://shop.example/{index}" for index in range(4)])
    pool = WorkerPool(store, FakeScraper(), thread_pool, claim_batch_size=3, sleep=lambda _: None)
    assert pool.process_pending(tenant.id).processed == 3
    assert JobStore(store).count_by_status(tenant.id)["pending"] == 1


def test_stale_running_jobs_are_failed_before_claiming(store, tenant, thread_pool) -> None:
    (stuck,) = _submit(store, tenant.id, ["https://shop.example/stuck"])
    jobs = JobStore(store)
    jobs.mark_running(tenant.id, stuck.id)
    store.update_one("scraping_jobs", tenant.id, stuck.id, {"started_at": "2000-01-01T00:00:00+00:00"})

    pool = WorkerPool(
        store, FakeScraper(), thread_pool, stale_after=timedelta(hours=1), sleep=lambda _: None
    )
    summary = pool.process_pending(tenant.id)
    assert summary.stale_failed == 1
    assert jobs.get(tenant.id, stuck.id).status is JobStatus.FAILED


def test_progress_sink_sees_every_job(store, tenant, thread_pool) -> None:
    _submit(store, tenant.id, ["https://shop.example/1", "https://bad.example/2"])
    progress = RecordingProgress()
    WorkerPool(store, FakeScraper(), thread_pool, sleep=lambda _: None).process_pending(
        tenant.id, concurrency_limit=1, progress=progress
    )
    assert progress.total == 2
    assert len(progress.advanced) == 2
    assert sum(1 for entry in progress.advanced if entry["failed"]) == 1
    assert progress.closed


def test_concurrency_limit_must_be_positive(store, tenant, thread_pool) -> None:
    with pytest.raises(ValueError):
        WorkerPool(store, FakeScraper(), thread_pool).process_pending(tenant.id, concurrency_limit=0)


def test_duplicate_urls_in_one_chunk_insert_one_lead(store, tenant, thread_pool) -> None:
    url = "https://shop.example/a"
    _submit(store, tenant.id, [url, url])
    barrier = threading.Barrier(2, timeout=5)

    def scrape_together(target: str) -> dict:
        # both jobs are past the scrape before either writes
        barrier.wait()
        return {"name": "a", "address": "Tokyo"}

    summary = WorkerPool(store, scrape_together, thread_pool, sleep=lambda _: None).process_pending(
        tenant.id, concurrency_limit=5
    )

    assert (summary.success, summary.skipped, summary.failed) == (1, 1, 0)
    assert LeadRepository(store).count(tenant.id) == 1
    assert JobStore(store).count_by_status(tenant.id)["completed"] == 2


def test_job_cancelled_after_claim_is_skipped(store, tenant, thread_pool) -> None:
    (job,) = _submit(store, tenant.id, ["https://shop.example/a"])
    jobs = JobStore(store)
    claimed = jobs.claim_pending(tenant.id)[0]
    jobs.cancel(tenant.id, job.id)

    scraper = FakeScraper()
    outcome = WorkerPool(store, scraper, thread_pool).process_job(tenant.id, claimed)
    assert outcome.status == "skipped"
    assert scraper.calls == []
    assert jobs.get(tenant.id, job.id).status is JobStatus.CANCELLED
