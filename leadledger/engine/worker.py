"""Bounded worker pool draining pending scraping jobs chunk by chunk."""

from __future__ import annotations

import time
from concurrent.futures import wait
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Mapping, Protocol

import structlog

from ..errors import InvalidTransitionError
from ..infra.storage import Store
from .identity import resolve_identity
from .jobs import DEFAULT_CLAIM_LIMIT, JobStore, ScrapingJob
from .leads import LeadRepository
from .thread_pool import ThreadPoolManager

ScrapeFn = Callable[[str], Mapping[str, Any]]


class ProgressSink(Protocol):
    def start(self, total: int) -> None: ...

    def advance(
        self,
        success: bool = False,
        failed: bool = False,
        skipped: bool = False,
        current_url: str | None = None,
    ) -> None: ...

    def close(self) -> None: ...


@dataclass(slots=True)
class JobOutcome:
    job_id: str
    url: str
    status: str
    reason: str | None = None


@dataclass
class WorkerSummary:
    processed: int = 0
    success: int = 0
    failed: int = 0
    skipped: int = 0
    chunks: int = 0
    stale_failed: int = 0
    elapsed: float = 0.0
    outcomes: list[JobOutcome] = field(default_factory=list, repr=False)

    def as_dict(self) -> dict[str, int | float]:
        return {
            "processed": self.processed,
            "success": self.success,
            "failed": self.failed,
            "skipped": self.skipped,
            "chunks": self.chunks,
            "stale_failed": self.stale_failed,
            "elapsed": round(self.elapsed, 3),
        }


class WorkerPool:
    """Run scrape + store for pending jobs with a concurrency ceiling.

    Jobs are split into chunks of ``concurrency_limit``. A chunk runs in
    parallel on the tenant's executor and is joined before the next one
    starts; counters are only touched after the join. Every failure is
    caught at the job boundary and recorded on the job itself.
    """

    def __init__(
        self,
        store: Store,
        scrape: ScrapeFn,
        thread_pool: ThreadPoolManager | None = None,
        *,
        claim_batch_size: int = DEFAULT_CLAIM_LIMIT,
        stale_after: timedelta | None = None,
        progress_every: int = 10,
        sleep: Callable[[float], None] = time.sleep,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.store = store
        self.scrape = scrape
        self.thread_pool = thread_pool or ThreadPoolManager()
        self.jobs = JobStore(store)
        self.leads = LeadRepository(store)
        self.claim_batch_size = claim_batch_size
        self.stale_after = stale_after
        self.progress_every = max(1, progress_every)
        self._sleep = sleep
        self.logger = logger or structlog.get_logger("leadledger.worker")

    def process_pending(
        self,
        tenant_id: str,
        concurrency_limit: int = 5,
        inter_batch_delay_ms: int = 500,
        progress: ProgressSink | None = None,
    ) -> WorkerSummary:
        if concurrency_limit < 1:
            raise ValueError("concurrency_limit must be >= 1")
        started = time.monotonic()
        summary = WorkerSummary()
        if self.stale_after is not None:
            summary.stale_failed = len(self.jobs.fail_stale(tenant_id, self.stale_after))

        pending = self.jobs.claim_pending(tenant_id, limit=self.claim_batch_size)
        self.logger.info("pending_jobs_loaded", tenant_id=tenant_id, count=len(pending))
        if not pending:
            summary.elapsed = time.monotonic() - started
            return summary

        executor = self.thread_pool.get(tenant_id, max_workers=concurrency_limit)
        last_reported = 0
        if progress is not None:
            progress.start(len(pending))
        try:
            for offset in range(0, len(pending), concurrency_limit):
                chunk = pending[offset : offset + concurrency_limit]
                futures = [executor.submit(self.process_job, tenant_id, job) for job in chunk]
                wait(futures)
                outcomes = [future.result() for future in futures]

                summary.chunks += 1
                for outcome in outcomes:
                    summary.processed += 1
                    if outcome.status == "success":
                        summary.success += 1
                    elif outcome.status == "skipped":
                        summary.skipped += 1
                    else:
                        summary.failed += 1
                    if progress is not None:
                        progress.advance(
                            success=outcome.status == "success",
                            failed=outcome.status == "failed",
                            skipped=outcome.status == "skipped",
                            current_url=outcome.url,
                        )
                summary.outcomes.extend(outcomes)

                if summary.processed - last_reported >= self.progress_every or summary.processed == len(pending):
                    last_reported = summary.processed
                    self.logger.info(
                        "worker_progress",
                        tenant_id=tenant_id,
                        processed=summary.processed,
                        total=len(pending),
                        success=summary.success,
                        failed=summary.failed,
                        skipped=summary.skipped,
                    )
                if offset + concurrency_limit < len(pending) and inter_batch_delay_ms > 0:
                    self._sleep(inter_batch_delay_ms / 1000.0)
        finally:
            if progress is not None:
                progress.close()

        summary.elapsed = time.monotonic() - started
        self.logger.info("worker_run_finished", tenant_id=tenant_id, **summary.as_dict())
        return summary

    def process_job(self, tenant_id: str, job: ScrapingJob) -> JobOutcome:
        try:
            self.jobs.mark_running(tenant_id, job.id)
        except InvalidTransitionError as exc:
            # another worker claimed it, or it was cancelled after the claim
            self.logger.info(
                "job_not_claimable", tenant_id=tenant_id, job_id=job.id, status=exc.current
            )
            return JobOutcome(job.id, job.url, "skipped", reason=str(exc))
        except Exception as exc:  # noqa: BLE001
            self.logger.error("job_start_failed", tenant_id=tenant_id, job_id=job.id, error=str(exc))
            return JobOutcome(job.id, job.url, "failed", reason=str(exc))

        try:
            self.logger.debug("job_scraping", tenant_id=tenant_id, job_id=job.id, url=job.url)
            scraped = self.scrape(job.url)
            if not isinstance(scraped, Mapping):
                raise TypeError(f"scraper returned {type(scraped).__name__}, expected a mapping")
            record = dict(scraped)

            identity = resolve_identity(record)
            lead, created = self.leads.create_unless_source_exists(
                LeadRepository.new_row(
                    tenant_id,
                    job.url,
                    record,
                    identity.key if identity.matchable else None,
                    scraping_job_id=job.id,
                )
            )
            if not created:
                self.jobs.mark_completed(tenant_id, job.id, lead["data"])
                self.logger.info(
                    "job_skipped_existing_lead", tenant_id=tenant_id, job_id=job.id, lead_id=lead["id"]
                )
                return JobOutcome(job.id, job.url, "skipped", reason="duplicate")

            self.jobs.mark_completed(tenant_id, job.id, record)
            self.logger.info(
                "job_completed", tenant_id=tenant_id, job_id=job.id, name=record.get("name") or job.url
            )
            return JobOutcome(job.id, job.url, "success")
        except Exception as exc:  # noqa: BLE001
            message = str(exc) or type(exc).__name__
            self.logger.error("job_failed", tenant_id=tenant_id, job_id=job.id, url=job.url, error=message)
            try:
                self.jobs.mark_failed(tenant_id, job.id, message)
            except Exception as mark_exc:  # noqa: BLE001
                self.logger.error(
                    "job_fail_not_recorded", tenant_id=tenant_id, job_id=job.id, error=str(mark_exc)
                )
            return JobOutcome(job.id, job.url, "failed", reason=message)


__all__ = ["JobOutcome", "ProgressSink", "ScrapeFn", "WorkerPool", "WorkerSummary"]
