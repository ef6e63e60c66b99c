"""Orchestrator wiring config, storage, the worker pool and the import pipeline."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Iterable

from .config import ConfigRepository, GlobalConfig
from .engine import (
    BatchWriter,
    HttpScraper,
    JobStatus,
    JobStore,
    LeadRepository,
    ReconciliationEngine,
    ScrapingJob,
    ThreadPoolManager,
    WorkerPool,
    WorkerSummary,
    map_record,
)
from .engine.jobs import validate_url
from .engine.leads import PAGE_SIZE, LeadPage, LeadSort, LeadStatistics, SortOrder
from .engine.worker import ScrapeFn
from .engine.writer import WriteError
from .errors import LeadLedgerError, TenantContextError
from .importer import read_records
from .infra import SQLiteManager, Store, Tenant, TenantRegistry, tenant_context
from .logging_conf import configure_logging, tenant_logger
from .ui import ProgressReporter


@dataclass
class ImportSummary:
    """Outcome of one file import."""

    path: str
    fetched: int = 0
    inserted: int = 0
    updated: int = 0
    plan: dict[str, int] = field(default_factory=dict)
    errors: list[WriteError] = field(default_factory=list)
    elapsed: float = 0.0

    @property
    def error_count(self) -> int:
        return len(self.errors)

    def as_dict(self) -> dict[str, Any]:
        return {
            "fetched": self.fetched,
            "inserted": self.inserted,
            "updated": self.updated,
            "errors": self.error_count,
            **self.plan,
            "elapsed": round(self.elapsed, 3),
        }


class Orchestrator:
    """Central coordinator for tenant-scoped pipeline runs."""

    def __init__(
        self,
        config_repository: ConfigRepository,
        storage: SQLiteManager,
        thread_pool: ThreadPoolManager | None = None,
        scheduler=None,
        scrape: ScrapeFn | None = None,
        store: Store | None = None,
    ) -> None:
        self.config_repository = config_repository
        self.global_config: GlobalConfig = config_repository.load_global_config()
        self.storage = storage
        self.store = store or Store.open(storage, config_repository.database_path())
        self.thread_pool = thread_pool or ThreadPoolManager()
        self.scheduler = scheduler
        self._scrape = scrape
        self._http_scraper: HttpScraper | None = None
        self.logger = configure_logging().bind(component="orchestrator")

    # ------------------------------------------------------------------
    # Tenants
    # ------------------------------------------------------------------
    @property
    def tenants(self) -> TenantRegistry:
        return TenantRegistry(self.store)

    def resolve_tenant(self, tenant_id: str | None) -> str:
        resolved = tenant_id or self.global_config.default_tenant_id
        if not resolved:
            raise TenantContextError("No tenant selected; pass --tenant or set default_tenant_id")
        return resolved

    def create_tenant(self, name: str, tenant_id: str | None = None, slug: str | None = None) -> Tenant:
        tenant = self.tenants.create(name, tenant_id=tenant_id, slug=slug)
        self.logger.info("tenant_created", tenant_id=tenant.id, slug=tenant.slug)
        return tenant

    def list_tenants(self) -> list[Tenant]:
        return self.tenants.list()

    # ------------------------------------------------------------------
    # Scraping jobs
    # ------------------------------------------------------------------
    @property
    def scrape(self) -> ScrapeFn:
        if self._scrape is not None:
            return self._scrape
        if self._http_scraper is None:
            self._http_scraper = HttpScraper(self.global_config.scraper)
        return self._http_scraper

    def _jobs(self, tenant: Tenant) -> JobStore:
        return JobStore(self.store, logger=tenant_logger(tenant.id))

    def submit_jobs(self, tenant_id: str | None, urls: Iterable[str]) -> list[ScrapingJob]:
        """Queue URLs as pending jobs; every URL is validated before any insert."""

        checked = [validate_url(url) for url in urls]
        with tenant_context(self.store, self.resolve_tenant(tenant_id)) as tenant:
            jobs = self._jobs(tenant)
            return [jobs.submit(tenant.id, url) for url in checked]

    def list_jobs(
        self, tenant_id: str | None, status: JobStatus | None = None, limit: int = 50
    ) -> list[ScrapingJob]:
        with tenant_context(self.store, self.resolve_tenant(tenant_id)) as tenant:
            return self._jobs(tenant).list_jobs(tenant.id, status=status, limit=limit)

    def job_counts(self, tenant_id: str | None) -> dict[str, int]:
        with tenant_context(self.store, self.resolve_tenant(tenant_id)) as tenant:
            return self._jobs(tenant).count_by_status(tenant.id)

    def cancel_job(self, tenant_id: str | None, job_id: str) -> ScrapingJob:
        with tenant_context(self.store, self.resolve_tenant(tenant_id)) as tenant:
            jobs = self._jobs(tenant)
            jobs.cancel(tenant.id, job_id)
            return jobs.get(tenant.id, job_id)

    def retry_job(self, tenant_id: str | None, job_id: str) -> ScrapingJob:
        with tenant_context(self.store, self.resolve_tenant(tenant_id)) as tenant:
            return self._jobs(tenant).retry(tenant.id, job_id)

    def fail_stale_jobs(self, tenant_id: str | None, older_than: timedelta | None = None) -> list[str]:
        window = older_than or timedelta(
            seconds=self.global_config.worker.stale_after_seconds or 3600
        )
        with tenant_context(self.store, self.resolve_tenant(tenant_id)) as tenant:
            return self._jobs(tenant).fail_stale(tenant.id, window)

    def process_pending(
        self,
        tenant_id: str | None,
        *,
        concurrency_limit: int | None = None,
        inter_batch_delay_ms: int | None = None,
        claim_batch_size: int | None = None,
        progress_enabled: bool | None = None,
    ) -> WorkerSummary:
        worker_cfg = self.global_config.worker
        progress_flag = (
            self.global_config.enable_progress_bar if progress_enabled is None else progress_enabled
        )
        with tenant_context(self.store, self.resolve_tenant(tenant_id)) as tenant:
            stale_after = (
                timedelta(seconds=worker_cfg.stale_after_seconds)
                if worker_cfg.stale_after_seconds
                else None
            )
            pool = WorkerPool(
                self.store,
                self.scrape,
                self.thread_pool,
                claim_batch_size=claim_batch_size or worker_cfg.claim_batch_size,
                stale_after=stale_after,
                progress_every=worker_cfg.progress_every,
                logger=tenant_logger(tenant.id),
            )
            return pool.process_pending(
                tenant.id,
                concurrency_limit=concurrency_limit or worker_cfg.concurrency_limit,
                inter_batch_delay_ms=(
                    worker_cfg.inter_batch_delay_ms if inter_batch_delay_ms is None else inter_batch_delay_ms
                ),
                progress=ProgressReporter(enabled=progress_flag, label=tenant.slug),
            )

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------
    def register_schedule(self, tenant_id: str | None) -> str:
        if self.scheduler is None:
            raise RuntimeError("Orchestrator was built without a scheduler")
        resolved = self.resolve_tenant(tenant_id)
        # Fail fast on unknown tenants instead of on the first tick
        with tenant_context(self.store, resolved):
            pass
        job_id = self.scheduler.schedule_processing(
            resolved, self.run_scheduled, self.global_config.schedule
        )
        self.scheduler.start()
        return job_id

    def run_scheduled(self, tenant_id: str) -> WorkerSummary | None:
        try:
            return self.process_pending(tenant_id, progress_enabled=False)
        except LeadLedgerError as exc:
            self.logger.error("scheduled_run_failed", tenant_id=tenant_id, error=str(exc))
            return None

    # ------------------------------------------------------------------
    # Leads
    # ------------------------------------------------------------------
    def import_file(
        self,
        tenant_id: str | None,
        path: Path,
        fmt: str | None = None,
        *,
        default_source: str | None = None,
        chunk_size: int | None = None,
    ) -> ImportSummary:
        """Map → reconcile → write one file of records for a tenant."""

        import_cfg = self.global_config.importer
        started = time.monotonic()
        with tenant_context(self.store, self.resolve_tenant(tenant_id)) as tenant:
            log = tenant_logger(tenant.id)
            raw = read_records(path, fmt)
            log.info("import_file_loaded", path=str(path), records=len(raw))

            mapped = [map_record(record, default_source or import_cfg.default_source) for record in raw]
            plan = ReconciliationEngine(self.store, logger=log).reconcile(tenant.id, mapped)

            writer = BatchWriter(self.store, logger=log)
            inserted = writer.write_batch(tenant.id, plan.to_insert, chunk_size or import_cfg.chunk_size)
            updated = writer.apply_updates(tenant.id, plan.updates)
            result = inserted.merge(updated)

            summary = ImportSummary(
                path=str(path),
                fetched=len(raw),
                inserted=result.inserted,
                updated=result.updated,
                plan=plan.counts(),
                errors=result.errors,
                elapsed=time.monotonic() - started,
            )
            log.info("import_finished", path=str(path), **summary.as_dict())
            return summary

    def list_leads(
        self, tenant_id: str | None, status: str | None = None, limit: int = 50
    ) -> list[dict[str, Any]]:
        with tenant_context(self.store, self.resolve_tenant(tenant_id)) as tenant:
            return LeadRepository(self.store).list(tenant.id, status=status, limit=limit)

    def search_leads(
        self,
        tenant_id: str | None,
        *,
        status: str | None = None,
        name: str | None = None,
        sort_by: LeadSort = LeadSort.UPDATED_AT,
        order: SortOrder = SortOrder.DESC,
        page: int = 1,
        page_size: int = PAGE_SIZE,
    ) -> LeadPage:
        with tenant_context(self.store, self.resolve_tenant(tenant_id)) as tenant:
            return LeadRepository(self.store).search(
                tenant.id,
                status=status,
                name=name,
                sort_by=sort_by,
                order=order,
                page=page,
                page_size=page_size,
            )

    def lead_statistics(self, tenant_id: str | None) -> LeadStatistics:
        with tenant_context(self.store, self.resolve_tenant(tenant_id)) as tenant:
            return LeadRepository(self.store).statistics(tenant.id)

    # ------------------------------------------------------------------
    def close(self) -> None:
        if self.scheduler is not None:
            self.scheduler.shutdown()
        self.thread_pool.shutdown()
        if self._http_scraper is not None:
            self._http_scraper.close()
            self._http_scraper = None


__all__ = ["ImportSummary", "Orchestrator"]
