"""Scraping job persistence and its state machine."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any
from urllib.parse import urlparse

import structlog

from ..errors import InvalidTransitionError, InvalidURLError, JobClaimError, JobNotFoundError
from ..infra.storage import Store
from .leads import utcnow

DEFAULT_CLAIM_LIMIT = 200


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})

TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING, JobStatus.CANCELLED}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


@dataclass(slots=True)
class ScrapingJob:
    id: str
    tenant_id: str
    url: str
    status: JobStatus
    created_at: str
    started_at: str | None = None
    completed_at: str | None = None
    result: Any = None
    error: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "ScrapingJob":
        return cls(
            id=row["id"],
            tenant_id=row["tenant_id"],
            url=row["url"],
            status=JobStatus(row["status"]),
            created_at=row["created_at"],
            started_at=row.get("started_at"),
            completed_at=row.get("completed_at"),
            result=row.get("result"),
            error=row.get("error"),
        )


def validate_url(url: str) -> str:
    text = (url or "").strip()
    if not text:
        raise InvalidURLError("URL is required")
    parsed = urlparse(text)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidURLError(f"Invalid URL format: {url}")
    return text


class JobStore:
    """Own every write to ``scraping_jobs``.

    Transitions are conditional updates on the expected current status, so
    two workers can never both move the same job out of ``pending``.
    """

    table = "scraping_jobs"

    def __init__(self, store: Store, logger: structlog.BoundLogger | None = None) -> None:
        self.store = store
        self.logger = logger or structlog.get_logger("leadledger.jobs")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get(self, tenant_id: str, job_id: str) -> ScrapingJob:
        rows = self.store.select_where(self.table, tenant_id, {"id": job_id}, limit=1)
        if not rows:
            raise JobNotFoundError(f"Scraping job not found: {job_id}")
        return ScrapingJob.from_row(rows[0])

    def list_jobs(
        self, tenant_id: str, status: JobStatus | None = None, limit: int = 50
    ) -> list[ScrapingJob]:
        where = {"status": status.value} if status else None
        rows = self.store.select_where(
            self.table, tenant_id, where, limit=limit, order_by=("created_at DESC", "rowid DESC")
        )
        return [ScrapingJob.from_row(row) for row in rows]

    def claim_pending(self, tenant_id: str, limit: int = DEFAULT_CLAIM_LIMIT) -> list[ScrapingJob]:
        """Oldest pending jobs first, at most ``limit`` of them."""

        rows = self.store.select_where(
            self.table,
            tenant_id,
            {"status": JobStatus.PENDING.value},
            limit=limit,
            order_by=("created_at", "rowid"),
        )
        return [ScrapingJob.from_row(row) for row in rows]

    def count_by_status(self, tenant_id: str) -> dict[str, int]:
        rows = self.store.fetch_all(
            "SELECT status, count(*) AS total FROM scraping_jobs WHERE tenant_id = ? GROUP BY status",
            (tenant_id,),
        )
        counts = {status.value: 0 for status in JobStatus}
        counts.update({row["status"]: int(row["total"]) for row in rows})
        return counts

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------
    def submit(self, tenant_id: str, url: str) -> ScrapingJob:
        row = {
            "id": str(uuid.uuid4()),
            "tenant_id": tenant_id,
            "url": validate_url(url),
            "status": JobStatus.PENDING.value,
            "created_at": utcnow(),
        }
        self.store.insert_one(self.table, row)
        self.logger.info("job_submitted", tenant_id=tenant_id, job_id=row["id"], url=row["url"])
        return ScrapingJob.from_row(row)

    def retry(self, tenant_id: str, job_id: str) -> ScrapingJob:
        """Re-submit a failed or cancelled job's URL as a fresh pending job."""

        job = self.get(tenant_id, job_id)
        if job.status not in (JobStatus.FAILED, JobStatus.CANCELLED):
            raise InvalidTransitionError(job.id, job.status.value, "retry")
        return self.submit(tenant_id, job.url)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    def _transition(
        self, tenant_id: str, job_id: str, source: JobStatus, target: JobStatus, patch: dict[str, Any]
    ) -> None:
        if target not in TRANSITIONS[source]:
            raise InvalidTransitionError(job_id, source.value, target.value)
        changed = self.store.update_one(
            self.table,
            tenant_id,
            job_id,
            {"status": target.value, **patch},
            expected={"status": source.value},
        )
        if changed:
            return
        current = self.get(tenant_id, job_id).status
        if current == target:
            raise JobClaimError(job_id, current.value, target.value)
        raise InvalidTransitionError(job_id, current.value, target.value)

    def mark_running(self, tenant_id: str, job_id: str) -> None:
        self._transition(
            tenant_id, job_id, JobStatus.PENDING, JobStatus.RUNNING, {"started_at": utcnow()}
        )

    def mark_completed(self, tenant_id: str, job_id: str, result: Any) -> None:
        self._transition(
            tenant_id,
            job_id,
            JobStatus.RUNNING,
            JobStatus.COMPLETED,
            {"completed_at": utcnow(), "result": result},
        )

    def mark_failed(self, tenant_id: str, job_id: str, error: str) -> None:
        self._transition(
            tenant_id,
            job_id,
            JobStatus.RUNNING,
            JobStatus.FAILED,
            {"completed_at": utcnow(), "error": error},
        )

    def cancel(self, tenant_id: str, job_id: str) -> None:
        job = self.get(tenant_id, job_id)
        if job.status is not JobStatus.PENDING:
            raise InvalidTransitionError(job.id, job.status.value, JobStatus.CANCELLED.value)
        self._transition(
            tenant_id, job_id, JobStatus.PENDING, JobStatus.CANCELLED, {"completed_at": utcnow()}
        )
        self.logger.info("job_cancelled", tenant_id=tenant_id, job_id=job_id)

    def fail_stale(
        self, tenant_id: str, older_than: timedelta, now: datetime | None = None
    ) -> list[str]:
        """Fail jobs stuck in ``running`` since before ``now - older_than``."""

        cutoff = (now or datetime.now(timezone.utc)) - older_than
        failed: list[str] = []
        running = self.store.select_where(
            self.table, tenant_id, {"status": JobStatus.RUNNING.value}, order_by=("started_at",)
        )
        for row in running:
            started = row.get("started_at")
            if started and datetime.fromisoformat(started) >= cutoff:
                continue
            try:
                self.mark_failed(
                    tenant_id,
                    row["id"],
                    f"stale: running since {started or 'unknown'}, exceeded {int(older_than.total_seconds())}s",
                )
            except InvalidTransitionError:
                continue
            failed.append(row["id"])
        if failed:
            self.logger.warning("stale_jobs_failed", tenant_id=tenant_id, count=len(failed))
        return failed


__all__ = [
    "DEFAULT_CLAIM_LIMIT",
    "JobStatus",
    "JobStore",
    "ScrapingJob",
    "TERMINAL_STATES",
    "TRANSITIONS",
    "validate_url",
]
