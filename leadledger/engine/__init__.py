"""Engine components: identity → reconcile → write, and the job pipeline."""

from .identity import (
    Identity,
    MappedRecord,
    compute_identity_key,
    compute_source_url,
    map_record,
    resolve_identity,
)
from .jobs import JobStatus, JobStore, ScrapingJob
from .leads import LeadPage, LeadRepository, LeadSort, LeadStatistics, SortOrder
from .reconcile import ReconciliationEngine, ReconciliationPlan
from .scraper import HttpScraper
from .thread_pool import ThreadPoolManager
from .worker import WorkerPool, WorkerSummary
from .writer import BatchWriter, WriteResult

__all__ = [
    "BatchWriter",
    "HttpScraper",
    "Identity",
    "JobStatus",
    "JobStore",
    "LeadPage",
    "LeadRepository",
    "LeadSort",
    "LeadStatistics",
    "MappedRecord",
    "ReconciliationEngine",
    "ReconciliationPlan",
    "ScrapingJob",
    "SortOrder",
    "ThreadPoolManager",
    "WorkerPool",
    "WorkerSummary",
    "WriteResult",
    "compute_identity_key",
    "compute_source_url",
    "map_record",
    "resolve_identity",
]
