"""Exception hierarchy shared by the pipeline components."""

from __future__ import annotations


class LeadLedgerError(Exception):
    """Base class for errors raised by Lead-Ledger."""


class StoreError(LeadLedgerError):
    """Raised when a store operation is malformed (unknown table or column)."""


class TenantContextError(LeadLedgerError):
    """Raised when a tenant scope cannot be established."""


class InvalidURLError(LeadLedgerError, ValueError):
    """Raised when a scraping job is submitted with an unusable URL."""


class JobNotFoundError(LeadLedgerError, LookupError):
    """Raised when a job id does not exist for the tenant."""


class InvalidTransitionError(LeadLedgerError):
    """Raised when a job state change is not allowed by the state machine."""

    def __init__(self, job_id: str, current: str, target: str) -> None:
        super().__init__(f"job {job_id}: cannot move from {current} to {target}")
        self.job_id = job_id
        self.current = current
        self.target = target


class JobClaimError(InvalidTransitionError):
    """Raised when another worker changed the job status first."""


class ImportFormatError(LeadLedgerError, ValueError):
    """Raised when an import file cannot be parsed into records."""


__all__ = [
    "ImportFormatError",
    "InvalidTransitionError",
    "InvalidURLError",
    "JobClaimError",
    "JobNotFoundError",
    "LeadLedgerError",
    "StoreError",
    "TenantContextError",
]
