"""Chunked inserts with per-record fallback, and one-at-a-time updates."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

import structlog

from ..infra.storage import Store
from .identity import MappedRecord
from .leads import LeadRepository, utcnow


@dataclass(slots=True)
class WriteError:
    source: str
    message: str


@dataclass
class WriteResult:
    inserted: int = 0
    updated: int = 0
    errors: list[WriteError] = field(default_factory=list)

    @property
    def error_count(self) -> int:
        return len(self.errors)

    def merge(self, other: "WriteResult") -> "WriteResult":
        return WriteResult(
            inserted=self.inserted + other.inserted,
            updated=self.updated + other.updated,
            errors=self.errors + other.errors,
        )


class BatchWriter:
    """Persist reconciliation output.

    Inserts go out as one multi-row statement per chunk. When a chunk fails,
    each of its records is retried on its own so one bad record only costs
    itself.
    """

    def __init__(self, store: Store, logger: structlog.BoundLogger | None = None) -> None:
        self.store = store
        self.leads = LeadRepository(store)
        self.logger = logger or structlog.get_logger("leadledger.writer")

    def _row(self, tenant_id: str, record: MappedRecord) -> dict:
        return LeadRepository.new_row(
            tenant_id, record.source, record.data, record.stored_identity_key, notes=record.notes
        )

    @staticmethod
    def _patch(record: MappedRecord) -> dict:
        patch = {
            "data": record.data,
            "identity_key": record.stored_identity_key,
            "updated_at": utcnow(),
        }
        if record.notes is not None:
            patch["notes"] = record.notes
        return patch

    def write_batch(
        self, tenant_id: str, records: Sequence[MappedRecord], chunk_size: int = 50
    ) -> WriteResult:
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        result = WriteResult()
        for start in range(0, len(records), chunk_size):
            chunk = records[start : start + chunk_size]
            try:
                self.store.insert_many("leads", [self._row(tenant_id, record) for record in chunk])
                result.inserted += len(chunk)
            except Exception as exc:  # noqa: BLE001
                self.logger.warning(
                    "batch_insert_failed",
                    tenant_id=tenant_id,
                    offset=start,
                    size=len(chunk),
                    error=str(exc),
                )
                self._insert_individually(tenant_id, chunk, result)
        return result

    def _insert_individually(
        self, tenant_id: str, chunk: Sequence[MappedRecord], result: WriteResult
    ) -> None:
        for record in chunk:
            try:
                self.store.insert_one("leads", self._row(tenant_id, record))
                result.inserted += 1
            except Exception as exc:  # noqa: BLE001
                self.logger.error(
                    "record_insert_failed", tenant_id=tenant_id, source=record.source, error=str(exc)
                )
                result.errors.append(WriteError(source=record.source, message=str(exc)))

    def apply_updates(self, tenant_id: str, records: Sequence[MappedRecord]) -> WriteResult:
        """Update matched leads one record at a time.

        Lookup order: same source (overwrite data), same identity key
        (overwrite data and source), otherwise insert as new.
        Notes are replaced only when the record carries some.
        """

        result = WriteResult()
        for record in records:
            try:
                patch = self._patch(record)
                existing = self.leads.find_by_source(tenant_id, record.source)
                if existing is None:
                    existing = self.leads.find_by_identity(tenant_id, record.identity)
                    patch["source"] = record.source
                if existing is None:
                    self.store.insert_one("leads", self._row(tenant_id, record))
                    result.inserted += 1
                    continue
                self.store.update_one("leads", tenant_id, existing["id"], patch)
                result.updated += 1
            except Exception as exc:  # noqa: BLE001
                self.logger.error(
                    "record_update_failed", tenant_id=tenant_id, source=record.source, error=str(exc)
                )
                result.errors.append(WriteError(source=record.source, message=str(exc)))
        return result


__all__ = ["BatchWriter", "WriteError", "WriteResult"]
