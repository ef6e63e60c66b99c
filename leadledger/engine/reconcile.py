"""Classify incoming records against stored leads (insert / update)."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Sequence

import structlog

from ..infra.storage import Store
from .identity import MappedRecord, lead_identity_keys

# Keeps every IN (...) list well under SQLite's bound-parameter ceiling
CANDIDATE_QUERY_CHUNK = 400


@dataclass
class ReconciliationPlan:
    to_insert: list[MappedRecord] = field(default_factory=list)
    to_update_by_source: list[MappedRecord] = field(default_factory=list)
    to_update_by_identity: list[MappedRecord] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.to_insert) + len(self.to_update_by_source) + len(self.to_update_by_identity)

    @property
    def updates(self) -> list[MappedRecord]:
        return self.to_update_by_source + self.to_update_by_identity

    def counts(self) -> dict[str, int]:
        return {
            "insert": len(self.to_insert),
            "update_by_source": len(self.to_update_by_source),
            "update_by_identity": len(self.to_update_by_identity),
        }


def _chunks(values: Sequence[str], size: int) -> Iterable[list[str]]:
    for start in range(0, len(values), size):
        yield list(values[start : start + size])


class ReconciliationEngine:
    """Decide, per record, whether it is new or refers to a stored lead.

    Source match takes precedence over identity match. The engine never
    writes; :class:`~leadledger.engine.writer.BatchWriter` applies the plan.
    """

    def __init__(self, store: Store, logger: structlog.BoundLogger | None = None) -> None:
        self.store = store
        self.logger = logger or structlog.get_logger("leadledger.reconcile")

    def fetch_candidates(
        self, tenant_id: str, sources: Sequence[str], identity_keys: Sequence[str]
    ) -> list[dict]:
        """Batched read of leads matching any source or stored identity key."""

        if not sources and not identity_keys:
            return []
        seen: dict[str, dict] = {}
        rounds = max(
            (len(sources) + CANDIDATE_QUERY_CHUNK - 1) // CANDIDATE_QUERY_CHUNK,
            (len(identity_keys) + CANDIDATE_QUERY_CHUNK - 1) // CANDIDATE_QUERY_CHUNK,
        )
        source_chunks = list(_chunks(sources, CANDIDATE_QUERY_CHUNK))
        key_chunks = list(_chunks(identity_keys, CANDIDATE_QUERY_CHUNK))
        for index in range(rounds):
            rows = self.store.select_where(
                "leads",
                tenant_id,
                any_of={
                    "source": source_chunks[index] if index < len(source_chunks) else [],
                    "identity_key": key_chunks[index] if index < len(key_chunks) else [],
                },
            )
            for row in rows:
                seen[row["id"]] = row
        return list(seen.values())

    def reconcile(self, tenant_id: str, records: Sequence[MappedRecord]) -> ReconciliationPlan:
        plan = ReconciliationPlan()
        if not records:
            return plan

        sources = sorted({record.source for record in records})
        keys = sorted({record.identity_key for record in records if record.matchable})
        existing = self.fetch_candidates(tenant_id, sources, keys)

        existing_sources = {lead["source"] for lead in existing}
        existing_keys: set[str] = set()
        for lead in existing:
            existing_keys.update(lead_identity_keys(lead))

        # Entities already routed to insert in this batch
        batch_sources: set[str] = set()
        batch_keys: set[str] = set()

        for record in records:
            matchable = record.matchable
            if record.source in existing_sources or record.source in batch_sources:
                plan.to_update_by_source.append(record)
            elif matchable and (record.identity_key in existing_keys or record.identity_key in batch_keys):
                plan.to_update_by_identity.append(record)
            else:
                plan.to_insert.append(record)
                batch_sources.add(record.source)
                if matchable:
                    batch_keys.add(record.identity_key)

        self.logger.info(
            "reconciliation_planned",
            tenant_id=tenant_id,
            records=len(records),
            existing=len(existing),
            **plan.counts(),
        )
        return plan


__all__ = ["ReconciliationEngine", "ReconciliationPlan"]
