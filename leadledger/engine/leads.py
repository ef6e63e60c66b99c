"""Lead rows: construction, the lookups the writers need and tenant queries."""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

from ..infra.storage import Store
from .identity import Identity

LEAD_STATUS_NEW = "new"
PAGE_SIZE = 50


class LeadSort(str, Enum):
    UPDATED_AT = "updated_at"
    CREATED_AT = "created_at"
    STATUS = "status"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass
class LeadPage:
    leads: list[dict[str, Any]] = field(default_factory=list)
    total_count: int = 0
    page: int = 1
    page_size: int = PAGE_SIZE

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_count / self.page_size)


@dataclass
class LeadStatistics:
    """Data completeness for one tenant; rates are percentages with two decimals."""

    total: int = 0
    phone_rate: float = 0.0
    website_rate: float = 0.0
    city_count: int = 0
    complete: int = 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "phone_rate": self.phone_rate,
            "website_rate": self.website_rate,
            "city_count": self.city_count,
            "complete": self.complete,
        }


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _present(field_name: str) -> str:
    return f"coalesce(json_extract(data, '$.{field_name}'), '') != ''"


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _rate(part: int, total: int) -> float:
    return round(part / total * 100, 2) if total else 0.0


class LeadRepository:
    """Thin lead-specific layer over :class:`Store`."""

    table = "leads"

    def __init__(self, store: Store) -> None:
        self.store = store

    @staticmethod
    def new_row(
        tenant_id: str,
        source: str,
        data: Mapping[str, Any],
        identity_key: str | None,
        *,
        notes: str | None = None,
        scraping_job_id: str | None = None,
        status: str = LEAD_STATUS_NEW,
    ) -> dict[str, Any]:
        now = utcnow()
        return {
            "id": str(uuid.uuid4()),
            "tenant_id": tenant_id,
            "scraping_job_id": scraping_job_id,
            "source": source,
            "identity_key": identity_key,
            "data": dict(data),
            "status": status,
            "notes": notes,
            "created_at": now,
            "updated_at": now,
        }

    def create_unless_source_exists(self, row: Mapping[str, Any]) -> tuple[dict[str, Any], bool]:
        """Insert ``row`` unless its tenant already has a lead with the same source."""

        return self.store.insert_unless_exists(self.table, row, ("source",))

    def find_by_source(self, tenant_id: str, source: str) -> dict[str, Any] | None:
        rows = self.store.select_where(
            self.table, tenant_id, {"source": source}, limit=1, order_by=("created_at", "rowid")
        )
        return rows[0] if rows else None

    def find_by_identity(self, tenant_id: str, identity: Identity) -> dict[str, Any] | None:
        """Find a lead by stored identity key, then by its name/address payload."""

        if not identity.matchable:
            return None
        rows = self.store.select_where(
            self.table,
            tenant_id,
            {"identity_key": identity.key},
            limit=1,
            order_by=("created_at", "rowid"),
        )
        if rows:
            return rows[0]
        if not identity.by_name_address:
            return None
        matches = self.store.fetch_all(
            "SELECT * FROM leads WHERE tenant_id = ? "
            "AND lower(trim(json_extract(data, '$.name'))) = ? "
            "AND lower(trim(json_extract(data, '$.address'))) = ? "
            "ORDER BY created_at, rowid LIMIT 1",
            (tenant_id, identity.name, identity.address),
        )
        return self.store.decode_row(self.table, matches[0]) if matches else None

    def list(
        self, tenant_id: str, status: str | None = None, limit: int = 50
    ) -> list[dict[str, Any]]:
        where = {"status": status} if status else None
        return self.store.select_where(
            self.table, tenant_id, where, limit=limit, order_by=("updated_at DESC",)
        )

    def search(
        self,
        tenant_id: str,
        *,
        status: str | None = None,
        name: str | None = None,
        sort_by: LeadSort = LeadSort.UPDATED_AT,
        order: SortOrder = SortOrder.DESC,
        page: int = 1,
        page_size: int = PAGE_SIZE,
    ) -> LeadPage:
        """One page of leads plus the total matching count.

        ``name`` is a case-insensitive substring match on ``data.name``.
        """

        if page < 1 or page_size < 1:
            raise ValueError("page and page_size must be >= 1")
        sort_by, order = LeadSort(sort_by), SortOrder(order)
        clauses = ["tenant_id = ?"]
        params: list[Any] = [tenant_id]
        if status:
            clauses.append("status = ?")
            params.append(status)
        if name:
            clauses.append("lower(json_extract(data, '$.name')) LIKE ? ESCAPE '\\'")
            params.append(f"%{_escape_like(name.lower())}%")
        where = " AND ".join(clauses)

        total = self.store.fetch_all(f"SELECT count(*) AS total FROM leads WHERE {where}", params)
        rows = self.store.fetch_all(
            f"SELECT * FROM leads WHERE {where} "
            f"ORDER BY {sort_by.value} {order.value.upper()}, rowid LIMIT ? OFFSET ?",
            [*params, page_size, (page - 1) * page_size],
        )
        return LeadPage(
            leads=[self.store.decode_row(self.table, row) for row in rows],
            total_count=int(total[0]["total"]),
            page=page,
            page_size=page_size,
        )

    def statistics(self, tenant_id: str) -> LeadStatistics:
        rows = self.store.fetch_all(
            "SELECT count(*) AS total, "
            f"sum({_present('phone')}) AS phone, "
            f"sum({_present('url')} OR {_present('website')}) AS website, "
            "count(DISTINCT nullif(json_extract(data, '$.city'), '')) AS cities, "
            f"sum({_present('phone')} AND {_present('business_hours')} AND {_present('address')}) "
            "AS complete "
            "FROM leads WHERE tenant_id = ?",
            (tenant_id,),
        )
        row = rows[0]
        total = int(row["total"] or 0)
        return LeadStatistics(
            total=total,
            phone_rate=_rate(int(row["phone"] or 0), total),
            website_rate=_rate(int(row["website"] or 0), total),
            city_count=int(row["cities"] or 0),
            complete=int(row["complete"] or 0),
        )

    def count(self, tenant_id: str) -> int:
        rows = self.store.fetch_all("SELECT count(*) AS total FROM leads WHERE tenant_id = ?", (tenant_id,))
        return int(rows[0]["total"]) if rows else 0


__all__ = [
    "LEAD_STATUS_NEW",
    "LeadPage",
    "LeadRepository",
    "LeadSort",
    "LeadStatistics",
    "SortOrder",
    "utcnow",
]
