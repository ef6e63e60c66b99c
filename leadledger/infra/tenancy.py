"""Tenant registry and the tenant scope every pipeline call runs inside."""

from __future__ import annotations

import re
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterator

import structlog

from ..errors import TenantContextError
from .storage import Store


def _slugify(name: str) -> str:
    return re.sub(r"-{2,}", "-", "".join(ch.lower() if ch.isalnum() else "-" for ch in name)).strip("-")


@dataclass(slots=True)
class Tenant:
    id: str
    name: str
    slug: str
    is_active: bool
    created_at: str


class TenantRegistry:
    """Create and look up tenants."""

    def __init__(self, store: Store) -> None:
        self.store = store

    def create(self, name: str, tenant_id: str | None = None, slug: str | None = None) -> Tenant:
        name = name.strip()
        if not name:
            raise TenantContextError("Tenant name cannot be empty")
        tenant = Tenant(
            id=tenant_id or str(uuid.uuid4()),
            name=name,
            slug=slug or _slugify(name) or "tenant",
            is_active=True,
            created_at=datetime.now(timezone.utc).isoformat(),
        )
        self.store.execute(
            "INSERT OR IGNORE INTO tenants(id, name, slug, is_active, created_at) VALUES (?, ?, ?, 1, ?)",
            (tenant.id, tenant.name, tenant.slug, tenant.created_at),
        )
        stored = self.get(tenant.id)
        if stored is None:
            raise TenantContextError(f"Tenant slug already taken: {tenant.slug}")
        return stored

    def get(self, tenant_id: str) -> Tenant | None:
        rows = self.store.fetch_all("SELECT * FROM tenants WHERE id = ?", (tenant_id,))
        if not rows:
            return None
        return self._to_tenant(rows[0])

    def list(self) -> list[Tenant]:
        rows = self.store.fetch_all("SELECT * FROM tenants ORDER BY created_at")
        return [self._to_tenant(row) for row in rows]

    def set_active(self, tenant_id: str, active: bool) -> bool:
        return self.store.execute(
            "UPDATE tenants SET is_active = ? WHERE id = ?", (1 if active else 0, tenant_id)
        ) == 1

    @staticmethod
    def _to_tenant(row: dict) -> Tenant:
        return Tenant(
            id=row["id"],
            name=row["name"],
            slug=row["slug"],
            is_active=bool(row["is_active"]),
            created_at=row["created_at"],
        )


@contextmanager
def tenant_context(store: Store, tenant_id: str | None) -> Iterator[Tenant]:
    """Run the enclosed block for one active tenant.

    The tenant id is bound into structlog's context variables for the
    duration of the block so every log event carries it.
    """

    if not tenant_id:
        raise TenantContextError("No tenant selected; pass --tenant or set default_tenant_id")
    tenant = TenantRegistry(store).get(tenant_id)
    if tenant is None or not tenant.is_active:
        raise TenantContextError(f"Invalid or inactive tenant: {tenant_id}")
    with structlog.contextvars.bound_contextvars(tenant_id=tenant.id):
        yield tenant


__all__ = ["Tenant", "TenantRegistry", "tenant_context"]
