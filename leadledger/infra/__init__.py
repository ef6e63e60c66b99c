"""Infra layer utilities (storage, tenancy)."""

from .storage import SQLiteManager, Store
from .tenancy import Tenant, TenantRegistry, tenant_context

__all__ = ["SQLiteManager", "Store", "Tenant", "TenantRegistry", "tenant_context"]
