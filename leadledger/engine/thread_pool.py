"""Thread pool abstraction giving each tenant its own executor."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from threading import Lock
from typing import Dict


class ThreadPoolManager:
    """Manage the shared and per-tenant thread pools."""

    def __init__(self, default_workers: int = 8) -> None:
        self.default_workers = default_workers
        self._default_executor = ThreadPoolExecutor(max_workers=default_workers, thread_name_prefix="leadledger")
        self._executors: Dict[str, ThreadPoolExecutor] = {}
        self._sizes: Dict[str, int] = {}
        self._lock = Lock()

    def get(self, tenant_id: str | None = None, max_workers: int | None = None) -> ThreadPoolExecutor:
        if tenant_id is None:
            return self._default_executor
        with self._lock:
            current = self._executors.get(tenant_id)
            # Grow the pool when a caller asks for more workers than it has
            if current is not None and max_workers and max_workers > self._sizes[tenant_id]:
                current.shutdown(wait=False)
                current = None
            if current is None:
                workers = max_workers or self.default_workers
                current = ThreadPoolExecutor(
                    max_workers=workers, thread_name_prefix=f"leadledger-{tenant_id[:8]}"
                )
                self._executors[tenant_id] = current
                self._sizes[tenant_id] = workers
            return current

    def shutdown(self) -> None:
        self._default_executor.shutdown(wait=False)
        with self._lock:
            for executor in self._executors.values():
                executor.shutdown(wait=False)
            self._executors.clear()
            self._sizes.clear()


__all__ = ["ThreadPoolManager"]
