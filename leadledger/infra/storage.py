"""SQLite storage for tenants, scraping jobs and leads."""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from threading import Lock, RLock
from typing import Any, Dict, Iterable, Mapping, Sequence

from ..errors import StoreError

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS tenants (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        slug TEXT NOT NULL UNIQUE,
        is_active INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS scraping_jobs (
        id TEXT PRIMARY KEY,
        tenant_id TEXT NOT NULL REFERENCES tenants(id),
        url TEXT NOT NULL,
        status TEXT NOT NULL,
        created_at TEXT NOT NULL,
        started_at TEXT,
        completed_at TEXT,
        result TEXT,
        error TEXT
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_scraping_jobs_queue
        ON scraping_jobs(tenant_id, status, created_at)
    """,
    """
    CREATE TABLE IF NOT EXISTS leads (
        id TEXT PRIMARY KEY,
        tenant_id TEXT NOT NULL REFERENCES tenants(id),
        scraping_job_id TEXT REFERENCES scraping_jobs(id),
        source TEXT NOT NULL,
        identity_key TEXT,
        data TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'new',
        notes TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_leads_source ON leads(tenant_id, source)",
    "CREATE INDEX IF NOT EXISTS idx_leads_identity ON leads(tenant_id, identity_key)",
)

TABLE_COLUMNS: Dict[str, tuple[str, ...]] = {
    "scraping_jobs": (
        "id",
        "tenant_id",
        "url",
        "status",
        "created_at",
        "started_at",
        "completed_at",
        "result",
        "error",
    ),
    "leads": (
        "id",
        "tenant_id",
        "scraping_job_id",
        "source",
        "identity_key",
        "data",
        "status",
        "notes",
        "created_at",
        "updated_at",
    ),
}

JSON_COLUMNS: Dict[str, frozenset[str]] = {
    "scraping_jobs": frozenset({"result"}),
    "leads": frozenset({"data"}),
}


class SQLiteManager:
    """Manage SQLite connections with basic schema guarantees."""

    def __init__(self) -> None:
        self._connections: Dict[Path, sqlite3.Connection] = {}
        self._lock = Lock()

    def connect(self, path: Path) -> sqlite3.Connection:
        path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            if path not in self._connections:
                conn = sqlite3.connect(path, check_same_thread=False)
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA foreign_keys = ON")
                self._connections[path] = conn
                self._ensure_schema(conn)
            return self._connections[path]

    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        for statement in SCHEMA:
            conn.execute(statement)
        conn.commit()

    def reset(self, path: Path) -> None:
        with self._lock:
            if path in self._connections:
                self._connections[path].close()
                del self._connections[path]
        if path.exists():
            path.unlink()

    def close_all(self) -> None:
        with self._lock:
            for conn in self._connections.values():
                conn.close()
            self._connections.clear()


class Store:
    """Tenant-scoped row operations over a shared SQLite connection.

    Every scoped call takes ``tenant_id`` explicitly and filters on it, so
    no statement issued through this class can read or write another
    tenant's rows. Statements are serialised with a lock because the
    connection is shared by the worker threads.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._lock = RLock()

    @classmethod
    def open(cls, manager: SQLiteManager, path: Path) -> "Store":
        return cls(manager.connect(path))

    # ------------------------------------------------------------------
    # Raw helpers
    # ------------------------------------------------------------------
    def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        with self._lock:
            rows = self._conn.execute(sql, tuple(params)).fetchall()
        return [dict(row) for row in rows]

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        with self._lock, self._conn:
            cursor = self._conn.execute(sql, tuple(params))
            return cursor.rowcount

    # ------------------------------------------------------------------
    # Scoped operations
    # ------------------------------------------------------------------
    def select_where(
        self,
        table: str,
        tenant_id: str,
        where: Mapping[str, Any] | None = None,
        *,
        any_of: Mapping[str, Iterable[Any]] | None = None,
        limit: int | None = None,
        order_by: Sequence[str] = (),
    ) -> list[dict[str, Any]]:
        """Select rows of ``table`` for ``tenant_id``.

        ``where`` values are ANDed: scalars compare with ``=``, ``None`` with
        ``IS NULL`` and collections with ``IN``. ``any_of`` entries are ORed
        together as ``IN`` clauses; empty collections are dropped.
        """

        columns = self._columns(table)
        clauses = ["tenant_id = ?"]
        params: list[Any] = [tenant_id]
        for column, value in (where or {}).items():
            self._check_column(table, columns, column)
            clause, values = self._condition(column, value)
            clauses.append(clause)
            params.extend(values)
        if any_of is not None:
            alternatives: list[str] = []
            for column, values in any_of.items():
                self._check_column(table, columns, column)
                values = list(values)
                if not values:
                    continue
                clause, bound = self._condition(column, values)
                alternatives.append(clause)
                params.extend(bound)
            if not alternatives:
                return []
            clauses.append("(" + " OR ".join(alternatives) + ")")
        sql = f"SELECT * FROM {table} WHERE " + " AND ".join(clauses)
        if order_by:
            for column in order_by:
                name, *direction = column.split()
                if name != "rowid":
                    self._check_column(table, columns, name)
                if direction not in ([], ["ASC"], ["DESC"]):
                    raise StoreError(f"Invalid ordering: {column!r}")
            sql += " ORDER BY " + ", ".join(order_by)
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        return [self.decode_row(table, row) for row in self.fetch_all(sql, params)]

    def insert_one(self, table: str, row: Mapping[str, Any]) -> dict[str, Any]:
        return self.insert_many(table, [row])[0]

    def insert_many(self, table: str, rows: Sequence[Mapping[str, Any]]) -> list[dict[str, Any]]:
        """Insert all rows in one transaction; nothing is written on failure."""

        if not rows:
            return []
        columns = self._columns(table)
        for row in rows:
            for column in row:
                self._check_column(table, columns, column)
            if not row.get("tenant_id"):
                raise StoreError(f"{table} rows require tenant_id")
        # Encode everything before touching the connection
        encoded = [self._encode(table, columns, row) for row in rows]
        placeholders = ", ".join("?" for _ in columns)
        sql = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"
        with self._lock, self._conn:
            self._conn.executemany(sql, encoded)
        return [dict(row) for row in rows]

    def insert_unless_exists(
        self, table: str, row: Mapping[str, Any], match_on: Sequence[str]
    ) -> tuple[dict[str, Any], bool]:
        """Insert ``row`` unless the tenant already has a row equal on ``match_on``.

        The lookup and the insert run under the store lock, so two threads
        racing on the same key produce exactly one row. Returns the stored
        row and whether it was created.
        """

        if not match_on:
            raise StoreError("insert_unless_exists requires at least one match column")
        tenant_id = row.get("tenant_id")
        if not tenant_id:
            raise StoreError(f"{table} rows require tenant_id")
        with self._lock:
            existing = self.select_where(
                table,
                tenant_id,
                {column: row.get(column) for column in match_on},
                limit=1,
                order_by=("created_at", "rowid"),
            )
            if existing:
                return existing[0], False
            return self.insert_one(table, row), True

    def update_one(
        self,
        table: str,
        tenant_id: str,
        row_id: str,
        patch: Mapping[str, Any],
        *,
        expected: Mapping[str, Any] | None = None,
    ) -> bool:
        """Apply ``patch`` to one row; ``expected`` makes the update conditional.

        Returns ``True`` when a row was changed.
        """

        columns = self._columns(table)
        if not patch:
            raise StoreError("update_one requires a non-empty patch")
        assignments: list[str] = []
        params: list[Any] = []
        json_columns = JSON_COLUMNS.get(table, frozenset())
        for column, value in patch.items():
            self._check_column(table, columns, column)
            if column in ("id", "tenant_id"):
                raise StoreError(f"{column} cannot be updated")
            assignments.append(f"{column} = ?")
            params.append(self._dump(value) if column in json_columns and value is not None else value)
        clauses = ["id = ?", "tenant_id = ?"]
        params.extend([row_id, tenant_id])
        for column, value in (expected or {}).items():
            self._check_column(table, columns, column)
            clause, values = self._condition(column, value)
            clauses.append(clause)
            params.extend(values)
        sql = f"UPDATE {table} SET {', '.join(assignments)} WHERE " + " AND ".join(clauses)
        return self.execute(sql, params) == 1

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    @staticmethod
    def _columns(table: str) -> tuple[str, ...]:
        try:
            return TABLE_COLUMNS[table]
        except KeyError as exc:
            raise StoreError(f"Unknown table: {table}") from exc

    @staticmethod
    def _check_column(table: str, columns: tuple[str, ...], column: str) -> None:
        if column not in columns:
            raise StoreError(f"Unknown column {column!r} for table {table}")

    @staticmethod
    def _condition(column: str, value: Any) -> tuple[str, list[Any]]:
        if value is None:
            return f"{column} IS NULL", []
        if isinstance(value, (list, tuple, set, frozenset)):
            values = list(value)
            if not values:
                return "0", []
            return f"{column} IN ({', '.join('?' for _ in values)})", values
        return f"{column} = ?", [value]

    @staticmethod
    def _dump(value: Any) -> str:
        return json.dumps(value, ensure_ascii=False)

    def _encode(self, table: str, columns: tuple[str, ...], row: Mapping[str, Any]) -> tuple[Any, ...]:
        json_columns = JSON_COLUMNS.get(table, frozenset())
        values: list[Any] = []
        for column in columns:
            value = row.get(column)
            if column in json_columns and value is not None:
                value = self._dump(value)
            values.append(value)
        return tuple(values)

    @staticmethod
    def decode_row(table: str, row: dict[str, Any]) -> dict[str, Any]:
        for column in JSON_COLUMNS.get(table, frozenset()):
            raw = row.get(column)
            if isinstance(raw, str):
                row[column] = json.loads(raw)
        return row


__all__ = ["JSON_COLUMNS", "SQLiteManager", "Store", "TABLE_COLUMNS"]
