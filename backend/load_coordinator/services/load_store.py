"""SQLite-backed persistence client for loads, line items, stops and audit trails."""
from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock, RLock
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Set, Tuple

from load_coordinator.core.errors import NotFoundError, PersistenceError, StaleWriteError
from load_coordinator.core.logging import logger
from load_coordinator.services.change_feed import ChangeFeed, Subscription


TABLE_KEYS: Dict[str, Tuple[str, ...]] = {
    "loads": ("load_id",),
    "load_details": ("load_id", "line"),
    "stop_details": ("load_id", "seq_no"),
    "user_profiles": ("email",),
}


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _json_dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=True)


@dataclass
class RowQuery:
    """Read filter: equality matches, membership sets and ordering."""

    equals: Dict[str, Any] = field(default_factory=dict)
    any_of: Dict[str, Set[Any]] = field(default_factory=dict)
    order_by: List[Tuple[str, bool]] = field(default_factory=list)
    limit: Optional[int] = None

    def matches(self, row: Dict[str, Any]) -> bool:
        for name, expected in self.equals.items():
            if row.get(name) != expected:
                return False
        for name, allowed in self.any_of.items():
            if row.get(name) not in allowed:
                return False
        return True

    def sort(self, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        ordered = list(rows)
        # Stable sorts applied from the least significant key; missing values always sort last.
        for name, descending in reversed(self.order_by):
            present = sorted(
                (row for row in ordered if row.get(name) is not None),
                key=lambda row: row[name],
                reverse=descending,
            )
            missing = [row for row in ordered if row.get(name) is None]
            ordered = present + missing
        return ordered


class LoadStore:
    """Durable store exposing get/upsert/update/query/subscribe over logical tables."""

    _lock_registry: dict[str, RLock] = {}
    _lock_registry_guard = Lock()

    def __init__(self, db_path: str | Path, change_feed: Optional[ChangeFeed] = None) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = self._get_shared_lock(str(self._db_path.resolve()))
        self._conn = sqlite3.connect(
            str(self._db_path),
            check_same_thread=False,
            timeout=30.0,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode = WAL")
        self._conn.execute("PRAGMA synchronous = NORMAL")
        self._conn.execute("PRAGMA busy_timeout = 30000")
        self.changes = change_feed or ChangeFeed()
        self._initialize_schema()

    @classmethod
    def _get_shared_lock(cls, key: str) -> RLock:
        with cls._lock_registry_guard:
            lock = cls._lock_registry.get(key)
            if lock is None:
                lock = RLock()
                cls._lock_registry[key] = lock
            return lock

    @property
    def db_path(self) -> Path:
        return self._db_path

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _initialize_schema(self) -> None:
        with self._lock:
            self._conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS loads (
                    load_id TEXT NOT NULL PRIMARY KEY,
                    data_json TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS load_details (
                    load_id TEXT NOT NULL,
                    line INTEGER NOT NULL,
                    data_json TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (load_id, line)
                );

                CREATE TABLE IF NOT EXISTS stop_details (
                    load_id TEXT NOT NULL,
                    seq_no INTEGER NOT NULL,
                    data_json TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (load_id, seq_no)
                );

                CREATE TABLE IF NOT EXISTS user_profiles (
                    email TEXT NOT NULL PRIMARY KEY,
                    data_json TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS audit_log (
                    event_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    table_name TEXT NOT NULL,
                    record_id TEXT NOT NULL,
                    action TEXT NOT NULL,
                    field_name TEXT,
                    old_value TEXT,
                    new_value TEXT,
                    user_email TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_audit_record ON audit_log (record_id, created_at DESC);

                CREATE TABLE IF NOT EXISTS load_status_history (
                    event_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    load_id TEXT NOT NULL,
                    old_status TEXT,
                    new_status TEXT NOT NULL,
                    changed_by TEXT,
                    changed_at TEXT NOT NULL,
                    notes TEXT
                );

                CREATE INDEX IF NOT EXISTS idx_status_history_load
                    ON load_status_history (load_id, changed_at DESC);
                """
            )
            self._conn.commit()

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except sqlite3.Error as exc:
                self._conn.rollback()
                logger.error("Store write failed", operation=operation, error=str(exc))
                raise PersistenceError(f"{operation} failed: {exc}") from exc

    @staticmethod
    def _keys_for(table: str) -> Tuple[str, ...]:
        keys = TABLE_KEYS.get(table)
        if keys is None:
            raise ValueError(f"Unknown table '{table}'")
        return keys

    @classmethod
    def _key_values(cls, table: str, key: Any) -> Tuple[Any, ...]:
        names = cls._keys_for(table)
        values = key if isinstance(key, (tuple, list)) else (key,)
        if len(values) != len(names):
            raise ValueError(f"Table '{table}' is keyed by {names}")
        return tuple(values)

    @staticmethod
    def _where(names: Sequence[str]) -> str:
        return " AND ".join(f"{name} = ?" for name in names)

    def _fetch(self, table: str, values: Tuple[Any, ...]) -> Optional[Dict[str, Any]]:
        names = self._keys_for(table)
        row = self._conn.execute(
            f"SELECT data_json FROM {table} WHERE {self._where(names)}",
            values,
        ).fetchone()
        if not row:
            return None
        return json.loads(row["data_json"])

    def _write_row(self, table: str, record: Dict[str, Any]) -> None:
        names = self._keys_for(table)
        columns = [*names, "data_json", "updated_at"]
        placeholders = ", ".join("?" for _ in columns)
        self._conn.execute(
            f"""
            INSERT INTO {table} ({", ".join(columns)})
            VALUES ({placeholders})
            ON CONFLICT({", ".join(names)})
            DO UPDATE SET data_json = excluded.data_json, updated_at = excluded.updated_at
            """,
            (*[record[name] for name in names], _json_dumps(record), record["updated_at"]),
        )

    def get(self, table: str, key: Any) -> Optional[Dict[str, Any]]:
        values = self._key_values(table, key)
        with self._lock:
            try:
                return self._fetch(table, values)
            except sqlite3.Error as exc:
                raise PersistenceError(f"read from {table} failed: {exc}") from exc

    def upsert(
        self,
        table: str,
        records: Iterable[Dict[str, Any]],
        conflict_key: Optional[Sequence[str]] = None,
    ) -> List[Dict[str, Any]]:
        names = self._keys_for(table)
        if conflict_key is not None and tuple(conflict_key) != names:
            raise ValueError(f"Table '{table}' conflicts on {names}, not {tuple(conflict_key)}")

        written: List[Dict[str, Any]] = []
        with self._transaction(f"upsert {table}") as conn:
            for record in records:
                row = dict(record)
                row.setdefault("updated_at", _utc_now_iso())
                self._write_row(table, row)
                written.append(row)
        if written:
            self.changes.publish(table, "upsert", [tuple(row[name] for name in names) for row in written])
        return written

    def update(
        self,
        table: str,
        key: Any,
        fields: Dict[str, Any],
        expected_updated_at: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Merge ``fields`` into one row.

        With ``expected_updated_at`` the write only lands if the row still
        carries that ``updated_at``; otherwise ``StaleWriteError`` is raised.
        """
        values = self._key_values(table, key)
        with self._transaction(f"update {table}"):
            current = self._fetch(table, values)
            if current is None:
                raise NotFoundError(f"{table} record {values} not found")
            if expected_updated_at is not None and current.get("updated_at") != expected_updated_at:
                raise StaleWriteError(
                    f"{table} record {values} changed concurrently",
                    details=[f"expected updated_at={expected_updated_at}", f"found {current.get('updated_at')}"],
                )
            current.update(fields)
            current["updated_at"] = fields.get("updated_at") or _utc_now_iso()
            self._write_row(table, current)
        self.changes.publish(table, "update", [values])
        return current

    def query_filtered(self, table: str, query: Optional[RowQuery] = None) -> List[Dict[str, Any]]:
        query = query or RowQuery()
        with self._lock:
            try:
                rows = self._conn.execute(f"SELECT data_json FROM {table}").fetchall()
            except sqlite3.Error as exc:
                raise PersistenceError(f"query on {table} failed: {exc}") from exc
        matched = [row for row in (json.loads(item["data_json"]) for item in rows) if query.matches(row)]
        ordered = query.sort(matched)
        if query.limit is not None:
            ordered = ordered[: query.limit]
        return ordered

    def delete_for_loads(self, table: str, load_ids: Iterable[str]) -> int:
        """Remove child rows (details/stops) belonging to the given loads."""
        if "load_id" not in self._keys_for(table) or table == "loads":
            raise ValueError(f"Bulk delete is only supported for child tables, not '{table}'")
        ids = sorted({str(load_id) for load_id in load_ids})
        if not ids:
            return 0
        placeholders = ", ".join("?" for _ in ids)
        with self._transaction(f"delete {table}") as conn:
            cursor = conn.execute(f"DELETE FROM {table} WHERE load_id IN ({placeholders})", ids)
            deleted = cursor.rowcount
        self.changes.publish(table, "delete", ids)
        return deleted

    def subscribe_changes(self, table: str, callback: Callable[[Dict[str, Any]], None]) -> Subscription:
        self._keys_for(table)
        return self.changes.subscribe(table, callback)

    def append_audit(self, event: Dict[str, Any]) -> Dict[str, Any]:
        row = {
            "table_name": event.get("table_name") or "loads",
            "record_id": event["record_id"],
            "action": event["action"],
            "field_name": event.get("field_name"),
            "old_value": event.get("old_value"),
            "new_value": event.get("new_value"),
            "user_email": event.get("user_email"),
            "created_at": event.get("created_at") or _utc_now_iso(),
        }
        with self._transaction("append audit_log") as conn:
            cursor = conn.execute(
                """
                INSERT INTO audit_log
                    (table_name, record_id, action, field_name, old_value, new_value, user_email, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    row["table_name"],
                    row["record_id"],
                    row["action"],
                    row["field_name"],
                    row["old_value"],
                    row["new_value"],
                    row["user_email"],
                    row["created_at"],
                ),
            )
            row["event_id"] = int(cursor.lastrowid)
        return row

    def list_audit(self, record_id: str, limit: int = 500) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT event_id, table_name, record_id, action, field_name, old_value, new_value,
                       user_email, created_at
                FROM audit_log
                WHERE record_id = ?
                ORDER BY created_at DESC, event_id DESC
                LIMIT ?
                """,
                (record_id, limit),
            ).fetchall()
        return [dict(row) for row in rows]

    def append_status_history(self, event: Dict[str, Any]) -> Dict[str, Any]:
        row = {
            "load_id": event["load_id"],
            "old_status": event.get("old_status"),
            "new_status": event["new_status"],
            "changed_by": event.get("changed_by"),
            "changed_at": event.get("changed_at") or _utc_now_iso(),
            "notes": event.get("notes"),
        }
        with self._transaction("append load_status_history") as conn:
            cursor = conn.execute(
                """
                INSERT INTO load_status_history (load_id, old_status, new_status, changed_by, changed_at, notes)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    row["load_id"],
                    row["old_status"],
                    row["new_status"],
                    row["changed_by"],
                    row["changed_at"],
                    row["notes"],
                ),
            )
            row["event_id"] = int(cursor.lastrowid)
        return row

    def list_status_history(self, load_id: str, limit: int = 500) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT event_id, load_id, old_status, new_status, changed_by, changed_at, notes
                FROM load_status_history
                WHERE load_id = ?
                ORDER BY changed_at DESC, event_id DESC
                LIMIT ?
                """,
                (load_id, limit),
            ).fetchall()
        return [dict(row) for row in rows]
