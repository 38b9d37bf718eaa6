"""SQLite-backed record store (stdlib sqlite3, blocking).

Wrap with SyncRecordStoreAdapter to use it from the async components.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Iterator

from ..errors import RecordStoreError
from .base import Record

_WAL_INITIALIZED: set[Path] = set()
_WAL_LOCK = threading.Lock()

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS records (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
)
"""


def _ensure_wal_mode(path: Path) -> None:
    """Ensure WAL mode is set exactly once per database file. Thread-safe."""
    with _WAL_LOCK:
        if path in _WAL_INITIALIZED:
            return
        conn = sqlite3.connect(path)
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=FULL")
            _WAL_INITIALIZED.add(path)
        finally:
            conn.close()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _escape_like(prefix: str) -> str:
    return prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


@dataclass
class SQLiteRecordStore:
    """Keyed JSON records in a single SQLite table.

    conditional_update() is one UPDATE statement guarded by json_extract, so
    concurrent writers (threads or processes) cannot both succeed.
    """

    path: Path

    def __post_init__(self) -> None:
        self.path = Path(self.path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        _ensure_wal_mode(self.path)
        with self._connect() as conn:
            conn.execute(_CREATE_TABLE)
            conn.commit()

    def load_by_key(self, key: str) -> Record | None:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM records WHERE key = ?", (key,)).fetchone()
        if row is None:
            return None
        return json.loads(row[0])

    def upsert(self, key: str, record: Record) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO records (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value=excluded.value,
                    updated_at=excluded.updated_at
                """,
                (key, json.dumps(record), _now_iso()),
            )
            conn.commit()

    def conditional_update(self, key: str, record: Record, *, field: str, expected: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE records
                SET value = ?, updated_at = ?
                WHERE key = ? AND json_extract(value, ?) = ?
                """,
                (json.dumps(record), _now_iso(), key, f"$.{field}", expected),
            )
            conn.commit()
            return cursor.rowcount == 1

    def delete_by_keys(self, keys: Iterable[str]) -> None:
        key_list = list(keys)
        if not key_list:
            return
        with self._connect() as conn:
            conn.executemany("DELETE FROM records WHERE key = ?", [(key,) for key in key_list])
            conn.commit()

    def load_all_by_prefix(self, prefix: str) -> list[Record]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT value FROM records WHERE key LIKE ? ESCAPE '\\' ORDER BY key",
                (_escape_like(prefix) + "%",),
            ).fetchall()
        return [json.loads(row[0]) for row in rows]

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Get connection. WAL already initialized in __post_init__. Always closes."""
        try:
            conn = sqlite3.connect(self.path)
        except sqlite3.Error as exc:
            raise RecordStoreError(f"cannot open record store {self.path}: {exc}") from exc
        try:
            yield conn
        except sqlite3.Error as exc:
            raise RecordStoreError(str(exc)) from exc
        finally:
            conn.close()
