"""Native async SQLite record store using aiosqlite.

Shares the table layout of SQLiteRecordStore, so either store can open the
same database file.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from ..errors import RecordStoreError
from .base import Record
from .sqlite import _CREATE_TABLE, _escape_like, _now_iso

# Note: aiosqlite is an optional dependency for true async SQLite
# If not available, use SyncRecordStoreAdapter + SQLiteRecordStore instead
try:
    import aiosqlite  # type: ignore[import-not-found]
    AIOSQLITE_AVAILABLE = True
except ImportError:
    AIOSQLITE_AVAILABLE = False
    aiosqlite = None  # type: ignore


@dataclass
class AsyncSQLiteRecordStore:
    """Async record store without thread pool wrapping.

    Requires: pip install "jobgate[aiosqlite]"

    Usage:
        store = AsyncSQLiteRecordStore(Path("jobgate.db"))
        await store.initialize()  # Create tables
        approvals = ApprovalStore(store)
    """

    path: Path
    _initialized: bool = field(default=False, repr=False)
    _init_lock: asyncio.Lock | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        if not AIOSQLITE_AVAILABLE:
            raise ImportError(
                "aiosqlite is required for AsyncSQLiteRecordStore. "
                "Install with: pip install aiosqlite"
            )
        self.path = Path(self.path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    async def initialize(self) -> None:
        """Create tables if they don't exist. Call once at startup."""
        async with aiosqlite.connect(self.path) as db:
            await db.execute("PRAGMA journal_mode=WAL")
            await db.execute("PRAGMA synchronous=FULL")
            await db.execute(_CREATE_TABLE)
            await db.commit()
        self._initialized = True

    async def _ensure_initialized(self) -> None:
        if self._initialized:
            return
        if self._init_lock is None:
            self._init_lock = asyncio.Lock()
        async with self._init_lock:
            if self._initialized:
                return
            await self.initialize()

    async def load_by_key(self, key: str) -> Record | None:
        await self._ensure_initialized()
        try:
            async with aiosqlite.connect(self.path) as db:
                async with db.execute("SELECT value FROM records WHERE key = ?", (key,)) as cursor:
                    row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise RecordStoreError(str(exc)) from exc
        if row is None:
            return None
        return json.loads(row[0])

    async def upsert(self, key: str, record: Record) -> None:
        await self._ensure_initialized()
        try:
            async with aiosqlite.connect(self.path) as db:
                await db.execute(
                    """
                    INSERT INTO records (key, value, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value=excluded.value,
                        updated_at=excluded.updated_at
                    """,
                    (key, json.dumps(record), _now_iso()),
                )
                await db.commit()
        except aiosqlite.Error as exc:
            raise RecordStoreError(str(exc)) from exc

    async def conditional_update(
        self, key: str, record: Record, *, field: str, expected: str
    ) -> bool:
        await self._ensure_initialized()
        try:
            async with aiosqlite.connect(self.path) as db:
                cursor = await db.execute(
                    """
                    UPDATE records
                    SET value = ?, updated_at = ?
                    WHERE key = ? AND json_extract(value, ?) = ?
                    """,
                    (json.dumps(record), _now_iso(), key, f"$.{field}", expected),
                )
                changed = cursor.rowcount == 1
                await db.commit()
        except aiosqlite.Error as exc:
            raise RecordStoreError(str(exc)) from exc
        return changed

    async def delete_by_keys(self, keys: Iterable[str]) -> None:
        key_list = list(keys)
        if not key_list:
            return
        await self._ensure_initialized()
        try:
            async with aiosqlite.connect(self.path) as db:
                await db.executemany(
                    "DELETE FROM records WHERE key = ?", [(key,) for key in key_list]
                )
                await db.commit()
        except aiosqlite.Error as exc:
            raise RecordStoreError(str(exc)) from exc

    async def load_all_by_prefix(self, prefix: str) -> list[Record]:
        await self._ensure_initialized()
        try:
            async with aiosqlite.connect(self.path) as db:
                async with db.execute(
                    "SELECT value FROM records WHERE key LIKE ? ESCAPE '\\' ORDER BY key",
                    (_escape_like(prefix) + "%",),
                ) as cursor:
                    rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise RecordStoreError(str(exc)) from exc
        return [json.loads(row[0]) for row in rows]
