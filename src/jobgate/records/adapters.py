"""Sync-to-async adapter for record stores.

Design notes:
- Adapters are explicit: callers construct them, components never sniff types
- to_thread() is used because every sqlite3 call blocks on disk I/O
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Iterable

from .base import Record


@dataclass(frozen=True, slots=True)
class SyncRecordStoreAdapter:
    """Wraps a sync RecordStore to provide the AsyncRecordStore interface.

    Usage:
        sync_store = SQLiteRecordStore(Path("jobgate.db"))
        store = SyncRecordStoreAdapter(sync_store)
        registry = JobRegistry(store)
    """

    _store: Any  # RecordStore protocol

    async def load_by_key(self, key: str) -> Record | None:
        return await asyncio.to_thread(self._store.load_by_key, key)

    async def upsert(self, key: str, record: Record) -> None:
        await asyncio.to_thread(self._store.upsert, key, record)

    async def conditional_update(
        self, key: str, record: Record, *, field: str, expected: str
    ) -> bool:
        return await asyncio.to_thread(
            self._store.conditional_update, key, record, field=field, expected=expected
        )

    async def delete_by_keys(self, keys: Iterable[str]) -> None:
        await asyncio.to_thread(self._store.delete_by_keys, list(keys))

    async def load_all_by_prefix(self, prefix: str) -> list[Record]:
        return await asyncio.to_thread(self._store.load_all_by_prefix, prefix)
