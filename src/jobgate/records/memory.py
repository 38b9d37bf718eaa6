"""In-memory record store for tests and single-process runs."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Iterable

from .base import Record


@dataclass
class InMemoryRecordStore:
    """Async record store backed by a dict.

    Every call runs to completion without awaiting, so on a single event loop
    conditional_update() is atomic without a lock.
    """

    records: dict[str, Record] = field(default_factory=dict)

    async def load_by_key(self, key: str) -> Record | None:
        record = self.records.get(key)
        return copy.deepcopy(record) if record is not None else None

    async def upsert(self, key: str, record: Record) -> None:
        self.records[key] = copy.deepcopy(record)

    async def conditional_update(
        self, key: str, record: Record, *, field: str, expected: str
    ) -> bool:
        current = self.records.get(key)
        if current is None or current.get(field) != expected:
            return False
        self.records[key] = copy.deepcopy(record)
        return True

    async def delete_by_keys(self, keys: Iterable[str]) -> None:
        for key in keys:
            self.records.pop(key, None)

    async def load_all_by_prefix(self, prefix: str) -> list[Record]:
        return [
            copy.deepcopy(record)
            for key, record in self.records.items()
            if key.startswith(prefix)
        ]
