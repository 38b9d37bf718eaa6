"""Keyed record store protocols.

Records are JSON-compatible dicts addressed by string keys. Approval requests
and job records share one store and are separated by key prefix.

Design notes:
- conditional_update() is the compare-and-swap primitive; it must be atomic
  with respect to the record it touches
- Stores raise RecordStoreError on backend failures; callers propagate it
- @runtime_checkable is for debugging/logging convenience only, not dispatch
"""

from __future__ import annotations

from typing import Any, Iterable, Protocol, runtime_checkable

Record = dict[str, Any]

APPROVAL_PREFIX = "approval:"
JOB_PREFIX = "job:"


class RecordStore(Protocol):
    """Synchronous record store (e.g. stdlib sqlite3)."""

    def load_by_key(self, key: str) -> Record | None:
        ...

    def upsert(self, key: str, record: Record) -> None:
        ...

    def conditional_update(self, key: str, record: Record, *, field: str, expected: str) -> bool:
        ...

    def delete_by_keys(self, keys: Iterable[str]) -> None:
        ...

    def load_all_by_prefix(self, prefix: str) -> list[Record]:
        ...


@runtime_checkable
class AsyncRecordStore(Protocol):
    """Async record store consumed by the approval store and job registry."""

    async def load_by_key(self, key: str) -> Record | None:
        """Return the stored record or None when the key is absent."""
        ...

    async def upsert(self, key: str, record: Record) -> None:
        """Insert or replace the record stored under key."""
        ...

    async def conditional_update(
        self, key: str, record: Record, *, field: str, expected: str
    ) -> bool:
        """Replace the record only if its current ``field`` equals ``expected``.

        Returns True when the write happened. Returns False when the key is
        absent or the stored value differs.
        """
        ...

    async def delete_by_keys(self, keys: Iterable[str]) -> None:
        ...

    async def load_all_by_prefix(self, prefix: str) -> list[Record]:
        ...
