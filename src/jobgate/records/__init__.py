"""Keyed record stores shared by the approval store and job registry."""

from .adapters import SyncRecordStoreAdapter
from .async_sqlite import AIOSQLITE_AVAILABLE, AsyncSQLiteRecordStore
from .base import APPROVAL_PREFIX, JOB_PREFIX, AsyncRecordStore, Record, RecordStore
from .memory import InMemoryRecordStore
from .sqlite import SQLiteRecordStore

__all__ = (
    "APPROVAL_PREFIX",
    "JOB_PREFIX",
    "AIOSQLITE_AVAILABLE",
    "AsyncRecordStore",
    "AsyncSQLiteRecordStore",
    "InMemoryRecordStore",
    "Record",
    "RecordStore",
    "SQLiteRecordStore",
    "SyncRecordStoreAdapter",
)
