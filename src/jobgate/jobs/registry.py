"""Persisted job records, status transitions and soft deletion.

Design notes:
- Records live in the shared record store under ``job:<job_id>``
- update() is read-modify-write of the whole record; callers read first
- mark_for_deletion() persists delete_at and arms an in-process timer as a
  best-effort shortcut; purge_marked() is the durable sweep
- Working directories under job_work_root are removed alongside records;
  failures there are logged, never raised
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping

from pydantic import BaseModel, Field, ValidationError

from ..errors import JobNotFoundError
from ..records.base import JOB_PREFIX, AsyncRecordStore
from ..types import JobSpec, JobStatus, JobType

_logger = logging.getLogger(__name__)


def job_key(job_id: str) -> str:
    return f"{JOB_PREFIX}{job_id}"


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp; naive values are read as UTC. None if unparseable."""
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class MergeRequest(BaseModel):
    repo_key: str
    url: str
    iid: int


class JobRecord(BaseModel):
    """Registry entry for one job. Timestamps stay strings so legacy values survive."""

    job: JobSpec
    status: JobStatus
    created_at: str
    updated_at: str
    branch_by_repo: dict[str, str] | None = None
    delete_at: str | None = None
    summary: str | None = None
    merge_requests: list[MergeRequest] | None = None
    error: str | None = None
    open_questions: list[str] | None = None

    @property
    def job_id(self) -> str:
        return self.job.job_id

    def created_time(self) -> datetime | None:
        return parse_timestamp(self.created_at)

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class JobRegistry:
    """Owns job records. Workers mutate jobs only through this class."""

    def __init__(
        self,
        records: AsyncRecordStore,
        *,
        job_work_root: Path | None = None,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._records = records
        self._job_work_root = Path(job_work_root) if job_work_root is not None else None
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def job_work_root(self) -> Path | None:
        return self._job_work_root

    async def save_queued(self, job: JobSpec) -> JobRecord:
        now = self._now().isoformat()
        record = JobRecord(job=job, status=JobStatus.QUEUED, created_at=now, updated_at=now)
        await self._records.upsert(job_key(job.job_id), record.to_record())
        return record

    async def load(self, job_id: str) -> JobRecord | None:
        return self._parse(await self._records.load_by_key(job_key(job_id)))

    async def load_all(self) -> list[JobRecord]:
        records = await self._records.load_all_by_prefix(JOB_PREFIX)
        parsed = (self._parse(record) for record in records)
        return [record for record in parsed if record is not None]

    async def update(self, job_id: str, patch: Mapping[str, Any]) -> JobRecord:
        """Merge ``patch`` into the stored record and bump updated_at."""
        existing = await self.load(job_id)
        if existing is None:
            raise JobNotFoundError(f"Job record not found for {job_id}")
        merged = {**existing.model_dump(mode="json"), **_jsonable(patch)}
        merged["updated_at"] = self._now().isoformat()
        updated = JobRecord.model_validate(merged)
        await self._records.upsert(job_key(job_id), updated.to_record())
        return updated

    async def record_agent_thread(self, job_id: str, agent_id: str, thread_id: str) -> JobRecord:
        """Remember the agent's conversation id so follow-ups can resume it."""
        existing = await self.load(job_id)
        if existing is None:
            raise JobNotFoundError(f"Job record not found for {job_id}")
        thread_ids = {**existing.job.agent_thread_ids, agent_id: thread_id}
        job = existing.job.model_copy(update={"agent_thread_ids": thread_ids})
        return await self.update(job_id, {"job": job})

    async def delete(self, job_ids: Iterable[str]) -> None:
        ids = list(dict.fromkeys(job_ids))
        if not ids:
            return
        await self._records.delete_by_keys([job_key(job_id) for job_id in ids])
        for job_id in ids:
            self._cancel_timer(job_id)
            await self._remove_work_dir(job_id)

    async def mark_for_deletion(self, job_id: str, ttl_ms: int) -> JobRecord:
        """Persist delete_at and schedule best-effort deletion after ``ttl_ms``."""
        if ttl_ms < 0:
            raise ValueError("ttl_ms must be non-negative")
        delete_at = self._now() + timedelta(milliseconds=ttl_ms)
        updated = await self.update(job_id, {"delete_at": delete_at.isoformat()})
        self._cancel_timer(job_id)
        loop = asyncio.get_running_loop()
        self._timers[job_id] = loop.call_later(ttl_ms / 1000, self._spawn_expiry, job_id)
        return updated

    async def purge_marked(self, now: datetime | None = None) -> list[str]:
        """Delete every record whose delete_at has passed. Returns the deleted ids."""
        now = now or self._now()
        due = []
        for record in await self.load_all():
            delete_at = parse_timestamp(record.delete_at)
            if delete_at is not None and delete_at <= now:
                due.append(record.job_id)
        await self.delete(due)
        if due:
            _logger.info("Purged %d jobs marked for deletion", len(due))
        return due

    async def clear_before(self, cutoff: datetime) -> int:
        """Delete every job created strictly before ``cutoff``."""
        if cutoff.tzinfo is None:
            cutoff = cutoff.replace(tzinfo=timezone.utc)
        doomed = []
        for record in await self.load_all():
            created = record.created_time()
            if created is not None and created < cutoff:
                doomed.append(record.job_id)
        await self.delete(doomed)
        return len(doomed)

    async def find_latest_by_channel_thread(
        self, provider: str, channel_id: str, thread_id: str, agent_id: str
    ) -> JobRecord | None:
        """Latest job in the thread that recorded a conversation id for ``agent_id``."""
        return self._latest(
            await self.load_all(),
            provider,
            channel_id,
            thread_id,
            lambda record: bool(record.job.agent_thread_ids.get(agent_id)),
        )

    async def find_latest_by_channel_thread_and_types(
        self, provider: str, channel_id: str, thread_id: str, types: Iterable[JobType | str]
    ) -> JobRecord | None:
        wanted = {JobType(job_type) for job_type in types}
        return self._latest(
            await self.load_all(),
            provider,
            channel_id,
            thread_id,
            lambda record: record.job.type in wanted,
        )

    def close(self) -> None:
        """Cancel pending deletion timers; persisted delete_at values remain."""
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

    @staticmethod
    def _latest(
        records: list[JobRecord],
        provider: str,
        channel_id: str,
        thread_id: str,
        matches: Callable[[JobRecord], bool],
    ) -> JobRecord | None:
        latest: JobRecord | None = None
        latest_time: datetime | None = None
        for record in records:
            channel = record.job.channel
            if (channel.provider, channel.channel_id, channel.thread_id) != (
                provider,
                channel_id,
                thread_id,
            ):
                continue
            if not matches(record):
                continue
            created = record.created_time()
            if created is None:
                continue
            if latest_time is None or created > latest_time:
                latest, latest_time = record, created
        return latest

    def _spawn_expiry(self, job_id: str) -> None:
        self._timers.pop(job_id, None)
        task = asyncio.get_running_loop().create_task(self._expire_marked(job_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _expire_marked(self, job_id: str) -> None:
        try:
            record = await self.load(job_id)
            if record is None:
                return
            delete_at = parse_timestamp(record.delete_at)
            if delete_at is None or delete_at > self._now():
                return
            await self.delete([job_id])
        except Exception as exc:
            _logger.warning("Failed to delete expired job record %s: %s", job_id, exc)

    def _cancel_timer(self, job_id: str) -> None:
        handle = self._timers.pop(job_id, None)
        if handle is not None:
            handle.cancel()

    async def _remove_work_dir(self, job_id: str) -> None:
        if self._job_work_root is None:
            return
        job_root = self._job_work_root / job_id
        if not job_root.exists():
            return
        try:
            await asyncio.to_thread(shutil.rmtree, job_root)
        except OSError as exc:
            _logger.warning("Failed to clear job data for %s at %s: %s", job_id, job_root, exc)
            return
        _logger.info("Cleared job data for %s at %s", job_id, job_root)

    @staticmethod
    def _parse(record: dict[str, Any] | None) -> JobRecord | None:
        if record is None:
            return None
        try:
            return JobRecord.model_validate(record)
        except ValidationError as exc:
            _logger.warning("Ignoring malformed job record: %s", exc)
            return None


def _jsonable(patch: Mapping[str, Any]) -> dict[str, Any]:
    return {
        key: value.model_dump(mode="json") if isinstance(value, BaseModel) else value
        for key, value in patch.items()
    }
