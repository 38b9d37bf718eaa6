"""Job history retention."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from ..types import JobType
from .registry import JobRecord, JobRegistry

_logger = logging.getLogger(__name__)

# Job types whose history can be resumed from a thread; retention only touches these.
RESUMABLE_JOB_TYPES: frozenset[JobType] = frozenset(
    {JobType.MENTION, JobType.ASK, JobType.PLAN, JobType.REVIEW, JobType.IMPLEMENT}
)

_DURATION = re.compile(r"^(\d+)([smhd])$", re.IGNORECASE)
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}
_EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


def parse_duration(value: str) -> timedelta | None:
    """Parse ``7d``, ``12h``, ``30m`` or ``45s``. Returns None if invalid."""
    match = _DURATION.match(value.strip())
    if match is None:
        return None
    amount = int(match.group(1))
    return timedelta(seconds=amount * _UNIT_SECONDS[match.group(2).lower()])


@dataclass(frozen=True, slots=True)
class CleanupReport:
    removed_by_age: tuple[str, ...] = ()
    removed_by_count: tuple[str, ...] = ()

    @property
    def removed(self) -> int:
        return len(self.removed_by_age) + len(self.removed_by_count)


def _created_or_epoch(record: JobRecord) -> datetime:
    return record.created_time() or _EPOCH


async def enforce_cleanup(
    registry: JobRegistry,
    *,
    max_entries: int | None = None,
    max_age: timedelta | str | None = None,
    now: datetime | None = None,
) -> CleanupReport:
    """Trim resumable job history by age, then down to ``max_entries``.

    Other job types (RUN, EXPLORE, ...) are never removed by retention.

    Records with unparseable created_at sort as the oldest possible entries.
    """
    if isinstance(max_age, str):
        parsed = parse_duration(max_age)
        if parsed is None:
            _logger.warning("Invalid cleanup max_age %r; skipping age-based cleanup", max_age)
        max_age = parsed
    if max_entries is None and max_age is None:
        return CleanupReport()

    now = now or datetime.now(timezone.utc)
    remaining = [r for r in await registry.load_all() if r.job.type in RESUMABLE_JOB_TYPES]

    removed_by_age: list[str] = []
    if max_age is not None:
        cutoff = now - max_age
        removed_by_age = [r.job_id for r in remaining if _created_or_epoch(r) <= cutoff]
        if removed_by_age:
            await registry.delete(removed_by_age)
            _logger.info(
                "Trimmed job history by max age: removed=%d cutoff=%s",
                len(removed_by_age),
                cutoff.isoformat(),
            )
            aged = set(removed_by_age)
            remaining = [r for r in remaining if r.job_id not in aged]

    removed_by_count: list[str] = []
    if max_entries is not None:
        limit = max(0, max_entries)
        if len(remaining) > limit:
            remaining.sort(key=_created_or_epoch)
            removed_by_count = [r.job_id for r in remaining[: len(remaining) - limit]]
            await registry.delete(removed_by_count)
            _logger.info(
                "Trimmed job history to max entries: removed=%d max_entries=%d",
                len(removed_by_count),
                limit,
            )

    return CleanupReport(tuple(removed_by_age), tuple(removed_by_count))
