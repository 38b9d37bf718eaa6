"""Worker runtime: consumes queued jobs and control events.

The runtime owns the job status lifecycle (queued -> running -> ok/failed)
and delegates the actual work to an injected JobRunner. Deliveries may be
repeated by broker-backed transports, so finished jobs are skipped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol

from .errors import JobNotFoundError
from .jobs.registry import JobRegistry, MergeRequest, parse_timestamp
from .queue.types import (
    QueueChannel,
    QueueConsumerHandle,
    QueueConsumerOptions,
    QueueJob,
    QueueTransport,
)
from .types import JobSpec, JobStatus, WorkerEvent

_logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class JobOutcome:
    """What a runner reports back after finishing a job."""

    summary: str
    merge_requests: tuple[MergeRequest, ...] = ()
    open_questions: tuple[str, ...] = ()
    branch_by_repo: dict[str, str] = field(default_factory=dict)
    agent_thread_id: str | None = None


class JobRunner(Protocol):
    async def run(self, job: JobSpec) -> JobOutcome:
        """Execute the job. Raise to mark it failed."""
        ...


UsageReporter = Callable[[WorkerEvent], Awaitable[None]]


class WorkerRuntime:
    """Subscribes to the jobs and worker-events channels of a transport."""

    def __init__(
        self,
        transport: QueueTransport,
        registry: JobRegistry,
        runner: JobRunner,
        *,
        concurrency: int = 2,
        usage_reporter: UsageReporter | None = None,
    ) -> None:
        self._transport = transport
        self._registry = registry
        self._runner = runner
        self._concurrency = concurrency
        self._usage_reporter = usage_reporter
        self._handles: list[QueueConsumerHandle] = []

    def start(self) -> None:
        if self._handles:
            raise RuntimeError("worker runtime already started")
        self._handles.append(
            self._transport.subscribe(
                QueueChannel.JOBS,
                QueueConsumerOptions(
                    handler=self.handle_job,
                    concurrency=self._concurrency,
                    on_completed=_log_completed,
                    on_failed=_log_failed,
                ),
            )
        )
        self._handles.append(
            self._transport.subscribe(
                QueueChannel.WORKER_EVENTS,
                QueueConsumerOptions(
                    handler=self.handle_worker_event,
                    concurrency=1,
                    on_failed=_log_failed,
                ),
            )
        )

    async def close(self) -> None:
        handles, self._handles = self._handles, []
        for handle in handles:
            await handle.close()

    async def handle_job(self, item: QueueJob) -> None:
        job = JobSpec.model_validate(item.data)
        record = await self._registry.load(job.job_id)
        if record is None:
            record = await self._registry.save_queued(job)
        if record.status in (JobStatus.OK, JobStatus.FAILED):
            _logger.info("Job %s already %s; skipping redelivery", job.job_id, record.status.value)
            return

        await self._registry.update(job.job_id, {"status": JobStatus.RUNNING})
        try:
            outcome = await self._runner.run(job)
        except Exception as exc:
            await self._registry.update(
                job.job_id, {"status": JobStatus.FAILED, "error": str(exc) or type(exc).__name__}
            )
            raise

        if outcome.agent_thread_id and job.agent:
            await self._registry.record_agent_thread(job.job_id, job.agent, outcome.agent_thread_id)
        patch: dict[str, Any] = {"status": JobStatus.OK, "summary": outcome.summary}
        if outcome.merge_requests:
            patch["merge_requests"] = [mr.model_dump() for mr in outcome.merge_requests]
        if outcome.open_questions:
            patch["open_questions"] = list(outcome.open_questions)
        if outcome.branch_by_repo:
            patch["branch_by_repo"] = dict(outcome.branch_by_repo)
        await self._registry.update(job.job_id, patch)

    async def handle_worker_event(self, item: QueueJob) -> None:
        event = WorkerEvent.model_validate(item.data)
        if event.type == "clear_job":
            job_id = str(event.payload.get("job_id") or "")
            ttl_ms = int(event.payload.get("ttl_ms") or 0)
            try:
                await self._registry.mark_for_deletion(job_id, ttl_ms)
            except JobNotFoundError:
                _logger.warning("Cannot clear job %s: no such job", job_id)
                return
            _logger.info("Scheduled job %s for deletion in %d ms", job_id, ttl_ms)
        elif event.type == "clear_jobs_before":
            raw_cutoff = event.payload.get("cutoff_iso")
            cutoff = parse_timestamp(raw_cutoff if isinstance(raw_cutoff, str) else None)
            if cutoff is None:
                _logger.warning("Ignoring clear_jobs_before with invalid cutoff %r", raw_cutoff)
                return
            removed = await self._registry.clear_before(cutoff)
            _logger.info("Cleared %d jobs created before %s", removed, cutoff.isoformat())
        elif event.type == "codex_usage":
            if self._usage_reporter is None:
                _logger.debug("No usage reporter configured; dropping usage request")
                return
            await self._usage_reporter(event)


def _log_completed(item: QueueJob) -> None:
    _logger.debug("Queue item %s (%s) completed", item.id, item.name)


def _log_failed(item: QueueJob, exc: BaseException) -> None:
    _logger.error("Queue item %s (%s) failed: %s", item.id, item.name, exc)
