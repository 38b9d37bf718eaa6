"""Typed enqueue helpers mapping payload models onto transport publishes."""

from __future__ import annotations

from ..types import BootstrapRequest, BotEvent, JobSpec, WorkerEvent
from .types import QueueChannel, QueueJob, QueueTransport


async def enqueue_job(transport: QueueTransport, job: JobSpec) -> QueueJob:
    return await transport.publish(
        QueueChannel.JOBS, job.type.value, job.model_dump(mode="json"), job_id=job.job_id
    )


async def enqueue_bootstrap(transport: QueueTransport, request: BootstrapRequest) -> QueueJob:
    return await transport.publish(
        QueueChannel.BOOTSTRAP,
        "bootstrap",
        request.model_dump(mode="json"),
        job_id=request.request_id,
    )


async def enqueue_worker_event(transport: QueueTransport, event: WorkerEvent) -> QueueJob:
    return await transport.publish(
        QueueChannel.WORKER_EVENTS, event.type, event.model_dump(mode="json")
    )


async def enqueue_bot_event(transport: QueueTransport, event: BotEvent) -> QueueJob:
    return await transport.publish(QueueChannel.BOT_EVENTS, event.type, event.model_dump(mode="json"))
