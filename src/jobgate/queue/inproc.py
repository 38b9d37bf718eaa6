"""Single-process queue transport on the running asyncio loop.

Design notes:
- One FIFO per channel and at most one subscriber per channel
- Dispatch happens on a scheduled loop tick, up to the subscriber's concurrency
- A caller-supplied job id is rejected while the same id is pending or in flight
- close() drops queued items and waits for in-flight handlers, never cancels them
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass

from ..errors import DuplicateJobIdError, QueueClosedError
from .hooks import call_hook
from .types import Payload, QueueChannel, QueueConsumerOptions, QueueJob, queue_name

_logger = logging.getLogger(__name__)


class InprocQueueChannel:
    def __init__(self, name: str) -> None:
        self.name = name
        self._pending: deque[QueueJob] = deque()
        self._pending_job_ids: set[str] = set()
        self._subscriber: QueueConsumerOptions | None = None
        self._in_flight: set[asyncio.Task[None]] = set()
        self._scheduled = False
        self._closed = False
        self._id_counter = 0

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    @property
    def queued(self) -> int:
        return len(self._pending)

    def enqueue(self, name: str, payload: Payload, job_id: str | None = None) -> QueueJob:
        if self._closed:
            raise QueueClosedError(f'Inproc queue channel "{self.name}" is closed.')
        requested = job_id.strip() if job_id else None
        if requested and requested in self._pending_job_ids:
            raise DuplicateJobIdError(
                f'Duplicate inproc job id "{requested}" on channel "{self.name}".'
            )
        if requested:
            item_id = requested
            self._pending_job_ids.add(requested)
        else:
            self._id_counter += 1
            item_id = f"{self.name}-{self._id_counter}"
        job = QueueJob(id=item_id, name=name, data=payload)
        self._pending.append(job)
        self._schedule()
        return job

    def subscribe(self, options: QueueConsumerOptions) -> "_InprocConsumerHandle":
        if self._closed:
            raise QueueClosedError(f'Inproc queue channel "{self.name}" is closed.')
        if self._subscriber is not None:
            raise RuntimeError(f'Inproc channel "{self.name}" already has a subscriber.')
        self._subscriber = options
        self._schedule()
        return _InprocConsumerHandle(self, options)

    def unsubscribe(self, options: QueueConsumerOptions) -> None:
        if self._subscriber is options:
            self._subscriber = None

    async def close(self) -> None:
        self._closed = True
        self._subscriber = None
        if self._pending:
            _logger.debug("Dropping %d queued items on %s", len(self._pending), self.name)
        self._pending.clear()
        self._pending_job_ids.clear()
        if self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    def _schedule(self) -> None:
        if self._scheduled or self._closed:
            return
        self._scheduled = True
        asyncio.get_running_loop().call_soon(self._dispatch)

    def _dispatch(self) -> None:
        self._scheduled = False
        subscriber = self._subscriber
        if subscriber is None or self._closed:
            return
        loop = asyncio.get_running_loop()
        while len(self._in_flight) < subscriber.concurrency and self._pending:
            job = self._pending.popleft()
            task = loop.create_task(self._run_item(job, subscriber))
            self._in_flight.add(task)
            task.add_done_callback(self._on_item_done)

    def _on_item_done(self, task: asyncio.Task[None]) -> None:
        self._in_flight.discard(task)
        if not self._closed:
            self._schedule()

    async def _run_item(self, job: QueueJob, subscriber: QueueConsumerOptions) -> None:
        try:
            await subscriber.handler(job)
        except Exception as exc:
            _logger.debug("Handler failed for %s on %s: %s", job.id, self.name, exc)
            await call_hook(subscriber.on_failed, job, exc)
        else:
            await call_hook(subscriber.on_completed, job)
        finally:
            self._pending_job_ids.discard(job.id)


@dataclass(frozen=True, slots=True)
class _InprocConsumerHandle:
    _channel: InprocQueueChannel
    _options: QueueConsumerOptions

    async def close(self) -> None:
        self._channel.unsubscribe(self._options)


class InprocQueueTransport:
    """QueueTransport driver for single-process deployments and tests."""

    driver = "inproc"

    def __init__(self, prefix: str = "jobgate") -> None:
        self._channels = {
            channel: InprocQueueChannel(queue_name(prefix, channel)) for channel in QueueChannel
        }

    def channel(self, channel: QueueChannel | str) -> InprocQueueChannel:
        return self._channels[QueueChannel(channel)]

    async def publish(
        self,
        channel: QueueChannel | str,
        name: str,
        payload: Payload,
        *,
        job_id: str | None = None,
    ) -> QueueJob:
        return self.channel(channel).enqueue(name, payload, job_id)

    def subscribe(
        self, channel: QueueChannel | str, options: QueueConsumerOptions
    ) -> _InprocConsumerHandle:
        return self.channel(channel).subscribe(options)

    async def close(self) -> None:
        for channel in self._channels.values():
            await channel.close()
