"""Redis-backed queue transport (redis.asyncio).

Layout per channel, with ``name = <prefix>-<channel>``:
- ``<name>:waiting``   list of JSON items; producers LPUSH, consumers take from the right
- ``<name>:active``    items a consumer has taken but not yet finished
- ``<name>:id:<id>``   dedup marker for caller-supplied job ids (SET NX with expiry)
- ``<name>:seq``       counter for generated ids

Design notes:
- Publishing an id that is already known is accepted without a second push
- Items are moved atomically waiting -> active (BLMOVE) and removed from
  active only after the handler and hooks ran, so a crashed consumer's items
  are redelivered by recover_stalled(): handlers must tolerate at-least-once
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from redis.asyncio import Redis

from ..errors import QueueClosedError
from .hooks import call_hook
from .types import Payload, QueueChannel, QueueConsumerOptions, QueueJob, queue_name

_logger = logging.getLogger(__name__)

DEFAULT_DEDUP_TTL_SECONDS = 86400
DEFAULT_POLL_TIMEOUT_SECONDS = 1.0


def _encode(job: QueueJob) -> str:
    return json.dumps({"id": job.id, "name": job.name, "data": job.data}, separators=(",", ":"))


def _decode(raw: str | bytes) -> QueueJob:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    item = json.loads(raw)
    return QueueJob(id=str(item["id"]), name=str(item["name"]), data=item.get("data") or {})


class _RedisConsumer:
    def __init__(
        self,
        transport: "RedisQueueTransport",
        name: str,
        options: QueueConsumerOptions,
    ) -> None:
        self._transport = transport
        self._name = name
        self._options = options
        self._stopping = False
        self._tasks = [
            asyncio.get_running_loop().create_task(self._consume())
            for _ in range(options.concurrency)
        ]

    async def close(self) -> None:
        self._stopping = True
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._transport._forget(self)

    async def _consume(self) -> None:
        client = self._transport.client
        waiting, active = f"{self._name}:waiting", f"{self._name}:active"
        while not self._stopping:
            try:
                raw = await client.blmove(
                    waiting, active, self._transport.poll_timeout, "RIGHT", "LEFT"
                )
            except Exception as exc:
                _logger.warning("Redis consume failed on %s: %s", self._name, exc)
                await asyncio.sleep(self._transport.poll_timeout)
                continue
            if raw is None:
                continue
            try:
                job = _decode(raw)
            except (ValueError, KeyError, TypeError) as exc:
                _logger.warning("Dropping malformed item on %s: %s", self._name, exc)
                await self._ack(active, raw)
                continue
            try:
                await self._options.handler(job)
            except Exception as exc:
                _logger.debug("Handler failed for %s on %s: %s", job.id, self._name, exc)
                await call_hook(self._options.on_failed, job, exc)
            else:
                await call_hook(self._options.on_completed, job)
            await self._ack(active, raw)

    async def _ack(self, active: str, raw: str | bytes) -> None:
        # On failure the item stays in active until recover_stalled() requeues it.
        try:
            await self._transport.client.lrem(active, 1, raw)
        except Exception as exc:
            _logger.warning("Redis ack failed on %s: %s", self._name, exc)


class RedisQueueTransport:
    """QueueTransport driver for multi-process deployments."""

    driver = "redis"

    def __init__(
        self,
        client: Any,
        *,
        prefix: str = "jobgate",
        dedup_ttl_seconds: int = DEFAULT_DEDUP_TTL_SECONDS,
        poll_timeout: float = DEFAULT_POLL_TIMEOUT_SECONDS,
    ) -> None:
        self.client = client
        self.prefix = prefix
        self.dedup_ttl_seconds = dedup_ttl_seconds
        self.poll_timeout = poll_timeout
        self._consumers: dict[QueueChannel, _RedisConsumer] = {}
        self._closed = False

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "RedisQueueTransport":
        return cls(Redis.from_url(url, decode_responses=True), **kwargs)

    def _name(self, channel: QueueChannel | str) -> str:
        return queue_name(self.prefix, channel)

    async def publish(
        self,
        channel: QueueChannel | str,
        name: str,
        payload: Payload,
        *,
        job_id: str | None = None,
    ) -> QueueJob:
        if self._closed:
            raise QueueClosedError("Redis queue transport is closed.")
        queue = self._name(channel)
        requested = job_id.strip() if job_id else None
        if requested:
            fresh = await self.client.set(
                f"{queue}:id:{requested}", "1", nx=True, ex=self.dedup_ttl_seconds
            )
            job = QueueJob(id=requested, name=name, data=payload)
            if not fresh:
                _logger.info("Job id %s already published on %s; skipping", requested, queue)
                return job
        else:
            sequence = await self.client.incr(f"{queue}:seq")
            job = QueueJob(id=f"{queue}-{sequence}", name=name, data=payload)
        await self.client.lpush(f"{queue}:waiting", _encode(job))
        return job

    def subscribe(
        self, channel: QueueChannel | str, options: QueueConsumerOptions
    ) -> _RedisConsumer:
        if self._closed:
            raise QueueClosedError("Redis queue transport is closed.")
        key = QueueChannel(channel)
        if key in self._consumers:
            raise RuntimeError(f'Redis channel "{self._name(key)}" already has a subscriber.')
        consumer = _RedisConsumer(self, self._name(key), options)
        self._consumers[key] = consumer
        return consumer

    async def recover_stalled(self, channel: QueueChannel | str) -> int:
        """Move items left in ``active`` by a dead consumer back to ``waiting``.

        Call at startup before subscribing; items are redelivered in order.
        """
        queue = self._name(channel)
        moved = 0
        while await self.client.lmove(f"{queue}:active", f"{queue}:waiting", "LEFT", "RIGHT"):
            moved += 1
        if moved:
            _logger.warning("Requeued %d stalled items on %s", moved, queue)
        return moved

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for consumer in list(self._consumers.values()):
            await consumer.close()
        await self.client.aclose()

    def _forget(self, consumer: _RedisConsumer) -> None:
        for key, value in list(self._consumers.items()):
            if value is consumer:
                del self._consumers[key]
