from __future__ import annotations

import asyncio
import json
from collections import defaultdict

import pytest

from jobgate.errors import QueueClosedError
from jobgate.queue import QueueChannel, QueueConsumerOptions, QueueJob, RedisQueueTransport


class FakeRedis:
    """The subset of redis.asyncio.Redis the transport uses, on plain lists."""

    def __init__(self) -> None:
        self.lists: dict[str, list[str]] = defaultdict(list)
        self.values: dict[str, str] = {}
        self.expiry: dict[str, int] = {}
        self.closed = False

    async def set(self, key: str, value: str, nx: bool = False, ex: int | None = None):
        if nx and key in self.values:
            return None
        self.values[key] = value
        if ex is not None:
            self.expiry[key] = ex
        return True

    async def incr(self, key: str) -> int:
        current = int(self.values.get(key, "0")) + 1
        self.values[key] = str(current)
        return current

    async def lpush(self, key: str, value: str) -> int:
        self.lists[key].insert(0, value)
        return len(self.lists[key])

    def _move(self, src: str, dst: str, src_side: str, dst_side: str) -> str | None:
        source = self.lists[src]
        if not source:
            return None
        value = source.pop(0) if src_side == "LEFT" else source.pop()
        if dst_side == "LEFT":
            self.lists[dst].insert(0, value)
        else:
            self.lists[dst].append(value)
        return value

    async def blmove(self, src: str, dst: str, timeout: float, src_side: str, dst_side: str):
        value = self._move(src, dst, src_side, dst_side)
        if value is None:
            await asyncio.sleep(0.005)
        return value

    async def lmove(self, src: str, dst: str, src_side: str, dst_side: str):
        return self._move(src, dst, src_side, dst_side)

    async def lrem(self, key: str, count: int, value: str) -> int:
        items = self.lists[key]
        if value in items:
            items.remove(value)
            return 1
        return 0

    async def aclose(self) -> None:
        self.closed = True


def _transport(client: FakeRedis) -> RedisQueueTransport:
    return RedisQueueTransport(client, prefix="t", poll_timeout=0.01, dedup_ttl_seconds=300)


def test_publish_pushes_json_items_with_generated_ids() -> None:
    async def _run() -> None:
        client = FakeRedis()
        transport = _transport(client)

        job = await transport.publish(QueueChannel.BOT_EVENTS, "post", {"text": "hi"})

        assert job.id == "t-bot-events-1"
        (raw,) = client.lists["t-bot-events:waiting"]
        assert json.loads(raw) == {"id": "t-bot-events-1", "name": "post", "data": {"text": "hi"}}

    asyncio.run(_run())


def test_duplicate_job_id_is_published_once() -> None:
    async def _run() -> None:
        client = FakeRedis()
        transport = _transport(client)

        first = await transport.publish(QueueChannel.JOBS, "ASK", {"n": 1}, job_id="job-1")
        second = await transport.publish(QueueChannel.JOBS, "ASK", {"n": 2}, job_id="job-1")

        assert first.id == second.id == "job-1"
        assert len(client.lists["t-jobs:waiting"]) == 1
        assert client.expiry["t-jobs:id:job-1"] == 300

    asyncio.run(_run())


def test_consumer_handles_items_and_clears_active_list() -> None:
    async def _run() -> None:
        client = FakeRedis()
        transport = _transport(client)
        seen: list[str] = []
        failures: list[str] = []
        settled = asyncio.Event()

        async def handler(job: QueueJob) -> None:
            seen.append(job.id)
            if job.name == "bad":
                raise RuntimeError("nope")

        def on_failed(job: QueueJob, exc: BaseException) -> None:
            failures.append(job.id)
            settled.set()

        await transport.publish(QueueChannel.JOBS, "ASK", {}, job_id="a")
        await transport.publish(QueueChannel.JOBS, "bad", {}, job_id="b")
        transport.subscribe(QueueChannel.JOBS, QueueConsumerOptions(handler, on_failed=on_failed))

        await asyncio.wait_for(settled.wait(), timeout=1)
        await transport.close()

        assert seen == ["a", "b"]
        assert failures == ["b"]
        assert client.lists["t-jobs:waiting"] == []
        assert client.lists["t-jobs:active"] == []
        assert client.closed

    asyncio.run(_run())


class FlakyAckRedis(FakeRedis):
    def __init__(self) -> None:
        super().__init__()
        self.failed_acks = 0

    async def lrem(self, key: str, count: int, value: str) -> int:
        if not self.failed_acks:
            self.failed_acks += 1
            raise ConnectionError("connection reset")
        return await super().lrem(key, count, value)


def test_failed_ack_keeps_consumer_running() -> None:
    async def _run() -> None:
        client = FlakyAckRedis()
        transport = _transport(client)
        seen: list[str] = []
        done = asyncio.Event()

        async def handler(job: QueueJob) -> None:
            seen.append(job.id)
            if len(seen) == 2:
                done.set()

        await transport.publish(QueueChannel.JOBS, "ASK", {}, job_id="a")
        await transport.publish(QueueChannel.JOBS, "ASK", {}, job_id="b")
        transport.subscribe(QueueChannel.JOBS, QueueConsumerOptions(handler))

        await asyncio.wait_for(done.wait(), timeout=1)
        await asyncio.sleep(0.02)
        await transport.close()

        assert seen == ["a", "b"]
        assert client.lists["t-jobs:waiting"] == []
        # the unacknowledged item is left for recover_stalled()
        assert [json.loads(raw)["id"] for raw in client.lists["t-jobs:active"]] == ["a"]

    asyncio.run(_run())


def test_recover_stalled_requeues_in_order() -> None:
    async def _run() -> None:
        client = FakeRedis()
        transport = _transport(client)
        for job_id in ("a", "b", "c"):
            await transport.publish(QueueChannel.JOBS, "RUN", {}, job_id=job_id)
        # simulate a consumer that took two items and died
        client._move("t-jobs:waiting", "t-jobs:active", "RIGHT", "LEFT")
        client._move("t-jobs:waiting", "t-jobs:active", "RIGHT", "LEFT")

        moved = await transport.recover_stalled(QueueChannel.JOBS)

        assert moved == 2
        assert client.lists["t-jobs:active"] == []
        order = [json.loads(raw)["id"] for raw in reversed(client.lists["t-jobs:waiting"])]
        assert order == ["a", "b", "c"]

    asyncio.run(_run())


def test_closed_transport_rejects_publish_and_subscribe() -> None:
    async def _run() -> None:
        transport = _transport(FakeRedis())
        await transport.close()
        await transport.close()

        async def handler(job: QueueJob) -> None:
            return None

        with pytest.raises(QueueClosedError):
            await transport.publish(QueueChannel.JOBS, "RUN", {})
        with pytest.raises(QueueClosedError):
            transport.subscribe(QueueChannel.JOBS, QueueConsumerOptions(handler))

    asyncio.run(_run())
