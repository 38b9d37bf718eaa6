from __future__ import annotations

import asyncio
import itertools
from datetime import timedelta
from pathlib import Path

import pytest

from conftest import T0, FakeClock, make_job
from jobgate.approvals import (
    ApprovalContext,
    ApprovalDraft,
    ApprovalResolution,
    ApprovalStatus,
    ApprovalStore,
    Requester,
)
from jobgate.errors import ApprovalNotFoundError
from jobgate.policies import Subject
from jobgate.records import InMemoryRecordStore, SQLiteRecordStore, SyncRecordStoreAdapter
from jobgate.types import EnqueueJobOperation, EnqueueWorkerEventOperation, WorkerEvent


def _draft(**overrides: object) -> ApprovalDraft:
    fields: dict[str, object] = {
        "action": "jobs.run",
        "provider": "slack",
        "context": ApprovalContext(provider="slack", channel_id="C1", thread_id="T1"),
        "requested_by": Requester(user_id="U1"),
        "approver_subjects": (Subject.user("U9"),),
        "notify_subjects": (Subject.user("U9"),),
        "operation": EnqueueJobOperation(job=make_job("job-1")),
        "summary": "run the tests",
        "rule_id": "gate-run",
    }
    fields.update(overrides)
    return ApprovalDraft(**fields)


def _store(clock: FakeClock, records: object | None = None) -> ApprovalStore:
    counter = itertools.count(1)
    return ApprovalStore(
        records if records is not None else InMemoryRecordStore(),
        now=clock,
        id_factory=lambda: f"apr-{next(counter)}",
    )


def test_create_persists_pending_request(clock: FakeClock) -> None:
    async def _run() -> None:
        store = _store(clock)
        request = await store.create(_draft(), ttl_seconds=600)

        assert request.id == "apr-1"
        assert request.status is ApprovalStatus.PENDING
        assert request.created_at == T0
        assert request.expires_at == T0 + timedelta(seconds=600)

        loaded = await store.load("apr-1")
        assert loaded == request
        assert isinstance(loaded.operation, EnqueueJobOperation)
        assert loaded.operation.job.job_id == "job-1"

    asyncio.run(_run())


def test_create_rejects_non_positive_ttl(clock: FakeClock) -> None:
    async def _run() -> None:
        with pytest.raises(ValueError, match="ttl_seconds"):
            await _store(clock).create(_draft(), ttl_seconds=0)

    asyncio.run(_run())


def test_resolve_is_single_shot(clock: FakeClock) -> None:
    async def _run() -> None:
        store = _store(clock)
        request = await store.create(_draft(), ttl_seconds=600)

        first = await store.resolve_if_pending(request.id, ApprovalResolution.APPROVED, "U9")
        second = await store.resolve_if_pending(request.id, ApprovalResolution.DENIED, "U8")

        assert first.changed and first.reason == "updated"
        assert first.request.status is ApprovalStatus.APPROVED
        assert first.request.resolution is ApprovalResolution.APPROVED
        assert first.request.resolved_by == Requester(user_id="U9")
        assert first.request.resolved_at == T0

        assert not second.changed
        assert second.reason == "not_pending"
        assert second.request.status is ApprovalStatus.APPROVED
        assert second.request.resolved_by == Requester(user_id="U9")

    asyncio.run(_run())


def test_expiry_wins_over_requested_resolution(clock: FakeClock) -> None:
    async def _run() -> None:
        store = _store(clock)
        request = await store.create(_draft(), ttl_seconds=60)
        clock.advance(seconds=60)

        result = await store.approve_if_pending(request.id, "U9")

        assert result.changed
        assert result.reason == "expired"
        assert result.request.status is ApprovalStatus.EXPIRED
        assert result.request.resolved_by is None

    asyncio.run(_run())


def test_unknown_id_is_not_found(clock: FakeClock) -> None:
    async def _run() -> None:
        store = _store(clock)
        result = await store.deny_if_pending("nope", "U9")
        assert not result.changed
        assert result.reason == "not_found"
        assert result.request is None
        assert await store.load("nope") is None

    asyncio.run(_run())


def test_concurrent_resolutions_have_exactly_one_winner(tmp_path: Path, clock: FakeClock) -> None:
    async def _run() -> None:
        records = SyncRecordStoreAdapter(SQLiteRecordStore(tmp_path / "records.db"))
        store = _store(clock, records)
        request = await store.create(_draft(), ttl_seconds=600)

        results = await asyncio.gather(
            store.approve_if_pending(request.id, "U9"),
            store.deny_if_pending(request.id, "U8"),
            store.cancel_if_pending(request.id, "U1"),
            store.approve_if_pending(request.id, "U7"),
        )

        winners = [result for result in results if result.changed]
        assert len(winners) == 1
        final = await store.load(request.id)
        assert final == winners[0].request
        for loser in (result for result in results if not result.changed):
            assert loser.reason == "not_pending"
            assert loser.request == final

    asyncio.run(_run())


def test_expire_stale_only_touches_overdue_requests(clock: FakeClock) -> None:
    async def _run() -> None:
        store = _store(clock)
        short = await store.create(_draft(), ttl_seconds=60)
        long = await store.create(_draft(), ttl_seconds=3600)
        clock.advance(minutes=5)

        expired = await store.expire_stale()

        assert [request.id for request in expired] == [short.id]
        assert [request.id for request in await store.list_pending()] == [long.id]
        assert await store.expire_stale() == []

    asyncio.run(_run())


def test_malformed_records_read_as_missing(clock: FakeClock) -> None:
    async def _run() -> None:
        records = InMemoryRecordStore()
        await records.upsert("approval:bad", {"id": "bad", "status": "pending"})
        store = _store(clock, records)
        assert await store.load("bad") is None
        assert await store.list_pending() == []

    asyncio.run(_run())


def test_assign_context_rehomes_request_and_job_routing(clock: FakeClock) -> None:
    async def _run() -> None:
        store = _store(clock)
        request = await store.create(_draft(), ttl_seconds=600)

        result = await store.assign_context_if_pending(
            request.id, channel_id="C2", thread_id="T2"
        )

        assert result.changed and result.reason == "updated"
        updated = await store.load(request.id)
        assert updated.context.channel_id == "C2"
        assert updated.context.thread_id == "T2"
        assert updated.operation.job.channel.channel_id == "C2"
        assert updated.operation.job.channel.thread_id == "T2"

        again = await store.assign_context_if_pending(request.id, channel_id="C2", thread_id="T2")
        assert not again.changed
        assert again.reason == "unchanged"

    asyncio.run(_run())


def test_assign_context_can_leave_operation_routing_alone(clock: FakeClock) -> None:
    async def _run() -> None:
        store = _store(clock)
        request = await store.create(_draft(), ttl_seconds=600)

        await store.assign_context_if_pending(
            request.id, thread_id="T9", update_operation_routing=False
        )

        updated = await store.load(request.id)
        assert updated.context.thread_id == "T9"
        assert updated.operation.job.channel.thread_id == "T1"

    asyncio.run(_run())


def test_assign_context_refuses_resolved_requests(clock: FakeClock) -> None:
    async def _run() -> None:
        store = _store(clock)
        request = await store.create(
            _draft(operation=EnqueueWorkerEventOperation(event=WorkerEvent(type="codex_usage"))),
            ttl_seconds=600,
        )
        await store.cancel_if_pending(request.id, "U1")

        result = await store.assign_context_if_pending(request.id, channel_id="C2")

        assert not result.changed
        assert result.reason == "not_pending"
        assert result.request.context.channel_id == "C1"

    asyncio.run(_run())


def test_get_raises_for_unknown_request(clock: FakeClock) -> None:
    async def _run() -> None:
        store = _store(clock)
        request = await store.create(_draft())
        assert await store.get(request.id) == request
        assert request.expires_at - request.created_at == timedelta(days=1)
        with pytest.raises(ApprovalNotFoundError):
            await store.get("missing")

    asyncio.run(_run())
