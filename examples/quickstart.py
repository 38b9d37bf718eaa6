"""Quickstart demo for jobgate.

A RUN job needs approval from an admin group. The demo:
- creates the approval request and prints it with the console notifier
- approves it as a group member, which persists and enqueues the job
- lets an in-process worker run the job to completion
"""

from __future__ import annotations

import asyncio
import logging

from jobgate import (
    ActorContext,
    ApprovalStore,
    CachedGroupResolver,
    EnqueueJobOperation,
    GroupMembershipCache,
    InMemoryRecordStore,
    InprocQueueTransport,
    JobOutcome,
    JobRegistry,
    JobSpec,
    PermissionsConfig,
    PermissionsService,
    WorkerRuntime,
)
from jobgate.notifiers import ConsoleApprovalNotifier

CONFIG = PermissionsConfig(
    rules=[
        {
            "id": "admins-approve",
            "effect": "allow",
            "actions": ["approval.grant", "approval.deny"],
            "subjects": ["group:slack:S_ADMINS"],
        },
        {"id": "nobody-else", "effect": "deny", "actions": ["approval.grant", "approval.deny"]},
        {
            "id": "gate-run",
            "effect": "require_approval",
            "actions": ["jobs.run"],
            "approver_subjects": ["group:slack:S_ADMINS"],
        },
    ]
)


class EchoRunner:
    """Stands in for a coding agent."""

    async def run(self, job: JobSpec) -> JobOutcome:
        await asyncio.sleep(0.1)
        return JobOutcome(summary=f"ran: {job.request_text}")


async def lookup_slack_groups(group_ids: list[str]) -> list[str]:
    # A real adapter would call the Slack usergroups API here.
    return [group_id for group_id in group_ids if group_id == "S_ADMINS"]


async def main() -> None:
    records = InMemoryRecordStore()
    registry = JobRegistry(records)
    transport = InprocQueueTransport()
    service = PermissionsService(
        CONFIG,
        ApprovalStore(records),
        registry,
        transport,
        notifier=ConsoleApprovalNotifier(),
    )
    worker = WorkerRuntime(transport, registry, EchoRunner())
    worker.start()

    job = JobSpec.model_validate(
        {
            "job_id": "job-demo",
            "type": "RUN",
            "channel": {"provider": "slack", "channel_id": "C1", "user_id": "U1", "thread_id": "T1"},
            "request_text": "pytest -q",
        }
    )
    requester = ActorContext(provider="slack", user_id="U1", channel_id="C1", thread_id="T1")
    created = await service.authorize_or_create_approval(
        requester, "jobs.run", summary="Run the test suite", operation=EnqueueJobOperation(job=job)
    )
    print(f"Decision: {created.status}")

    cache = GroupMembershipCache(ttl_seconds=CONFIG.group_cache_ttl_seconds)
    admin = ActorContext(
        provider="slack",
        user_id="U2",
        channel_id="C1",
        thread_id="T1",
        resolve_groups=CachedGroupResolver(cache, "slack", "U2", lookup_slack_groups),
    )
    result = await service.resolve_approval_interaction(
        admin, approval_id=created.request.id, resolution_action="approval.grant"
    )
    print(service.build_approval_resolution_message("slack", result.request, result.status, result.message))

    for _ in range(50):
        record = await registry.load(job.job_id)
        if record is not None and record.status.value == "ok":
            print(f"\nJob finished: {record.summary}")
            break
        await asyncio.sleep(0.05)

    await worker.close()
    await transport.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())
