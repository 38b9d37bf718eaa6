from __future__ import annotations

import asyncio

from conftest import make_job
from jobgate.queue import (
    InprocQueueTransport,
    QueueChannel,
    enqueue_bootstrap,
    enqueue_bot_event,
    enqueue_job,
    enqueue_worker_event,
)
from jobgate.types import BootstrapRequest, BotEvent, ChannelContext, JobType, WorkerEvent


def test_enqueue_helpers_route_to_channels() -> None:
    async def _run() -> None:
        transport = InprocQueueTransport(prefix="t")
        channel = ChannelContext(provider="discord", channel_id="C1", user_id="U1")

        job = await enqueue_job(transport, make_job("job-7", JobType.REVIEW, extra_field="kept"))
        bootstrap = await enqueue_bootstrap(
            transport,
            BootstrapRequest(
                request_id="boot-1", repo_name="demo", repo_key="demo", service="local", channel=channel
            ),
        )
        event = await enqueue_worker_event(transport, WorkerEvent(type="codex_usage"))
        bot = await enqueue_bot_event(
            transport, BotEvent(provider="discord", type="post", payload={"text": "hi"})
        )

        assert (job.id, job.name) == ("job-7", "REVIEW")
        assert job.data["extra_field"] == "kept"
        assert job.data["type"] == "REVIEW"
        assert (bootstrap.id, bootstrap.name) == ("boot-1", "bootstrap")
        assert (event.id, event.name) == ("t-worker-events-1", "codex_usage")
        assert bot.name == "post"
        assert bot.data["payload"] == {"text": "hi"}
        for queue in QueueChannel:
            assert transport.channel(queue).queued == 1
        await transport.close()

    asyncio.run(_run())
