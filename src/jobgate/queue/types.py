"""Queue transport protocols and shared types."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Literal, Protocol, runtime_checkable

from pydantic import BaseModel

Payload = dict[str, Any]


class QueueChannel(str, Enum):
    """Logical channels between bots and workers."""

    JOBS = "jobs"
    BOOTSTRAP = "bootstrap"
    WORKER_EVENTS = "worker-events"
    BOT_EVENTS = "bot-events"


def queue_name(prefix: str, channel: QueueChannel | str) -> str:
    return f"{prefix}-{QueueChannel(channel).value}"


@dataclass(frozen=True, slots=True)
class QueueJob:
    """Handle for one published item. ``data`` is a JSON-compatible payload."""

    id: str
    name: str
    data: Payload


JobHandler = Callable[[QueueJob], Awaitable[None]]
CompletedHook = Callable[[QueueJob], "Awaitable[None] | None"]
FailedHook = Callable[[QueueJob, BaseException], "Awaitable[None] | None"]


@dataclass(frozen=True)
class QueueConsumerOptions:
    """Consumer settings; hooks are best-effort and may be sync or async."""

    handler: JobHandler
    concurrency: int = 1
    on_completed: CompletedHook | None = field(default=None)
    on_failed: FailedHook | None = field(default=None)

    def __post_init__(self) -> None:
        if self.concurrency < 1:
            raise ValueError("concurrency must be at least 1")


@runtime_checkable
class QueueConsumerHandle(Protocol):
    async def close(self) -> None:
        """Stop receiving items. In-flight handlers are allowed to finish."""
        ...


@runtime_checkable
class QueueTransport(Protocol):
    """Publish/subscribe transport between producers and workers.

    Implementations must:
    - Deliver each published item to the channel's subscriber
    - Honour caller-supplied job ids for deduplication
    - Wait for in-flight handlers on close()
    """

    driver: str

    async def publish(
        self,
        channel: QueueChannel | str,
        name: str,
        payload: Payload,
        *,
        job_id: str | None = None,
    ) -> QueueJob:
        ...

    def subscribe(
        self, channel: QueueChannel | str, options: QueueConsumerOptions
    ) -> QueueConsumerHandle:
        ...

    async def close(self) -> None:
        ...


class QueueTransportConfig(BaseModel):
    model_config = {"frozen": True}

    driver: Literal["inproc", "redis"] = "inproc"
    redis_url: str | None = None
    prefix: str = "jobgate"
