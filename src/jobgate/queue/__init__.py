"""Queue transport abstraction and drivers."""

from .factory import create_queue_transport
from .inproc import InprocQueueChannel, InprocQueueTransport
from .publish import enqueue_bootstrap, enqueue_bot_event, enqueue_job, enqueue_worker_event
from .redis_driver import RedisQueueTransport
from .types import (
    QueueChannel,
    QueueConsumerHandle,
    QueueConsumerOptions,
    QueueJob,
    QueueTransport,
    QueueTransportConfig,
    queue_name,
)

__all__ = (
    "InprocQueueChannel",
    "InprocQueueTransport",
    "QueueChannel",
    "QueueConsumerHandle",
    "QueueConsumerOptions",
    "QueueJob",
    "QueueTransport",
    "QueueTransportConfig",
    "RedisQueueTransport",
    "create_queue_transport",
    "enqueue_bootstrap",
    "enqueue_bot_event",
    "enqueue_job",
    "enqueue_worker_event",
    "queue_name",
)
