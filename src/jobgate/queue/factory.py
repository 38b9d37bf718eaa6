"""Queue transport selection."""

from __future__ import annotations

from typing import assert_never

from ..errors import ConfigurationError
from .inproc import InprocQueueTransport
from .redis_driver import RedisQueueTransport
from .types import QueueTransport, QueueTransportConfig


def create_queue_transport(config: QueueTransportConfig) -> QueueTransport:
    if config.driver == "redis":
        if not config.redis_url:
            raise ConfigurationError(
                'JOBGATE_REDIS_URL (or queue.redis_url in the config file) is required when the queue driver is "redis".'
            )
        return RedisQueueTransport.from_url(config.redis_url, prefix=config.prefix)
    if config.driver == "inproc":
        return InprocQueueTransport(prefix=config.prefix)
    assert_never(config.driver)
