from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from jobgate.types import ChannelContext, JobSpec, JobType

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable UTC clock injected wherever components take ``now``."""

    def __init__(self, start: datetime = T0) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


def make_job(
    job_id: str = "job-1",
    job_type: JobType = JobType.ASK,
    *,
    provider: str = "slack",
    channel_id: str = "C1",
    thread_id: str | None = "T1",
    user_id: str = "U1",
    **extra: Any,
) -> JobSpec:
    return JobSpec(
        job_id=job_id,
        type=job_type,
        channel=ChannelContext(
            provider=provider, channel_id=channel_id, thread_id=thread_id, user_id=user_id
        ),
        repo_keys=["app"],
        request_text="do the thing",
        **extra,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
