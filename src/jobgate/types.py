"""Typed models for jobgate payloads."""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator


def _non_empty(name: str, value: str) -> str:
    if not value or not value.strip():
        raise ValueError(f"{name} must be a non-empty string")
    return value


class Provider(str, Enum):
    """Chat platforms that originate requests."""

    SLACK = "slack"
    DISCORD = "discord"


class JobType(str, Enum):
    ASK = "ASK"
    EXPLORE = "EXPLORE"
    PLAN = "PLAN"
    IMPLEMENT = "IMPLEMENT"
    REVIEW = "REVIEW"
    RUN = "RUN"
    MENTION = "MENTION"


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    OK = "ok"
    FAILED = "failed"


class ChannelContext(BaseModel):
    """Where a request came from and where replies should go."""

    provider: str
    channel_id: str
    user_id: str
    thread_id: str | None = None
    guild_id: str | None = None
    workspace_id: str | None = None

    @field_validator("provider", "channel_id")
    @classmethod
    def _required(cls, value: str, info: ValidationInfo) -> str:
        return _non_empty(info.field_name, value)


class JobSpec(BaseModel):
    """A unit of agent work. Unknown fields are carried through opaquely."""

    model_config = ConfigDict(extra="allow")

    job_id: str
    type: JobType
    channel: ChannelContext
    repo_keys: list[str] = Field(default_factory=list)
    git_ref: str = "main"
    request_text: str = ""
    agent: str | None = None
    agent_thread_ids: dict[str, str] = Field(default_factory=dict)
    resume_from_job_id: str | None = None

    @field_validator("job_id")
    @classmethod
    def _job_id_non_empty(cls, value: str) -> str:
        return _non_empty("job_id", value)


class BootstrapRequest(BaseModel):
    """Request to create a new repository and register it."""

    model_config = ConfigDict(extra="allow")

    request_id: str
    repo_name: str
    repo_key: str
    service: Literal["github", "gitlab", "local"]
    channel: ChannelContext
    owner: str | None = None
    description: str | None = None
    visibility: Literal["private", "public"] | None = None
    local_path: str | None = None

    @field_validator("request_id")
    @classmethod
    def _request_id_non_empty(cls, value: str) -> str:
        return _non_empty("request_id", value)


class WorkerEvent(BaseModel):
    """Control event consumed by the worker runtime.

    Known types:
    - "clear_job": payload {"job_id": str, "ttl_ms": int}
    - "clear_jobs_before": payload {"cutoff_iso": str}
    - "codex_usage": payload {"provider", "channel_id", "thread_id"?, "user_id"?}
    """

    type: Literal["clear_job", "clear_jobs_before", "codex_usage"]
    payload: dict[str, Any] = Field(default_factory=dict)
    request_id: str | None = None


class BotEvent(BaseModel):
    """Outbound message for the chat adapters (post, upload, react)."""

    provider: str
    type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    job_id: str | None = None


class EnqueueJobOperation(BaseModel):
    model_config = {"frozen": True}

    kind: Literal["enqueue_job"] = "enqueue_job"
    job: JobSpec


class EnqueueBootstrapOperation(BaseModel):
    model_config = {"frozen": True}

    kind: Literal["enqueue_bootstrap"] = "enqueue_bootstrap"
    request: BootstrapRequest


class EnqueueWorkerEventOperation(BaseModel):
    model_config = {"frozen": True}

    kind: Literal["enqueue_worker_event"] = "enqueue_worker_event"
    event: WorkerEvent


DeferredOperation = Annotated[
    Union[EnqueueJobOperation, EnqueueBootstrapOperation, EnqueueWorkerEventOperation],
    Field(discriminator="kind"),
]
