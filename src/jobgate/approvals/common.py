"""Approval request models, constants and validators."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from ..policies import Subject
from ..records.base import APPROVAL_PREFIX
from ..types import DeferredOperation

DEFAULT_TTL_SECONDS: int = 86400  # 24 hours
APPROVAL_KEY_PREFIX = APPROVAL_PREFIX


def approval_key(approval_id: str) -> str:
    return f"{APPROVAL_KEY_PREFIX}{approval_id}"


def validate_nonempty_str(name: str, value: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{name} must be a non-empty string")


def _require_aware(value: datetime) -> datetime:
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        raise ValueError("timestamps must be timezone-aware")
    return value


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class ApprovalResolution(str, Enum):
    APPROVED = "approved"
    DENIED = "denied"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class ApprovalContext(BaseModel):
    """Conversation an approval belongs to; resolutions must come from here."""

    model_config = {"frozen": True}

    provider: str
    channel_id: str
    thread_id: str | None = None
    workspace_id: str | None = None
    guild_id: str | None = None


class Requester(BaseModel):
    model_config = {"frozen": True}

    user_id: str


class ApprovalDraft(BaseModel):
    """Everything about an approval request except identity, status and timing."""

    model_config = {"frozen": True}

    action: str
    provider: str
    context: ApprovalContext
    requested_by: Requester
    approver_subjects: tuple[Subject, ...] = ()
    notify_subjects: tuple[Subject, ...] = ()
    operation: DeferredOperation
    summary: str
    rule_id: str | None = None

    @field_validator("summary", "action")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("action and summary must be non-empty strings")
        return value


class ApprovalRequest(ApprovalDraft):
    """A pending or resolved approval. Immutable once status leaves pending."""

    id: str
    status: ApprovalStatus = ApprovalStatus.PENDING
    created_at: datetime
    expires_at: datetime
    resolution: ApprovalResolution | None = None
    resolved_at: datetime | None = None
    resolved_by: Requester | None = None

    @field_validator("created_at", "expires_at", "resolved_at")
    @classmethod
    def _timestamps_aware(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        return _require_aware(value)

    @model_validator(mode="after")
    def _validate_lifecycle(self) -> "ApprovalRequest":
        if self.expires_at <= self.created_at:
            raise ValueError("expires_at must be after created_at")
        if self.status is ApprovalStatus.PENDING:
            if self.resolution is not None or self.resolved_at is not None:
                raise ValueError("pending requests cannot carry a resolution")
        else:
            if self.resolution is None or self.resolution.value != self.status.value:
                raise ValueError("resolution must mirror status once resolved")
            if self.resolved_at is None:
                raise ValueError("resolved_at is required once resolved")
        return self

    @property
    def is_pending(self) -> bool:
        return self.status is ApprovalStatus.PENDING

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def to_record(self) -> dict[str, object]:
        return self.model_dump(mode="json", exclude_none=True)


class ApprovalTransitionResult(BaseModel):
    """Outcome of a conditional transition on an approval request."""

    model_config = {"frozen": True}

    changed: bool
    reason: Literal["not_found", "not_pending", "expired", "updated", "unchanged"]
    request: ApprovalRequest | None = Field(default=None)
