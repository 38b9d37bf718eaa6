"""Approval requests and their store."""

from .common import (
    APPROVAL_KEY_PREFIX,
    DEFAULT_TTL_SECONDS,
    ApprovalContext,
    ApprovalDraft,
    ApprovalRequest,
    ApprovalResolution,
    ApprovalStatus,
    ApprovalTransitionResult,
    Requester,
)
from .store import ApprovalStore

__all__ = (
    "APPROVAL_KEY_PREFIX",
    "DEFAULT_TTL_SECONDS",
    "ApprovalContext",
    "ApprovalDraft",
    "ApprovalRequest",
    "ApprovalResolution",
    "ApprovalStatus",
    "ApprovalStore",
    "ApprovalTransitionResult",
    "Requester",
)
