"""Approval request store with atomic pending-to-resolved transitions.

Design notes:
- Every write after create() is a conditional update keyed by the approval id
  that requires the stored status to still be "pending"
- A losing writer observes not_pending and the reloaded winner's record
- Expiry is evaluated lazily when a resolution is attempted; expire_stale()
  is an explicit sweep for operators, not a background timer
- The store never executes deferred operations
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable

from pydantic import ValidationError

from ..errors import ApprovalNotFoundError
from ..records.base import AsyncRecordStore
from ..types import EnqueueBootstrapOperation, EnqueueJobOperation
from .common import (
    APPROVAL_KEY_PREFIX,
    DEFAULT_TTL_SECONDS,
    ApprovalDraft,
    ApprovalRequest,
    ApprovalResolution,
    ApprovalStatus,
    ApprovalTransitionResult,
    approval_key,
    validate_nonempty_str,
)

_logger = logging.getLogger(__name__)

_PENDING = ApprovalStatus.PENDING.value


class ApprovalStore:
    """Persists approval requests in a keyed record store under ``approval:``."""

    def __init__(
        self,
        records: AsyncRecordStore,
        *,
        now: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._records = records
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._id_factory = id_factory or (lambda: uuid.uuid4().hex)

    async def create(
        self,
        base: ApprovalDraft,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        now: datetime | None = None,
    ) -> ApprovalRequest:
        """Persist a new pending request expiring ``ttl_seconds`` from now."""
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        created_at = now or self._now()
        request = ApprovalRequest(
            **base.model_dump(),
            id=self._id_factory(),
            status=ApprovalStatus.PENDING,
            created_at=created_at,
            expires_at=created_at + timedelta(seconds=ttl_seconds),
        )
        await self._records.upsert(approval_key(request.id), request.to_record())
        _logger.debug("Created approval %s for %s", request.id, request.action)
        return request

    async def load(self, approval_id: str) -> ApprovalRequest | None:
        validate_nonempty_str("approval_id", approval_id)
        record = await self._records.load_by_key(approval_key(approval_id))
        return self._parse(record)

    async def get(self, approval_id: str) -> ApprovalRequest:
        """Like load(), but raises ApprovalNotFoundError when the request is absent."""
        request = await self.load(approval_id)
        if request is None:
            raise ApprovalNotFoundError(f"Approval request not found: {approval_id}")
        return request

    async def list_pending(self) -> list[ApprovalRequest]:
        records = await self._records.load_all_by_prefix(APPROVAL_KEY_PREFIX)
        requests = (self._parse(record) for record in records)
        return [request for request in requests if request is not None and request.is_pending]

    async def resolve_if_pending(
        self,
        approval_id: str,
        resolution: ApprovalResolution,
        resolved_by_user_id: str | None = None,
        now: datetime | None = None,
    ) -> ApprovalTransitionResult:
        """Move a pending request to ``resolution``; expiry always wins."""
        request = await self.load(approval_id)
        if request is None:
            return ApprovalTransitionResult(changed=False, reason="not_found")
        if not request.is_pending:
            return ApprovalTransitionResult(changed=False, reason="not_pending", request=request)

        now = now or self._now()
        if request.is_expired(now):
            resolution = ApprovalResolution.EXPIRED
            resolved_by_user_id = None
        updates: dict[str, object] = {
            "status": ApprovalStatus(resolution.value),
            "resolution": resolution,
            "resolved_at": now,
        }
        if resolved_by_user_id:
            updates["resolved_by"] = {"user_id": resolved_by_user_id}
        resolved = ApprovalRequest.model_validate({**request.model_dump(), **updates})

        if not await self._write_if_pending(resolved):
            return await self._lost_race(request)
        reason = "expired" if resolution is ApprovalResolution.EXPIRED else "updated"
        _logger.info(
            "Approval %s resolved as %s by %s", resolved.id, resolution.value, resolved_by_user_id
        )
        return ApprovalTransitionResult(changed=True, reason=reason, request=resolved)

    async def approve_if_pending(
        self, approval_id: str, resolved_by_user_id: str
    ) -> ApprovalTransitionResult:
        return await self.resolve_if_pending(
            approval_id, ApprovalResolution.APPROVED, resolved_by_user_id
        )

    async def deny_if_pending(
        self, approval_id: str, resolved_by_user_id: str
    ) -> ApprovalTransitionResult:
        return await self.resolve_if_pending(
            approval_id, ApprovalResolution.DENIED, resolved_by_user_id
        )

    async def cancel_if_pending(
        self, approval_id: str, resolved_by_user_id: str
    ) -> ApprovalTransitionResult:
        return await self.resolve_if_pending(
            approval_id, ApprovalResolution.CANCELLED, resolved_by_user_id
        )

    async def expire_if_pending(
        self, approval_id: str, now: datetime | None = None
    ) -> ApprovalTransitionResult:
        return await self.resolve_if_pending(approval_id, ApprovalResolution.EXPIRED, now=now)

    async def expire_stale(self, now: datetime | None = None) -> list[ApprovalRequest]:
        """Expire every pending request past its deadline. Returns the ones this call expired."""
        now = now or self._now()
        expired: list[ApprovalRequest] = []
        for request in await self.list_pending():
            if not request.is_expired(now):
                continue
            result = await self.expire_if_pending(request.id, now=now)
            if result.changed and result.request is not None:
                expired.append(result.request)
        return expired

    async def assign_context_if_pending(
        self,
        approval_id: str,
        *,
        channel_id: str | None = None,
        thread_id: str | None = None,
        update_operation_routing: bool = True,
    ) -> ApprovalTransitionResult:
        """Re-home a pending request into the channel/thread created for it."""
        request = await self.load(approval_id)
        if request is None:
            return ApprovalTransitionResult(changed=False, reason="not_found")
        if not request.is_pending:
            return ApprovalTransitionResult(changed=False, reason="not_pending", request=request)

        patch = {
            key: value
            for key, value in (("channel_id", channel_id), ("thread_id", thread_id))
            if value
        }
        context = request.context.model_copy(update=patch)
        operation = request.operation
        if update_operation_routing:
            if isinstance(operation, EnqueueJobOperation):
                job = operation.job.model_copy(
                    update={"channel": operation.job.channel.model_copy(update=patch)}
                )
                operation = operation.model_copy(update={"job": job})
            elif isinstance(operation, EnqueueBootstrapOperation):
                bootstrap = operation.request.model_copy(
                    update={"channel": operation.request.channel.model_copy(update=patch)}
                )
                operation = operation.model_copy(update={"request": bootstrap})

        if context == request.context and operation == request.operation:
            return ApprovalTransitionResult(changed=False, reason="unchanged", request=request)

        updated = request.model_copy(update={"context": context, "operation": operation})
        if not await self._write_if_pending(updated):
            return await self._lost_race(request)
        return ApprovalTransitionResult(changed=True, reason="updated", request=updated)

    async def _write_if_pending(self, request: ApprovalRequest) -> bool:
        return await self._records.conditional_update(
            approval_key(request.id), request.to_record(), field="status", expected=_PENDING
        )

    async def _lost_race(self, request: ApprovalRequest) -> ApprovalTransitionResult:
        current = await self.load(request.id)
        if current is None:
            return ApprovalTransitionResult(changed=False, reason="not_found")
        return ApprovalTransitionResult(changed=False, reason="not_pending", request=current)

    @staticmethod
    def _parse(record: dict[str, object] | None) -> ApprovalRequest | None:
        if record is None:
            return None
        try:
            return ApprovalRequest.model_validate(record)
        except ValidationError as exc:
            _logger.warning("Ignoring malformed approval record %s: %s", record.get("id"), exc)
            return None
