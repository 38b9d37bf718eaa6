"""Permission-gated orchestration of jobs.

Composes the policy engine, approval store, job registry and queue
transport. The flow for a gated request is:

1. authorize_or_create_approval() evaluates the action for the actor.
2. On require_approval a pending ApprovalRequest carrying the deferred
   operation is persisted, then approvers are notified (best-effort).
3. resolve_approval_interaction() validates the resolver and transitions the
   request through the store's conditional write.
4. Only the caller that observed changed=True with status approved executes
   the deferred operation, so an operation runs at most once.

Design notes:
- Group resolution failures fail closed: the decision becomes deny
- Expected outcomes are result objects; only correctness failures raise
- For enqueue_job the registry write happens before the publish
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Literal, assert_never

from .actions import APPROVAL_ACTIONS, Action
from .approvals.common import (
    ApprovalContext,
    ApprovalDraft,
    ApprovalRequest,
    ApprovalResolution,
    ApprovalTransitionResult,
    Requester,
)
from .approvals.store import ApprovalStore
from .errors import GroupResolutionError
from .groups import GroupResolver
from .jobs.registry import JobRegistry
from .mentions import render_subject_mention, render_subject_mentions
from .notifiers.base import ApprovalNotifier
from .policies import (
    Actor,
    Effect,
    PermissionContext,
    PermissionDecision,
    PermissionsConfig,
    Policy,
    RulePolicy,
    Subject,
)
from .queue.publish import enqueue_bootstrap, enqueue_job, enqueue_worker_event
from .queue.types import QueueTransport
from .types import (
    DeferredOperation,
    EnqueueBootstrapOperation,
    EnqueueJobOperation,
    EnqueueWorkerEventOperation,
)

_logger = logging.getLogger(__name__)

InteractionStatus = Literal[
    "not_found", "already_resolved", "forbidden", "expired", "approved", "denied", "cancelled"
]

_RESOLVER_LABELS = {
    "approved": "Approved by",
    "denied": "Denied by",
    "cancelled": "Cancelled by",
}


@dataclass(frozen=True, slots=True)
class ActorContext:
    """Who is acting, where, and how to look up their groups."""

    provider: str
    user_id: str
    channel_id: str
    thread_id: str | None = None
    workspace_id: str | None = None
    guild_id: str | None = None
    group_ids: tuple[str, ...] = ()
    resolve_groups: GroupResolver | None = None

    def permission_context(self) -> PermissionContext:
        return PermissionContext(
            provider=self.provider,
            channel_id=self.channel_id,
            thread_id=self.thread_id,
            workspace_id=self.workspace_id,
            guild_id=self.guild_id,
        )


@dataclass(frozen=True, slots=True)
class AuthorizationResult:
    decision: PermissionDecision
    allowed: bool
    requires_approval: bool


@dataclass(frozen=True, slots=True)
class AuthorizeOrCreateResult:
    status: Literal["allow", "deny", "require_approval"]
    decision: PermissionDecision
    request: ApprovalRequest | None = None


@dataclass(frozen=True, slots=True)
class ApprovalInteractionResult:
    status: InteractionStatus
    message: str
    request: ApprovalRequest | None = None
    executed: bool = False


class PermissionsService:
    """Authorizes actions, manages approvals and executes approved operations."""

    def __init__(
        self,
        config: PermissionsConfig,
        approvals: ApprovalStore,
        registry: JobRegistry,
        transport: QueueTransport,
        *,
        notifier: ApprovalNotifier | None = None,
        policy: Policy | None = None,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._config = config
        self._approvals = approvals
        self._registry = registry
        self._transport = transport
        self._notifier = notifier
        self._policy = policy or RulePolicy(config)
        self._now = now or (lambda: datetime.now(timezone.utc))

    @property
    def config(self) -> PermissionsConfig:
        return self._config

    @property
    def group_cache_ttl_seconds(self) -> int:
        return self._config.group_cache_ttl_seconds

    async def authorize(self, actor: ActorContext, action: Action | str) -> AuthorizationResult:
        action = Action(action).value
        try:
            decision = await self._evaluate(actor, action)
        except GroupResolutionError as exc:
            _logger.warning(
                "Denying %s for %s user %s: group resolution failed: %s",
                action,
                actor.provider,
                actor.user_id,
                exc,
            )
            decision = PermissionDecision(effect=Effect.DENY, action=action)
        return AuthorizationResult(
            decision=decision,
            allowed=decision.effect is Effect.ALLOW,
            requires_approval=decision.effect is Effect.REQUIRE_APPROVAL,
        )

    async def authorize_or_create_approval(
        self,
        actor: ActorContext,
        action: Action | str,
        *,
        summary: str,
        operation: DeferredOperation,
    ) -> AuthorizeOrCreateResult:
        auth = await self.authorize(actor, action)
        decision = auth.decision
        if decision.effect is Effect.ALLOW:
            return AuthorizeOrCreateResult(status="allow", decision=decision)
        if decision.effect is Effect.DENY:
            return AuthorizeOrCreateResult(status="deny", decision=decision)

        draft = ApprovalDraft(
            action=decision.action,
            provider=actor.provider,
            context=ApprovalContext(
                provider=actor.provider,
                channel_id=actor.channel_id,
                thread_id=actor.thread_id,
                workspace_id=actor.workspace_id,
                guild_id=actor.guild_id,
            ),
            requested_by=Requester(user_id=actor.user_id),
            approver_subjects=decision.approver_subjects,
            notify_subjects=decision.notify_subjects,
            operation=operation,
            summary=summary,
            rule_id=decision.rule_id,
        )
        request = await self._approvals.create(
            draft, self._config.approval_ttl_seconds, now=self._now()
        )
        _logger.info(
            "Approval %s required for %s requested by %s (rule %s)",
            request.id,
            request.action,
            actor.user_id,
            decision.rule_id,
        )
        await self._notify(request)
        return AuthorizeOrCreateResult(
            status="require_approval", decision=decision, request=request
        )

    async def resolve_approval_interaction(
        self,
        actor: ActorContext,
        *,
        approval_id: str,
        resolution_action: Action | str,
    ) -> ApprovalInteractionResult:
        resolution_action = Action(resolution_action).value
        if resolution_action not in APPROVAL_ACTIONS:
            raise ValueError(f"{resolution_action} is not an approval action")

        request = await self._approvals.load(approval_id)
        if request is None:
            return ApprovalInteractionResult("not_found", "Approval request not found.")
        if not request.is_pending:
            return ApprovalInteractionResult(
                "already_resolved",
                f"Approval request is already {request.status.value}.",
                request,
            )
        if not self._matches_context(request, actor):
            return ApprovalInteractionResult(
                "forbidden", "This approval must be resolved in the same context.", request
            )

        now = self._now()
        if request.is_expired(now):
            expired = await self._approvals.expire_if_pending(request.id, now=now)
            return self._transition_outcome(expired, "expired", "Approval request has expired.")

        if resolution_action == Action.APPROVAL_CANCEL.value:
            if request.requested_by.user_id != actor.user_id:
                auth = await self.authorize(actor, Action.APPROVAL_CANCEL)
                if not auth.allowed:
                    return ApprovalInteractionResult(
                        "forbidden",
                        "You are not authorized to cancel this approval request.",
                        request,
                    )
            cancelled = await self._approvals.resolve_if_pending(
                request.id, ApprovalResolution.CANCELLED, actor.user_id, now=now
            )
            return self._transition_outcome(cancelled, "cancelled", "Approval request cancelled.")

        granting = resolution_action == Action.APPROVAL_GRANT.value
        if granting and request.requested_by.user_id == actor.user_id:
            return ApprovalInteractionResult(
                "forbidden", "You cannot approve your own request.", request
            )

        auth = await self.authorize(actor, resolution_action)
        if not auth.allowed:
            verb = "approve" if granting else "deny"
            return ApprovalInteractionResult(
                "forbidden", f"You are not authorized to {verb} this request.", request
            )

        if not granting:
            denied = await self._approvals.resolve_if_pending(
                request.id, ApprovalResolution.DENIED, actor.user_id, now=now
            )
            return self._transition_outcome(denied, "denied", "Approval request denied.")

        approved = await self._approvals.resolve_if_pending(
            request.id, ApprovalResolution.APPROVED, actor.user_id, now=now
        )
        outcome = self._transition_outcome(approved, "approved", "Request approved and executed.")
        if outcome.status != "approved" or outcome.request is None:
            return outcome

        try:
            await self.execute_deferred_operation(outcome.request.operation)
        except Exception:
            _logger.exception("Failed to execute approved operation for approval %s", request.id)
            return ApprovalInteractionResult(
                "approved",
                "Request approved, but execution failed. Please check logs.",
                outcome.request,
                executed=False,
            )
        return ApprovalInteractionResult("approved", outcome.message, outcome.request, executed=True)

    async def execute_deferred_operation(self, operation: DeferredOperation) -> None:
        """Run the side effect withheld behind an approval. Failures propagate."""
        if isinstance(operation, EnqueueJobOperation):
            await self._registry.save_queued(operation.job)
            await enqueue_job(self._transport, operation.job)
        elif isinstance(operation, EnqueueBootstrapOperation):
            await enqueue_bootstrap(self._transport, operation.request)
        elif isinstance(operation, EnqueueWorkerEventOperation):
            await enqueue_worker_event(self._transport, operation.event)
        else:
            assert_never(operation)

    def render_subject_mentions(self, provider: str, subjects: tuple[Subject, ...]) -> list[str]:
        return render_subject_mentions(provider, subjects)

    def build_approval_message(self, provider: str, request: ApprovalRequest) -> str:
        requester = render_subject_mention(provider, Subject.user(request.requested_by.user_id))
        lines = [
            f"Approval required for `{request.action}`.",
            f"Requester: {requester or request.requested_by.user_id}",
            f"Summary: {request.summary}",
            f"Expires at: {request.expires_at.isoformat()}",
            f"Approval ID: {request.id}",
        ]
        mentions = self.render_subject_mentions(provider, request.notify_subjects)
        if mentions:
            lines.append(" ".join(mentions))
        return "\n".join(lines)

    def build_approval_resolution_message(
        self,
        provider: str,
        request: ApprovalRequest,
        status: InteractionStatus,
        message: str,
    ) -> str:
        requester = render_subject_mention(provider, Subject.user(request.requested_by.user_id))
        lines = [
            message,
            f"Job type: {request.action}",
            f"Requester: {requester or request.requested_by.user_id}",
            f"Summary: {request.summary}",
        ]
        label = _RESOLVER_LABELS.get(status)
        if label and request.resolved_by is not None:
            resolver_id = request.resolved_by.user_id
            resolver = render_subject_mention(provider, Subject.user(resolver_id))
            lines.append(f"{label}: {resolver or resolver_id}")
        elif status == "expired" and request.resolved_at is not None:
            lines.append(f"Expired at: {request.resolved_at.isoformat()}")
        lines.append(f"Approval ID: {request.id}")
        return "\n".join(lines)

    async def _evaluate(self, actor: ActorContext, action: str) -> PermissionDecision:
        candidates = self._policy.candidate_group_ids(actor.provider, action)
        resolved: list[str] = []
        if actor.resolve_groups is not None and candidates:
            try:
                resolved = list(await actor.resolve_groups(candidates))
            except GroupResolutionError:
                raise
            except Exception as exc:
                raise GroupResolutionError(str(exc)) from exc
        subject = Actor(
            provider=actor.provider,
            user_id=actor.user_id,
            group_ids=frozenset((*actor.group_ids, *resolved)),
        )
        return self._policy.evaluate(subject, actor.permission_context(), action)

    async def _notify(self, request: ApprovalRequest) -> None:
        if self._notifier is None:
            return
        try:
            message = self.build_approval_message(request.provider, request)
            await self._notifier.notify(request, message)
        except Exception as exc:
            _logger.warning("Failed to notify approvers for %s: %s", request.id, exc)

    @staticmethod
    def _matches_context(request: ApprovalRequest, actor: ActorContext) -> bool:
        if request.provider != actor.provider:
            return False
        if request.context.channel_id != actor.channel_id:
            return False
        if request.context.thread_id and request.context.thread_id != actor.thread_id:
            return False
        return True

    @staticmethod
    def _transition_outcome(
        transition: ApprovalTransitionResult,
        status: InteractionStatus,
        message: str,
    ) -> ApprovalInteractionResult:
        if transition.reason == "not_found" or transition.request is None:
            return ApprovalInteractionResult("not_found", "Approval request not found.")
        request = transition.request
        if not transition.changed:
            return ApprovalInteractionResult(
                "already_resolved", f"Approval request is already {request.status.value}.", request
            )
        if transition.reason == "expired":
            return ApprovalInteractionResult("expired", "Approval request has expired.", request)
        return ApprovalInteractionResult(status, message, request)
