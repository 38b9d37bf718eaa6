"""Permission rules and the policy decision engine.

Design notes:
- Evaluation is pure: no I/O, no clocks, safe for unlimited concurrent use
- Rules are scanned in declared order; the first matching rule wins
- Group membership is resolved by the caller and carried on the Actor
"""

from __future__ import annotations

from enum import Enum
from typing import Literal, Protocol

from pydantic import BaseModel, field_validator, model_validator

from .actions import ALL_ACTIONS, APPROVAL_ACTIONS, is_known_action


class Effect(str, Enum):
    """Outcome of evaluating a permission rule."""

    ALLOW = "allow"
    DENY = "deny"
    REQUIRE_APPROVAL = "require_approval"


def _subject_fields(token: str) -> dict[str, str]:
    text = token.strip()
    if text.startswith("user:"):
        user_id = text[len("user:"):].strip()
        if not user_id:
            raise ValueError(f"invalid subject {token!r}: missing user id")
        return {"kind": "user", "user_id": user_id}
    if text.startswith("group:"):
        parts = text.split(":", 2)
        if len(parts) != 3 or not parts[1] or not parts[2]:
            raise ValueError(f"invalid subject {token!r}: expected group:<provider>:<groupId>")
        return {"kind": "group", "provider": parts[1], "group_id": parts[2]}
    raise ValueError(f"invalid subject {token!r}: expected user: or group: prefix")


class Subject(BaseModel):
    """A user (or every user with ``*``) or a provider-scoped group."""

    model_config = {"frozen": True}

    kind: Literal["user", "group"]
    user_id: str | None = None
    provider: str | None = None
    group_id: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _from_token(cls, data: object) -> object:
        if isinstance(data, str):
            return _subject_fields(data)
        return data

    @model_validator(mode="after")
    def _validate_shape(self) -> "Subject":
        if self.kind == "user":
            if not self.user_id:
                raise ValueError("user subject requires user_id")
        elif not self.provider or not self.group_id:
            raise ValueError("group subject requires provider and group_id")
        return self

    @classmethod
    def user(cls, user_id: str) -> "Subject":
        return cls(kind="user", user_id=user_id)

    @classmethod
    def group(cls, provider: str, group_id: str) -> "Subject":
        return cls(kind="group", provider=provider, group_id=group_id)

    @classmethod
    def parse(cls, token: str) -> "Subject":
        """Parse ``user:<id>``, ``user:*`` or ``group:<provider>:<groupId>``."""
        return cls(**_subject_fields(token))

    def token(self) -> str:
        if self.kind == "user":
            return f"user:{self.user_id}"
        return f"group:{self.provider}:{self.group_id}"


class PermissionRule(BaseModel):
    model_config = {"frozen": True}

    id: str
    effect: Effect
    actions: tuple[str, ...]
    subjects: tuple[Subject, ...] = ()
    approver_subjects: tuple[Subject, ...] = ()
    notify_subjects: tuple[Subject, ...] | None = None
    providers: tuple[str, ...] = ()
    channel_ids: tuple[str, ...] = ()

    @field_validator("id")
    @classmethod
    def _id_non_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("rule id must be a non-empty string")
        return value

    @field_validator("providers")
    @classmethod
    def _normalize_providers(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(provider.strip().lower() for provider in value if provider.strip())

    @model_validator(mode="before")
    @classmethod
    def _expand_all_actions(cls, data: object) -> object:
        if isinstance(data, dict) and data.get("actions", "all") in (None, "all"):
            actions = ALL_ACTIONS
            if data.get("effect") in (Effect.REQUIRE_APPROVAL, Effect.REQUIRE_APPROVAL.value):
                actions = ALL_ACTIONS - APPROVAL_ACTIONS
            data = {**data, "actions": tuple(sorted(actions))}
        return data

    @field_validator("actions")
    @classmethod
    def _actions_known(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        if not value:
            raise ValueError("rule actions must not be empty")
        unknown = [action for action in value if not is_known_action(action)]
        if unknown:
            raise ValueError(f"unknown actions: {', '.join(unknown)}")
        return value

    @model_validator(mode="after")
    def _require_approvers(self) -> "PermissionRule":
        if self.effect is Effect.REQUIRE_APPROVAL:
            if not self.approver_subjects:
                raise ValueError(
                    f"rule {self.id!r} uses require_approval but has no approver_subjects"
                )
            gated = sorted(APPROVAL_ACTIONS.intersection(self.actions))
            if gated:
                raise ValueError(
                    f"rule {self.id!r} cannot require approval for {', '.join(gated)}"
                )
        return self


class PermissionsConfig(BaseModel):
    model_config = {"frozen": True}

    default_effect: Effect = Effect.ALLOW
    default_approver_subjects: tuple[Subject, ...] = ()
    default_notify_subjects: tuple[Subject, ...] = ()
    approval_ttl_seconds: int = 86400
    group_cache_ttl_seconds: int = 60
    rules: tuple[PermissionRule, ...] = ()

    @field_validator("approval_ttl_seconds", "group_cache_ttl_seconds")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("ttl must be a positive number of seconds")
        return value

    @model_validator(mode="after")
    def _default_approvers(self) -> "PermissionsConfig":
        if self.default_effect is Effect.REQUIRE_APPROVAL and not self.default_approver_subjects:
            raise ValueError("default_effect require_approval needs default_approver_subjects")
        seen: set[str] = set()
        for rule in self.rules:
            if rule.id in seen:
                raise ValueError(f"duplicate rule id {rule.id!r}")
            seen.add(rule.id)
        return self


class Actor(BaseModel):
    """Identity attempting an action, with group memberships already resolved."""

    model_config = {"frozen": True}

    provider: str
    user_id: str
    group_ids: frozenset[str] = frozenset()


class PermissionContext(BaseModel):
    model_config = {"frozen": True}

    provider: str
    channel_id: str
    thread_id: str | None = None
    workspace_id: str | None = None
    guild_id: str | None = None


class PermissionDecision(BaseModel):
    model_config = {"frozen": True}

    effect: Effect
    action: str
    rule_id: str | None = None
    approver_subjects: tuple[Subject, ...] = ()
    notify_subjects: tuple[Subject, ...] = ()


def _matches_subject(actor: Actor, subject: Subject) -> bool:
    if subject.kind == "user":
        return subject.user_id == "*" or subject.user_id == actor.user_id
    if subject.provider != actor.provider:
        return False
    return subject.group_id in actor.group_ids


def _matches_rule(
    rule: PermissionRule, actor: Actor, context: PermissionContext, action: str
) -> bool:
    if action not in rule.actions:
        return False
    if rule.providers and context.provider not in rule.providers:
        return False
    if rule.channel_ids and context.channel_id not in rule.channel_ids:
        return False
    if rule.subjects and not any(_matches_subject(actor, s) for s in rule.subjects):
        return False
    return True


def evaluate_permission_decision(
    config: PermissionsConfig,
    actor: Actor,
    context: PermissionContext,
    action: str,
) -> PermissionDecision:
    """Return the decision of the first matching rule, or the configured default."""
    for rule in config.rules:
        if not _matches_rule(rule, actor, context, action):
            continue
        notify = rule.notify_subjects if rule.notify_subjects is not None else rule.approver_subjects
        return PermissionDecision(
            effect=rule.effect,
            action=action,
            rule_id=rule.id,
            approver_subjects=rule.approver_subjects,
            notify_subjects=notify,
        )
    if config.default_effect is Effect.REQUIRE_APPROVAL:
        return PermissionDecision(
            effect=config.default_effect,
            action=action,
            approver_subjects=config.default_approver_subjects,
            notify_subjects=config.default_notify_subjects or config.default_approver_subjects,
        )
    return PermissionDecision(effect=config.default_effect, action=action)


class Policy(Protocol):
    """Policy interface for evaluating gated actions."""

    def evaluate(self, actor: Actor, context: PermissionContext, action: str) -> PermissionDecision:
        ...

    def candidate_group_ids(self, provider: str, action: str) -> list[str]:
        ...


class RulePolicy:
    """Policy backed by a PermissionsConfig rule list."""

    def __init__(self, config: PermissionsConfig) -> None:
        self._config = config

    @property
    def config(self) -> PermissionsConfig:
        return self._config

    def evaluate(self, actor: Actor, context: PermissionContext, action: str) -> PermissionDecision:
        return evaluate_permission_decision(self._config, actor, context, action)

    def candidate_group_ids(self, provider: str, action: str) -> list[str]:
        """Group ids whose membership could change the decision for this action."""
        group_ids: dict[str, None] = {}
        for rule in self._config.rules:
            if action not in rule.actions:
                continue
            subjects = (*rule.subjects, *rule.approver_subjects, *(rule.notify_subjects or ()))
            for subject in subjects:
                if subject.kind == "group" and subject.provider == provider:
                    group_ids.setdefault(subject.group_id or "", None)
        return list(group_ids)
