"""Permission action catalog."""

from __future__ import annotations

from enum import Enum


class Action(str, Enum):
    """Named operations gated by the permission engine."""

    JOBS_ASK = "jobs.ask"
    JOBS_EXPLORE = "jobs.explore"
    JOBS_PLAN = "jobs.plan"
    JOBS_IMPLEMENT = "jobs.implement"
    JOBS_RUN = "jobs.run"
    JOBS_REVIEW = "jobs.review"
    JOBS_MENTION = "jobs.mention"
    JOBS_BOOTSTRAP = "jobs.bootstrap"
    JOBS_ANSWER_QUESTIONS = "jobs.answerQuestions"
    JOBS_CLEAR = "jobs.clear"
    JOBS_CLEAR_BEFORE = "jobs.clearBefore"
    JOBS_WORKTREE_COMMANDS = "jobs.worktreeCommands"
    STATUS_CODEX_USAGE = "status.codexUsage"
    APPROVAL_GRANT = "approval.grant"
    APPROVAL_DENY = "approval.deny"
    APPROVAL_CANCEL = "approval.cancel"


ALL_ACTIONS: frozenset[str] = frozenset(action.value for action in Action)

# Approval interactions are answered directly; they can never themselves wait on an approval.
APPROVAL_ACTIONS: frozenset[str] = frozenset(
    {Action.APPROVAL_GRANT.value, Action.APPROVAL_DENY.value, Action.APPROVAL_CANCEL.value}
)


def is_known_action(value: str) -> bool:
    return value in ALL_ACTIONS
