"""Approval notifier interface."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from ..approvals.common import ApprovalRequest


@runtime_checkable
class ApprovalNotifier(Protocol):
    """Presents a freshly created approval request to its approvers.

    Chat adapters implement this to post the message with approve/deny
    buttons. Notification is best-effort: failures are logged by the caller
    and never undo the persisted request.
    """

    async def notify(self, request: ApprovalRequest, message: str) -> None:
        ...
