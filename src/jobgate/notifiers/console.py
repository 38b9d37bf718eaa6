"""Terminal approval notifier using rich."""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from ..approvals.common import ApprovalRequest


class ConsoleApprovalNotifier:
    """Prints approval requests to a terminal. Useful for local runs."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    async def notify(self, request: ApprovalRequest, message: str) -> None:
        approvers = ", ".join(subject.token() for subject in request.approver_subjects) or "-"
        body = "\n".join(
            [
                escape(message),
                "",
                f"[bold]Approvers:[/bold] {escape(approvers)}",
                f"[bold]Channel:[/bold] {escape(request.context.channel_id)}",
            ]
        )
        self.console.print(Panel(body, title=f"approval {escape(request.id)}", expand=False))
