"""Notifiers package - approval request presentation."""

from .base import ApprovalNotifier
from .console import ConsoleApprovalNotifier

__all__ = [
    "ApprovalNotifier",
    "ConsoleApprovalNotifier",
]
