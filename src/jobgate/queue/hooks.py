"""Best-effort consumer hook invocation shared by the drivers."""

from __future__ import annotations

import inspect
import logging
from typing import Any, Callable

_logger = logging.getLogger(__name__)


async def call_hook(hook: Callable[..., Any] | None, *args: Any) -> None:
    """Invoke a sync or async hook. Errors are logged and swallowed."""
    if hook is None:
        return
    try:
        result = hook(*args)
        if inspect.isawaitable(result):
            await result
    except Exception as exc:
        _logger.debug("Queue consumer hook %r failed: %s", hook, exc)
