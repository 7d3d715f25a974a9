"""Helpers for asyncio.Task lifecycle in the orchestrator.

``log_task_exception`` is called from the done-callbacks of supervision and
monitor tasks so a crashing background task is never silently lost.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any


def log_task_exception(
    task: asyncio.Task[Any],
    logger: Any,
    event: str,
    *,
    level: str = "error",
    **context: Any,
) -> BaseException | None:
    """Log the exception of a finished task, if it raised.

    Args:
        task: The completed task to inspect.
        logger: A BgorchLogger (or anything with ``.error()``/``.warning()``).
        event: Dotted event name, e.g. ``"executor.supervisor_died"``.
        level: Log method to use, ``"error"`` or ``"warning"``.
        **context: Extra fields for the log entry (job_id, ...).

    Returns:
        The exception, or None if the task succeeded or was cancelled.
    """
    if task.cancelled():
        return None
    exc = task.exception()
    if exc is not None:
        log_fn = getattr(logger, level, logger.error)
        log_fn(event, error=str(exc), task_name=task.get_name(), **context)
    return exc


async def cancel_and_wait(task: asyncio.Task[Any] | None) -> None:
    """Cancel ``task`` and wait until it has actually finished."""
    if task is None or task.done():
        return
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


__all__ = ["cancel_and_wait", "log_task_exception"]
