"""Synchronous pub/sub bus for orchestrator lifecycle events.

Each orchestrator owns one ``EventBus`` instance; there is no module-level
emitter. ``emit()`` calls subscribers in subscription order on the caller's
stack. Coroutine handlers are scheduled as tasks on the running loop. A
subscriber that keeps raising is disabled after ``_MAX_CONSECUTIVE_FAILURES``
failures in a row. Events are never buffered or replayed.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable
from enum import Enum
from typing import Any

from bgorch.core.logging import get_logger

_logger = get_logger("background.event_bus")

EventHandler = Callable[..., Any]

_MAX_CONSECUTIVE_FAILURES = 10


class JobEvent(str, Enum):
    """Names of the events the orchestrator emits.

    Payloads:
        JOB_STARTED: ``(job)``
        JOB_COMPLETED: ``(job)``
        JOB_FAILED: ``(job, error)``
        PROGRESS_UPDATE: ``(ProgressUpdate)``
        SHUTDOWN: ``()``
        RESOURCE_UPDATE: ``(ResourceSnapshot)``
    """

    JOB_STARTED = "jobStarted"
    JOB_COMPLETED = "jobCompleted"
    JOB_FAILED = "jobFailed"
    PROGRESS_UPDATE = "progressUpdate"
    SHUTDOWN = "shutdown"
    RESOURCE_UPDATE = "resourceUpdate"


class EventBus:
    """Multi-subscriber event emitter.

    Usage::

        bus = EventBus()
        sub_id = bus.on(JobEvent.JOB_COMPLETED, lambda job: print(job.job_id))
        bus.emit(JobEvent.JOB_COMPLETED, job)
        bus.off(sub_id)
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, _Subscriber] = {}
        self._pending: set[asyncio.Task[Any]] = set()

    def on(self, event: JobEvent | str, handler: EventHandler) -> str:
        """Register ``handler`` for ``event``.

        Returns:
            Subscription ID for later ``off()``.
        """
        name = JobEvent(event).value
        sub_id = str(uuid.uuid4())
        self._subscribers[sub_id] = _Subscriber(event=name, handler=handler)
        _logger.debug("event_bus.subscribed", sub_id=sub_id, event_type=name)
        return sub_id

    def off(self, sub_id: str) -> bool:
        """Remove a subscription. Returns True if it existed."""
        removed = self._subscribers.pop(sub_id, None) is not None
        if removed:
            _logger.debug("event_bus.unsubscribed", sub_id=sub_id)
        return removed

    def subscriber_count(self, event: JobEvent | str | None = None) -> int:
        """Number of subscriptions, optionally for one event only."""
        if event is None:
            return len(self._subscribers)
        name = JobEvent(event).value
        return sum(1 for sub in self._subscribers.values() if sub.event == name)

    def emit(self, event: JobEvent | str, *args: Any) -> int:
        """Deliver ``args`` to every enabled subscriber of ``event``.

        Returns:
            Number of subscribers the event was delivered to.
        """
        name = JobEvent(event).value
        delivered = 0
        # Copy so handlers may subscribe/unsubscribe while we iterate
        for sub_id, sub in list(self._subscribers.items()):
            if sub.event != name or sub.disabled:
                continue
            delivered += 1
            try:
                result = sub.handler(*args)
            except Exception:
                self._record_failure(sub_id, sub, name)
                continue
            if asyncio.iscoroutine(result):
                self._schedule(sub_id, sub, name, result)
            else:
                sub.consecutive_failures = 0
        return delivered

    async def drain(self) -> None:
        """Wait for scheduled coroutine handlers to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def clear(self) -> None:
        """Drop all subscriptions."""
        self._subscribers.clear()

    def _schedule(self, sub_id: str, sub: _Subscriber, name: str, coro: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            _logger.warning("event_bus.no_running_loop", subscriber_id=sub_id, event_type=name)
            return
        task = loop.create_task(coro, name=f"event-{name}")
        self._pending.add(task)

        def _done(t: asyncio.Task[Any]) -> None:
            self._pending.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is None:
                sub.consecutive_failures = 0
                return
            self._record_failure(sub_id, sub, name, exc)

        task.add_done_callback(_done)

    def _record_failure(
        self,
        sub_id: str,
        sub: _Subscriber,
        name: str,
        exc: BaseException | None = None,
    ) -> None:
        sub.consecutive_failures += 1
        if exc is None:
            _logger.warning(
                "event_bus.subscriber_error",
                subscriber_id=sub_id,
                event_type=name,
                consecutive_failures=sub.consecutive_failures,
                exc_info=True,
            )
        else:
            _logger.warning(
                "event_bus.subscriber_error",
                subscriber_id=sub_id,
                event_type=name,
                consecutive_failures=sub.consecutive_failures,
                error=str(exc),
            )
        if sub.disabled:
            _logger.error(
                "event_bus.subscriber_disabled",
                subscriber_id=sub_id,
                reason=f"{_MAX_CONSECUTIVE_FAILURES} consecutive failures",
            )


class _Subscriber:
    """Internal subscriber state."""

    __slots__ = ("event", "handler", "consecutive_failures")

    def __init__(self, event: str, handler: EventHandler) -> None:
        self.event = event
        self.handler = handler
        self.consecutive_failures: int = 0

    @property
    def disabled(self) -> bool:
        return self.consecutive_failures >= _MAX_CONSECUTIVE_FAILURES


__all__ = ["EventBus", "EventHandler", "JobEvent"]
