"""Resource monitor for the background orchestrator.

Samples memory and CPU on an interval, throttles the effective job ceiling
while the host is under pressure, restores it as load subsides, publishes a
``resourceUpdate`` event and then lets the orchestrator promote queued jobs.

The periodic tick is the only place queued jobs are promoted proactively.
"""

from __future__ import annotations

import asyncio
import math
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from bgorch.background.config import ResourceLimitConfig
from bgorch.background.event_bus import EventBus, JobEvent
from bgorch.background.registry import JobRegistry
from bgorch.background.system_probe import SystemProbe
from bgorch.background.task_utils import cancel_and_wait, log_task_exception
from bgorch.core.logging import get_logger

_logger = get_logger("background.monitor")

TickCallback = Callable[[], Awaitable[Any]]


@dataclass
class ResourceSnapshot:
    """Point-in-time resource reading plus job counts."""

    memory_bytes: int
    memory_percent: float
    cpu_percent: float
    active_jobs: int
    queued_jobs: int
    total_jobs: int
    effective_ceiling: int
    sampled_at: float = field(default_factory=time.time)
    probe_failed: bool = False

    @property
    def memory_mb(self) -> float:
        return self.memory_bytes / (1024 * 1024)


class ResourceMonitor:
    """Owns the effective concurrency ceiling.

    The ceiling starts at ``max_concurrent_jobs``. After
    ``limits.pressure_samples`` consecutive samples at or above a high
    threshold it drops to ``max(1, floor(ceiling * throttle_factor))``; each
    sample with both memory and CPU below their low thresholds raises it by
    one, up to ``max_concurrent_jobs``.
    """

    _CIRCUIT_BREAKER_THRESHOLD = 5
    _MAX_BACKOFF_SECONDS = 300.0

    def __init__(
        self,
        limits: ResourceLimitConfig,
        max_concurrent_jobs: int,
        registry: JobRegistry | None = None,
        events: EventBus | None = None,
        on_tick: TickCallback | None = None,
    ) -> None:
        if max_concurrent_jobs < 1:
            raise ValueError("max_concurrent_jobs must be >= 1")
        self._limits = limits
        self._max = max_concurrent_jobs
        self._ceiling = max_concurrent_jobs
        self._registry = registry
        self._events = events
        self._on_tick = on_tick
        self._pressure_streak = 0
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self._consecutive_failures = 0
        self._degraded = False
        self._last_snapshot: ResourceSnapshot | None = None

    # ─── Public API ──────────────────────────────────────────────────

    @property
    def effective_ceiling(self) -> int:
        return self._ceiling

    @property
    def max_concurrent_jobs(self) -> int:
        return self._max

    @property
    def is_degraded(self) -> bool:
        """Whether the loop has failed ``_CIRCUIT_BREAKER_THRESHOLD`` ticks in a row."""
        return self._degraded

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def last_snapshot(self) -> ResourceSnapshot | None:
        return self._last_snapshot

    def sample(self) -> ResourceSnapshot:
        """Take a fresh reading. Failed probes read as zero."""
        mem_bytes = self._get_memory_bytes()
        mem_pct = self._get_memory_percent()
        cpu_pct = self._get_cpu_percent()

        active = queued = total = 0
        if self._registry is not None:
            active = self._registry.running_count()
            queued = self._registry.queued_count()
            total = len(self._registry)

        return ResourceSnapshot(
            memory_bytes=mem_bytes if mem_bytes is not None else 0,
            memory_percent=mem_pct if mem_pct is not None else 0.0,
            cpu_percent=cpu_pct if cpu_pct is not None else 0.0,
            active_jobs=active,
            queued_jobs=queued,
            total_jobs=total,
            effective_ceiling=self._ceiling,
            probe_failed=mem_bytes is None or mem_pct is None or cpu_pct is None,
        )

    def evaluate(self, snapshot: ResourceSnapshot) -> int:
        """Apply the throttling rules to ``snapshot``; return the new ceiling."""
        if snapshot.probe_failed:
            _logger.warning("monitor.probe_failed")
            return self._ceiling

        limits = self._limits
        pressured = (
            snapshot.memory_percent >= limits.memory_high_percent
            or snapshot.cpu_percent >= limits.cpu_high_percent
        )
        calm = (
            snapshot.memory_percent < limits.memory_low_percent
            and snapshot.cpu_percent < limits.cpu_low_percent
        )

        if pressured:
            self._pressure_streak += 1
            if self._pressure_streak >= limits.pressure_samples:
                self._pressure_streak = 0
                lowered = max(1, math.floor(self._ceiling * limits.throttle_factor))
                if lowered < self._ceiling:
                    _logger.warning(
                        "monitor.throttled",
                        previous=self._ceiling,
                        ceiling=lowered,
                        memory_percent=round(snapshot.memory_percent, 1),
                        cpu_percent=round(snapshot.cpu_percent, 1),
                    )
                    self._ceiling = lowered
            return self._ceiling

        self._pressure_streak = 0
        if calm and self._ceiling < self._max:
            self._ceiling += 1
            _logger.info("monitor.ceiling_restored", ceiling=self._ceiling, max=self._max)
        return self._ceiling

    async def tick(self) -> ResourceSnapshot:
        """One monitor cycle: sample, evaluate, publish, promote."""
        snapshot = self.sample()
        snapshot.effective_ceiling = self.evaluate(snapshot)
        self._last_snapshot = snapshot
        if self._events is not None:
            self._events.emit(JobEvent.RESOURCE_UPDATE, snapshot)
        if self._on_tick is not None:
            await self._on_tick()
        return snapshot

    async def start(self, interval_seconds: float = 10.0) -> None:
        """Start the periodic loop. A second call is a no-op."""
        if self._task is not None:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(interval_seconds), name="resource-monitor")
        self._task.add_done_callback(self._on_loop_done)
        _logger.info("monitor.started", interval=interval_seconds)

    async def stop(self) -> None:
        """Stop the periodic loop."""
        self._running = False
        if self._task is not None:
            await cancel_and_wait(self._task)
            self._task = None
            _logger.info("monitor.stopped")

    # ─── Internal ────────────────────────────────────────────────────

    def _on_loop_done(self, task: asyncio.Task[None]) -> None:
        exc = log_task_exception(task, _logger, "monitor.loop_died_unexpectedly")
        if exc is not None:
            self._degraded = True

    async def _loop(self, interval: float) -> None:
        """Periodic loop with circuit breaker and backoff."""
        while self._running:
            try:
                await self.tick()
                if self._consecutive_failures > 0:
                    _logger.info("monitor.recovered", after_failures=self._consecutive_failures)
                self._consecutive_failures = 0
                if self._degraded:
                    self._degraded = False
                    _logger.info("monitor.degraded_cleared")
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                break
            except Exception:
                self._consecutive_failures += 1
                _logger.exception(
                    "monitor.tick_failed",
                    consecutive_failures=self._consecutive_failures,
                )
                if (
                    self._consecutive_failures >= self._CIRCUIT_BREAKER_THRESHOLD
                    and not self._degraded
                ):
                    self._degraded = True
                    _logger.error(
                        "monitor.degraded",
                        consecutive_failures=self._consecutive_failures,
                    )
                if self._degraded:
                    exponent = self._consecutive_failures - self._CIRCUIT_BREAKER_THRESHOLD
                    backoff = min(interval * (2 ** max(exponent, 0)), self._MAX_BACKOFF_SECONDS)
                    await asyncio.sleep(backoff)
                else:
                    await asyncio.sleep(interval)

    # ─── System probes (patched in tests) ────────────────────────────

    @staticmethod
    def _get_memory_bytes() -> int | None:
        return SystemProbe.get_memory_bytes()

    @staticmethod
    def _get_memory_percent() -> float | None:
        return SystemProbe.get_memory_percent()

    @staticmethod
    def _get_cpu_percent() -> float | None:
        return SystemProbe.get_cpu_percent()


__all__ = ["ResourceMonitor", "ResourceSnapshot"]
