"""BackgroundOrchestrator facade.

Wires the profile registry, job registry, admission controller, executor,
resource monitor, event bus and reporter together behind one object::

    async with BackgroundOrchestrator(config) as orch:
        if orch.should_run_in_background("store", ["--all"]):
            job_id = await orch.execute_in_background("store", ["--all"])
            job = await orch.wait_for_job(job_id, timeout_seconds=600)

``get_orchestrator()`` lazily builds a process-wide default instance and
``reset_orchestrator()`` shuts it down and discards it.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from types import TracebackType
from typing import Any

from bgorch.background.admission import AdmissionController
from bgorch.background.config import OrchestratorConfig, load_config
from bgorch.background.event_bus import EventBus, EventHandler, JobEvent
from bgorch.background.exceptions import (
    JobNotFoundError,
    JobWaitTimeoutError,
    OrchestratorDisabledError,
    OrchestratorShutdownError,
)
from bgorch.background.executor import ProcessExecutor
from bgorch.background.joblog import JobLogStore
from bgorch.background.launcher import ProcessLauncher, SubprocessLauncher
from bgorch.background.monitor import ResourceMonitor, ResourceSnapshot
from bgorch.background.profiles import CommandProfileRegistry
from bgorch.background.progress import ProgressParser
from bgorch.background.registry import JobRegistry
from bgorch.background.reporter import StatusReporter
from bgorch.background.types import BackgroundOptions, Job, coerce_options
from bgorch.core.logging import get_logger

_logger = get_logger("background.orchestrator")

DEFAULT_WAIT_TIMEOUT_SECONDS = 300.0


class BackgroundOrchestrator:
    """Decides foreground vs background and runs background jobs.

    Args:
        config: Orchestrator configuration. Defaults to ``OrchestratorConfig()``.
        launcher: Process boundary; ``SubprocessLauncher`` unless injected.
        events: Event bus to publish on; a private one is created if omitted.
        parser: Progress marker parser for job stdout.
    """

    def __init__(
        self,
        config: OrchestratorConfig | None = None,
        *,
        launcher: ProcessLauncher | None = None,
        events: EventBus | None = None,
        parser: ProgressParser | None = None,
    ) -> None:
        self._config = config or OrchestratorConfig()
        self._events = events or EventBus()
        self._registry = JobRegistry()
        self._profiles = CommandProfileRegistry(
            self._config.profiles, enabled=self._config.enabled,
        )
        self._monitor = ResourceMonitor(
            self._config.resource_limits,
            self._config.max_concurrent_jobs,
            registry=self._registry,
            events=self._events,
            on_tick=self.promote_queued,
        )
        self._admission = AdmissionController(
            self._profiles,
            self._registry,
            ceiling=lambda: self._monitor.effective_ceiling,
        )
        self._logs = JobLogStore(self._config.config_dir) if self._config.config_dir else None
        self._executor = ProcessExecutor(
            self._config,
            self._registry,
            self._profiles,
            self._admission,
            self._events,
            launcher or SubprocessLauncher(),
            parser=parser,
            logs=self._logs,
        )
        self._reporter = StatusReporter(
            self._registry,
            self._profiles,
            self.get_current_resource_usage,
            self._config.max_concurrent_jobs,
        )
        self._started = False
        self._shut_down = False

    # ─── Properties ──────────────────────────────────────────────────

    @property
    def config(self) -> OrchestratorConfig:
        return self._config

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def profiles(self) -> CommandProfileRegistry:
        return self._profiles

    @property
    def monitor(self) -> ResourceMonitor:
        return self._monitor

    @property
    def enabled(self) -> bool:
        return self._config.enabled

    @property
    def max_concurrent_jobs(self) -> int:
        return self._config.max_concurrent_jobs

    @property
    def effective_ceiling(self) -> int:
        return self._monitor.effective_ceiling

    @property
    def is_shut_down(self) -> bool:
        return self._shut_down

    # ─── Lifecycle ───────────────────────────────────────────────────

    async def start(self) -> None:
        """Start the resource monitor. Safe to call more than once."""
        if self._shut_down:
            raise OrchestratorShutdownError("Orchestrator has been shut down")
        if self._started:
            return
        self._started = True
        if self._logs is not None:
            self._logs.ensure_dir()
        if self._config.monitor_enabled:
            await self._monitor.start(self._config.monitor_interval_seconds)
        _logger.info(
            "orchestrator.started",
            max_concurrent_jobs=self._config.max_concurrent_jobs,
            profiles=len(self._profiles),
        )

    async def shutdown(self) -> None:
        """Cancel every non-terminal job and stop background tasks.

        Emits ``shutdown`` exactly once; later calls return immediately.
        Processes are signalled, then given a bounded window to exit before
        their process groups are killed (see ``ProcessExecutor.shutdown``).
        """
        if self._shut_down:
            return
        self._shut_down = True

        cancelled = 0
        for job in self._registry.active_jobs():
            if self._executor.cancel(job.job_id, reason="Orchestrator shutdown"):
                cancelled += 1
        await self._monitor.stop()
        await self._executor.shutdown()
        self._admission.clear()

        _logger.info("orchestrator.shutdown", cancelled_jobs=cancelled)
        self._events.emit(JobEvent.SHUTDOWN)

    async def __aenter__(self) -> BackgroundOrchestrator:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.shutdown()

    # ─── Decisions & submission ──────────────────────────────────────

    def should_run_in_background(
        self,
        command: str,
        args: Sequence[str] = (),
        options: BackgroundOptions | Mapping[str, Any] | None = None,
    ) -> bool:
        return self._profiles.should_run_in_background(command, args, options)

    def can_start_new_job(self, command: str) -> bool:
        return self._admission.can_start_new_job(command)

    async def execute_in_background(
        self,
        command: str,
        args: Sequence[str] = (),
        options: BackgroundOptions | Mapping[str, Any] | None = None,
    ) -> str:
        """Create a job for ``command`` and start it if a slot is free.

        Returns the job id. A job that cannot be admitted stays queued until
        a monitor tick promotes it.

        Raises:
            OrchestratorDisabledError: Backgrounding is disabled.
            OrchestratorShutdownError: ``shutdown()`` was already called.
            Exception: The launcher's own spawn error, unchanged.
        """
        if not self._config.enabled:
            raise OrchestratorDisabledError("Background execution is disabled")
        if self._shut_down:
            raise OrchestratorShutdownError("Orchestrator has been shut down")
        await self.start()

        job = self._registry.create_job(command, args, coerce_options(options))
        if self._admission.try_reserve(job):
            await self._executor.start(job.job_id)
        else:
            _logger.info(
                "job.queued",
                job_id=job.job_id,
                command=command,
                active=self._admission.active_global(),
                ceiling=self._monitor.effective_ceiling,
            )
        return job.job_id

    async def promote_queued(self) -> list[str]:
        """Start queued jobs, oldest first, while slots are available.

        Called on every monitor tick. A spawn failure here fails that job
        (``jobFailed`` is emitted) without stopping the promotion pass.

        Returns:
            Ids of the jobs that were started.
        """
        started: list[str] = []
        for job in self._admission.promotion_candidates():
            if self._shut_down:
                break
            if not self._admission.try_reserve(job):
                continue
            try:
                await self._executor.start(job.job_id)
            except Exception as exc:
                _logger.warning("job.promotion_failed", job_id=job.job_id, error=str(exc))
                continue
            started.append(job.job_id)
        if started:
            _logger.info("job.promoted", job_ids=started)
        return started

    # ─── Queries ─────────────────────────────────────────────────────

    def get_job(self, job_id: str) -> Job | None:
        return self._registry.get(job_id)

    def list_jobs(self) -> list[Job]:
        return self._registry.list_jobs()

    def get_active_jobs(self) -> list[Job]:
        return self._registry.active_jobs()

    def cancel_job(self, job_id: str) -> bool:
        """Cancel a queued or running job; False for unknown or finished ones."""
        return self._executor.cancel(job_id, reason="Cancelled by user")

    async def wait_for_job(
        self,
        job_id: str,
        timeout_seconds: float | None = DEFAULT_WAIT_TIMEOUT_SECONDS,
    ) -> Job:
        """Wait until ``job_id`` is completed, failed or cancelled.

        Raises:
            JobNotFoundError: Unknown job id.
            JobWaitTimeoutError: The job is still running at the deadline.
                The job itself is left alone.
        """
        if job_id not in self._registry:
            raise JobNotFoundError(job_id)
        try:
            return await asyncio.wait_for(self._registry.wait_terminal(job_id), timeout_seconds)
        except TimeoutError:
            raise JobWaitTimeoutError(job_id, timeout_seconds or 0.0) from None

    def get_current_resource_usage(self) -> ResourceSnapshot:
        return self._monitor.sample()

    def generate_status_report(self) -> str:
        return self._reporter.generate()

    def read_job_log(self, job_id: str) -> str | None:
        if self._logs is None:
            return None
        return self._logs.read(job_id)

    def prune_jobs(self, max_age_seconds: float) -> int:
        """Forget terminal jobs that ended more than ``max_age_seconds`` ago."""
        return self._registry.prune(max_age_seconds)

    # ─── Events ──────────────────────────────────────────────────────

    def on(self, event: JobEvent | str, handler: EventHandler) -> str:
        return self._events.on(event, handler)

    def off(self, sub_id: str) -> bool:
        return self._events.off(sub_id)


_default: BackgroundOrchestrator | None = None


def get_orchestrator(config: OrchestratorConfig | None = None) -> BackgroundOrchestrator:
    """Return the process-wide orchestrator, creating it on first use.

    ``config`` only applies when the instance is created; without one the
    defaults plus environment overrides from ``load_config()`` are used.
    """
    global _default
    if _default is None:
        _default = BackgroundOrchestrator(config or load_config())
    return _default


async def reset_orchestrator() -> None:
    """Shut down and discard the process-wide orchestrator."""
    global _default
    instance, _default = _default, None
    if instance is not None:
        await instance.shutdown()


__all__ = [
    "BackgroundOrchestrator",
    "DEFAULT_WAIT_TIMEOUT_SECONDS",
    "get_orchestrator",
    "reset_orchestrator",
]
