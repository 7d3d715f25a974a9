"""Spawning and supervision of background job processes.

For each admitted job the executor:

1. builds the argv/env and spawns it through the ``ProcessLauncher``,
2. marks the job running and emits ``jobStarted``,
3. supervises it in one task that reads stdout and stderr line by line
   (progress markers from stdout, every line to the job log) while waiting
   for the exit, then records the outcome,
4. enforces the per-job timeout and SIGTERM -> SIGKILL cancellation of the
   job's whole process group.

Runtime failures end up as ``failed`` + ``jobFailed``; only spawn errors are
raised back to the caller.
"""

from __future__ import annotations

import asyncio
import os
import signal

from bgorch.background.admission import AdmissionController
from bgorch.background.config import OrchestratorConfig
from bgorch.background.event_bus import EventBus, JobEvent
from bgorch.background.exceptions import JobFailedError
from bgorch.background.joblog import JobLogStore
from bgorch.background.launcher import ManagedProcess, ProcessLauncher
from bgorch.background.profiles import CommandProfileRegistry
from bgorch.background.progress import MarkerProgressParser, ProgressParser
from bgorch.background.registry import JobRegistry
from bgorch.background.task_utils import cancel_and_wait, log_task_exception
from bgorch.background.types import Job
from bgorch.core.logging import JobContext, get_logger, with_job_context

_logger = get_logger("background.executor")

ENV_JOB_ID = "BGORCH_JOB_ID"
ENV_PARENT_PID = "BGORCH_PARENT_PID"

# How long shutdown waits for supervisors after SIGKILLing leftover groups
REAP_TIMEOUT_SECONDS = 1.0


def signal_name(returncode: int) -> str | None:
    """Name of the signal that killed a process, from a negative returncode."""
    if returncode >= 0:
        return None
    try:
        return signal.Signals(-returncode).name
    except ValueError:
        return None


def describe_exit(returncode: int) -> str:
    """Human-readable reason for a non-zero exit status."""
    if returncode < 0:
        name = signal_name(returncode) or f"signal {-returncode}"
        return f"Process terminated by {name}"
    return f"Process exited with code {returncode}"


class ProcessExecutor:
    """Runs admitted jobs as supervised child processes."""

    def __init__(
        self,
        config: OrchestratorConfig,
        registry: JobRegistry,
        profiles: CommandProfileRegistry,
        admission: AdmissionController,
        events: EventBus,
        launcher: ProcessLauncher,
        parser: ProgressParser | None = None,
        logs: JobLogStore | None = None,
    ) -> None:
        self._config = config
        self._registry = registry
        self._profiles = profiles
        self._admission = admission
        self._events = events
        self._launcher = launcher
        self._parser = parser or MarkerProgressParser()
        self._logs = logs
        self._processes: dict[str, ManagedProcess] = {}
        self._supervisors: dict[str, asyncio.Task[None]] = {}
        self._timeouts: dict[str, asyncio.TimerHandle] = {}
        self._escalations: dict[str, asyncio.TimerHandle] = {}
        self._closed = False

    # ─── Command line ────────────────────────────────────────────────

    def build_argv(self, job: Job) -> list[str]:
        return [
            *self._config.executable,
            job.command,
            *job.args,
            *job.options.to_cli_flags(),
            *self._config.extra_args,
        ]

    def build_env(self, job: Job) -> dict[str, str]:
        return {ENV_JOB_ID: job.job_id, ENV_PARENT_PID: str(os.getpid())}

    def timeout_for(self, job: Job) -> float:
        """Options override the profile, which overrides the config default."""
        if job.options.timeout_seconds is not None:
            return job.options.timeout_seconds
        profile_timeout = self._profiles.timeout_for(job.command)
        if profile_timeout is not None:
            return profile_timeout
        return self._config.default_job_timeout_seconds

    # ─── Lifecycle ───────────────────────────────────────────────────

    async def start(self, job_id: str) -> None:
        """Spawn a job whose admission slot is already reserved.

        Raises:
            Exception: Whatever the launcher raised. The job is recorded as
                failed and ``jobFailed`` is emitted before re-raising.
        """
        job = self._registry.get(job_id)
        if job is None:
            self._admission.release(job_id)
            return

        argv = self.build_argv(job)
        try:
            process = await self._launcher.spawn(argv, env=self.build_env(job))
        except Exception as exc:
            self._admission.release(job_id)
            failed = self._registry.mark_failed(job_id, str(exc))
            _logger.error("job.spawn_failed", job_id=job_id, command=job.command, error=str(exc))
            if failed is not None:
                self._events.emit(JobEvent.JOB_FAILED, failed, exc)
            raise

        self._admission.release(job_id)
        if self._closed:
            self._registry.mark_cancelled(job_id, "Orchestrator shut down during spawn")
            self._signal(process, signal.SIGTERM)
            self._schedule_escalation(job_id, process)
            return

        self._processes[job_id] = process
        running = self._registry.mark_running(job_id, process.pid)
        if running is None:
            # Cancelled while the spawn was in flight
            _logger.info("job.cancelled_during_spawn", job_id=job_id, pid=process.pid)
            self._signal(process, signal.SIGTERM)
            self._schedule_escalation(job_id, process)
        else:
            if self._logs is not None:
                self._registry.set_log_path(job_id, str(self._logs.path_for(job_id)))
            _logger.info(
                "job.started",
                job_id=job_id,
                command=job.command,
                pid=process.pid,
            )
            self._events.emit(JobEvent.JOB_STARTED, self._registry.get(job_id))
            timeout = self.timeout_for(job)
            loop = asyncio.get_running_loop()
            self._timeouts[job_id] = loop.call_later(timeout, self._on_timeout, job_id, timeout)

        task = asyncio.create_task(
            self._supervise(job_id, job.command, process),
            name=f"supervise-{job_id}",
        )
        self._supervisors[job_id] = task
        task.add_done_callback(lambda t: self._on_supervisor_done(job_id, t))

    def cancel(self, job_id: str, reason: str | None = None) -> bool:
        """Cancel a queued or running job.

        Sends SIGTERM to the job's process group (if any) and marks the job
        cancelled. If anything in the group is still alive after
        ``kill_grace_seconds`` the group gets SIGKILL. Returns False for
        unknown or already terminal jobs.
        """
        job = self._registry.get(job_id)
        if job is None or job.is_terminal:
            return False

        process = self._processes.get(job_id)
        if process is not None and self._launcher.group_alive(process):
            self._signal(process, signal.SIGTERM)
            self._schedule_escalation(job_id, process)

        self._registry.mark_cancelled(job_id, reason)
        self._clear_timeout(job_id)
        _logger.info("job.cancelled", job_id=job_id, command=job.command, reason=reason)
        return True

    async def shutdown(self) -> None:
        """Stop supervising, reaping job processes within a bounded window.

        Supervisors get ``kill_grace_seconds`` to see their (already
        signalled) processes exit. Process groups still alive after that are
        killed, and supervisors that have not finished ``REAP_TIMEOUT_SECONDS``
        later are cancelled.
        """
        self._closed = True
        for job_id in list(self._timeouts):
            self._clear_timeout(job_id)

        pending = set(self._supervisors.values())
        if pending:
            _, pending = await asyncio.wait(pending, timeout=self._config.kill_grace_seconds)
        if pending:
            for job_id, task in list(self._supervisors.items()):
                process = self._processes.get(job_id)
                if task in pending and process is not None:
                    _logger.warning("job.killed_on_shutdown", job_id=job_id, pid=process.pid)
                    self._signal(process, signal.SIGKILL)
            _, pending = await asyncio.wait(pending, timeout=REAP_TIMEOUT_SECONDS)
        for task in pending:
            await cancel_and_wait(task)

        for handle in self._escalations.values():
            handle.cancel()
        self._escalations.clear()
        self._supervisors.clear()
        self._processes.clear()

    # ─── Supervision ─────────────────────────────────────────────────

    async def _supervise(self, job_id: str, command: str, process: ManagedProcess) -> None:
        with with_job_context(JobContext(job_id=job_id, command=command, pid=process.pid)):
            readers = asyncio.gather(
                self._read_stream(job_id, process.stdout, "stdout"),
                self._read_stream(job_id, process.stderr, "stderr"),
            )
            waiter = asyncio.ensure_future(process.wait())
            try:
                done, _ = await asyncio.wait(
                    {readers, waiter}, return_when=asyncio.FIRST_COMPLETED,
                )
                if waiter in done:
                    returncode = waiter.result()
                    await self._drain_output(process, readers)
                else:
                    readers.result()
                    returncode = await waiter
                self._finalize(job_id, returncode)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                _logger.exception("job.supervision_failed", error=str(exc))
                failed = self._registry.mark_failed(job_id, str(exc))
                if failed is not None:
                    self._events.emit(JobEvent.JOB_FAILED, failed, exc)
                # Nothing reads the job's output any more
                if self._launcher.group_alive(process):
                    self._signal(process, signal.SIGTERM)
                    self._schedule_escalation(job_id, process)
            finally:
                for future in (readers, waiter):
                    if not future.done():
                        future.cancel()
                self._clear_timeout(job_id)
                self._processes.pop(job_id, None)

    async def _drain_output(
        self,
        process: ManagedProcess,
        readers: asyncio.Future[list[None]],
    ) -> None:
        """Read what is left in the pipes after the process exited.

        A descendant that inherited stdout/stderr keeps the pipes open, so the
        wait is bounded; on expiry the readers are cancelled and whatever is
        left of the job's process group is killed.
        """
        timeout = self._config.output_drain_seconds
        try:
            await asyncio.wait_for(readers, timeout=timeout)
        except TimeoutError:
            _logger.warning("job.output_drain_timeout", timeout_seconds=timeout)
            if self._launcher.signal_group(process, signal.SIGKILL):
                _logger.warning("job.descendants_killed", pid=process.pid)

    async def _read_stream(
        self,
        job_id: str,
        stream: asyncio.StreamReader | None,
        name: str,
    ) -> None:
        if stream is None:
            return
        while True:
            try:
                raw = await stream.readline()
            except ValueError:
                # Line longer than the stream limit; the reader has already
                # discarded it
                _logger.warning("job.output_line_too_long", stream=name)
                continue
            if not raw:
                return
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            if self._logs is not None:
                self._logs.append(job_id, name, line)
            if name == "stdout":
                self._handle_stdout_line(job_id, line)

    def _handle_stdout_line(self, job_id: str, line: str) -> None:
        signal_ = self._parser.parse(line)
        if signal_ is None:
            return
        if signal_.percent is not None:
            update = self._registry.update_progress(job_id, signal_.percent, signal_.message)
            if update is not None:
                _logger.debug("job.progress", percent=update.percent, message=update.message)
                self._events.emit(JobEvent.PROGRESS_UPDATE, update)
        if signal_.stage is not None:
            self._registry.update_stage(job_id, signal_.stage)
            _logger.debug("job.stage", stage=signal_.stage)

    def _finalize(self, job_id: str, returncode: int) -> None:
        if returncode == 0:
            completed = self._registry.mark_completed(job_id, exit_code=0)
            if completed is not None:
                _logger.info("job.completed", duration_seconds=round(completed.duration_seconds(), 3))
                self._events.emit(JobEvent.JOB_COMPLETED, completed)
            return

        error = JobFailedError(
            describe_exit(returncode),
            exit_code=returncode,
            signal_name=signal_name(returncode),
        )
        failed = self._registry.mark_failed(job_id, str(error), exit_code=returncode)
        if failed is not None:
            _logger.warning("job.failed", exit_code=returncode, error=str(error))
            self._events.emit(JobEvent.JOB_FAILED, failed, error)

    def _on_supervisor_done(self, job_id: str, task: asyncio.Task[None]) -> None:
        if self._supervisors.get(job_id) is task:
            del self._supervisors[job_id]
        log_task_exception(task, _logger, "job.supervisor_died", job_id=job_id)

    # ─── Timeouts & signals ──────────────────────────────────────────

    def _on_timeout(self, job_id: str, timeout: float) -> None:
        self._timeouts.pop(job_id, None)
        job = self._registry.get(job_id)
        if job is None or job.is_terminal:
            return
        _logger.warning("job.timed_out", job_id=job_id, timeout_seconds=timeout)
        self.cancel(job_id, reason=f"Timed out after {timeout:g}s")

    def _clear_timeout(self, job_id: str) -> None:
        handle = self._timeouts.pop(job_id, None)
        if handle is not None:
            handle.cancel()

    def _schedule_escalation(self, job_id: str, process: ManagedProcess) -> None:
        previous = self._escalations.pop(job_id, None)
        if previous is not None:
            previous.cancel()
        loop = asyncio.get_running_loop()
        self._escalations[job_id] = loop.call_later(
            self._config.kill_grace_seconds, self._escalate, job_id, process,
        )

    def _escalate(self, job_id: str, process: ManagedProcess) -> None:
        self._escalations.pop(job_id, None)
        # The leader may have exited while descendants ignore SIGTERM
        if not self._launcher.group_alive(process):
            return
        _logger.warning(
            "job.kill_escalated",
            job_id=job_id,
            pid=process.pid,
            grace_seconds=self._config.kill_grace_seconds,
        )
        self._signal(process, signal.SIGKILL)

    def _signal(self, process: ManagedProcess, sig: signal.Signals) -> None:
        """Signal the job's process group, falling back to the process itself."""
        if self._launcher.signal_group(process, sig):
            return
        if process.returncode is not None:
            return
        try:
            if sig == signal.SIGKILL:
                process.kill()
            else:
                process.terminate()
        except ProcessLookupError:
            pass


__all__ = ["ENV_JOB_ID", "ENV_PARENT_PID", "ProcessExecutor", "describe_exit", "signal_name"]
