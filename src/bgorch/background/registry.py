"""In-memory job registry and job state machine.

The registry is the sole owner of ``Job`` records. All mutation goes through
the ``mark_*`` / ``update_*`` methods, which enforce the transition table::

    queued  -> running | failed | cancelled
    running -> completed | failed | cancelled

Terminal states never change. A transition requested from a terminal state
is ignored (the job raced to completion); skipping a state raises
``InvalidTransitionError``.

All methods run on the event loop thread and need no locking.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections.abc import Collection, Sequence

from bgorch.background.exceptions import InvalidTransitionError, JobNotFoundError
from bgorch.background.types import BackgroundOptions, Job, JobStatus, ProgressUpdate
from bgorch.core.logging import get_logger

_logger = get_logger("background.registry")

_ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset({JobStatus.RUNNING, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


class JobRegistry:
    """Tracks every job created by one orchestrator."""

    def __init__(self) -> None:
        # dicts keep insertion order, which is creation order
        self._jobs: dict[str, Job] = {}
        self._terminal_events: dict[str, asyncio.Event] = {}
        self._counter = 0

    # ─── Creation & queries ──────────────────────────────────────────

    def create_job(
        self,
        command: str,
        args: Sequence[str] = (),
        options: BackgroundOptions | None = None,
    ) -> Job:
        """Register a new queued job and return a snapshot of it."""
        self._counter += 1
        job_id = f"job-{self._counter}-{uuid.uuid4().hex[:8]}"
        job = Job(
            job_id=job_id,
            command=command,
            args=list(args),
            options=options or BackgroundOptions(),
        )
        self._jobs[job_id] = job
        self._terminal_events[job_id] = asyncio.Event()
        _logger.debug("job.created", job_id=job_id, command=command)
        return job.snapshot()

    def get(self, job_id: str) -> Job | None:
        job = self._jobs.get(job_id)
        return job.snapshot() if job is not None else None

    def list_jobs(self) -> list[Job]:
        return [job.snapshot() for job in self._jobs.values()]

    def queued_jobs(self) -> list[Job]:
        return [j.snapshot() for j in self._jobs.values() if j.status == JobStatus.QUEUED]

    def active_jobs(self) -> list[Job]:
        return [j.snapshot() for j in self._jobs.values() if not j.is_terminal]

    def running_count(self, command: str | None = None) -> int:
        return sum(
            1
            for j in self._jobs.values()
            if j.status == JobStatus.RUNNING and (command is None or j.command == command)
        )

    def queued_count(self) -> int:
        return sum(1 for j in self._jobs.values() if j.status == JobStatus.QUEUED)

    def has_older_queued(self, job_id: str, exclude: Collection[str] = ()) -> bool:
        """True if a queued job of the same command was created before ``job_id``.

        Jobs listed in ``exclude`` (e.g. ones whose spawn is already in
        flight) are ignored.
        """
        target = self._require(job_id)
        for job in self._jobs.values():
            if job.job_id == job_id:
                return False
            if (
                job.command == target.command
                and job.status == JobStatus.QUEUED
                and job.job_id not in exclude
            ):
                return True
        return False

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._jobs

    # ─── Transitions ─────────────────────────────────────────────────

    def mark_running(self, job_id: str, pid: int | None) -> Job | None:
        return self._transition(job_id, JobStatus.RUNNING, pid=pid)

    def mark_completed(self, job_id: str, exit_code: int = 0) -> Job | None:
        return self._transition(job_id, JobStatus.COMPLETED, exit_code=exit_code)

    def mark_failed(
        self,
        job_id: str,
        error: str,
        exit_code: int | None = None,
    ) -> Job | None:
        return self._transition(job_id, JobStatus.FAILED, error=error, exit_code=exit_code)

    def mark_cancelled(self, job_id: str, reason: str | None = None) -> Job | None:
        return self._transition(job_id, JobStatus.CANCELLED, error=reason)

    def update_progress(self, job_id: str, percent: int, message: str = "") -> ProgressUpdate | None:
        """Record progress, clamped to 0-100. Ignored for terminal jobs."""
        job = self._require(job_id)
        if job.is_terminal:
            return None
        clamped = max(0, min(100, int(percent)))
        job.progress_percent = clamped
        job.progress_message = message
        return ProgressUpdate(job_id=job_id, percent=clamped, message=message)

    def update_stage(self, job_id: str, stage: str) -> None:
        job = self._require(job_id)
        if not job.is_terminal:
            job.stage = stage

    def set_log_path(self, job_id: str, path: str) -> None:
        self._require(job_id).log_path = path

    # ─── Waiting & cleanup ───────────────────────────────────────────

    async def wait_terminal(self, job_id: str) -> Job:
        """Block until ``job_id`` reaches a terminal status."""
        self._require(job_id)
        await self._terminal_events[job_id].wait()
        return self._jobs[job_id].snapshot()

    def prune(self, max_age_seconds: float, now: float | None = None) -> int:
        """Drop terminal jobs that ended more than ``max_age_seconds`` ago.

        Returns:
            Number of jobs removed.
        """
        cutoff = (now if now is not None else time.time()) - max_age_seconds
        stale = [
            job_id
            for job_id, job in self._jobs.items()
            if job.is_terminal and job.ended_at is not None and job.ended_at <= cutoff
        ]
        for job_id in stale:
            del self._jobs[job_id]
            del self._terminal_events[job_id]
        if stale:
            _logger.info("registry.pruned", removed=len(stale))
        return len(stale)

    def clear(self) -> None:
        """Forget every job. The id counter keeps counting."""
        self._jobs.clear()
        self._terminal_events.clear()

    # ─── Internal ────────────────────────────────────────────────────

    def _require(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def _transition(self, job_id: str, target: JobStatus, **fields: object) -> Job | None:
        job = self._require(job_id)
        current = job.status
        if current.is_terminal:
            _logger.debug(
                "job.transition_ignored",
                job_id=job_id,
                current=current.value,
                target=target.value,
            )
            return None
        if target not in _ALLOWED_TRANSITIONS[current]:
            raise InvalidTransitionError(job_id, current.value, target.value)

        now = time.time()
        job.status = target
        if target == JobStatus.RUNNING:
            job.started_at = now
            job.pid = fields.get("pid")  # type: ignore[assignment]
        else:
            job.ended_at = now
            if fields.get("exit_code") is not None:
                job.exit_code = fields["exit_code"]  # type: ignore[assignment]
            if fields.get("error") is not None:
                job.error = str(fields["error"])
            if target == JobStatus.COMPLETED:
                job.progress_percent = 100
            self._terminal_events[job_id].set()

        _logger.debug("job.transition", job_id=job_id, current=current.value, target=target.value)
        return job.snapshot()


__all__ = ["JobRegistry"]
