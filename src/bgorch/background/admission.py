"""Admission control for background jobs.

A job may start only while both the global and the per-command limit have
room. Jobs whose spawn is in flight hold a reservation and count as active,
so two admissions can never both take the last slot. ``try_reserve`` does
the check and the reservation without awaiting in between.
"""

from __future__ import annotations

from collections.abc import Callable

from bgorch.background.profiles import CommandProfileRegistry
from bgorch.background.registry import JobRegistry
from bgorch.background.types import Job, JobStatus
from bgorch.core.logging import get_logger

_logger = get_logger("background.admission")


class AdmissionController:
    """Decides when queued jobs may start.

    Args:
        profiles: Per-command concurrency limits.
        registry: Source of running-job counts.
        ceiling: Returns the current effective global ceiling (owned by the
            resource monitor, which may throttle it under load).
    """

    def __init__(
        self,
        profiles: CommandProfileRegistry,
        registry: JobRegistry,
        ceiling: Callable[[], int],
    ) -> None:
        self._profiles = profiles
        self._registry = registry
        self._ceiling = ceiling
        self._reserved: dict[str, str] = {}

    @property
    def reserved_count(self) -> int:
        return len(self._reserved)

    def active_global(self) -> int:
        return self._registry.running_count() + len(self._reserved)

    def active_for(self, command: str) -> int:
        reserved = sum(1 for c in self._reserved.values() if c == command)
        return self._registry.running_count(command) + reserved

    def can_start_new_job(self, command: str) -> bool:
        if self.active_global() >= self._ceiling():
            return False
        limit = self._profiles.limit_for(command)
        return limit is None or self.active_for(command) < limit

    def try_reserve(self, job: Job) -> bool:
        """Reserve a slot for ``job`` if it may start now.

        A job is held back while an older queued job of the same command is
        still waiting, so each command is admitted in FIFO order.
        """
        # Re-read: the caller's snapshot may predate a cancellation
        current = self._registry.get(job.job_id)
        if current is None or current.status != JobStatus.QUEUED or job.job_id in self._reserved:
            return False
        if self._registry.has_older_queued(job.job_id, exclude=self._reserved.keys()):
            return False
        if not self.can_start_new_job(job.command):
            return False
        self._reserved[job.job_id] = job.command
        _logger.debug(
            "admission.reserved",
            job_id=job.job_id,
            command=job.command,
            active=self.active_global(),
        )
        return True

    def release(self, job_id: str) -> None:
        """Drop the reservation once the spawn has succeeded or failed."""
        self._reserved.pop(job_id, None)

    def promotion_candidates(self) -> list[Job]:
        """Queued jobs without a reservation, oldest first."""
        return [j for j in self._registry.queued_jobs() if j.job_id not in self._reserved]

    def clear(self) -> None:
        self._reserved.clear()


__all__ = ["AdmissionController"]
