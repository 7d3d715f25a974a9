"""Plain-text status report for the orchestrator.

The report is deliberately uncoloured so it can be logged, written to a file
or printed by the CLI through rich without escaping.
"""

from __future__ import annotations

import math
import time
from collections.abc import Callable

from bgorch.background.monitor import ResourceSnapshot
from bgorch.background.profiles import CommandProfileRegistry
from bgorch.background.registry import JobRegistry
from bgorch.background.types import Job, JobStatus

REPORT_TITLE = "Background Command Orchestrator Status"
_RULE = "-" * 50

STATUS_LABELS: dict[JobStatus, str] = {
    JobStatus.QUEUED: "QUEUED",
    JobStatus.RUNNING: "RUNNING",
    JobStatus.COMPLETED: "DONE",
    JobStatus.FAILED: "FAILED",
    JobStatus.CANCELLED: "CANCELLED",
}


def format_duration(milliseconds: float) -> str:
    """Format a duration given in milliseconds.

    Examples:
        500 -> "500ms", 5000 -> "5.0s", 65000 -> "1m 5s", 3665000 -> "1h 1m"
    """
    ms = max(0.0, float(milliseconds))
    if ms < 1000:
        return f"{int(ms)}ms"
    if ms < 60_000:
        return f"{ms / 1000:.1f}s"
    if ms < 3_600_000:
        minutes = int(ms // 60_000)
        secs = int((ms % 60_000) // 1000)
        return f"{minutes}m {secs}s"
    hours = int(ms // 3_600_000)
    minutes = int((ms % 3_600_000) // 60_000)
    return f"{hours}h {minutes}m"


def create_progress_bar(percent: float, width: int = 20) -> str:
    """Render ``[####....]`` with ``floor(percent / 100 * width)`` filled cells."""
    clamped = max(0.0, min(100.0, float(percent)))
    filled = math.floor(clamped / 100 * width)
    return "[" + "#" * filled + "." * (width - filled) + "]"


def format_job_line(job: Job, now: float | None = None) -> str:
    """One report line for ``job``."""
    label = STATUS_LABELS[job.status]
    command_line = " ".join([job.command, *job.args])
    duration = format_duration(job.duration_seconds(now) * 1000)
    line = (
        f"  {label:<9} {job.job_id}  {command_line}  "
        f"{create_progress_bar(job.progress_percent)} {job.progress_percent}%  {duration}"
    )
    if job.stage:
        line += f"  stage={job.stage}"
    if job.status == JobStatus.FAILED:
        line += f"  error: {job.error or 'Unknown error'}"
    return line


class StatusReporter:
    """Builds the textual status report from live orchestrator state."""

    def __init__(
        self,
        registry: JobRegistry,
        profiles: CommandProfileRegistry,
        usage: Callable[[], ResourceSnapshot],
        max_concurrent_jobs: int,
    ) -> None:
        self._registry = registry
        self._profiles = profiles
        self._usage = usage
        self._max = max_concurrent_jobs

    def generate(self, now: float | None = None) -> str:
        now = now if now is not None else time.time()
        usage = self._usage()
        jobs = self._registry.list_jobs()

        lines = [REPORT_TITLE, _RULE, ""]

        lines.append("Resource Usage:")
        lines.append(f"  Memory: {usage.memory_mb:.1f} MB ({usage.memory_percent:.1f}%)")
        lines.append(f"  CPU: {usage.cpu_percent:.1f}%")
        lines.append(
            f"  Active Jobs: {usage.active_jobs}/{usage.effective_ceiling} (max {self._max})"
        )
        lines.append(f"  Queued Jobs: {usage.queued_jobs}")
        lines.append(f"  Total Jobs: {usage.total_jobs}")
        lines.append("")

        lines.append("Jobs:")
        if jobs:
            lines.extend(format_job_line(job, now) for job in jobs)
        else:
            lines.append("  No jobs")
        lines.append("")

        lines.append("Command Profiles:")
        for profile in self._profiles.profiles():
            running = self._registry.running_count(profile.command)
            lines.append(f"  {profile.command}: {running}/{profile.max_concurrency} active")

        return "\n".join(lines) + "\n"


__all__ = [
    "REPORT_TITLE",
    "StatusReporter",
    "create_progress_bar",
    "format_duration",
    "format_job_line",
]
