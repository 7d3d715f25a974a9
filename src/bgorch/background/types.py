"""Shared data types for the background orchestrator.

``Job`` records are owned by the JobRegistry; everything outside it only ever
sees snapshots produced by ``Job.snapshot()``. ``BackgroundOptions`` is the
tagged replacement for the loose flag bag callers used to pass around.
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class JobStatus(str, Enum):
    """Lifecycle states of a background job.

    Inherits from ``str`` so ``job.status == "running"`` holds and the value
    serializes as a plain string.
    """

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})

# Flags that steer the orchestrator and are never forwarded to the child
_BACKGROUND_KEYS = ("background", "bg")
_FOREGROUND_KEYS = ("foreground", "fg")
_TIMEOUT_KEYS = ("timeout", "timeout_seconds")


class BackgroundOptions(BaseModel):
    """Per-invocation options recognized by the orchestrator.

    ``extra`` is an open map for command-specific flags; its entries are
    forwarded to the spawned process as ``--key`` / ``--key=value``.
    """

    model_config = ConfigDict(frozen=True)

    background: bool = Field(
        default=False,
        description="Force the command into the background",
    )
    foreground: bool = Field(
        default=False,
        description="Force the command into the foreground (wins over background)",
    )
    timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Per-job wall-clock limit overriding the command profile",
    )
    extra: dict[str, Any] = Field(
        default_factory=dict,
        description="Command-specific flags forwarded to the child process",
    )

    @classmethod
    def from_flags(cls, flags: Mapping[str, Any] | None = None) -> BackgroundOptions:
        """Build options from a raw flag mapping such as a parsed CLI flag bag."""
        if not flags:
            return cls()
        background = any(bool(flags.get(k)) for k in _BACKGROUND_KEYS)
        foreground = any(bool(flags.get(k)) for k in _FOREGROUND_KEYS)
        timeout: float | None = None
        for key in _TIMEOUT_KEYS:
            if flags.get(key) is not None:
                timeout = float(flags[key])
                break
        reserved = {*_BACKGROUND_KEYS, *_FOREGROUND_KEYS, *_TIMEOUT_KEYS}
        extra = {k: v for k, v in flags.items() if k not in reserved}
        return cls(
            background=background,
            foreground=foreground,
            timeout_seconds=timeout,
            extra=extra,
        )

    def to_cli_flags(self) -> list[str]:
        """Render ``extra`` as command-line flags for the child process."""
        flags: list[str] = []
        for key, value in self.extra.items():
            if isinstance(value, bool):
                if value:
                    flags.append(f"--{key}")
            elif value is not None:
                flags.append(f"--{key}={value}")
        return flags


def coerce_options(options: BackgroundOptions | Mapping[str, Any] | None) -> BackgroundOptions:
    """Accept either a BackgroundOptions or a raw flag mapping."""
    if isinstance(options, BackgroundOptions):
        return options
    return BackgroundOptions.from_flags(options)


@dataclass
class Job:
    """One tracked invocation of a command running as a background process."""

    job_id: str
    command: str
    args: list[str]
    options: BackgroundOptions = field(default_factory=BackgroundOptions)
    status: JobStatus = JobStatus.QUEUED
    pid: int | None = None
    created_at: float = field(default_factory=time.time)
    started_at: float | None = None
    ended_at: float | None = None
    progress_percent: int = 0
    progress_message: str = ""
    stage: str | None = None
    exit_code: int | None = None
    error: str | None = None
    log_path: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def duration_seconds(self, now: float | None = None) -> float:
        """Wall-clock run time; zero until the job has started."""
        if self.started_at is None:
            return 0.0
        end = self.ended_at if self.ended_at is not None else (now or time.time())
        return max(0.0, end - self.started_at)

    def snapshot(self) -> Job:
        """Copy safe to hand out; mutating it does not touch the registry."""
        return replace(self, args=list(self.args))


@dataclass(frozen=True)
class ProgressUpdate:
    """Payload of the ``progressUpdate`` event."""

    job_id: str
    percent: int
    message: str
    timestamp: float = field(default_factory=time.time)


__all__ = [
    "BackgroundOptions",
    "Job",
    "JobStatus",
    "ProgressUpdate",
    "TERMINAL_STATUSES",
    "coerce_options",
]
