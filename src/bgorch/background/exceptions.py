"""Exception hierarchy for the background orchestrator.

Everything raised on purpose by the orchestrator inherits from
``OrchestratorError`` so callers can catch broadly or narrowly. Spawn errors
are the exception: they propagate unchanged from ``execute_in_background`` so
the caller sees the launcher's own error.
"""

from __future__ import annotations


class OrchestratorError(Exception):
    """Base exception for all orchestrator errors."""


class OrchestratorDisabledError(OrchestratorError):
    """Raised when backgrounding is requested while the orchestrator is disabled.

    Disabled via ``OrchestratorConfig.enabled = False`` or the
    ``BGORCH_NO_BACKGROUND`` environment variable.
    """


class OrchestratorShutdownError(OrchestratorError):
    """Raised when work is submitted after ``shutdown()``."""


class ConfigError(OrchestratorError):
    """Raised when an orchestrator config file cannot be loaded."""


class JobNotFoundError(OrchestratorError, LookupError):
    """Raised when waiting on a job id the registry does not know."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class InvalidTransitionError(OrchestratorError):
    """Raised for a state change the job state machine does not allow.

    Transitions requested from a terminal state are ignored rather than
    raised; this error means a caller skipped a state (e.g. queued to
    completed).
    """

    def __init__(self, job_id: str, current: str, target: str) -> None:
        super().__init__(f"Job {job_id}: illegal transition {current} -> {target}")
        self.job_id = job_id
        self.current = current
        self.target = target


class JobFailedError(OrchestratorError):
    """Describes why a background job failed.

    Passed to ``jobFailed`` subscribers; never raised back to the caller of
    ``execute_in_background``.
    """

    def __init__(
        self,
        message: str,
        *,
        exit_code: int | None = None,
        signal_name: str | None = None,
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.signal_name = signal_name


class JobWaitTimeoutError(OrchestratorError, TimeoutError):
    """Raised by ``wait_for_job`` when the deadline passes first.

    The job itself is untouched and keeps running.
    """

    def __init__(self, job_id: str, timeout: float) -> None:
        super().__init__(f"Timeout waiting for job {job_id} after {timeout:g}s")
        self.job_id = job_id
        self.timeout = timeout
