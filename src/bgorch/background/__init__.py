"""Background command orchestration.

Decides per invocation whether a CLI subcommand runs in the foreground or as
a supervised background job, and manages the lifecycle of those jobs.
"""

from bgorch.background.config import (
    CommandProfile,
    OrchestratorConfig,
    ResourceLimitConfig,
    default_profiles,
    load_config,
)
from bgorch.background.event_bus import EventBus, JobEvent
from bgorch.background.exceptions import (
    ConfigError,
    InvalidTransitionError,
    JobFailedError,
    JobNotFoundError,
    JobWaitTimeoutError,
    OrchestratorDisabledError,
    OrchestratorError,
    OrchestratorShutdownError,
)
from bgorch.background.launcher import ManagedProcess, ProcessLauncher, SubprocessLauncher
from bgorch.background.monitor import ResourceMonitor, ResourceSnapshot
from bgorch.background.orchestrator import (
    BackgroundOrchestrator,
    get_orchestrator,
    reset_orchestrator,
)
from bgorch.background.progress import MarkerProgressParser, ProgressParser, ProgressSignal
from bgorch.background.reporter import create_progress_bar, format_duration
from bgorch.background.types import BackgroundOptions, Job, JobStatus, ProgressUpdate

__all__ = [
    "BackgroundOptions",
    "BackgroundOrchestrator",
    "CommandProfile",
    "ConfigError",
    "EventBus",
    "InvalidTransitionError",
    "Job",
    "JobEvent",
    "JobFailedError",
    "JobNotFoundError",
    "JobStatus",
    "JobWaitTimeoutError",
    "ManagedProcess",
    "MarkerProgressParser",
    "OrchestratorConfig",
    "OrchestratorDisabledError",
    "OrchestratorError",
    "OrchestratorShutdownError",
    "ProcessLauncher",
    "ProgressParser",
    "ProgressSignal",
    "ProgressUpdate",
    "ResourceLimitConfig",
    "ResourceMonitor",
    "ResourceSnapshot",
    "SubprocessLauncher",
    "create_progress_bar",
    "default_profiles",
    "format_duration",
    "get_orchestrator",
    "load_config",
    "reset_orchestrator",
]
