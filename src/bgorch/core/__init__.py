"""Cross-cutting infrastructure shared by the orchestrator and the CLI."""

from bgorch.core.logging import (
    BgorchLogger,
    JobContext,
    configure_logging,
    get_logger,
    with_job_context,
)

__all__ = [
    "BgorchLogger",
    "JobContext",
    "configure_logging",
    "get_logger",
    "with_job_context",
]
