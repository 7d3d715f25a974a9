"""Structured logging for bgorch.

Thin layer over structlog that gives every component a named logger and
automatically attaches the job being supervised (job_id, command) when a
``JobContext`` is active.

Example usage:
    from bgorch.core.logging import configure_logging, get_logger, with_job_context

    configure_logging(level="DEBUG", format="console")

    logger = get_logger("executor")
    logger.info("process.spawned", pid=4242)

    with with_job_context(JobContext(job_id="job-1-abcd1234", command="store")):
        logger.info("progress.parsed", percent=50)  # includes job_id, command
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Literal

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

# Keys whose values must never reach a log sink
SENSITIVE_PATTERNS = frozenset({
    "api_key",
    "apikey",
    "token",
    "secret",
    "password",
    "credential",
    "private_key",
    "mnemonic",
    "authorization",
})

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]
LogFormat = Literal["json", "console", "both"]


@dataclass(frozen=True)
class JobContext:
    """Identifies the background job a block of code is working on."""

    job_id: str
    command: str | None = None
    pid: int | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"job_id": self.job_id}
        if self.command is not None:
            result["command"] = self.command
        if self.pid is not None:
            result["pid"] = self.pid
        return result


_current_job: ContextVar[JobContext | None] = ContextVar("bgorch_job", default=None)


def get_current_job_context() -> JobContext | None:
    """Return the active JobContext, if any."""
    return _current_job.get()


@contextmanager
def with_job_context(ctx: JobContext) -> Iterator[JobContext]:
    """Attach ``ctx`` to every log entry emitted inside the block.

    Uses a ContextVar, so each asyncio task supervising a job sees only its
    own context.
    """
    token = _current_job.set(ctx)
    try:
        yield ctx
    finally:
        _current_job.reset(token)


def _sanitize_value(key: str, value: Any) -> Any:
    key_lower = key.lower()
    for pattern in SENSITIVE_PATTERNS:
        if pattern in key_lower:
            return "[REDACTED]"
    return value


def _sanitize_event_dict(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that redacts sensitive fields (one level deep)."""
    sanitized: EventDict = {}
    for key, value in event_dict.items():
        if isinstance(value, dict):
            sanitized[key] = {k: _sanitize_value(k, v) for k, v in value.items()}
        else:
            sanitized[key] = _sanitize_value(key, value)
    return sanitized


def _add_timestamp(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    event_dict["timestamp"] = datetime.now(UTC).isoformat()
    return event_dict


def _add_job_context(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that merges the active JobContext.

    Explicitly passed keys win over context keys.
    """
    ctx = _current_job.get()
    if ctx is not None:
        for key, value in ctx.to_dict().items():
            event_dict.setdefault(key, value)
    return event_dict


class BgorchLogger:
    """Component-scoped logger wrapper around structlog.

    The underlying structlog logger is fetched on every call so that loggers
    created at import time still honour a later ``configure_logging()``.
    """

    def __init__(self, component: str, **initial_context: Any) -> None:
        self._component = component
        self._context: dict[str, Any] = {"component": component, **initial_context}

    @property
    def component(self) -> str:
        return self._component

    def _get_logger(self) -> structlog.stdlib.BoundLogger:
        logger: structlog.stdlib.BoundLogger = structlog.get_logger().bind(**self._context)
        return logger

    def bind(self, **context: Any) -> BgorchLogger:
        """Return a new logger with extra bound context."""
        new_logger = BgorchLogger.__new__(BgorchLogger)
        new_logger._component = self._component
        new_logger._context = {**self._context, **context}
        return new_logger

    def debug(self, event: str, **kw: Any) -> None:
        self._get_logger().debug(event, **kw)

    def info(self, event: str, **kw: Any) -> None:
        self._get_logger().info(event, **kw)

    def warning(self, event: str, **kw: Any) -> None:
        self._get_logger().warning(event, **kw)

    def error(self, event: str, **kw: Any) -> None:
        self._get_logger().error(event, **kw)

    def exception(self, event: str, **kw: Any) -> None:
        """Log at error level with the active exception's traceback."""
        self._get_logger().exception(event, **kw)


def _build_processors(fmt: LogFormat, include_timestamps: bool) -> list[Processor]:
    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        _sanitize_event_dict,
        _add_job_context,
    ]
    if include_timestamps:
        processors.append(_add_timestamp)

    processors.extend([
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ])
    if fmt == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))
    return processors


def configure_logging(
    level: LogLevel = "INFO",
    format: LogFormat = "console",  # noqa: A002
    file_path: Path | None = None,
    max_file_size_mb: int = 20,
    backup_count: int = 3,
    include_timestamps: bool = True,
) -> None:
    """Configure structlog and the stdlib root logger.

    Call once at startup, before background jobs are launched.

    Args:
        level: Minimum level to emit.
        format: "console" for human-readable stderr output, "json" for
            structured output (to ``file_path`` or stdout), "both" for console
            on stderr plus JSON in ``file_path``.
        file_path: Optional log file; rotated at ``max_file_size_mb``.
        max_file_size_mb: Rotation threshold for the log file.
        backup_count: Number of rotated files kept.
        include_timestamps: Add an ISO8601 UTC timestamp to every entry.

    Raises:
        ValueError: If ``format="both"`` is requested without ``file_path``.
    """
    if format == "both" and file_path is None:
        raise ValueError("file_path is required when format='both'")

    log_level = getattr(logging, level)
    handlers: list[logging.Handler] = []

    if format in ("console", "both"):
        handlers.append(logging.StreamHandler(sys.stderr))

    if format in ("json", "both"):
        if file_path is not None:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(
                RotatingFileHandler(
                    file_path,
                    maxBytes=max_file_size_mb * 1024 * 1024,
                    backupCount=backup_count,
                    encoding="utf-8",
                )
            )
        else:
            handlers.append(logging.StreamHandler(sys.stdout))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in handlers:
        handler.setLevel(log_level)
        root_logger.addHandler(handler)

    # cache_logger_on_first_use=False keeps import-time loggers reconfigurable
    structlog.configure(
        processors=_build_processors("json" if format == "json" else "console", include_timestamps),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(component: str, **initial_context: Any) -> BgorchLogger:
    """Get a logger bound to ``component`` (e.g. "executor", "monitor")."""
    return BgorchLogger(component, **initial_context)


__all__ = [
    "BgorchLogger",
    "JobContext",
    "SENSITIVE_PATTERNS",
    "configure_logging",
    "get_current_job_context",
    "get_logger",
    "with_job_context",
]
