"""Shared state and helpers for bgorch CLI commands.

Global options (log level/format/file, config path) are stored here by the
Typer callbacks and read by the commands.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal

import typer
from rich.console import Console

from bgorch.background.config import OrchestratorConfig, load_config
from bgorch.background.exceptions import ConfigError
from bgorch.core.logging import configure_logging, get_logger

_logger = get_logger("cli")


@dataclass
class CliLoggingConfig:
    """Logging options collected from the global CLI flags."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "WARNING"
    file: Path | None = None
    format: Literal["json", "console", "both"] = "console"
    configured: bool = False


_log_config = CliLoggingConfig()
_config_path: Path | None = None


def set_log_level(level: str) -> None:
    _log_config.level = level.upper()  # type: ignore[assignment]


def set_log_file(path: Path | None) -> None:
    _log_config.file = path


def set_log_format(fmt: str) -> None:
    _log_config.format = fmt  # type: ignore[assignment]


def set_config_path(path: Path | None) -> None:
    global _config_path
    _config_path = path


def configure_global_logging(console: Console) -> None:
    """Apply the collected logging options once per session.

    Raises:
        typer.Exit: If the options are inconsistent (e.g. "both" without a file).
    """
    if _log_config.configured:
        return
    try:
        configure_logging(
            level=_log_config.level,
            format=_log_config.format,
            file_path=_log_config.file,
        )
        _log_config.configured = True
    except ValueError as e:
        console.print(f"[red]Logging configuration error:[/red] {e}")
        raise typer.Exit(1) from None


def reset_cli_state() -> None:
    """Reset global CLI state (used by tests)."""
    global _log_config, _config_path
    _log_config = CliLoggingConfig()
    _config_path = None


def load_cli_config(console: Console) -> OrchestratorConfig:
    """Load the orchestrator config named by ``--config`` (or defaults).

    Raises:
        typer.Exit: If the config file is missing or invalid.
    """
    try:
        return load_config(_config_path)
    except ConfigError as e:
        _logger.error("cli.config_error", path=str(_config_path), error=str(e))
        console.print(f"[red]Error loading config:[/red] {e}")
        raise typer.Exit(2) from None


__all__ = [
    "CliLoggingConfig",
    "configure_global_logging",
    "load_cli_config",
    "reset_cli_state",
    "set_config_path",
    "set_log_file",
    "set_log_format",
    "set_log_level",
]
