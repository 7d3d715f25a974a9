"""bgorch CLI.

Package structure:
    cli/
    ├── __init__.py           # This file - app assembly and global options
    ├── helpers.py            # Shared CLI state (logging options, config path)
    ├── output.py             # Rich formatting
    └── commands/
        ├── run.py            # run command
        └── profiles.py       # profiles command
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from bgorch import __version__

from . import helpers as helpers
from .commands import profiles, run
from .helpers import (
    configure_global_logging,
    set_config_path,
    set_log_file,
    set_log_format,
    set_log_level,
)
from .output import console

app = typer.Typer(
    name="bgorch",
    help="Run CLI subcommands in the foreground or as supervised background jobs",
    add_completion=False,
)


def version_callback(value: bool) -> None:
    if value:
        console.print(f"bgorch v{__version__}")
        raise typer.Exit()


def log_level_callback(value: str | None) -> str | None:
    if value:
        set_log_level(value)
    return value


def log_file_callback(value: Path | None) -> Path | None:
    if value:
        set_log_file(value)
    return value


def log_format_callback(value: str | None) -> str | None:
    if value:
        set_log_format(value)
    return value


def config_callback(value: Path | None) -> Path | None:
    set_config_path(value)
    return value


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    log_level: Annotated[
        str | None,
        typer.Option(
            "--log-level",
            "-L",
            callback=log_level_callback,
            help="Logging level (DEBUG, INFO, WARNING, ERROR)",
            envvar="BGORCH_LOG_LEVEL",
        ),
    ] = None,
    log_file: Annotated[
        Path | None,
        typer.Option(
            "--log-file",
            callback=log_file_callback,
            help="Path for log file output",
            envvar="BGORCH_LOG_FILE",
        ),
    ] = None,
    log_format: Annotated[
        str | None,
        typer.Option(
            "--log-format",
            callback=log_format_callback,
            help="Log format: json, console, or both",
            envvar="BGORCH_LOG_FORMAT",
        ),
    ] = None,
    config: Annotated[
        Path | None,
        typer.Option(
            "--config",
            "-c",
            callback=config_callback,
            help="Orchestrator YAML config file",
            envvar="BGORCH_CONFIG",
        ),
    ] = None,
) -> None:
    """bgorch - background command orchestrator."""
    configure_global_logging(console)


app.command(
    context_settings={"allow_extra_args": True, "ignore_unknown_options": True},
)(run)
app.command()(profiles)


__all__ = ["app", "main"]
