"""Rich output helpers for the bgorch CLI."""

from __future__ import annotations

from collections.abc import Iterable

from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from bgorch.background.config import CommandProfile
from bgorch.background.types import JobStatus

console = Console()


class StatusColors:
    """Rich styles for job statuses."""

    JOB_STATUS: dict[JobStatus, str] = {
        JobStatus.QUEUED: "yellow",
        JobStatus.RUNNING: "blue",
        JobStatus.COMPLETED: "green",
        JobStatus.FAILED: "red",
        JobStatus.CANCELLED: "magenta",
    }

    @classmethod
    def for_status(cls, status: JobStatus) -> str:
        return cls.JOB_STATUS.get(status, "white")


def format_status(status: JobStatus) -> str:
    color = StatusColors.for_status(status)
    return f"[{color}]{status.value}[/{color}]"


def create_profiles_table(profiles: Iterable[CommandProfile], default_timeout: float) -> Table:
    """Table of command profiles for ``bgorch profiles``."""
    table = Table(title="Command Profiles")
    table.add_column("Command", style="cyan", no_wrap=True)
    table.add_column("Background", justify="center")
    table.add_column("Max Concurrency", justify="right")
    table.add_column("Timeout", justify="right")
    table.add_column("Description", style="dim")
    for profile in profiles:
        timeout = profile.timeout_seconds if profile.timeout_seconds is not None else default_timeout
        table.add_row(
            profile.command,
            "[green]auto[/green]" if profile.auto_background else "[dim]no[/dim]",
            str(profile.max_concurrency),
            f"{timeout:g}s",
            profile.description,
        )
    return table


def create_job_progress(console_instance: Console | None = None) -> Progress:
    """Progress display for a supervised background job."""
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(bar_width=30),
        TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
        TextColumn("•"),
        TimeElapsedColumn(),
        TextColumn("[dim]{task.fields[message]}[/dim]"),
        console=console_instance or console,
        transient=False,
    )


def output_error(message: str, hint: str | None = None) -> None:
    console.print(f"[red]Error:[/red] {message}")
    if hint:
        console.print(f"[dim]{hint}[/dim]")


__all__ = [
    "StatusColors",
    "console",
    "create_job_progress",
    "create_profiles_table",
    "format_status",
    "output_error",
]
