"""``bgorch run`` - run a command in the foreground or as a background job."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence

import typer

from bgorch.background.config import OrchestratorConfig
from bgorch.background.event_bus import JobEvent
from bgorch.background.exceptions import OrchestratorError
from bgorch.background.orchestrator import BackgroundOrchestrator
from bgorch.background.types import BackgroundOptions, JobStatus, ProgressUpdate
from bgorch.core.logging import get_logger

from ..helpers import load_cli_config
from ..output import console, create_job_progress, format_status, output_error

_logger = get_logger("cli.run")

EXIT_NOT_FOUND = 127


def run(
    command: str = typer.Argument(..., help="Subcommand to run (e.g. store, deploy)"),
    args: list[str] | None = typer.Argument(None, help="Arguments passed to the subcommand"),
    background: bool | None = typer.Option(
        None,
        "--background/--foreground",
        help="Force background or foreground execution (default: command profile)",
    ),
    timeout: float | None = typer.Option(
        None,
        "--timeout",
        "-t",
        min=0.001,
        help="Per-job timeout in seconds for background runs",
    ),
) -> None:
    """Run COMMAND, detaching it as a supervised background job when appropriate."""
    config = load_cli_config(console)
    options = BackgroundOptions(
        background=background is True,
        foreground=background is False,
        timeout_seconds=timeout,
    )
    exit_code = asyncio.run(_run(config, command, list(args or []), options))
    raise typer.Exit(exit_code)


async def _run(
    config: OrchestratorConfig,
    command: str,
    args: list[str],
    options: BackgroundOptions,
) -> int:
    orchestrator = BackgroundOrchestrator(config)
    if not orchestrator.should_run_in_background(command, args, options):
        return await run_foreground(config, command, args)
    return await run_background(orchestrator, command, args, options)


async def run_foreground(config: OrchestratorConfig, command: str, args: Sequence[str]) -> int:
    """Run attached to the terminal and return the child's exit code."""
    argv = [*config.executable, command, *args]
    _logger.debug("run.foreground", argv=argv)
    try:
        process = await asyncio.create_subprocess_exec(*argv)
    except FileNotFoundError as e:
        output_error(f"Command not found: {argv[0]}", hint=str(e))
        return EXIT_NOT_FOUND
    return await process.wait()


async def run_background(
    orchestrator: BackgroundOrchestrator,
    command: str,
    args: Sequence[str],
    options: BackgroundOptions,
) -> int:
    """Submit the job, show its progress and print the final status report."""
    async with orchestrator:
        progress = create_job_progress(console)
        task_id = progress.add_task(command, total=100, message="queued")
        job_id: str | None = None

        def on_progress(update: ProgressUpdate) -> None:
            if update.job_id == job_id:
                progress.update(task_id, completed=update.percent, message=update.message)

        orchestrator.on(JobEvent.PROGRESS_UPDATE, on_progress)
        try:
            with progress:
                job_id = await orchestrator.execute_in_background(command, args, options)
                progress.update(task_id, description=f"{command} ({job_id})", message="running")
                job = await orchestrator.wait_for_job(job_id, timeout_seconds=None)
                if job.status == JobStatus.COMPLETED:
                    progress.update(task_id, completed=100, message="done")
        except OrchestratorError as e:
            output_error(str(e))
            return 1
        except OSError as e:
            output_error(f"Failed to start {command}: {e}")
            return 1

        console.print(
            orchestrator.generate_status_report(), markup=False, highlight=False, soft_wrap=True,
        )
        console.print(f"Job {job.job_id}: {format_status(job.status)}")
        if job.error:
            console.print(f"[red]{job.error}[/red]")
        return 0 if job.status == JobStatus.COMPLETED else 1
