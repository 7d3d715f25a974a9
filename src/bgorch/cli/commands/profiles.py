"""``bgorch profiles`` - show the configured command profiles."""

from __future__ import annotations

import json

import typer

from ..helpers import load_cli_config
from ..output import console, create_profiles_table


def profiles(
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """List command profiles and whether each runs in the background."""
    config = load_cli_config(console)

    if json_output:
        payload = {
            "enabled": config.enabled,
            "max_concurrent_jobs": config.max_concurrent_jobs,
            "profiles": [p.model_dump() for p in config.profiles],
        }
        console.print(json.dumps(payload, indent=2), markup=False, highlight=False, soft_wrap=True)
        return

    console.print(create_profiles_table(config.profiles, config.default_job_timeout_seconds))
    state = "[green]enabled[/green]" if config.enabled else "[yellow]disabled[/yellow]"
    console.print(
        f"Background execution {state}, "
        f"max {config.max_concurrent_jobs} concurrent jobs"
    )
