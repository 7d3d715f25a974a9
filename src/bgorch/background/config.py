"""Configuration models for the background orchestrator.

Pydantic v2 models for command profiles, resource throttling thresholds and
the orchestrator as a whole, plus ``load_config()`` which reads an optional
YAML file and applies environment overrides.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from bgorch.background.exceptions import ConfigError
from bgorch.core.logging import get_logger

_logger = get_logger("background.config")

ENV_DISABLE = "BGORCH_NO_BACKGROUND"
ENV_CONFIG_DIR = "BGORCH_CONFIG_DIR"
_TRUTHY = frozenset({"1", "true", "yes", "on"})


class CommandProfile(BaseModel):
    """Static backgrounding policy for one command name."""

    model_config = ConfigDict(frozen=True)

    command: str = Field(
        min_length=1,
        description="Command name as passed to should_run_in_background()",
    )
    auto_background: bool = Field(
        default=False,
        description="Background this command when no explicit flag is given",
    )
    max_concurrency: int = Field(
        default=1,
        ge=1,
        description="Maximum simultaneously running jobs of this command",
    )
    timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Wall-clock limit per job. None falls back to "
        "OrchestratorConfig.default_job_timeout_seconds.",
    )
    description: str = Field(
        default="",
        description="Human-readable note shown by `bgorch profiles`",
    )


def default_profiles() -> list[CommandProfile]:
    """Profiles for the long-running commands of the todo CLI."""
    return [
        CommandProfile(
            command="store", auto_background=True, max_concurrency=3,
            timeout_seconds=300, description="Upload todos to storage",
        ),
        CommandProfile(
            command="store-list", auto_background=True, max_concurrency=2,
            timeout_seconds=600, description="Upload a whole todo list",
        ),
        CommandProfile(
            command="store-file", auto_background=True, max_concurrency=3,
            timeout_seconds=180, description="Upload a single file",
        ),
        CommandProfile(
            command="deploy", auto_background=True, max_concurrency=1,
            timeout_seconds=900, description="Deploy the site",
        ),
        CommandProfile(
            command="sync", auto_background=True, max_concurrency=2,
            timeout_seconds=300, description="Sync local and remote todos",
        ),
        CommandProfile(
            command="ai", auto_background=False, max_concurrency=5,
            timeout_seconds=60, description="AI suggestions",
        ),
        CommandProfile(
            command="image", auto_background=True, max_concurrency=2,
            timeout_seconds=300, description="Image upload",
        ),
        CommandProfile(
            command="create-nft", auto_background=True, max_concurrency=2,
            timeout_seconds=600, description="Mint an NFT from a todo",
        ),
    ]


class ResourceLimitConfig(BaseModel):
    """Thresholds the resource monitor uses to throttle the global ceiling.

    The ceiling is lowered only after ``pressure_samples`` consecutive
    pressured samples and restored one slot per calm sample.
    """

    memory_high_percent: float = Field(
        default=85.0,
        gt=0,
        le=100,
        description="System memory usage (%) considered high pressure",
    )
    memory_low_percent: float = Field(
        default=60.0,
        ge=0,
        lt=100,
        description="System memory usage (%) below which the ceiling recovers",
    )
    cpu_high_percent: float = Field(
        default=90.0,
        gt=0,
        le=100,
        description="System CPU usage (%) considered high pressure",
    )
    cpu_low_percent: float = Field(
        default=60.0,
        ge=0,
        lt=100,
        description="System CPU usage (%) below which the ceiling recovers",
    )
    pressure_samples: int = Field(
        default=2,
        ge=1,
        description="Consecutive pressured samples required before throttling",
    )
    throttle_factor: float = Field(
        default=0.7,
        gt=0,
        lt=1,
        description="Multiplier applied to the ceiling when throttling",
    )

    @model_validator(mode="after")
    def _check_bands(self) -> ResourceLimitConfig:
        if self.memory_low_percent >= self.memory_high_percent:
            raise ValueError("memory_low_percent must be below memory_high_percent")
        if self.cpu_low_percent >= self.cpu_high_percent:
            raise ValueError("cpu_low_percent must be below cpu_high_percent")
        return self


class OrchestratorConfig(BaseModel):
    """Top-level configuration for a BackgroundOrchestrator instance."""

    enabled: bool = Field(
        default=True,
        description="When False nothing is ever backgrounded and "
        "execute_in_background() raises OrchestratorDisabledError.",
    )
    max_concurrent_jobs: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Static global limit on running jobs. The resource "
        "monitor may lower the effective ceiling below this under load.",
    )
    monitor_enabled: bool = Field(
        default=True,
        description="Run the periodic resource monitor (throttling and "
        "promotion of queued jobs).",
    )
    monitor_interval_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Interval between resource monitor ticks",
    )
    default_job_timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Wall-clock limit for jobs whose profile sets none",
    )
    kill_grace_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Seconds between SIGTERM and SIGKILL when cancelling",
    )
    output_drain_seconds: float = Field(
        default=0.5,
        gt=0,
        description="After a job process exits, how long to keep reading "
        "output still buffered in its pipes. Descendants holding the pipes "
        "open past this window are killed with the job's process group.",
    )
    executable: list[str] = Field(
        default_factory=list,
        description="Program prefix for spawned jobs, e.g. ['waltodo']. "
        "Empty means the command name itself is executed.",
    )
    extra_args: list[str] = Field(
        default_factory=list,
        description="Arguments appended to every background invocation, "
        "e.g. ['--quiet', '--output=json']",
    )
    config_dir: Path | None = Field(
        default=None,
        description="Directory for job log files. None disables job logs.",
    )
    resource_limits: ResourceLimitConfig = Field(
        default_factory=ResourceLimitConfig,
        description="Throttling thresholds for the resource monitor",
    )
    profiles: list[CommandProfile] = Field(
        default_factory=default_profiles,
        description="Command profiles; replaces the built-in table when given",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Minimum log level used by the CLI",
    )

    @field_validator("profiles")
    @classmethod
    def _unique_commands(cls, v: list[CommandProfile]) -> list[CommandProfile]:
        seen: set[str] = set()
        for profile in v:
            if profile.command in seen:
                raise ValueError(f"duplicate command profile: {profile.command}")
            seen.add(profile.command)
        return v


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    if os.environ.get(ENV_DISABLE, "").strip().lower() in _TRUTHY:
        data["enabled"] = False
    config_dir = os.environ.get(ENV_CONFIG_DIR)
    if config_dir:
        data["config_dir"] = config_dir
    return data


def load_config(path: Path | None = None) -> OrchestratorConfig:
    """Load orchestrator config from YAML, then apply environment overrides.

    Args:
        path: YAML file. None yields the defaults (plus env overrides).

    Raises:
        ConfigError: If the file is missing, unparseable or invalid.
    """
    data: dict[str, Any] = {}
    if path is not None:
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")
        try:
            with open(path, encoding="utf-8") as f:
                loaded = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigError(f"Cannot read config {path}: {exc}") from exc
        if loaded is not None and not isinstance(loaded, dict):
            raise ConfigError(f"Config {path} must be a mapping, got {type(loaded).__name__}")
        data = dict(loaded or {})

    try:
        config = OrchestratorConfig.model_validate(_apply_env_overrides(data))
    except ValidationError as exc:
        raise ConfigError(f"Invalid orchestrator config: {exc}") from exc

    _logger.debug(
        "config.loaded",
        path=str(path) if path else None,
        enabled=config.enabled,
        profiles=len(config.profiles),
    )
    return config


__all__ = [
    "CommandProfile",
    "ENV_CONFIG_DIR",
    "ENV_DISABLE",
    "OrchestratorConfig",
    "ResourceLimitConfig",
    "default_profiles",
    "load_config",
]
