"""Pytest fixtures for bgorch tests."""

import logging
from collections.abc import Generator
from unittest.mock import patch

import pytest
import structlog

from bgorch.background import orchestrator as orchestrator_module
from bgorch.background.monitor import ResourceMonitor


@pytest.fixture(autouse=True)
def reset_logging_state() -> Generator[None, None, None]:
    """Reset structlog, root handlers and CLI state around each test."""
    import bgorch.cli.helpers as cli_helpers

    cli_helpers.reset_cli_state()
    structlog.reset_defaults()

    root_logger = logging.getLogger()
    original_handlers = root_logger.handlers[:]
    original_level = root_logger.level
    for handler in original_handlers:
        root_logger.removeHandler(handler)

    yield

    cli_helpers.reset_cli_state()
    structlog.reset_defaults()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in original_handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(original_level)


@pytest.fixture(autouse=True)
def clear_default_orchestrator() -> Generator[None, None, None]:
    """Make sure no test leaks the process-wide orchestrator."""
    orchestrator_module._default = None
    yield
    orchestrator_module._default = None


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("BGORCH_NO_BACKGROUND", raising=False)
    monkeypatch.delenv("BGORCH_CONFIG_DIR", raising=False)


@pytest.fixture
def calm_probes() -> Generator[None, None, None]:
    """System probes reporting an idle host."""
    with (
        patch.object(ResourceMonitor, "_get_memory_bytes", return_value=64 * 1024 * 1024),
        patch.object(ResourceMonitor, "_get_memory_percent", return_value=20.0),
        patch.object(ResourceMonitor, "_get_cpu_percent", return_value=10.0),
    ):
        yield
