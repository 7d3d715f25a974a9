"""Tests for bgorch.core.logging module."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from bgorch.core.logging import (
    SENSITIVE_PATTERNS,
    BgorchLogger,
    JobContext,
    _add_job_context,
    _sanitize_event_dict,
    _sanitize_value,
    configure_logging,
    get_current_job_context,
    get_logger,
    with_job_context,
)


class TestSensitivePatterns:
    """Tests for sensitive field detection and sanitization."""

    def test_known_sensitive_patterns(self):
        assert "token" in SENSITIVE_PATTERNS
        assert "password" in SENSITIVE_PATTERNS
        assert "mnemonic" in SENSITIVE_PATTERNS

    def test_sanitize_value_redacts_compound_keys(self):
        assert _sanitize_value("WALRUS_API_KEY", "k-1") == "[REDACTED]"
        assert _sanitize_value("bearer_token", "abc") == "[REDACTED]"
        assert _sanitize_value("wallet_private_key", "0xdead") == "[REDACTED]"

    def test_sanitize_value_preserves_safe_values(self):
        assert _sanitize_value("job_id", "job-1-abcd1234") == "job-1-abcd1234"
        assert _sanitize_value("pid", 4242) == 4242

    def test_sanitize_event_dict_handles_nested_dicts(self):
        event_dict = {
            "event": "job.started",
            "env": {"SUI_MNEMONIC": "word word", "HOME": "/home/user"},
            "password": "hunter2",
        }

        result = _sanitize_event_dict(None, "info", event_dict)

        assert result["event"] == "job.started"
        assert result["env"]["SUI_MNEMONIC"] == "[REDACTED]"
        assert result["env"]["HOME"] == "/home/user"
        assert result["password"] == "[REDACTED]"


class TestBgorchLogger:
    """Tests for the BgorchLogger wrapper."""

    def test_component_is_recorded(self):
        logger = get_logger("executor")
        assert isinstance(logger, BgorchLogger)
        assert logger.component == "executor"

    def test_bind_returns_new_logger(self):
        logger = get_logger("monitor")
        bound = logger.bind(tick=3)
        assert bound is not logger
        assert bound._context == {"component": "monitor", "tick": 3}
        assert logger._context == {"component": "monitor"}

    def test_log_methods_do_not_raise_unconfigured(self):
        logger = get_logger("registry")
        logger.debug("job.created", job_id="job-1")
        logger.info("job.created", job_id="job-1")
        logger.warning("job.created", job_id="job-1")
        logger.error("job.created", job_id="job-1")


class TestConfigureLogging:
    """Tests for configure_logging()."""

    def test_both_requires_file_path(self):
        with pytest.raises(ValueError, match="file_path is required"):
            configure_logging(format="both")

    def test_sets_level(self):
        configure_logging(level="DEBUG", format="console")
        assert logging.getLogger().level == logging.DEBUG

    def test_replaces_existing_handlers(self):
        root = logging.getLogger()
        stale = logging.NullHandler()
        root.addHandler(stale)

        configure_logging(level="INFO", format="console")

        assert stale not in root.handlers
        assert len(root.handlers) == 1

    def test_json_file_output(self, tmp_path: Path):
        log_file = tmp_path / "logs" / "bgorch.log"
        configure_logging(level="INFO", format="json", file_path=log_file)

        logger = get_logger("orchestrator")
        with with_job_context(JobContext(job_id="job-7-0badf00d", command="deploy")):
            logger.info("job.started", pid=99, token="secret-value")
        for handler in logging.getLogger().handlers:
            handler.flush()

        lines = [line for line in log_file.read_text().splitlines() if line.strip()]
        entry = json.loads(lines[-1])
        assert entry["event"] == "job.started"
        assert entry["component"] == "orchestrator"
        assert entry["job_id"] == "job-7-0badf00d"
        assert entry["command"] == "deploy"
        assert entry["pid"] == 99
        assert entry["token"] == "[REDACTED]"
        assert "timestamp" in entry


class TestJobContext:
    """Tests for the job ContextVar helpers."""

    def test_to_dict_omits_unset_fields(self):
        assert JobContext(job_id="job-1").to_dict() == {"job_id": "job-1"}
        assert JobContext(job_id="job-1", command="store", pid=5).to_dict() == {
            "job_id": "job-1",
            "command": "store",
            "pid": 5,
        }

    def test_with_job_context_sets_and_restores(self):
        assert get_current_job_context() is None
        outer = JobContext(job_id="job-1")
        inner = JobContext(job_id="job-2")
        with with_job_context(outer):
            with with_job_context(inner) as ctx:
                assert ctx is inner
                assert get_current_job_context() is inner
            assert get_current_job_context() is outer
        assert get_current_job_context() is None

    def test_restored_on_exception(self):
        with pytest.raises(RuntimeError):
            with with_job_context(JobContext(job_id="job-1")):
                raise RuntimeError("boom")
        assert get_current_job_context() is None

    def test_processor_adds_context_without_overriding(self):
        with with_job_context(JobContext(job_id="job-1", command="sync")):
            result = _add_job_context(None, "info", {"event": "x", "command": "explicit"})
        assert result == {"event": "x", "job_id": "job-1", "command": "explicit"}

    def test_processor_noop_without_context(self):
        assert _add_job_context(None, "info", {"event": "x"}) == {"event": "x"}
