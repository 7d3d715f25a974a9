"""Tests for bgorch.background.executor and the subprocess launcher.

The real-process tests run small Python scripts through ``sys.executable``
so no external CLI is needed.
"""

from __future__ import annotations

import asyncio
import re
import sys
import time
from pathlib import Path

import psutil
import pytest

from bgorch.background.admission import AdmissionController
from bgorch.background.event_bus import EventBus
from bgorch.background.executor import ProcessExecutor, describe_exit, signal_name
from bgorch.background.launcher import STREAM_LIMIT, SubprocessLauncher
from bgorch.background.orchestrator import BackgroundOrchestrator
from bgorch.background.profiles import CommandProfileRegistry
from bgorch.background.registry import JobRegistry
from bgorch.background.types import BackgroundOptions, JobStatus
from tests.helpers import FakeLauncher, make_config

PROGRESS_SCRIPT = """
import os, sys
print("PROGRESS:25:starting", flush=True)
print("STAGE:upload", flush=True)
print("job=" + os.environ["BGORCH_JOB_ID"], flush=True)
print("args=" + " ".join(sys.argv[1:]), flush=True)
print("warning: slow network", file=sys.stderr, flush=True)
print("PROGRESS:90:almost", flush=True)
"""

FAILING_SCRIPT = "import sys; print('boom', file=sys.stderr); sys.exit(3)"

SLEEPING_SCRIPT = "import time; time.sleep(30)"

# Exits at once, leaving a child that inherited stdout/stderr
PIPE_HOLDER_SCRIPT = """
import subprocess, sys
child = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(30)"])
print(f"child={child.pid}", flush=True)
print("PROGRESS:50:spawned", flush=True)
"""

TERM_IGNORING_CHILD_SCRIPT = """
import subprocess, sys, time
grandchild = (
    "import signal, time; signal.signal(signal.SIGTERM, signal.SIG_IGN); "
    "print('ready', flush=True); time.sleep(30)"
)
child = subprocess.Popen([sys.executable, "-c", grandchild])
print(f"child={child.pid}", flush=True)
time.sleep(30)
"""

TERM_IGNORING_SCRIPT = (
    "import signal, time; signal.signal(signal.SIGTERM, signal.SIG_IGN); "
    "print('ready', flush=True); time.sleep(30)"
)


def _executor(**config) -> ProcessExecutor:
    cfg = make_config(**config)
    registry = JobRegistry()
    profiles = CommandProfileRegistry(cfg.profiles)
    admission = AdmissionController(profiles, registry, ceiling=lambda: cfg.max_concurrent_jobs)
    return ProcessExecutor(cfg, registry, profiles, admission, EventBus(), FakeLauncher())


class TestExitDescriptions:
    def test_signal_name(self):
        assert signal_name(0) is None
        assert signal_name(2) is None
        assert signal_name(-15) == "SIGTERM"
        assert signal_name(-9) == "SIGKILL"

    def test_describe_exit(self):
        assert describe_exit(3) == "Process exited with code 3"
        assert describe_exit(-15) == "Process terminated by SIGTERM"


class TestTimeoutPrecedence:
    def test_option_over_profile_over_default(self):
        executor = _executor(default_job_timeout_seconds=42)
        registry = JobRegistry()
        store = registry.create_job("store")
        override = registry.create_job("store", options=BackgroundOptions(timeout_seconds=7))
        unknown = registry.create_job("list")

        assert executor.timeout_for(override) == 7
        assert executor.timeout_for(store) == 300
        assert executor.timeout_for(unknown) == 42


class TestStreamHandling:
    @pytest.mark.asyncio
    async def test_overlong_line_is_skipped(self):
        launcher = FakeLauncher(
            stdout_lines=["x" * (100 * 1024), "PROGRESS:10:after"],
            exit_code=0,
        )
        orch = BackgroundOrchestrator(make_config(), launcher=launcher)
        job_id = await orch.execute_in_background("store")
        job = await orch.wait_for_job(job_id, 2)
        assert job.status == JobStatus.COMPLETED
        assert job.progress_message == "after"
        await orch.shutdown()


class TestSubprocessLauncher:
    @pytest.mark.asyncio
    async def test_empty_argv_rejected(self):
        with pytest.raises(ValueError):
            await SubprocessLauncher().spawn([])

    @pytest.mark.asyncio
    async def test_missing_program_raises(self):
        with pytest.raises(FileNotFoundError):
            await SubprocessLauncher().spawn(["/nonexistent/bgorch-test-program"])

    def test_default_stream_limit(self):
        assert STREAM_LIMIT == 1024 * 1024


@pytest.mark.slow
class TestRealProcesses:
    @pytest.mark.asyncio
    async def test_job_runs_to_completion_with_log(self, tmp_path: Path):
        config = make_config(
            executable=[sys.executable, "-c", PROGRESS_SCRIPT],
            extra_args=["--quiet"],
            config_dir=tmp_path,
        )
        async with BackgroundOrchestrator(config) as orch:
            job_id = await orch.execute_in_background("store", ["todo-1"])
            job = await orch.wait_for_job(job_id, 10)

            assert job.status == JobStatus.COMPLETED
            assert job.exit_code == 0
            assert job.progress_percent == 100
            assert job.progress_message == "almost"
            assert job.stage == "upload"
            assert job.log_path == str(tmp_path / "jobs" / f"{job_id}.log")

            log = orch.read_job_log(job_id)
            assert log is not None
            assert "[stdout] PROGRESS:25:starting" in log
            assert f"[stdout] job={job_id}" in log
            assert "[stdout] args=store todo-1 --quiet" in log
            assert "[stderr] warning: slow network" in log

    @pytest.mark.asyncio
    async def test_non_zero_exit(self):
        config = make_config(executable=[sys.executable, "-c", FAILING_SCRIPT])
        async with BackgroundOrchestrator(config) as orch:
            job_id = await orch.execute_in_background("deploy")
            job = await orch.wait_for_job(job_id, 10)

            assert job.status == JobStatus.FAILED
            assert job.exit_code == 3
            assert job.error == "Process exited with code 3"
            assert orch.read_job_log(job_id) is None

    @pytest.mark.asyncio
    async def test_cancel_terminates_process(self):
        config = make_config(executable=[sys.executable, "-c", SLEEPING_SCRIPT])
        async with BackgroundOrchestrator(config) as orch:
            job_id = await orch.execute_in_background("sync")
            assert orch.cancel_job(job_id) is True
            job = await orch.wait_for_job(job_id, 5)
            assert job.status == JobStatus.CANCELLED
            assert job.error == "Cancelled by user"

    @pytest.mark.asyncio
    async def test_spawn_failure_of_missing_executable(self):
        config = make_config(executable=["/nonexistent/bgorch-test-program"])
        async with BackgroundOrchestrator(config) as orch:
            with pytest.raises(FileNotFoundError):
                await orch.execute_in_background("store")
            [job] = orch.list_jobs()
            assert job.status == JobStatus.FAILED

    @pytest.mark.asyncio
    async def test_exit_does_not_wait_for_descendant_holding_pipes(self, tmp_path: Path):
        config = make_config(
            executable=[sys.executable, "-c", PIPE_HOLDER_SCRIPT],
            config_dir=tmp_path,
        )
        async with BackgroundOrchestrator(config) as orch:
            job_id = await orch.execute_in_background("store")
            job = await orch.wait_for_job(job_id, 10)

            assert job.status == JobStatus.COMPLETED
            assert job.exit_code == 0
            assert job.progress_message == "spawned"
            child_pid = _pid_from_log(orch.read_job_log(job_id))
            assert await _wait_gone(child_pid)

    @pytest.mark.asyncio
    async def test_cancel_kills_descendant_ignoring_sigterm(self, tmp_path: Path):
        config = make_config(
            executable=[sys.executable, "-c", TERM_IGNORING_CHILD_SCRIPT],
            config_dir=tmp_path,
            kill_grace_seconds=0.2,
            output_drain_seconds=30,
        )
        async with BackgroundOrchestrator(config) as orch:
            job_id = await orch.execute_in_background("sync")
            await _wait_for_log_line(orch, job_id, "[stdout] ready")
            log = await _wait_for_log_line(orch, job_id, "[stdout] child=")
            child_pid = _pid_from_log(log)

            assert orch.cancel_job(job_id) is True
            assert await _wait_gone(child_pid)

    @pytest.mark.asyncio
    async def test_shutdown_reaps_process_ignoring_sigterm(self, tmp_path: Path):
        config = make_config(
            executable=[sys.executable, "-c", TERM_IGNORING_SCRIPT],
            config_dir=tmp_path,
            kill_grace_seconds=0.2,
        )
        orch = BackgroundOrchestrator(config)
        job_id = await orch.execute_in_background("sync")
        await _wait_for_log_line(orch, job_id, "[stdout] ready")
        pid = orch.get_job(job_id).pid  # type: ignore[union-attr]

        started = time.monotonic()
        await orch.shutdown()

        assert time.monotonic() - started < 5
        assert await _wait_gone(pid, timeout=1.0)


def _pid_from_log(log: str | None) -> int:
    assert log is not None
    match = re.search(r"\[stdout\] child=(\d+)", log)
    assert match is not None, log
    return int(match.group(1))


async def _wait_for_log_line(
    orch: BackgroundOrchestrator, job_id: str, needle: str, timeout: float = 10.0,
) -> str:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        log = orch.read_job_log(job_id)
        if log is not None and needle in log:
            return log
        await asyncio.sleep(0.05)
    raise AssertionError(f"{needle!r} never appeared in the log of {job_id}")


async def _wait_gone(pid: int, timeout: float = 5.0) -> bool:
    """True once ``pid`` has exited (reparented zombies count as gone)."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        try:
            if psutil.Process(pid).status() == psutil.STATUS_ZOMBIE:
                return True
        except psutil.NoSuchProcess:
            return True
        await asyncio.sleep(0.05)
    return False
