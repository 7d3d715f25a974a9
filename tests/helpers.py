"""Shared test helpers: fake processes implementing the launcher boundary."""

from __future__ import annotations

import asyncio
import signal
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

from bgorch.background.config import OrchestratorConfig


class FakeProcess:
    """In-memory stand-in for ``asyncio.subprocess.Process``.

    Must be created inside a running event loop (StreamReader needs one).
    Output is fed with ``emit()``; the process "exits" via ``finish()``.
    """

    def __init__(
        self,
        pid: int = 4242,
        stdout_lines: Sequence[str] = (),
        stderr_lines: Sequence[str] = (),
        exit_code: int | None = None,
        exit_on_terminate: bool = True,
        linger: bool = False,
        wait_error: Exception | None = None,
    ) -> None:
        self.pid = pid
        self.returncode: int | None = None
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self.signals: list[str] = []
        self.exit_on_terminate = exit_on_terminate
        self.linger = linger
        self.wait_error = wait_error
        self._exited = asyncio.Event()
        for line in stdout_lines:
            self.emit(line)
        for line in stderr_lines:
            self.emit(line, stream="stderr")
        if exit_code is not None:
            self.finish(exit_code)

    def emit(self, line: str, stream: str = "stdout") -> None:
        reader = self.stdout if stream == "stdout" else self.stderr
        reader.feed_data((line + "\n").encode())

    @property
    def group_alive(self) -> bool:
        """The leader, or a lingering descendant, is still running."""
        return self.returncode is None or self.linger

    def finish(self, code: int = 0, *, close_streams: bool = True) -> None:
        """Exit the leader. ``close_streams=False`` leaves the pipes open,
        as a descendant that inherited them would."""
        if self.returncode is None:
            self.returncode = code
            self._exited.set()
        if close_streams:
            self.stdout.feed_eof()
            self.stderr.feed_eof()

    async def wait(self) -> int:
        if self.wait_error is not None:
            raise self.wait_error
        await self._exited.wait()
        assert self.returncode is not None
        return self.returncode

    def terminate(self) -> None:
        self.signals.append("SIGTERM")
        if self.exit_on_terminate:
            self.finish(-15, close_streams=not self.linger)

    def kill(self) -> None:
        self.signals.append("SIGKILL")
        self.linger = False
        self.finish(-9)


class FakeLauncher:
    """ProcessLauncher that hands out FakeProcess instances.

    Attributes set before ``spawn`` shape the next processes: ``stdout_lines``
    are pre-fed, ``exit_code`` (if not None) makes them exit immediately,
    ``linger`` keeps their process group (and pipes) alive past the leader's
    exit until SIGKILL, ``wait_error`` makes ``wait()`` raise and ``error``
    makes ``spawn`` raise.
    """

    def __init__(
        self,
        *,
        stdout_lines: Sequence[str] = (),
        exit_code: int | None = None,
        exit_on_terminate: bool = True,
        linger: bool = False,
        wait_error: Exception | None = None,
        error: Exception | None = None,
    ) -> None:
        self.stdout_lines = list(stdout_lines)
        self.exit_code = exit_code
        self.exit_on_terminate = exit_on_terminate
        self.linger = linger
        self.wait_error = wait_error
        self.error = error
        self.calls: list[tuple[list[str], dict[str, str]]] = []
        self.processes: list[FakeProcess] = []
        self._next_pid = 1000

    async def spawn(
        self,
        argv: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        cwd: Path | str | None = None,
    ) -> FakeProcess:
        self.calls.append((list(argv), dict(env or {})))
        if self.error is not None:
            raise self.error
        self._next_pid += 1
        process = FakeProcess(
            pid=self._next_pid,
            stdout_lines=self.stdout_lines,
            exit_code=self.exit_code,
            exit_on_terminate=self.exit_on_terminate,
            linger=self.linger,
            wait_error=self.wait_error,
        )
        self.processes.append(process)
        return process

    def signal_group(self, process: FakeProcess, sig: signal.Signals) -> bool:
        if not process.group_alive:
            return False
        if sig == signal.SIGKILL:
            process.kill()
        else:
            process.terminate()
        return True

    def group_alive(self, process: FakeProcess) -> bool:
        return process.group_alive


def make_config(**overrides: Any) -> OrchestratorConfig:
    """Test config: monitor off (tests drive ticks), short kill grace."""
    values: dict[str, Any] = {"monitor_enabled": False, "kill_grace_seconds": 0.05}
    values.update(overrides)
    return OrchestratorConfig(**values)


async def settle(rounds: int = 5) -> None:
    """Let scheduled tasks (supervisors, event handlers) run."""
    for _ in range(rounds):
        await asyncio.sleep(0)
