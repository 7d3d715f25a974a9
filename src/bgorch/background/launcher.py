"""OS process boundary for background jobs.

The executor only talks to ``ProcessLauncher`` / ``ManagedProcess``. The
default ``SubprocessLauncher`` wraps ``asyncio.create_subprocess_exec``;
tests substitute fakes that implement the same two protocols.

Security note: processes are spawned with ``create_subprocess_exec`` (never a
shell), so arguments are passed through verbatim.
"""

from __future__ import annotations

import asyncio
import os
import signal
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Protocol, runtime_checkable

from bgorch.core.logging import get_logger

_logger = get_logger("background.launcher")

# Progress lines can be long (JSON payloads); asyncio's 64 KiB default would
# raise on readline()
STREAM_LIMIT = 1024 * 1024


@runtime_checkable
class ManagedProcess(Protocol):
    """The slice of ``asyncio.subprocess.Process`` the executor relies on."""

    @property
    def pid(self) -> int: ...

    @property
    def returncode(self) -> int | None: ...

    @property
    def stdout(self) -> asyncio.StreamReader | None: ...

    @property
    def stderr(self) -> asyncio.StreamReader | None: ...

    async def wait(self) -> int: ...

    def terminate(self) -> None: ...

    def kill(self) -> None: ...


@runtime_checkable
class ProcessLauncher(Protocol):
    """Starts child processes for background jobs."""

    async def spawn(
        self,
        argv: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        cwd: Path | str | None = None,
    ) -> ManagedProcess: ...

    def signal_group(self, process: ManagedProcess, sig: signal.Signals) -> bool:
        """Send ``sig`` to the job's whole process group. False if it is gone."""
        ...

    def group_alive(self, process: ManagedProcess) -> bool: ...


class SubprocessLauncher:
    """Spawns jobs as real OS processes in their own session.

    ``start_new_session=True`` puts each job in a new process group so a
    Ctrl-C in the parent terminal does not reach it.
    """

    def __init__(self, stream_limit: int = STREAM_LIMIT) -> None:
        self._stream_limit = stream_limit

    async def spawn(
        self,
        argv: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        cwd: Path | str | None = None,
    ) -> ManagedProcess:
        if not argv:
            raise ValueError("argv must not be empty")
        full_env = os.environ.copy()
        if env:
            full_env.update(env)

        _logger.debug(
            "process.starting",
            program=argv[0],
            args_count=len(argv) - 1,
            cwd=str(cwd) if cwd else None,
        )
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            env=full_env,
            start_new_session=True,
            limit=self._stream_limit,
        )
        return process

    def signal_group(self, process: ManagedProcess, sig: signal.Signals) -> bool:
        """Signal the job's session. Its pid is the group id (new session)."""
        try:
            os.killpg(process.pid, sig)
        except ProcessLookupError:
            return False
        except OSError as exc:
            _logger.warning(
                "process.signal_group_failed",
                pid=process.pid,
                signal=sig.name,
                error=str(exc),
            )
            return False
        return True

    def group_alive(self, process: ManagedProcess) -> bool:
        try:
            os.killpg(process.pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            return True
        return True


__all__ = ["ManagedProcess", "ProcessLauncher", "STREAM_LIMIT", "SubprocessLauncher"]
