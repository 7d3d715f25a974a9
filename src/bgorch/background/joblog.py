"""Per-job output log files.

When the orchestrator has a config directory, every stdout/stderr line of a
job is appended to ``<config_dir>/jobs/<job_id>.log`` as::

    [2026-01-01T12:00:00.000000+00:00] [stdout] PROGRESS:50:Halfway
"""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from bgorch.core.logging import get_logger

_logger = get_logger("background.joblog")


class JobLogStore:
    """Writes and reads the log file of each job under ``root/jobs``."""

    def __init__(self, root: Path) -> None:
        self._dir = Path(root) / "jobs"

    def path_for(self, job_id: str) -> Path:
        return self._dir / f"{job_id}.log"

    def ensure_dir(self) -> None:
        self._dir.mkdir(parents=True, exist_ok=True)

    def append(self, job_id: str, stream: str, line: str) -> None:
        """Append one output line. Write errors are logged, not raised."""
        stamp = datetime.now(UTC).isoformat()
        text = line.rstrip("\r\n")
        entry = f"[{stamp}] [{stream}] {text}\n"
        try:
            self.ensure_dir()
            with open(self.path_for(job_id), "a", encoding="utf-8") as f:
                f.write(entry)
        except OSError as exc:
            _logger.warning("joblog.write_failed", job_id=job_id, error=str(exc))

    def read(self, job_id: str) -> str | None:
        """Full log text, or None if the job never wrote one."""
        path = self.path_for(job_id)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")


__all__ = ["JobLogStore"]
