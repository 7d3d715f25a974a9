"""Parsing of progress markers from a job's stdout.

Child processes report progress by printing marker lines::

    PROGRESS:40:Uploading 4/10 files
    STAGE:upload

Markers may appear anywhere in a line (after a log prefix, say). Lines that
carry no marker are ordinary output.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

_PROGRESS_RE = re.compile(r"PROGRESS:(\d+):(.*)")
_STAGE_RE = re.compile(r"STAGE:(.+)")


@dataclass(frozen=True)
class ProgressSignal:
    """What a single output line says about the job's progress."""

    percent: int | None = None
    message: str = ""
    stage: str | None = None


@runtime_checkable
class ProgressParser(Protocol):
    """Turns one line of child output into a ProgressSignal (or None)."""

    def parse(self, line: str) -> ProgressSignal | None: ...


class MarkerProgressParser:
    """Recognizes ``PROGRESS:<n>:<message>`` and ``STAGE:<name>`` markers."""

    def parse(self, line: str) -> ProgressSignal | None:
        text = line.rstrip("\r\n")
        match = _PROGRESS_RE.search(text)
        if match is not None:
            return ProgressSignal(percent=int(match.group(1)), message=match.group(2).strip())
        match = _STAGE_RE.search(text)
        if match is not None:
            stage = match.group(1).strip()
            if stage:
                return ProgressSignal(stage=stage)
        return None


__all__ = ["MarkerProgressParser", "ProgressParser", "ProgressSignal"]
