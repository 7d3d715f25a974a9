"""psutil-backed system probes used by the resource monitor.

All methods are static and return ``None`` when the probe fails, so the
caller decides how to treat a missing reading.
"""

from __future__ import annotations

import psutil

from bgorch.core.logging import get_logger

_logger = get_logger("background.system_probe")


class SystemProbe:
    """Point-in-time readings of this process and the host."""

    @staticmethod
    def get_memory_bytes() -> int | None:
        """RSS of the orchestrator process in bytes."""
        try:
            rss: int = psutil.Process().memory_info().rss
            return rss
        except psutil.Error:
            _logger.debug("probe.memory_failed", exc_info=True)
            return None

    @staticmethod
    def get_memory_percent() -> float | None:
        """System-wide memory usage in percent."""
        try:
            return float(psutil.virtual_memory().percent)
        except (psutil.Error, OSError):
            _logger.debug("probe.memory_percent_failed", exc_info=True)
            return None

    @staticmethod
    def get_cpu_percent() -> float | None:
        """System-wide CPU usage since the previous call, in percent.

        Non-blocking; the very first call after import reports 0.0.
        """
        try:
            return float(psutil.cpu_percent(interval=None))
        except (psutil.Error, OSError):
            _logger.debug("probe.cpu_failed", exc_info=True)
            return None


__all__ = ["SystemProbe"]
