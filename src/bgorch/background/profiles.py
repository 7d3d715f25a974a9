"""Command profile lookup and the foreground/background decision."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from bgorch.background.config import CommandProfile, default_profiles
from bgorch.background.types import BackgroundOptions, coerce_options


class CommandProfileRegistry:
    """Read-only table of command profiles, loaded once at construction."""

    def __init__(
        self,
        profiles: Iterable[CommandProfile] | None = None,
        *,
        enabled: bool = True,
    ) -> None:
        items = default_profiles() if profiles is None else list(profiles)
        self._profiles: dict[str, CommandProfile] = {p.command: p for p in items}
        self._enabled = enabled

    @property
    def enabled(self) -> bool:
        return self._enabled

    def get(self, command: str) -> CommandProfile | None:
        return self._profiles.get(command)

    def profiles(self) -> list[CommandProfile]:
        return list(self._profiles.values())

    def limit_for(self, command: str) -> int | None:
        """Per-command concurrency limit, or None for unknown commands."""
        profile = self._profiles.get(command)
        return profile.max_concurrency if profile is not None else None

    def timeout_for(self, command: str) -> float | None:
        profile = self._profiles.get(command)
        return profile.timeout_seconds if profile is not None else None

    def should_run_in_background(
        self,
        command: str,
        args: Sequence[str] = (),
        options: BackgroundOptions | Mapping[str, Any] | None = None,
    ) -> bool:
        """Decide whether ``command`` should be detached.

        Precedence: disabled orchestrator, then ``foreground``, then
        ``background``, then the profile's ``auto_background``. Unknown
        commands stay in the foreground.
        """
        if not self._enabled:
            return False
        opts = coerce_options(options)
        if opts.foreground:
            return False
        if opts.background:
            return True
        profile = self._profiles.get(command)
        return profile.auto_background if profile is not None else False

    def __contains__(self, command: object) -> bool:
        return command in self._profiles

    def __len__(self) -> int:
        return len(self._profiles)


__all__ = ["CommandProfileRegistry"]
