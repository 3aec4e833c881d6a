"""Exception types raised by build stages."""

from __future__ import annotations

from typing import Sequence


class BuildError(RuntimeError):
    """Base class for all nodebuild failures."""


class ConfigurationError(BuildError):
    """Project or configuration problem detected before anything is mutated."""


class InstallationError(BuildError):
    """Binary download or package-manager invocation failed."""

    def __init__(
        self,
        message: str,
        *,
        command: Sequence[str] | None = None,
        returncode: int | None = None,
    ) -> None:
        super().__init__(message)
        self.command = tuple(command) if command is not None else None
        self.returncode = returncode


class CacheError(BuildError):
    """Cache restore or save failed; callers degrade instead of aborting."""
