"""Restore and save cached directories between builds."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Sequence

from .signature_service import CacheValidity
from .strategy_service import DEPENDENCY_DIRNAME, InstallStrategy, PackageManager
from ..cache import cached_path, copy_directory_atomic, record_path, remove_path
from ..errors import CacheError, ConfigurationError
from ..text import Messages
from ..utils import normalize_relative_path

DEFAULT_CACHE_DIRECTORIES: dict[PackageManager, tuple[str, ...]] = {
    PackageManager.NPM: (DEPENDENCY_DIRNAME,),
    PackageManager.YARN: (DEPENDENCY_DIRNAME, ".yarn/cache"),
}

Printer = Callable[[str], None]


def _silent(_message: str) -> None:
    return None


@dataclass(frozen=True, slots=True)
class CacheDirectorySpec:
    """Either the package manager's default set or a project supplied list."""

    paths: tuple[str, ...] | None = None

    @classmethod
    def default(cls) -> "CacheDirectorySpec":
        return cls(paths=None)

    @classmethod
    def custom(cls, paths: Sequence[str]) -> "CacheDirectorySpec":
        normalized: list[str] = []
        for raw in paths:
            clean = normalize_relative_path(raw)
            if clean is None:
                raise ConfigurationError(Messages.ERROR_CACHE_PATH_INVALID.format(value=raw))
            if clean not in normalized:
                normalized.append(clean)
        return cls(paths=tuple(normalized))

    @property
    def is_default(self) -> bool:
        return self.paths is None

    def resolve(self, manager: PackageManager) -> tuple[str, ...]:
        if self.paths is None:
            return DEFAULT_CACHE_DIRECTORIES[manager]
        return self.paths

    def describe(self) -> str:
        return "default" if self.paths is None else "custom"


@dataclass(slots=True)
class RestoreResult:
    validity: CacheValidity
    restored: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    planned: list[str] = field(default_factory=list)


@dataclass(slots=True)
class SaveResult:
    saved: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    skipped: bool = False


def remove_conflicting_tree(
    build_dir: Path,
    strategy: InstallStrategy,
    *,
    warn: Printer = _silent,
) -> bool:
    """Delete a checked-in node_modules that yarn cannot adopt."""

    if strategy != InstallStrategy.ALT_INSTALL:
        return False
    dependency_dir = build_dir / DEPENDENCY_DIRNAME
    if not (dependency_dir.exists() or dependency_dir.is_symlink()):
        return False
    warn(Messages.WARNING_REMOVING_TREE)
    remove_path(dependency_dir)
    return True


def restore(
    spec: CacheDirectorySpec,
    validity: CacheValidity,
    *,
    build_dir: Path,
    cache_root: Path,
    manager: PackageManager,
    info: Printer = _silent,
    warn: Printer = _silent,
) -> RestoreResult:
    """Copy cached directories into the build tree according to *validity*."""

    result = RestoreResult(validity=validity)
    if validity in (CacheValidity.DISABLED, CacheValidity.EMPTY):
        if validity == CacheValidity.EMPTY:
            info(Messages.INFO_CACHE_EMPTY)
        return result

    directories = spec.resolve(manager)
    if validity == CacheValidity.NEW_SIGNATURE:
        info(Messages.INFO_CACHE_NEW_SIGNATURE)
        for relative in directories:
            result.planned.append(relative)
            info(Messages.INFO_CACHE_WOULD_RESTORE.format(path=relative))
        warn(Messages.WARNING_SLOW_INSTALL)
        return result

    info(Messages.INFO_CACHE_VALID.format(kind=spec.describe()))
    try:
        for relative in directories:
            source = cached_path(cache_root, relative)
            target = build_dir / relative
            if target.exists() or target.is_symlink():
                result.skipped.append(relative)
                info(Messages.INFO_CACHE_PREBUILT.format(path=relative))
                continue
            if not source.is_dir():
                result.skipped.append(relative)
                info(Messages.INFO_CACHE_NOT_CACHED.format(path=relative))
                continue
            copy_directory_atomic(source, target)
            result.restored.append(relative)
            info(Messages.INFO_CACHE_RESTORED.format(path=relative))
    except OSError as exc:
        for relative in result.restored:
            remove_path(build_dir / relative)
        raise CacheError(str(exc)) from exc
    return result


def save(
    spec: CacheDirectorySpec,
    *,
    build_dir: Path,
    cache_root: Path,
    manager: PackageManager,
    caching_enabled: bool,
    info: Printer = _silent,
) -> SaveResult:
    """Replace the cached copy of every directory in *spec* with the build tree's.

    The cache record is removed before anything is copied; the orchestrator
    writes a new one only when the whole build succeeds.
    """

    if not caching_enabled:
        info(Messages.INFO_CACHE_SAVE_SKIPPED)
        return SaveResult(skipped=True)

    result = SaveResult()
    try:
        remove_path(record_path(cache_root))
        for relative in spec.resolve(manager):
            source = build_dir / relative
            destination = cached_path(cache_root, relative)
            if not source.is_dir():
                if remove_path(destination):
                    result.removed.append(relative)
                info(Messages.INFO_CACHE_SAVE_MISSING.format(path=relative))
                continue
            copy_directory_atomic(source, destination)
            result.saved.append(relative)
            info(Messages.INFO_CACHE_SAVED.format(path=relative))
    except OSError as exc:
        raise CacheError(str(exc)) from exc
    return result
