"""Persistent dependency cache storage for nodebuild.

Layout under a cache root::

    <root>/node/cache/<relative path>   cached directories
    <root>/node/signature.json          CacheRecord of the last good build
    <root>/node/stack                   persisted platform identifier
    <root>/build-data/                  metadata database and export
"""

from __future__ import annotations

import json
import os
import shutil
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Mapping, Sequence

from .utils import atomic_write_json, atomic_write_text, directory_size

CACHE_NAMESPACE = "node"
CACHED_DIRECTORIES = "cache"
RECORD_FILENAME = "signature.json"
STACK_FILENAME = "stack"
BUILD_DATA_DIRNAME = "build-data"
RECORD_VERSION = 1


@dataclass(frozen=True, slots=True)
class Signature:
    runtime_version: str
    package_manager_version: str
    package_manager_kind: str
    stack_id: str

    def to_dict(self) -> dict[str, str]:
        return {
            "runtime_version": self.runtime_version,
            "package_manager_version": self.package_manager_version,
            "package_manager_kind": self.package_manager_kind,
            "stack_id": self.stack_id,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> "Signature":
        return cls(
            runtime_version=str(data["runtime_version"]),
            package_manager_version=str(data["package_manager_version"]),
            package_manager_kind=str(data["package_manager_kind"]),
            stack_id=str(data["stack_id"]),
        )

    def describe(self) -> str:
        return (
            f"node {self.runtime_version}; "
            f"{self.package_manager_kind} {self.package_manager_version}; "
            f"{self.stack_id}"
        )


@dataclass(slots=True)
class CacheRecord:
    signature: Signature
    directories: tuple[str, ...]
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict[str, object]:
        return {
            "version": RECORD_VERSION,
            "signature": self.signature.to_dict(),
            "directories": list(self.directories),
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> "CacheRecord":
        signature = data.get("signature")
        if not isinstance(signature, Mapping):
            raise ValueError("Cache record is missing its signature")
        directories = data.get("directories") or ()
        if not isinstance(directories, (list, tuple)):
            raise ValueError("Cache record directories must be a list")
        return cls(
            signature=Signature.from_dict(signature),
            directories=tuple(str(item) for item in directories),
            created_at=str(data.get("created_at") or ""),
        )


def node_cache_dir(root: Path) -> Path:
    return root / CACHE_NAMESPACE


def cached_directories_root(root: Path) -> Path:
    return node_cache_dir(root) / CACHED_DIRECTORIES


def cached_path(root: Path, relative: str) -> Path:
    return cached_directories_root(root) / relative


def record_path(root: Path) -> Path:
    return node_cache_dir(root) / RECORD_FILENAME


def build_data_dir(root: Path) -> Path:
    return root / BUILD_DATA_DIRNAME


def load_record(root: Path) -> CacheRecord | None:
    """Load the cache record, returning None when missing or unreadable."""

    path = record_path(root)
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            return None
        return CacheRecord.from_dict(data)
    except (json.JSONDecodeError, OSError, UnicodeDecodeError, KeyError, ValueError):
        return None


def store_record(root: Path, record: CacheRecord) -> Path:
    path = record_path(root)
    atomic_write_json(path, record.to_dict())
    return path


def cache_present(root: Path) -> bool:
    """Return True when the cache root holds a record or cached directories."""

    if record_path(root).exists():
        return True
    cached_root = cached_directories_root(root)
    return cached_root.is_dir() and any(cached_root.iterdir())


def read_stack_id(root: Path) -> str | None:
    path = node_cache_dir(root) / STACK_FILENAME
    if not path.exists():
        return None
    try:
        value = path.read_text(encoding="utf-8").strip()
    except (OSError, UnicodeDecodeError):
        return None
    return value or None


def write_stack_id(root: Path, stack_id: str) -> None:
    atomic_write_text(node_cache_dir(root) / STACK_FILENAME, f"{stack_id}\n")


def remove_path(path: Path) -> bool:
    """Delete a file, symlink or directory tree; return whether anything was removed."""

    if path.is_symlink() or path.is_file():
        path.unlink()
        return True
    if path.is_dir():
        shutil.rmtree(path)
        return True
    return False


def copy_directory_atomic(source: Path, destination: Path) -> None:
    """Copy *source* over *destination* without ever exposing a partial copy.

    The tree is copied into a temporary sibling first and renamed into place;
    the previous contents are moved aside and deleted only after the swap.
    """

    destination.parent.mkdir(parents=True, exist_ok=True)
    staging = Path(
        tempfile.mkdtemp(
            prefix=f".{destination.name}.",
            suffix=".tmp",
            dir=destination.parent,
        )
    )
    retired = staging / "previous"
    try:
        incoming = staging / "incoming"
        shutil.copytree(source, incoming, symlinks=True)
        if destination.exists() or destination.is_symlink():
            os.replace(destination, retired)
        try:
            os.replace(incoming, destination)
        except OSError:
            if retired.exists() and not destination.exists():
                os.replace(retired, destination)
            raise
    finally:
        shutil.rmtree(staging, ignore_errors=True)


def clear_cache(root: Path) -> bool:
    """Delete cached directories, record and stack marker under *root*."""

    target = node_cache_dir(root)
    if not target.exists():
        return False
    remove_path(target)
    return True


def list_cached_directories(
    root: Path,
    directories: Sequence[str] | None = None,
) -> list[tuple[str, int]]:
    """Return ``(relative path, size in bytes)`` for each cached directory present."""

    if directories is None:
        record = load_record(root)
        directories = record.directories if record is not None else ()
    entries: list[tuple[str, int]] = []
    for relative in directories:
        path = cached_path(root, relative)
        if path.is_dir():
            entries.append((relative, directory_size(path)))
    return entries
