"""Fingerprint build-relevant versions and classify cache validity."""

from __future__ import annotations

import platform
from enum import Enum
from pathlib import Path

from ..cache import Signature, read_stack_id, write_stack_id


class CacheValidity(str, Enum):
    DISABLED = "disabled"
    EMPTY = "empty"
    VALID = "valid"
    NEW_SIGNATURE = "new-signature"


def default_stack_id() -> str:
    system = platform.system().lower() or "unknown"
    machine = platform.machine().lower() or "unknown"
    return f"{system}-{machine}"


def resolve_stack_id(
    cache_root: Path,
    configured: str | None = None,
    *,
    persist: bool = True,
) -> str:
    """Return the platform identifier, persisting it on first use.

    An explicitly configured stack always wins and replaces the persisted
    value, so a stack upgrade shows up as a new signature. With
    ``persist=False`` nothing is written to *cache_root*.
    """

    if configured:
        if persist and read_stack_id(cache_root) != configured:
            write_stack_id(cache_root, configured)
        return configured
    persisted = read_stack_id(cache_root)
    if persisted:
        return persisted
    detected = default_stack_id()
    if persist:
        write_stack_id(cache_root, detected)
    return detected


def compute_signature(
    runtime_version: str,
    package_manager_kind: str,
    package_manager_version: str,
    stack_id: str,
) -> Signature:
    return Signature(
        runtime_version=runtime_version.strip().lstrip("v"),
        package_manager_version=package_manager_version.strip().lstrip("v"),
        package_manager_kind=package_manager_kind.strip().lower(),
        stack_id=stack_id.strip(),
    )


def classify(
    prior: Signature | None,
    current: Signature,
    cache_present: bool,
    caching_enabled: bool,
) -> CacheValidity:
    """Decide whether the cached directories may be reused for *current*."""

    if not caching_enabled:
        return CacheValidity.DISABLED
    if prior is None or not cache_present:
        return CacheValidity.EMPTY
    if prior == current:
        return CacheValidity.VALID
    return CacheValidity.NEW_SIGNATURE
