"""Failure diagnostics run over the captured build log."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, Sequence

from ..text import Messages

Predicate = Callable[[str], "str | None"]

_YARN_MISMATCH_RE = re.compile(r'Expected version "([^"]+)"\. Got "([^"]+)"')
_NPM_MISMATCH_RE = re.compile(r"npm version mismatch: declared (\S+), resolved (\S+)")
_MERGE_MARKER_RE = re.compile(r"^(<{7}|>{7}) ", re.MULTILINE)
_UNPARSABLE_RE = re.compile(r"Could not parse version range '([^']*)' for (\w+)")
_NO_MATCH_RE = re.compile(r"No (\w+) version satisfies range '([^']*)'")
_MISSING_MODULE_RE = re.compile(r"Cannot find module '([^']+)'")


@dataclass(frozen=True, slots=True)
class Diagnosis:
    """One matched failure signature and its remediation text."""

    name: str
    message: str


@dataclass(slots=True)
class DiagnosisReport:
    matches: list[Diagnosis] = field(default_factory=list)
    faults: list[tuple[str, str]] = field(default_factory=list)

    @property
    def names(self) -> list[str]:
        return [match.name for match in self.matches]


def detect_version_mismatch(log_text: str) -> str | None:
    match = _YARN_MISMATCH_RE.search(log_text)
    if match:
        detail = f"expected {match.group(1)}, got {match.group(2)}"
        return Messages.DIAGNOSE_VERSION_MISMATCH.format(detail=detail)
    match = _NPM_MISMATCH_RE.search(log_text)
    if match:
        detail = f"declared {match.group(1)}, resolved {match.group(2)}"
        return Messages.DIAGNOSE_VERSION_MISMATCH.format(detail=detail)
    return None


def detect_malformed_lockfile(log_text: str) -> str | None:
    if (
        "EJSONPARSE" in log_text
        or "Unknown token" in log_text
        or _MERGE_MARKER_RE.search(log_text)
    ):
        return Messages.DIAGNOSE_MALFORMED_LOCKFILE
    return None


def detect_unsupported_alias(log_text: str) -> str | None:
    if "Unsupported runtime alias" in log_text:
        return Messages.DIAGNOSE_UNSUPPORTED_ALIAS
    return None


def detect_unparsable_range(log_text: str) -> str | None:
    match = _UNPARSABLE_RE.search(log_text)
    if match:
        return Messages.DIAGNOSE_UNPARSABLE_RANGE.format(
            detail=f"{match.group(2)}: {match.group(1)}"
        )
    match = _NO_MATCH_RE.search(log_text)
    if match:
        return Messages.DIAGNOSE_UNPARSABLE_RANGE.format(
            detail=f"{match.group(1)}: {match.group(2)}"
        )
    return None


def detect_stale_lockfile(log_text: str) -> str | None:
    lowered = log_text.lower()
    if (
        "can only install packages when your package.json and package-lock.json" in lowered
        or "are in sync" in lowered
        or "your lockfile needs to be updated" in lowered
    ):
        return Messages.DIAGNOSE_STALE_LOCKFILE
    return None


def detect_network_reset(log_text: str) -> str | None:
    if "ECONNRESET" in log_text or "socket hang up" in log_text:
        return Messages.DIAGNOSE_NETWORK_RESET
    return None


def detect_out_of_memory(log_text: str) -> str | None:
    if "JavaScript heap out of memory" in log_text:
        return Messages.DIAGNOSE_OUT_OF_MEMORY
    return None


def detect_missing_module(log_text: str) -> str | None:
    match = _MISSING_MODULE_RE.search(log_text)
    if match:
        return Messages.DIAGNOSE_MISSING_MODULE.format(detail=match.group(1))
    return None


DIAGNOSTICS: tuple[tuple[str, Predicate], ...] = (
    ("version-mismatch", detect_version_mismatch),
    ("malformed-lockfile", detect_malformed_lockfile),
    ("unsupported-alias", detect_unsupported_alias),
    ("unparsable-range", detect_unparsable_range),
    ("stale-lockfile", detect_stale_lockfile),
    ("network-reset", detect_network_reset),
    ("out-of-memory", detect_out_of_memory),
    ("missing-module", detect_missing_module),
)


def run_diagnostics(
    log_text: str,
    predicates: Sequence[tuple[str, Predicate]] = DIAGNOSTICS,
) -> DiagnosisReport:
    """Run every predicate in order; a predicate that raises is recorded and skipped."""

    report = DiagnosisReport()
    for name, predicate in predicates:
        try:
            message = predicate(log_text)
        except Exception as exc:
            report.faults.append((name, f"{type(exc).__name__}: {exc}"))
            continue
        if message:
            report.matches.append(Diagnosis(name=name, message=message))
    return report
