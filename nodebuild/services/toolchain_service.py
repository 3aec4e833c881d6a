"""Resolve and install the node, npm and yarn binaries for a build."""

from __future__ import annotations

import json
import os
import platform
import re
import shutil
import tarfile
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Protocol, Sequence
from urllib import request

from ..config import DEFAULT_NODE_RANGE, DEFAULT_YARN_RANGE
from ..errors import ConfigurationError, InstallationError
from ..text import Messages

TOOLCHAIN_DIRNAME = ".nodebuild"
UNSUPPORTED_ALIASES = frozenset({"latest", "current", "lts", "stable", "node"})
DOWNLOAD_CHUNK_SIZE = 1 << 16
DOWNLOAD_TIMEOUT = 60.0

_VERSION_RE = re.compile(r"^v?(\d+)\.(\d+)\.(\d+)(?:[-+][0-9A-Za-z.+-]*)?$")
_PARTIAL_RE = re.compile(
    r"^v?(\d+|[xX*])(?:\.(\d+|[xX*]))?(?:\.(\d+|[xX*]))?(?:[-+][0-9A-Za-z.+-]*)?$"
)
_OPERATOR_RE = re.compile(r"^(<=|>=|<|>|=|\^|~)?(.*)$")
_HYPHEN_RE = re.compile(r"^(\S+)\s+-\s+(\S+)$")

VersionTuple = tuple[int, int, int]
Bound = tuple[str, VersionTuple]
Notify = Callable[[str], None]


def _silent(_message: str) -> None:
    return None


def parse_version(raw: str) -> VersionTuple | None:
    """Parse a full ``X.Y.Z`` version (optional ``v`` prefix and suffix)."""

    match = _VERSION_RE.match((raw or "").strip())
    if not match:
        return None
    return (int(match.group(1)), int(match.group(2)), int(match.group(3)))


@dataclass(frozen=True, slots=True)
class VersionRange:
    raw: str
    alternatives: tuple[tuple[Bound, ...], ...]

    def matches(self, version: str | VersionTuple) -> bool:
        parsed = parse_version(version) if isinstance(version, str) else version
        if parsed is None:
            return False
        return any(
            all(_compare(parsed, op, bound) for op, bound in alternative)
            for alternative in self.alternatives
        )


def _compare(version: VersionTuple, op: str, bound: VersionTuple) -> bool:
    if op == "=":
        return version == bound
    if op == ">=":
        return version >= bound
    if op == ">":
        return version > bound
    if op == "<":
        return version < bound
    return version <= bound


def _partial(token: str, *, name: str, raw: str) -> list[int]:
    match = _PARTIAL_RE.match(token)
    if not match:
        raise ConfigurationError(Messages.ERROR_UNPARSABLE_RANGE.format(value=raw, name=name))
    parts: list[int] = []
    for piece in match.groups():
        if piece is None or piece in {"x", "X", "*"}:
            break
        parts.append(int(piece))
    return parts


def _next_partial(parts: Sequence[int]) -> VersionTuple:
    if len(parts) == 1:
        return (parts[0] + 1, 0, 0)
    return (parts[0], parts[1] + 1, 0)


def _filled(parts: Sequence[int]) -> VersionTuple:
    padded = list(parts) + [0] * (3 - len(parts))
    return (padded[0], padded[1], padded[2])


def _comparator(op: str, parts: Sequence[int]) -> list[Bound]:
    if not parts:
        return []
    count = len(parts)
    low = _filled(parts)
    if op in ("", "="):
        if count == 3:
            return [("=", low)]
        return [(">=", low), ("<", _next_partial(parts))]
    if op == "^":
        major, minor, patch = low
        if major > 0 or count == 1:
            upper = (major + 1, 0, 0)
        elif minor > 0 or count == 2:
            upper = (0, minor + 1, 0)
        else:
            upper = (0, 0, patch + 1)
        return [(">=", low), ("<", upper)]
    if op == "~":
        if count == 1:
            return [(">=", low), ("<", (low[0] + 1, 0, 0))]
        return [(">=", low), ("<", (low[0], low[1] + 1, 0))]
    if op == ">":
        return [(">", low)] if count == 3 else [(">=", _next_partial(parts))]
    if op == ">=":
        return [(">=", low)]
    if op == "<":
        return [("<", low)]
    return [("<=", low)] if count == 3 else [("<", _next_partial(parts))]


def parse_range(text: str, *, name: str = "node") -> VersionRange:
    """Parse an npm-style semver range such as ``^18.2``, ``16.x || >=20``."""

    raw = (text or "").strip()
    lowered = raw.lower()
    if lowered in UNSUPPORTED_ALIASES or lowered.startswith("lts/"):
        raise ConfigurationError(Messages.ERROR_UNSUPPORTED_ALIAS.format(value=raw, name=name))

    alternatives: list[tuple[Bound, ...]] = []
    for alternative in raw.split("||"):
        alternative = alternative.strip()
        hyphen = _HYPHEN_RE.match(alternative)
        if hyphen:
            low_parts = _partial(hyphen.group(1), name=name, raw=raw)
            high_parts = _partial(hyphen.group(2), name=name, raw=raw)
            bounds: list[Bound] = []
            if low_parts:
                bounds.append((">=", _filled(low_parts)))
            if len(high_parts) == 3:
                bounds.append(("<=", _filled(high_parts)))
            elif high_parts:
                bounds.append(("<", _next_partial(high_parts)))
            alternatives.append(tuple(bounds))
            continue
        compact = re.sub(r"(<=|>=|<|>|=|\^|~)\s+", r"\1", alternative)
        bounds = []
        for token in compact.split():
            operator, version = _OPERATOR_RE.match(token).groups()
            bounds.extend(_comparator(operator or "", _partial(version, name=name, raw=raw)))
        alternatives.append(tuple(bounds))
    return VersionRange(raw=raw, alternatives=tuple(alternatives))


def resolve_version(version_range: VersionRange, candidates: Iterable[str]) -> str | None:
    """Return the highest candidate satisfying *version_range*."""

    best: tuple[VersionTuple, str] | None = None
    for candidate in candidates:
        parsed = parse_version(candidate)
        if parsed is None or not version_range.matches(parsed):
            continue
        if best is None or parsed > best[0]:
            best = (parsed, ".".join(str(part) for part in parsed))
    return None if best is None else best[1]


def _retry(
    action: Callable[[], object],
    *,
    url: str,
    attempts: int,
    backoff: float,
    notify: Notify,
    sleep: Callable[[float], None],
) -> object:
    last_error: Exception | None = None
    total = max(int(attempts), 1)
    for attempt in range(1, total + 1):
        try:
            return action()
        except (OSError, RuntimeError, ValueError) as exc:
            last_error = exc
            if attempt >= total:
                break
            delay = backoff * (2 ** (attempt - 1))
            notify(
                Messages.INFO_DOWNLOAD_RETRY.format(
                    attempt=attempt,
                    attempts=total,
                    reason=exc,
                    delay=delay,
                )
            )
            sleep(delay)
    raise InstallationError(
        Messages.ERROR_DOWNLOAD_FAILED.format(url=url, attempts=total, reason=last_error)
    )


def download_with_retry(
    url: str,
    destination: Path,
    *,
    attempts: int = 3,
    backoff: float = 1.0,
    notify: Notify = _silent,
    timeout: float = DOWNLOAD_TIMEOUT,
) -> Path:
    """Download *url* to *destination*, retrying with exponential backoff."""

    destination.parent.mkdir(parents=True, exist_ok=True)

    def _download() -> Path:
        with request.urlopen(url, timeout=timeout) as response:
            status = getattr(response, "status", 200)
            if status != 200:
                raise RuntimeError(f"HTTP {status}")
            with tempfile.NamedTemporaryFile(
                dir=destination.parent,
                prefix=f".{destination.name}.",
                suffix=".part",
                delete=False,
            ) as handle:
                tmp_path = Path(handle.name)
                try:
                    while True:
                        chunk = response.read(DOWNLOAD_CHUNK_SIZE)
                        if not chunk:
                            break
                        handle.write(chunk)
                except BaseException:
                    handle.close()
                    tmp_path.unlink(missing_ok=True)
                    raise
        os.replace(tmp_path, destination)
        return destination

    notify(Messages.INFO_DOWNLOADING.format(url=url))
    return _retry(
        _download,
        url=url,
        attempts=attempts,
        backoff=backoff,
        notify=notify,
        sleep=time.sleep,
    )


def fetch_json_with_retry(
    url: str,
    *,
    attempts: int = 3,
    backoff: float = 1.0,
    notify: Notify = _silent,
    timeout: float = DOWNLOAD_TIMEOUT,
) -> object:
    def _fetch() -> object:
        with request.urlopen(url, timeout=timeout) as response:
            status = getattr(response, "status", 200)
            if status != 200:
                raise RuntimeError(f"HTTP {status}")
            payload = response.read().decode("utf-8")
        return json.loads(payload)

    return _retry(
        _fetch,
        url=url,
        attempts=attempts,
        backoff=backoff,
        notify=notify,
        sleep=time.sleep,
    )


def extract_tarball(archive_path: Path, destination: Path) -> None:
    """Extract *archive_path* into *destination*, dropping the top-level directory."""

    if destination.exists():
        shutil.rmtree(destination)
    destination.mkdir(parents=True)
    with tarfile.open(archive_path, "r:*") as archive:
        members: list[tarfile.TarInfo] = []
        for member in archive.getmembers():
            head, _, rest = member.name.partition("/")
            if not rest:
                continue
            member.name = rest
            if member.islnk():
                member.linkname = member.linkname.partition("/")[2]
            members.append(member)
        archive.extractall(destination, members=members, filter="data")


def node_platform() -> str:
    system = platform.system().lower()
    machine = platform.machine().lower()
    arch = {"x86_64": "x64", "amd64": "x64", "aarch64": "arm64", "arm64": "arm64"}.get(
        machine, machine
    )
    return f"{system}-{arch}"


class CommandExecutor(Protocol):
    def run(self, command: Sequence[str]) -> None:
        ...

    def capture(self, command: Sequence[str]) -> str:
        ...


class ToolchainInstaller:
    """Installs node, npm and yarn into ``<build>/.nodebuild``."""

    def __init__(
        self,
        build_dir: Path,
        *,
        dist_url: str,
        registry_url: str,
        attempts: int = 3,
        backoff: float = 1.0,
        notify: Notify = _silent,
    ) -> None:
        self.build_dir = build_dir
        self.dist_url = dist_url.rstrip("/")
        self.registry_url = registry_url.rstrip("/")
        self.attempts = attempts
        self.backoff = backoff
        self.notify = notify

    @property
    def toolchain_dir(self) -> Path:
        return self.build_dir / TOOLCHAIN_DIRNAME

    @property
    def node_dir(self) -> Path:
        return self.toolchain_dir / "node"

    @property
    def yarn_dir(self) -> Path:
        return self.toolchain_dir / "yarn"

    def bin_paths(self) -> list[Path]:
        return [self.node_dir / "bin", self.yarn_dir / "bin"]

    def install_runtime(self, requested: str | None) -> str:
        version_range = parse_range(requested or DEFAULT_NODE_RANGE, name="node")
        index = fetch_json_with_retry(
            f"{self.dist_url}/index.json",
            attempts=self.attempts,
            backoff=self.backoff,
            notify=self.notify,
        )
        candidates = [
            str(entry.get("version", "")) for entry in index if isinstance(entry, dict)
        ] if isinstance(index, list) else []
        version = resolve_version(version_range, candidates)
        if version is None:
            raise ConfigurationError(
                Messages.ERROR_NO_MATCHING_VERSION.format(name="node", value=version_range.raw)
            )
        filename = f"node-v{version}-{node_platform()}.tar.gz"
        url = f"{self.dist_url}/v{version}/{filename}"
        self._install_archive(url, filename, self.node_dir)
        return version

    def install_npm(self, requested: str | None, executor: CommandExecutor) -> str:
        bundled = executor.capture(["npm", "--version"]).strip()
        if not requested:
            return bundled
        version_range = parse_range(requested, name="npm")
        if version_range.matches(bundled):
            return bundled
        executor.run(["npm", "install", "--unsafe-perm", "--quiet", "-g", f"npm@{requested}"])
        resolved = executor.capture(["npm", "--version"]).strip()
        if not version_range.matches(resolved):
            raise InstallationError(
                f"npm version mismatch: declared {requested}, resolved {resolved}"
            )
        return resolved

    def install_yarn(self, requested: str | None) -> str:
        version_range = parse_range(requested or DEFAULT_YARN_RANGE, name="yarn")
        document = fetch_json_with_retry(
            f"{self.registry_url}/yarn",
            attempts=self.attempts,
            backoff=self.backoff,
            notify=self.notify,
        )
        versions = document.get("versions", {}) if isinstance(document, dict) else {}
        version = resolve_version(version_range, versions.keys())
        if version is None:
            raise ConfigurationError(
                Messages.ERROR_NO_MATCHING_VERSION.format(name="yarn", value=version_range.raw)
            )
        filename = f"yarn-{version}.tgz"
        url = f"{self.registry_url}/yarn/-/{filename}"
        self._install_archive(url, filename, self.yarn_dir)
        return version

    def _install_archive(self, url: str, filename: str, destination: Path) -> None:
        with tempfile.TemporaryDirectory(prefix="nodebuild-download-") as tmp_dir:
            archive = download_with_retry(
                url,
                Path(tmp_dir) / filename,
                attempts=self.attempts,
                backoff=self.backoff,
                notify=self.notify,
            )
            try:
                extract_tarball(archive, destination)
            except (tarfile.TarError, OSError) as exc:
                raise InstallationError(
                    Messages.ERROR_DOWNLOAD_FAILED.format(url=url, attempts=1, reason=exc)
                ) from exc
