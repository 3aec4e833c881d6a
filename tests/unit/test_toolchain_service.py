from __future__ import annotations

import io
import json
import tarfile
from pathlib import Path

import pytest

from nodebuild.errors import ConfigurationError, InstallationError
from nodebuild.services import toolchain_service
from nodebuild.services.toolchain_service import (
    ToolchainInstaller,
    parse_range,
    parse_version,
    resolve_version,
)

NODE_VERSIONS = ["v21.6.0", "v20.11.1", "v20.10.0", "v18.19.0", "v16.20.2", "v0.12.18"]


class _FakeResponse:
    def __init__(self, payload: bytes, status: int = 200) -> None:
        self._buffer = io.BytesIO(payload)
        self.status = status

    def read(self, size: int = -1) -> bytes:
        return self._buffer.read(size)

    def __enter__(self):
        return self

    def __exit__(self, *_exc) -> None:
        return None


def _tarball(path: Path, top: str, files: dict[str, str]) -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        for name, content in files.items():
            data = content.encode("utf-8")
            info = tarfile.TarInfo(f"{top}/{name}")
            info.size = len(data)
            info.mode = 0o755
            archive.addfile(info, io.BytesIO(data))
    payload = buffer.getvalue()
    path.write_bytes(payload)
    return payload


def test_parse_version():
    assert parse_version("v20.11.1") == (20, 11, 1)
    assert parse_version("1.22.19") == (1, 22, 19)
    assert parse_version("3.0.0-rc.1") == (3, 0, 0)
    assert parse_version("20") is None
    assert parse_version("") is None


@pytest.mark.parametrize(
    "text, expected",
    [
        ("20.x", "20.11.1"),
        ("20", "20.11.1"),
        ("20.10.0", "20.10.0"),
        ("v18.19.0", "18.19.0"),
        ("^18.2", "18.19.0"),
        ("~20.10", "20.10.0"),
        (">=16 <20", "18.19.0"),
        (">= 16 < 19", "18.19.0"),
        ("16.x || 18.x", "18.19.0"),
        ("16 - 18", "18.19.0"),
        ("16.0.0 - 18.1.0", "16.20.2"),
        (">20.10.0 <21", "20.11.1"),
        ("<=20.10", "20.10.0"),
        ("*", "21.6.0"),
        ("", "21.6.0"),
        ("^0.12.0", "0.12.18"),
    ],
)
def test_resolve_version_from_range(text, expected):
    assert resolve_version(parse_range(text), NODE_VERSIONS) == expected


def test_resolve_version_without_match():
    assert resolve_version(parse_range("99.x"), NODE_VERSIONS) is None


def test_caret_zero_major_is_narrow():
    version_range = parse_range("^0.0.3")

    assert version_range.matches("0.0.3")
    assert not version_range.matches("0.0.4")
    assert parse_range("^0.2.3").matches("0.2.9")
    assert not parse_range("^0.2.3").matches("0.3.0")


@pytest.mark.parametrize("alias", ["latest", "LTS", "current", "lts/iron", "stable", "node"])
def test_aliases_are_configuration_errors(alias):
    with pytest.raises(ConfigurationError) as exc:
        parse_range(alias)

    assert "Unsupported runtime alias" in str(exc.value)


@pytest.mark.parametrize("text", [">>20", "twenty", "20.x.y.z", "~>1.2"])
def test_unparsable_ranges(text):
    with pytest.raises(ConfigurationError) as exc:
        parse_range(text, name="npm")

    assert "Could not parse version range" in str(exc.value)
    assert "npm" in str(exc.value)


def test_download_with_retry_succeeds_after_failures(tmp_path, monkeypatch):
    attempts = {"count": 0}
    delays: list[float] = []

    def fake_urlopen(url, timeout=None):
        attempts["count"] += 1
        if attempts["count"] < 3:
            raise toolchain_service.request.URLError("connection reset")
        return _FakeResponse(b"payload")

    monkeypatch.setattr(toolchain_service.request, "urlopen", fake_urlopen)
    monkeypatch.setattr(toolchain_service.time, "sleep", delays.append)
    notes: list[str] = []

    destination = toolchain_service.download_with_retry(
        "https://example.invalid/file.tgz",
        tmp_path / "downloads" / "file.tgz",
        attempts=3,
        backoff=0.5,
        notify=notes.append,
    )

    assert destination.read_bytes() == b"payload"
    assert attempts["count"] == 3
    assert delays == [0.5, 1.0]
    assert sorted(p.name for p in destination.parent.iterdir()) == ["file.tgz"]
    assert len(notes) == 3


def test_download_with_retry_gives_up(tmp_path, monkeypatch):
    calls = {"count": 0}

    def fake_urlopen(url, timeout=None):
        calls["count"] += 1
        return _FakeResponse(b"", status=503)

    monkeypatch.setattr(toolchain_service.request, "urlopen", fake_urlopen)
    monkeypatch.setattr(toolchain_service.time, "sleep", lambda _delay: None)

    with pytest.raises(InstallationError) as exc:
        toolchain_service.download_with_retry(
            "https://example.invalid/file.tgz",
            tmp_path / "file.tgz",
            attempts=2,
        )

    assert calls["count"] == 2
    assert "HTTP 503" in str(exc.value)
    assert not (tmp_path / "file.tgz").exists()


def test_extract_tarball_strips_top_directory(tmp_path):
    archive = tmp_path / "node.tar.gz"
    _tarball(archive, "node-v20.11.1-linux-x64", {"bin/node": "#!/bin/sh\n", "README.md": "hi"})
    destination = tmp_path / "out"
    destination.mkdir()
    (destination / "stale").write_text("old", encoding="utf-8")

    toolchain_service.extract_tarball(archive, destination)

    assert (destination / "bin" / "node").read_text(encoding="utf-8") == "#!/bin/sh\n"
    assert (destination / "README.md").exists()
    assert not (destination / "stale").exists()


def test_extract_tarball_refuses_members_outside_destination(tmp_path):
    archive = tmp_path / "evil.tar.gz"
    payload = b"owned"
    with tarfile.open(archive, "w:gz") as handle:
        info = tarfile.TarInfo("package/../../escaped.txt")
        info.size = len(payload)
        handle.addfile(info, io.BytesIO(payload))
    destination = tmp_path / "nested" / "out"

    with pytest.raises(tarfile.FilterError):
        toolchain_service.extract_tarball(archive, destination)

    assert not (tmp_path / "escaped.txt").exists()


def test_install_runtime_resolves_and_extracts(tmp_path, monkeypatch):
    monkeypatch.setattr(toolchain_service, "node_platform", lambda: "linux-x64")
    tarball = _tarball(tmp_path / "fixture.tgz", "node-v20.11.1-linux-x64", {"bin/node": "node"})
    requested: list[str] = []
    index = json.dumps([{"version": version} for version in NODE_VERSIONS]).encode("utf-8")

    def fake_urlopen(url, timeout=None):
        requested.append(url)
        if url.endswith("/index.json"):
            return _FakeResponse(index)
        return _FakeResponse(tarball)

    monkeypatch.setattr(toolchain_service.request, "urlopen", fake_urlopen)
    build_dir = tmp_path / "build"
    build_dir.mkdir()
    installer = ToolchainInstaller(
        build_dir,
        dist_url="https://dist.example/",
        registry_url="https://registry.example",
    )

    version = installer.install_runtime("20.x")

    assert version == "20.11.1"
    assert requested == [
        "https://dist.example/index.json",
        "https://dist.example/v20.11.1/node-v20.11.1-linux-x64.tar.gz",
    ]
    assert (build_dir / ".nodebuild" / "node" / "bin" / "node").exists()
    assert installer.bin_paths() == [
        build_dir / ".nodebuild" / "node" / "bin",
        build_dir / ".nodebuild" / "yarn" / "bin",
    ]


def test_install_runtime_without_match_is_configuration_error(tmp_path, monkeypatch):
    index = json.dumps([{"version": version} for version in NODE_VERSIONS]).encode("utf-8")
    monkeypatch.setattr(
        toolchain_service.request,
        "urlopen",
        lambda url, timeout=None: _FakeResponse(index),
    )
    installer = ToolchainInstaller(tmp_path, dist_url="https://d", registry_url="https://r")

    with pytest.raises(ConfigurationError):
        installer.install_runtime("99.x")


def test_install_yarn_uses_registry_versions(tmp_path, monkeypatch):
    tarball = _tarball(tmp_path / "yarn.tgz", "package", {"bin/yarn": "yarn"})
    document = json.dumps({"versions": {"1.22.19": {}, "1.22.21": {}, "4.0.0": {}}}).encode("utf-8")
    requested: list[str] = []

    def fake_urlopen(url, timeout=None):
        requested.append(url)
        if url.endswith("/yarn"):
            return _FakeResponse(document)
        return _FakeResponse(tarball)

    monkeypatch.setattr(toolchain_service.request, "urlopen", fake_urlopen)
    installer = ToolchainInstaller(tmp_path, dist_url="https://d", registry_url="https://r")

    assert installer.install_yarn(None) == "1.22.21"
    assert requested[-1] == "https://r/yarn/-/yarn-1.22.21.tgz"
    assert (tmp_path / ".nodebuild" / "yarn" / "bin" / "yarn").exists()


class _FakeExecutor:
    def __init__(self, versions: list[str]) -> None:
        self.versions = list(versions)
        self.commands: list[list[str]] = []

    def run(self, command):
        self.commands.append(list(command))

    def capture(self, command):
        self.commands.append(list(command))
        return self.versions.pop(0) + "\n"


def test_install_npm_keeps_bundled_version_when_it_matches(tmp_path):
    executor = _FakeExecutor(["10.2.4"])
    installer = ToolchainInstaller(tmp_path, dist_url="https://d", registry_url="https://r")

    assert installer.install_npm(None, executor) == "10.2.4"
    executor = _FakeExecutor(["10.2.4"])
    assert installer.install_npm("10.x", executor) == "10.2.4"
    assert executor.commands == [["npm", "--version"]]


def test_install_npm_installs_requested_range(tmp_path):
    executor = _FakeExecutor(["10.2.4", "9.9.2"])
    installer = ToolchainInstaller(tmp_path, dist_url="https://d", registry_url="https://r")

    assert installer.install_npm("9.x", executor) == "9.9.2"
    assert ["npm", "install", "--unsafe-perm", "--quiet", "-g", "npm@9.x"] in executor.commands


def test_install_npm_reports_version_mismatch(tmp_path):
    executor = _FakeExecutor(["10.2.4", "10.2.4"])
    installer = ToolchainInstaller(tmp_path, dist_url="https://d", registry_url="https://r")

    with pytest.raises(InstallationError) as exc:
        installer.install_npm("9.x", executor)

    assert "npm version mismatch: declared 9.x, resolved 10.2.4" in str(exc.value)
