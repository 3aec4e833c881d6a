import io
import json
import os
import sys
from pathlib import Path

import pytest
from rich.console import Console

from nodebuild import cache as cache_module
from nodebuild.metadata import SINK_FILENAME
from nodebuild.services.build_service import BuildOrchestrator, BuildRequest
from nodebuild.services.signature_service import CacheValidity

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="uses POSIX shell scripts")

FAKE_NPM = """#!/bin/sh
echo "npm $*" >> "$NODEBUILD_TEST_TRACE"
case "$1" in
  --version)
    echo "10.2.4"
    ;;
  install|ci)
    if [ -f .fail-install ]; then
      echo "npm ERR! code ECONNRESET"
      echo "npm ERR! network read ECONNRESET"
      exit 1
    fi
    mkdir -p node_modules/express node_modules/jest
    echo "module.exports = 'express';" > node_modules/express/index.js
    echo "module.exports = 'jest';" > node_modules/jest/index.js
    echo "added 2 packages"
    ;;
  prune)
    rm -rf node_modules/jest
    echo "removed 1 package"
    ;;
  *)
    echo "ok"
    ;;
esac
"""


class ScriptInstaller:
    """Installer that puts a scripted npm on PATH instead of downloading node."""

    def __init__(self, build_dir: Path) -> None:
        self.toolchain_dir = build_dir / ".nodebuild"
        self.bin_dir = self.toolchain_dir / "node" / "bin"
        self.bin_dir.mkdir(parents=True, exist_ok=True)
        npm = self.bin_dir / "npm"
        npm.write_text(FAKE_NPM, encoding="utf-8")
        npm.chmod(0o755)

    def bin_paths(self):
        return [self.bin_dir]

    def install_runtime(self, requested):
        return "20.11.1"

    def install_npm(self, requested, executor):
        return executor.capture(["npm", "--version"]).strip()

    def install_yarn(self, requested):
        raise AssertionError("yarn is not used by this project")


@pytest.fixture(autouse=True)
def temp_config_home(tmp_path, monkeypatch):
    config_dir = tmp_path / "config"
    monkeypatch.setattr("nodebuild.config.CONFIG_DIR", config_dir)
    monkeypatch.setattr("nodebuild.config.CONFIG_FILE", config_dir / "config.json")


def _run_build(build_dir: Path, cache_dir: Path, trace: Path):
    orchestrator = BuildOrchestrator(
        console=Console(file=io.StringIO(), width=200),
        installer_factory=lambda path, _config, _notify: ScriptInstaller(path),
    )
    env = {"PATH": os.environ.get("PATH", ""), "NODEBUILD_TEST_TRACE": str(trace)}
    return orchestrator.run(BuildRequest(build_dir=build_dir, cache_dir=cache_dir, env=env))


def test_two_builds_reuse_the_cache(tmp_path):
    build_dir = tmp_path / "build"
    build_dir.mkdir()
    (build_dir / "package.json").write_text(json.dumps({"name": "app"}), encoding="utf-8")
    cache_dir = tmp_path / "cache"
    trace = tmp_path / "trace.log"

    first = _run_build(build_dir, cache_dir, trace)

    assert first.success is True
    assert first.cache_status == CacheValidity.EMPTY
    assert (build_dir / "node_modules" / "express" / "index.js").exists()
    assert not (build_dir / "node_modules" / "jest").exists()
    cached = cache_module.cached_path(cache_dir, "node_modules")
    assert sorted(p.name for p in cached.iterdir()) == ["express", "jest"]
    log = first.log_path.read_text(encoding="utf-8")
    assert "added 2 packages" in log

    fresh_build = tmp_path / "build-2"
    fresh_build.mkdir()
    (fresh_build / "package.json").write_text(json.dumps({"name": "app"}), encoding="utf-8")

    second = _run_build(fresh_build, cache_dir, trace)

    assert second.success is True
    assert second.cache_status == CacheValidity.VALID
    document = json.loads(
        (cache_module.build_data_dir(cache_dir) / SINK_FILENAME).read_text(encoding="utf-8")
    )
    assert document["build-step"] == "finished"
    assert document["cache-status"] == "valid"
    assert document["cache-restored"] == "node_modules"


def test_failed_install_is_diagnosed_and_keeps_previous_record(tmp_path):
    build_dir = tmp_path / "build"
    build_dir.mkdir()
    (build_dir / "package.json").write_text(json.dumps({"name": "app"}), encoding="utf-8")
    cache_dir = tmp_path / "cache"
    trace = tmp_path / "trace.log"
    assert _run_build(build_dir, cache_dir, trace).success is True
    record_before = cache_module.load_record(cache_dir)

    (build_dir / ".fail-install").write_text("", encoding="utf-8")
    result = _run_build(build_dir, cache_dir, trace)

    assert result.success is False
    assert result.step == "install-dependencies"
    assert [d.name for d in result.diagnoses] == ["network-reset"]
    assert cache_module.load_record(cache_dir) == record_before
    document = json.loads(
        (cache_module.build_data_dir(cache_dir) / SINK_FILENAME).read_text(encoding="utf-8")
    )
    assert document["build-step"] == "install-dependencies"
    assert document["build-success"] is False
