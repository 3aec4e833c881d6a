"""Project layout detection and dependency install strategy selection."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

from ..errors import ConfigurationError
from ..text import Messages

MANIFEST_FILENAME = "package.json"
NPM_LOCKFILES: tuple[str, ...] = ("package-lock.json", "npm-shrinkwrap.json")
YARN_LOCKFILE = "yarn.lock"
DEPENDENCY_DIRNAME = "node_modules"


class InstallStrategy(str, Enum):
    ALT_INSTALL = "alt_install"
    REBUILD = "rebuild"
    FRESH_INSTALL = "fresh_install"


class PackageManager(str, Enum):
    NPM = "npm"
    YARN = "yarn"


@dataclass(slots=True)
class ProjectLayout:
    build_dir: Path
    manifest: Mapping[str, Any] = field(default_factory=dict)
    npm_lockfile: str | None = None
    has_yarn_lockfile: bool = False
    has_dependency_dir: bool = False

    @property
    def dependency_dir(self) -> Path:
        return self.build_dir / DEPENDENCY_DIRNAME

    @property
    def engines(self) -> Mapping[str, Any]:
        engines = self.manifest.get("engines")
        return engines if isinstance(engines, Mapping) else {}

    @property
    def scripts(self) -> Mapping[str, Any]:
        scripts = self.manifest.get("scripts")
        return scripts if isinstance(scripts, Mapping) else {}


def select_strategy(has_alt_lockfile: bool, has_existing_dependency_dir: bool) -> InstallStrategy:
    """Pick the install strategy; evaluated once per build."""

    if has_alt_lockfile:
        return InstallStrategy.ALT_INSTALL
    if has_existing_dependency_dir:
        return InstallStrategy.REBUILD
    return InstallStrategy.FRESH_INSTALL


def package_manager_for(strategy: InstallStrategy) -> PackageManager:
    if strategy == InstallStrategy.ALT_INSTALL:
        return PackageManager.YARN
    return PackageManager.NPM


def load_manifest(build_dir: Path) -> dict[str, Any]:
    path = build_dir / MANIFEST_FILENAME
    if not path.is_file():
        raise ConfigurationError(Messages.ERROR_MANIFEST_MISSING.format(path=build_dir))
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ConfigurationError(Messages.ERROR_MANIFEST_INVALID.format(reason=exc)) from exc
    if not isinstance(data, dict):
        raise ConfigurationError(
            Messages.ERROR_MANIFEST_INVALID.format(reason="top-level value must be an object")
        )
    return data


def detect_project_layout(build_dir: Path) -> ProjectLayout:
    """Inspect the source tree before any stage has touched it."""

    manifest = load_manifest(build_dir)
    npm_lockfile = next(
        (name for name in NPM_LOCKFILES if (build_dir / name).is_file()),
        None,
    )
    dependency_dir = build_dir / DEPENDENCY_DIRNAME
    return ProjectLayout(
        build_dir=build_dir,
        manifest=manifest,
        npm_lockfile=npm_lockfile,
        has_yarn_lockfile=(build_dir / YARN_LOCKFILE).is_file(),
        has_dependency_dir=dependency_dir.exists() or dependency_dir.is_symlink(),
    )


def validate_layout(layout: ProjectLayout) -> None:
    """Raise ConfigurationError for layouts that must not be built."""

    if layout.npm_lockfile and layout.has_yarn_lockfile:
        raise ConfigurationError(Messages.ERROR_CONFLICTING_LOCKFILES)
    if layout.has_dependency_dir and not layout.dependency_dir.is_dir():
        raise ConfigurationError(Messages.ERROR_TREE_NOT_DIRECTORY)


def install_commands(strategy: InstallStrategy, layout: ProjectLayout) -> list[list[str]]:
    if strategy == InstallStrategy.ALT_INSTALL:
        return [["yarn", "install", "--frozen-lockfile", "--production=false"]]
    if strategy == InstallStrategy.REBUILD:
        return [
            ["npm", "rebuild"],
            ["npm", "install", "--production=false"],
        ]
    if layout.npm_lockfile:
        return [["npm", "ci", "--production=false"]]
    return [["npm", "install", "--production=false"]]


def prune_commands(manager: PackageManager) -> list[list[str]]:
    if manager == PackageManager.YARN:
        return [
            [
                "yarn",
                "install",
                "--production",
                "--frozen-lockfile",
                "--ignore-engines",
                "--ignore-scripts",
                "--prefer-offline",
            ]
        ]
    return [["npm", "prune", "--production"]]


def script_command(manager: PackageManager, name: str) -> list[str]:
    if manager == PackageManager.YARN:
        return ["yarn", "run", name]
    return ["npm", "run", name, "--if-present"]


def list_tree_command(manager: PackageManager) -> list[str]:
    if manager == PackageManager.YARN:
        return ["yarn", "list", "--depth=0"]
    return ["npm", "ls", "--depth=0"]
