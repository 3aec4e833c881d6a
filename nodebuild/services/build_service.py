"""Step orchestrator that drives a Node.js build from source tree to cached output."""

from __future__ import annotations

import os
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Mapping, Protocol, Sequence

from rich.console import Console

from .cache_service import (
    CacheDirectorySpec,
    remove_conflicting_tree,
    restore as restore_cache,
    save as save_cache,
)
from .command_service import CommandRunner, build_environment
from .diagnosis_service import Diagnosis, DiagnosisReport, run_diagnostics
from .signature_service import CacheValidity, classify, compute_signature, resolve_stack_id
from .strategy_service import (
    InstallStrategy,
    PackageManager,
    ProjectLayout,
    detect_project_layout,
    install_commands,
    list_tree_command,
    package_manager_for,
    prune_commands,
    script_command,
    select_strategy,
    validate_layout,
)
from .toolchain_service import (
    CommandExecutor,
    ToolchainInstaller,
    download_with_retry,
    parse_range,
)
from ..cache import (
    CacheRecord,
    Signature,
    build_data_dir,
    cache_present,
    clear_cache,
    load_record,
    node_cache_dir,
    store_record,
)
from ..config import ENV_MODULES_CACHE, BuildConfig, read_env_dir, resolve_build_config
from ..errors import BuildError, CacheError, ConfigurationError, InstallationError
from ..metadata import DB_FILENAME, SINK_FILENAME, MetadataStore
from ..output import format_header, styled
from ..text import Messages, Styles
from ..utils import count_packages, directory_size, format_size

LOG_FILENAME = "build.log"
PREBUILD_SCRIPT = "nodebuild-prebuild"
BUILD_SCRIPT = "build"
POSTBUILD_SCRIPT = "nodebuild-postbuild"
METRICS_DIRNAME = "metrics"


class BuildStep(str, Enum):
    INIT = "init"
    INSTALL_RUNTIME = "install-runtime"
    INSTALL_PACKAGE_MANAGER = "install-package-manager"
    INSTALL_ALT_MANAGER = "install-alt-manager"
    RESTORE_CACHE = "restore-cache"
    INSTALL_DEPENDENCIES = "install-dependencies"
    PRUNE_DEPENDENCIES = "prune-dependencies"
    SAVE_CACHE = "save-cache"
    INSTALL_METRICS_PLUGIN = "install-metrics-plugin"
    SUMMARIZE = "summarize"
    FINISHED = "finished"


class Installer(Protocol):
    toolchain_dir: Path

    def bin_paths(self) -> list[Path]:
        ...

    def install_runtime(self, requested: str | None) -> str:
        ...

    def install_npm(self, requested: str | None, executor: CommandExecutor) -> str:
        ...

    def install_yarn(self, requested: str | None) -> str:
        ...


class Runner(CommandExecutor, Protocol):
    def run_all(self, commands: Sequence[Sequence[str]]) -> None:
        ...

    def append_log(self, text: str) -> None:
        ...


InstallerFactory = Callable[[Path, BuildConfig, Callable[[str], None]], Installer]
RunnerFactory = Callable[[Path, Path, Mapping[str, str], Callable[[str], None]], Runner]
Downloader = Callable[..., Path]


def default_installer_factory(
    build_dir: Path,
    config: BuildConfig,
    notify: Callable[[str], None],
) -> ToolchainInstaller:
    return ToolchainInstaller(
        build_dir,
        dist_url=config.node_dist_url,
        registry_url=config.npm_registry_url,
        attempts=config.download_attempts,
        backoff=config.download_backoff,
        notify=notify,
    )


def default_runner_factory(
    cwd: Path,
    log_path: Path,
    env: Mapping[str, str],
    echo: Callable[[str], None],
) -> CommandRunner:
    return CommandRunner(cwd, log_path, env=env, echo=echo)


@dataclass(slots=True)
class BuildRequest:
    build_dir: Path
    cache_dir: Path
    env_dir: Path | None = None
    config_path: Path | None = None
    overrides: Mapping[str, object] = field(default_factory=dict)
    env: Mapping[str, str] | None = None
    build_id: str | None = None


@dataclass(slots=True)
class StageResult:
    step: BuildStep
    ok: bool = True
    error: BaseException | None = None


@dataclass(slots=True)
class BuildResult:
    success: bool
    step: str
    build_id: str
    diagnoses: list[Diagnosis] = field(default_factory=list)
    faults: list[tuple[str, str]] = field(default_factory=list)
    cache_status: CacheValidity | None = None
    strategy: InstallStrategy | None = None
    log_path: Path | None = None


@dataclass
class BuildContext:
    """Everything one build knows about itself; passed explicitly to each stage."""

    request: BuildRequest
    metadata: MetadataStore
    console: Console
    log_path: Path
    env: dict[str, str] = field(default_factory=dict)
    config: BuildConfig = field(default_factory=BuildConfig)
    layout: ProjectLayout | None = None
    strategy: InstallStrategy | None = None
    manager: PackageManager = PackageManager.NPM
    cache_spec: CacheDirectorySpec = field(default_factory=CacheDirectorySpec.default)
    installer: Installer | None = None
    runner: Runner | None = None
    versions: dict[str, str] = field(default_factory=dict)
    signature: Signature | None = None
    validity: CacheValidity | None = None
    cache_saved: bool = False

    @property
    def build_dir(self) -> Path:
        return self.request.build_dir

    @property
    def cache_dir(self) -> Path:
        return self.request.cache_dir

    @property
    def caching_enabled(self) -> bool:
        return not self.config.disable_cache

    def set_step(self, step: BuildStep) -> None:
        self.metadata.set_step(step.value)

    def record(self, key: str, value: object) -> None:
        self.metadata.record(key, value)

    def record_duration(self, key: str, start_time: float) -> float:
        return self.metadata.record_duration(key, start_time)

    def header(self, text: str) -> None:
        self.console.print(styled(format_header(text), Styles.TITLE))

    def info(self, text: str) -> None:
        self.console.print(f"       {text}", markup=False, highlight=False)

    def warn(self, text: str) -> None:
        self.console.print(styled(f"       {text}", Styles.WARNING))

    def error(self, text: str) -> None:
        self.console.print(styled(f" !     {text}", Styles.ERROR))

    def echo(self, line: str) -> None:
        self.console.print(f"       {line}", markup=False, highlight=False)

    def append_log(self, text: str) -> None:
        if self.runner is not None:
            self.runner.append_log(text)
            return
        with self.log_path.open("a", encoding="utf-8") as handle:
            handle.write(text if text.endswith("\n") else f"{text}\n")

    def read_log(self) -> str:
        if not self.log_path.exists():
            return ""
        return self.log_path.read_text(encoding="utf-8", errors="replace")

    def require_runner(self) -> Runner:
        if self.runner is None:
            raise BuildError("Command runner is not initialized")
        return self.runner

    def require_installer(self) -> Installer:
        if self.installer is None:
            raise BuildError("Toolchain installer is not initialized")
        return self.installer


Stage = Callable[[BuildContext], None]


class BuildOrchestrator:
    """Runs the build stages in order and owns the single failure path."""

    def __init__(
        self,
        *,
        console: Console | None = None,
        installer_factory: InstallerFactory = default_installer_factory,
        runner_factory: RunnerFactory = default_runner_factory,
        downloader: Downloader = download_with_retry,
    ) -> None:
        self.console = console or Console()
        self.installer_factory = installer_factory
        self.runner_factory = runner_factory
        self.downloader = downloader

    def run(self, request: BuildRequest) -> BuildResult:
        build_id = request.build_id or uuid.uuid4().hex
        data_dir = build_data_dir(request.cache_dir)
        data_dir.mkdir(parents=True, exist_ok=True)
        log_path = data_dir / LOG_FILENAME
        log_path.write_text("", encoding="utf-8")
        metadata = MetadataStore(data_dir / DB_FILENAME, build_id, initial_step=BuildStep.INIT.value)
        context = BuildContext(
            request=request,
            metadata=metadata,
            console=self.console,
            log_path=log_path,
        )
        try:
            context.record("build-id", build_id)
            context.info(Messages.INFO_BUILD_ID.format(build_id=build_id))
            outcome = self._run_stage(context, BuildStep.INIT, self._init)
            if outcome.ok:
                for step, stage in self._plan(context):
                    outcome = self._run_stage(context, step, stage)
                    if not outcome.ok:
                        break
            if not outcome.ok:
                return self._fail(context, outcome)
            return self._finish(context)
        finally:
            metadata.close()

    def _plan(self, context: BuildContext) -> list[tuple[BuildStep, Stage]]:
        stages: list[tuple[BuildStep, Stage]] = [
            (BuildStep.INSTALL_RUNTIME, self._install_runtime),
            (BuildStep.INSTALL_PACKAGE_MANAGER, self._install_package_manager),
        ]
        if context.strategy == InstallStrategy.ALT_INSTALL:
            stages.append((BuildStep.INSTALL_ALT_MANAGER, self._install_alt_manager))
        stages.extend(
            [
                (BuildStep.RESTORE_CACHE, self._restore_cache),
                (BuildStep.INSTALL_DEPENDENCIES, self._install_dependencies),
            ]
        )
        prune = (BuildStep.PRUNE_DEPENDENCIES, self._prune_dependencies)
        save = (BuildStep.SAVE_CACHE, self._save_cache)
        stages.extend([prune, save] if context.config.prune_before_save else [save, prune])
        stages.extend(
            [
                (BuildStep.INSTALL_METRICS_PLUGIN, self._install_metrics_plugin),
                (BuildStep.SUMMARIZE, self._summarize),
            ]
        )
        return stages

    def _run_stage(self, context: BuildContext, step: BuildStep, stage: Stage) -> StageResult:
        context.set_step(step)
        start = time.monotonic()
        try:
            stage(context)
        except Exception as exc:
            return StageResult(step=step, ok=False, error=exc)
        elapsed = context.record_duration(f"{step.value}-time", start)
        if context.config.verbose:
            context.info(Messages.INFO_STAGE_TIME.format(step=step.value, seconds=elapsed))
        return StageResult(step=step)

    def _init(self, context: BuildContext) -> None:
        request = context.request
        env = dict(os.environ if request.env is None else request.env)
        env.update(read_env_dir(request.env_dir))
        context.env = env

        layout = detect_project_layout(context.build_dir)
        try:
            config = resolve_build_config(
                config_path=request.config_path,
                env=env,
                manifest=layout.manifest,
                overrides=request.overrides,
            )
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc
        validate_layout(layout)
        for name in ("node", "npm", "yarn"):
            requested = layout.engines.get(name)
            if requested:
                parse_range(str(requested), name=name)
        if config.custom_cache_directories is not None:
            cache_spec = CacheDirectorySpec.custom(config.custom_cache_directories)
        else:
            cache_spec = CacheDirectorySpec.default()

        strategy = select_strategy(layout.has_yarn_lockfile, layout.has_dependency_dir)
        context.config = config
        context.layout = layout
        context.strategy = strategy
        context.manager = package_manager_for(strategy)
        context.cache_spec = cache_spec
        context.record("install-strategy", strategy.value)
        context.record("cache-directories", ",".join(cache_spec.resolve(context.manager)))
        context.record("cache-spec", cache_spec.describe())

        if config.force_cache_bust and clear_cache(context.cache_dir):
            context.info(Messages.INFO_CACHE_BUSTED.format(path=node_cache_dir(context.cache_dir)))

        context.header(Messages.HEADER_CREATING_RUNTIME)
        installer = self.installer_factory(context.build_dir, config, context.info)
        context.installer = installer
        context.runner = self.runner_factory(
            context.build_dir,
            context.log_path,
            build_environment(env, installer.bin_paths()),
            context.echo,
        )

    def _install_runtime(self, context: BuildContext) -> None:
        engines = context.layout.engines if context.layout else {}
        context.header(Messages.HEADER_INSTALLING_BINARIES)
        context.info(
            Messages.INFO_ENGINES.format(
                node=engines.get("node") or "unspecified",
                npm=engines.get("npm") or "unspecified",
            )
        )
        version = context.require_installer().install_runtime(_engine(engines, "node"))
        context.versions["node"] = version
        context.record("node-version", version)
        context.info(Messages.INFO_RESOLVED.format(name="node", version=version))

    def _install_package_manager(self, context: BuildContext) -> None:
        engines = context.layout.engines if context.layout else {}
        version = context.require_installer().install_npm(
            _engine(engines, "npm"),
            context.require_runner(),
        )
        context.versions["npm"] = version
        context.record("npm-version", version)
        context.info(Messages.INFO_RESOLVED.format(name="npm", version=version))

    def _install_alt_manager(self, context: BuildContext) -> None:
        engines = context.layout.engines if context.layout else {}
        version = context.require_installer().install_yarn(_engine(engines, "yarn"))
        context.versions["yarn"] = version
        context.record("yarn-version", version)
        context.info(Messages.INFO_RESOLVED.format(name="yarn", version=version))

    def _restore_cache(self, context: BuildContext) -> None:
        context.header(Messages.HEADER_RESTORING_CACHE)
        stack_id = resolve_stack_id(
            context.cache_dir,
            context.config.stack,
            persist=context.caching_enabled,
        )
        manager = context.manager
        context.signature = compute_signature(
            context.versions.get("node", ""),
            manager.value,
            context.versions.get(manager.value, ""),
            stack_id,
        )
        prior = load_record(context.cache_dir)
        validity = classify(
            prior.signature if prior is not None else None,
            context.signature,
            cache_present(context.cache_dir),
            context.caching_enabled,
        )
        context.validity = validity
        context.record("cache-status", validity.value)
        context.record("stack", stack_id)

        remove_conflicting_tree(context.build_dir, context.strategy, warn=context.warn)
        if validity == CacheValidity.DISABLED:
            value = context.env.get(ENV_MODULES_CACHE, "")
            if value.strip().lower() in {"false", "0", "no", "off"}:
                context.info(Messages.INFO_CACHE_DISABLED.format(value=value))
            else:
                context.info(Messages.INFO_CACHE_DISABLED_CONFIG)
            return
        try:
            result = restore_cache(
                context.cache_spec,
                validity,
                build_dir=context.build_dir,
                cache_root=context.cache_dir,
                manager=manager,
                info=context.info,
                warn=context.warn,
            )
        except CacheError as exc:
            context.warn(Messages.WARNING_RESTORE_FAILED.format(reason=exc))
            context.record("cache-restore-failed", True)
            return
        context.record("cache-restored", ",".join(result.restored))

    def _install_dependencies(self, context: BuildContext) -> None:
        runner = context.require_runner()
        layout = context.layout
        strategy = context.strategy
        if layout is None or strategy is None:
            raise BuildError("Project layout was not detected")
        context.header(Messages.HEADER_INSTALLING_DEPENDENCIES)
        self._run_script(context, PREBUILD_SCRIPT)
        context.info(Messages.INFO_STRATEGY.format(strategy=strategy.value))
        runner.run_all(install_commands(strategy, layout))
        self._run_script(context, BUILD_SCRIPT)
        self._run_script(context, POSTBUILD_SCRIPT)

    def _run_script(self, context: BuildContext, name: str) -> None:
        if context.layout is None or name not in context.layout.scripts:
            return
        context.info(Messages.INFO_RUNNING_SCRIPT.format(name=name, manager=context.manager.value))
        context.require_runner().run(script_command(context.manager, name))

    def _prune_dependencies(self, context: BuildContext) -> None:
        context.header(Messages.HEADER_PRUNING)
        if not context.config.prune_dev_dependencies:
            context.info(Messages.INFO_PRUNE_SKIPPED)
            return
        context.require_runner().run_all(prune_commands(context.manager))

    def _save_cache(self, context: BuildContext) -> None:
        context.header(Messages.HEADER_CACHING)
        try:
            result = save_cache(
                context.cache_spec,
                build_dir=context.build_dir,
                cache_root=context.cache_dir,
                manager=context.manager,
                caching_enabled=context.caching_enabled,
                info=context.info,
            )
        except CacheError as exc:
            context.warn(Messages.WARNING_SAVE_FAILED.format(reason=exc))
            context.record("cache-save-failed", True)
            context.cache_saved = False
            return
        context.cache_saved = not result.skipped

    def _install_metrics_plugin(self, context: BuildContext) -> None:
        url = context.config.metrics_plugin_url
        if not url:
            context.info(Messages.INFO_METRICS_SKIPPED)
            return
        context.header(Messages.HEADER_METRICS)
        filename = url.rstrip("/").rsplit("/", 1)[-1] or "plugin"
        target = context.require_installer().toolchain_dir / METRICS_DIRNAME / filename
        try:
            path = self.downloader(
                url,
                target,
                attempts=context.config.download_attempts,
                backoff=context.config.download_backoff,
                notify=context.info,
            )
        except InstallationError as exc:
            context.warn(Messages.WARNING_METRICS_FAILED.format(reason=exc))
            context.record("metrics-plugin", "failed")
            return
        context.record("metrics-plugin", "installed")
        context.info(Messages.INFO_METRICS_INSTALLED.format(path=path))

    def _summarize(self, context: BuildContext) -> None:
        versions = ", ".join(f"{name} {version}" for name, version in context.versions.items())
        context.info(Messages.INFO_SUMMARY_VERSIONS.format(versions=versions or "-"))
        dependency_dir = context.layout.dependency_dir if context.layout else None
        if dependency_dir is not None and dependency_dir.is_dir():
            count = count_packages(dependency_dir)
            size = directory_size(dependency_dir)
            context.record("dependency-count", count)
            context.record("dependency-size", size)
            context.info(Messages.INFO_SUMMARY_TREE.format(count=count, size=format_size(size)))
        else:
            context.info(Messages.INFO_SUMMARY_TREE_MISSING)
        if context.config.verbose:
            try:
                context.require_runner().run(list_tree_command(context.manager))
            except InstallationError as exc:
                context.warn(str(exc))

    def _finish(self, context: BuildContext) -> BuildResult:
        if context.caching_enabled and context.cache_saved and context.signature is not None:
            record = CacheRecord(
                signature=context.signature,
                directories=context.cache_spec.resolve(context.manager),
            )
            try:
                store_record(context.cache_dir, record)
            except OSError as exc:
                context.warn(Messages.WARNING_SAVE_FAILED.format(reason=exc))
        context.set_step(BuildStep.FINISHED)
        context.record("build-success", True)
        context.header(Messages.HEADER_SUMMARY)
        context.metadata.flush(build_data_dir(context.cache_dir) / SINK_FILENAME)
        return BuildResult(
            success=True,
            step=context.metadata.step,
            build_id=context.metadata.build_id,
            cache_status=context.validity,
            strategy=context.strategy,
            log_path=context.log_path,
        )

    def _fail(self, context: BuildContext, outcome: StageResult) -> BuildResult:
        report = DiagnosisReport()
        try:
            reason = str(outcome.error) if outcome.error is not None else "unknown error"
            message = Messages.ERROR_STAGE_FAILED.format(step=outcome.step.value, reason=reason)
            context.header(Messages.HEADER_FAILED)
            context.error(message)
            context.append_log(message)
            context.record("build-success", False)
            context.record("failure-step", outcome.step.value)
            report = run_diagnostics(context.read_log())
            for name, error in report.faults:
                context.warn(Messages.WARNING_DIAGNOSTIC_FAULT.format(name=name, error=error))
            if report.matches:
                context.error(Messages.DIAGNOSE_TITLE)
                for diagnosis in report.matches:
                    context.error(f"- {diagnosis.message}")
            context.record("diagnoses", ",".join(report.names))
            context.error(Messages.ERROR_FAILURE_SUMMARY.format(step=outcome.step.value))
        finally:
            context.metadata.flush(build_data_dir(context.cache_dir) / SINK_FILENAME)
        return BuildResult(
            success=False,
            step=context.metadata.step,
            build_id=context.metadata.build_id,
            diagnoses=list(report.matches),
            faults=list(report.faults),
            cache_status=context.validity,
            strategy=context.strategy,
            log_path=context.log_path,
        )


def _engine(engines: Mapping[str, object], name: str) -> str | None:
    value = engines.get(name)
    if value is None:
        return None
    text = str(value).strip()
    return text or None
