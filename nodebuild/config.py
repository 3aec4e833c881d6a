"""Build configuration for nodebuild."""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict

from .text import Messages

DEFAULT_CONFIG_DIR = Path(os.path.expanduser("~")) / ".nodebuild"
CONFIG_DIR = DEFAULT_CONFIG_DIR
CONFIG_FILE = CONFIG_DIR / "config.json"
DEFAULT_DOWNLOAD_ATTEMPTS = 3
DEFAULT_DOWNLOAD_BACKOFF = 1.0
DEFAULT_NODE_DIST_URL = "https://nodejs.org/dist"
DEFAULT_NPM_REGISTRY_URL = "https://registry.npmjs.org"
DEFAULT_NODE_RANGE = "20.x"
DEFAULT_YARN_RANGE = "1.x"

ENV_MODULES_CACHE = "NODE_MODULES_CACHE"
ENV_VERBOSE = "NODE_VERBOSE"
ENV_CACHE_BUST = "NODEBUILD_CACHE_BUST"
ENV_PRUNE_BEFORE_SAVE = "NODEBUILD_PRUNE_BEFORE_SAVE"
ENV_METRICS_URL = "NODEBUILD_METRICS_URL"
ENV_NPM_PRODUCTION = "NPM_CONFIG_PRODUCTION"
ENV_YARN_PRODUCTION = "YARN_PRODUCTION"
ENV_STACK = "STACK"
MANIFEST_CACHE_KEYS: tuple[str, ...] = ("cacheDirectories", "cache_directories")


@dataclass
class BuildConfig:
    disable_cache: bool = False
    custom_cache_directories: tuple[str, ...] | None = None
    verbose: bool = False
    force_cache_bust: bool = False
    prune_before_save: bool = False
    prune_dev_dependencies: bool = True
    stack: str | None = None
    metrics_plugin_url: str | None = None
    download_attempts: int = DEFAULT_DOWNLOAD_ATTEMPTS
    download_backoff: float = DEFAULT_DOWNLOAD_BACKOFF
    node_dist_url: str = DEFAULT_NODE_DIST_URL
    npm_registry_url: str = DEFAULT_NPM_REGISTRY_URL


def _resolve_config_file(path: Path | str | None = None) -> Path:
    if path is not None:
        return Path(path).expanduser()
    return CONFIG_FILE


def load_config(path: Path | str | None = None) -> BuildConfig:
    """Load the JSON config file, falling back to defaults when it is absent."""
    config_file = _resolve_config_file(path)
    if not config_file.exists():
        return BuildConfig()
    raw = config_file.read_text(encoding="utf-8")
    return config_from_json(raw)


def save_config(config: BuildConfig, path: Path | str | None = None) -> Path:
    config_file = _resolve_config_file(path)
    config_file.parent.mkdir(parents=True, exist_ok=True)
    data: Dict[str, Any] = {
        "disable_cache": config.disable_cache,
        "verbose": config.verbose,
        "force_cache_bust": config.force_cache_bust,
        "prune_before_save": config.prune_before_save,
        "prune_dev_dependencies": config.prune_dev_dependencies,
        "download_attempts": config.download_attempts,
        "download_backoff": config.download_backoff,
        "node_dist_url": config.node_dist_url,
        "npm_registry_url": config.npm_registry_url,
    }
    if config.custom_cache_directories is not None:
        data["custom_cache_directories"] = list(config.custom_cache_directories)
    if config.stack:
        data["stack"] = config.stack
    if config.metrics_plugin_url:
        data["metrics_plugin_url"] = config.metrics_plugin_url
    config_file.write_text(
        json.dumps(data, ensure_ascii=False, indent=2),
        encoding="utf-8",
    )
    return config_file


def config_from_json(
    payload: str | Mapping[str, object], *, base: BuildConfig | None = None
) -> BuildConfig:
    """Return a BuildConfig from a JSON string or mapping without saving it."""
    data = _coerce_config_payload(payload)
    config = BuildConfig() if base is None else replace(base)
    _apply_config_payload(config, data)
    return config


def read_env_dir(env_dir: Path | str | None) -> dict[str, str]:
    """Read an env directory where each file name is a variable and its content the value."""

    if env_dir is None:
        return {}
    directory = Path(env_dir)
    if not directory.is_dir():
        return {}
    values: dict[str, str] = {}
    for entry in sorted(directory.iterdir()):
        if not entry.is_file():
            continue
        values[entry.name] = entry.read_text(encoding="utf-8").strip()
    return values


def apply_env_overrides(config: BuildConfig, env: Mapping[str, str]) -> BuildConfig:
    """Apply the recognized build environment variables on top of *config*."""

    updated = replace(config)
    if env.get(ENV_MODULES_CACHE):
        updated.disable_cache = not _coerce_bool(env[ENV_MODULES_CACHE], ENV_MODULES_CACHE)
    if env.get(ENV_VERBOSE):
        updated.verbose = _coerce_bool(env[ENV_VERBOSE], ENV_VERBOSE)
    if env.get(ENV_CACHE_BUST):
        updated.force_cache_bust = _coerce_bool(env[ENV_CACHE_BUST], ENV_CACHE_BUST)
    if env.get(ENV_PRUNE_BEFORE_SAVE):
        updated.prune_before_save = _coerce_bool(
            env[ENV_PRUNE_BEFORE_SAVE], ENV_PRUNE_BEFORE_SAVE
        )
    for key in (ENV_NPM_PRODUCTION, ENV_YARN_PRODUCTION):
        if env.get(key) and not _coerce_bool(env[key], key):
            updated.prune_dev_dependencies = False
    if env.get(ENV_STACK):
        updated.stack = env[ENV_STACK].strip() or updated.stack
    if env.get(ENV_METRICS_URL):
        updated.metrics_plugin_url = env[ENV_METRICS_URL].strip() or None
    return updated


def apply_manifest_overrides(config: BuildConfig, manifest: Mapping[str, object]) -> BuildConfig:
    """Use the project's `cacheDirectories` list when package.json declares one."""

    for key in MANIFEST_CACHE_KEYS:
        if key in manifest:
            return replace(
                config,
                custom_cache_directories=_coerce_directories(manifest[key], key),
            )
    return config


def resolve_build_config(
    *,
    config_path: Path | str | None = None,
    env: Mapping[str, str] | None = None,
    manifest: Mapping[str, object] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> BuildConfig:
    """Merge defaults, config file, environment, package.json and CLI overrides."""

    config = load_config(config_path)
    config = apply_env_overrides(config, env or {})
    config = apply_manifest_overrides(config, manifest or {})
    if overrides:
        explicit = {key: value for key, value in overrides.items() if value is not None}
        if explicit:
            config = config_from_json(explicit, base=config)
    return config


def _coerce_config_payload(payload: str | Mapping[str, object]) -> Mapping[str, object]:
    if isinstance(payload, str):
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise ValueError(Messages.ERROR_CONFIG_JSON_INVALID) from exc
    elif isinstance(payload, Mapping):
        data = dict(payload)
    else:
        raise ValueError(Messages.ERROR_CONFIG_JSON_INVALID)
    if not isinstance(data, Mapping):
        raise ValueError(Messages.ERROR_CONFIG_JSON_INVALID)
    return data


_BOOL_FIELDS = (
    "disable_cache",
    "verbose",
    "force_cache_bust",
    "prune_before_save",
    "prune_dev_dependencies",
)


def _apply_config_payload(config: BuildConfig, payload: Mapping[str, object]) -> None:
    known = {item.name for item in fields(BuildConfig)}
    for key in payload:
        if key not in known:
            raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=key))
    for name in _BOOL_FIELDS:
        if name in payload:
            setattr(config, name, _coerce_bool(payload[name], name))
    if "custom_cache_directories" in payload:
        value = payload["custom_cache_directories"]
        config.custom_cache_directories = (
            None if value is None else _coerce_directories(value, "custom_cache_directories")
        )
    if "stack" in payload:
        config.stack = _coerce_optional_str(payload["stack"], "stack")
    if "metrics_plugin_url" in payload:
        config.metrics_plugin_url = _coerce_optional_str(
            payload["metrics_plugin_url"], "metrics_plugin_url"
        )
    if "download_attempts" in payload:
        attempts = _coerce_int(
            payload["download_attempts"], "download_attempts", DEFAULT_DOWNLOAD_ATTEMPTS
        )
        if attempts < 1:
            raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field="download_attempts"))
        config.download_attempts = attempts
    if "download_backoff" in payload:
        config.download_backoff = _coerce_float(
            payload["download_backoff"], "download_backoff", DEFAULT_DOWNLOAD_BACKOFF
        )
    if "node_dist_url" in payload:
        config.node_dist_url = _coerce_required_str(
            payload["node_dist_url"], "node_dist_url", DEFAULT_NODE_DIST_URL
        )
    if "npm_registry_url" in payload:
        config.npm_registry_url = _coerce_required_str(
            payload["npm_registry_url"], "npm_registry_url", DEFAULT_NPM_REGISTRY_URL
        )


def _coerce_optional_str(value: object, field: str) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        cleaned = value.strip()
        return cleaned or None
    raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))


def _coerce_required_str(value: object, field: str, default: str) -> str:
    if value is None:
        return default
    if isinstance(value, str):
        cleaned = value.strip()
        return cleaned or default
    raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))


def _coerce_int(value: object, field: str, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
    if isinstance(value, str):
        cleaned = value.strip()
        if not cleaned:
            return default
        try:
            return int(cleaned)
        except ValueError as exc:
            raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field)) from exc
    raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))


def _coerce_float(value: object, field: str, default: float) -> float:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
    if isinstance(value, (int, float)):
        result = float(value)
    elif isinstance(value, str) and value.strip():
        try:
            result = float(value.strip())
        except ValueError as exc:
            raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field)) from exc
    else:
        raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
    if result < 0:
        raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
    return result


def _coerce_bool(value: object, field: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        cleaned = value.strip().lower()
        if cleaned in {"true", "1", "yes", "on"}:
            return True
        if cleaned in {"false", "0", "no", "off"}:
            return False
    raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))


def _coerce_directories(value: object, field: str) -> tuple[str, ...]:
    if isinstance(value, str) or not isinstance(value, (list, tuple)):
        raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
    directories: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
        cleaned = item.strip()
        if cleaned and cleaned not in directories:
            directories.append(cleaned)
    return tuple(directories)
