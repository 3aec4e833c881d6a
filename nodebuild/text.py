"""Centralized user-facing text for nodebuild."""

from __future__ import annotations

class Styles:
    ERROR = "red"
    WARNING = "yellow"
    SUCCESS = "green"
    INFO = "dim"
    TITLE = "bold cyan"
    TABLE_HEADER = "bold magenta"


class Messages:
    APP_HELP = "nodebuild – cache-aware build orchestrator for Node.js applications."
    HELP_BUILD_DIR = "Source tree containing package.json."
    HELP_CACHE_DIR = "Persistent cache directory kept between builds."
    HELP_ENV_DIR = "Directory of NAME=value files used as build configuration."
    HELP_CONFIG_FILE = "Path to a JSON config file (default ~/.nodebuild/config.json)."
    HELP_VERBOSE = "Print the full dependency tree at summary time."
    HELP_NO_CACHE = "Skip cache restore and save for this build."
    HELP_BUST_CACHE = "Delete the cache before running the build."
    HELP_PRUNE_BEFORE_SAVE = "Prune devDependencies before saving the cache."
    HELP_LOG_FILE = "Captured build log to scan for known failures."
    HELP_CACHE = "Inspect or clear the dependency cache."
    HELP_CACHE_SHOW = "Show the cache record and cached directories."
    HELP_CACHE_CLEAR = "Delete the cached directories and cache record."
    HELP_METADATA = "Show the metadata flushed by the last build."
    HELP_DIAGNOSE = "Run the failure diagnostics over a saved build log."

    HEADER_CREATING_RUNTIME = "Creating runtime environment"
    HEADER_INSTALLING_BINARIES = "Installing binaries"
    HEADER_RESTORING_CACHE = "Restoring cache"
    HEADER_INSTALLING_DEPENDENCIES = "Installing dependencies"
    HEADER_PRUNING = "Pruning devDependencies"
    HEADER_CACHING = "Caching build"
    HEADER_METRICS = "Installing metrics plugin"
    HEADER_SUMMARY = "Build succeeded!"
    HEADER_FAILED = "Build failed"

    INFO_BUILD_ID = "Build id: {build_id}"
    INFO_STRATEGY = "Installing dependencies with strategy '{strategy}'."
    INFO_ENGINES = "engines.node (package.json): {node}\nengines.npm (package.json): {npm}"
    INFO_RESOLVED = "Resolved {name} version {version}."
    INFO_DOWNLOADING = "Downloading {url}"
    INFO_DOWNLOAD_RETRY = "Download attempt {attempt} of {attempts} failed ({reason}); retrying in {delay:.1f}s."
    INFO_CACHE_DISABLED = "Caching has been disabled because NODE_MODULES_CACHE={value}."
    INFO_CACHE_DISABLED_CONFIG = "Caching disabled by configuration."
    INFO_CACHE_EMPTY = "Cached directories were not restored due to an empty cache."
    INFO_CACHE_VALID = "Restoring cache ({kind})."
    INFO_CACHE_RESTORED = "- {path}"
    INFO_CACHE_NOT_CACHED = "- {path} (not cached - skipping)"
    INFO_CACHE_PREBUILT = "- {path} (exists in the source tree - not restored)"
    INFO_CACHE_NEW_SIGNATURE = "Cached directories were not restored due to a change in version of node, npm, yarn or stack."
    INFO_CACHE_WOULD_RESTORE = "- {path} (not restored)"
    INFO_CACHE_BUSTED = "Cache cleared at {path}."
    INFO_CACHE_SAVED = "- {path}"
    INFO_CACHE_SAVE_MISSING = "- {path} (nothing to cache)"
    INFO_CACHE_SAVE_SKIPPED = "Skipping cache save (disabled by configuration)."
    INFO_PRUNE_SKIPPED = "Skipping because pruning is disabled by configuration."
    INFO_RUNNING_SCRIPT = "Running {name} ({manager})"
    INFO_RUNNING_COMMAND = "$ {command}"
    INFO_METRICS_SKIPPED = "Metrics plugin not configured; skipping."
    INFO_METRICS_INSTALLED = "Metrics plugin installed at {path}."
    INFO_SUMMARY_VERSIONS = "Resolved versions: {versions}"
    INFO_SUMMARY_TREE = "node_modules: {count} packages ({size})"
    INFO_SUMMARY_TREE_MISSING = "node_modules: not present"
    INFO_CACHE_RECORD = "Signature: {signature}\nCreated at: {created_at}"
    INFO_CACHE_NO_RECORD = "No cache record found under {path}."
    INFO_CACHE_CLEARED = "Removed cached directories under {path}."
    INFO_CACHE_CLEAR_NONE = "No cache found under {path}."
    INFO_METADATA_NONE = "No build metadata found under {path}."
    INFO_DIAGNOSE_NONE = "No known failure signature matched."
    INFO_STAGE_TIME = "{step} finished in {seconds:.2f}s"

    WARNING_REMOVING_TREE = (
        "node_modules checked into source control with yarn.lock present. "
        "Removing node_modules before installing with yarn."
    )
    WARNING_SLOW_INSTALL = "Installation may take longer than usual without the cache."
    WARNING_RESTORE_FAILED = "Restoring the cache failed ({reason}); continuing with a fresh install."
    WARNING_SAVE_FAILED = "Saving the cache failed ({reason}); the previous cache record is kept."
    WARNING_METRICS_FAILED = "Metrics plugin could not be installed ({reason}); continuing."
    WARNING_DIAGNOSTIC_FAULT = "Diagnostic '{name}' raised {error}; continuing with the remaining checks."

    ERROR_MANIFEST_MISSING = "Unable to find package.json in {path}."
    ERROR_MANIFEST_INVALID = "Unable to parse package.json: {reason}"
    ERROR_CONFLICTING_LOCKFILES = (
        "Two different lockfiles found: package-lock.json and yarn.lock. "
        "Delete the one that does not match the package manager you use."
    )
    ERROR_TREE_NOT_DIRECTORY = "node_modules exists in the source tree but is not a directory."
    ERROR_UNSUPPORTED_ALIAS = "Unsupported runtime alias '{value}' in engines.{name}."
    ERROR_UNPARSABLE_RANGE = "Could not parse version range '{value}' for {name}."
    ERROR_NO_MATCHING_VERSION = "No {name} version satisfies range '{value}'."
    ERROR_DOWNLOAD_FAILED = "Failed to download {url} after {attempts} attempts: {reason}"
    ERROR_COMMAND_FAILED = "Command `{command}` exited with status {code}."
    ERROR_COMMAND_MISSING = "Command `{command}` could not be started: {reason}"
    ERROR_LOG_MISSING = "Log file not found: {path}"
    ERROR_CACHE_PATH_INVALID = "Invalid cache directory '{value}': paths must be relative and stay inside the build directory."
    ERROR_CONFIG_JSON_INVALID = "Config JSON must be an object."
    ERROR_CONFIG_VALUE_INVALID = "Config field '{field}' has an invalid value."
    ERROR_STAGE_FAILED = "{step} failed: {reason}"
    ERROR_FAILURE_SUMMARY = (
        "We're sorry this build is failing! The build stopped during '{step}'. "
        "Review the output above and the hints listed, then push again."
    )

    DIAGNOSE_TITLE = "Some possible problems:"
    DIAGNOSE_VERSION_MISMATCH = (
        "The installed package manager does not match the version declared in package.json "
        "({detail}). Update engines in package.json or the lockfile."
    )
    DIAGNOSE_MALFORMED_LOCKFILE = (
        "The lockfile could not be parsed. Regenerate it locally and commit it without merge markers."
    )
    DIAGNOSE_UNSUPPORTED_ALIAS = (
        "engines.node uses an alias that cannot be resolved. Pin a semver range such as \"20.x\"."
    )
    DIAGNOSE_UNPARSABLE_RANGE = (
        "A version range in engines could not be parsed ({detail}). Use a valid semver range."
    )
    DIAGNOSE_STALE_LOCKFILE = (
        "The lockfile is out of date with package.json. Run the install locally and commit the updated lockfile."
    )
    DIAGNOSE_NETWORK_RESET = (
        "The connection was reset while installing dependencies. This is usually transient; retry the build."
    )
    DIAGNOSE_OUT_OF_MEMORY = (
        "Node ran out of memory during the build. Reduce build concurrency or raise --max-old-space-size."
    )
    DIAGNOSE_MISSING_MODULE = (
        "A required module ({detail}) was not found. Make sure it is listed in dependencies, not only devDependencies."
    )

    TABLE_TITLE_CACHE = "Cached directories"
    TABLE_TITLE_METADATA = "Build metadata"
    TABLE_HEADER_PATH = "Path"
    TABLE_HEADER_SIZE = "Size"
    TABLE_HEADER_KEY = "Key"
    TABLE_HEADER_VALUE = "Value"
