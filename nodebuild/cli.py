"""Command line interface for nodebuild."""

from __future__ import annotations

import sys
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .cache import (
    build_data_dir,
    clear_cache,
    list_cached_directories,
    load_record,
    node_cache_dir,
)
from .metadata import SINK_FILENAME, load_flushed
from .output import format_status_icon
from .services.build_service import BuildOrchestrator, BuildRequest
from .services.diagnosis_service import DIAGNOSTICS, run_diagnostics
from .text import Messages, Styles
from .utils import format_size, resolve_directory

console = Console()

app = typer.Typer(
    help=Messages.APP_HELP,
    no_args_is_help=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)
cache_app = typer.Typer(help=Messages.HELP_CACHE, no_args_is_help=True)
app.add_typer(cache_app, name="cache")


def _styled(text: str, style: str) -> str:
    return f"[{style}]{text}[/{style}]"


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"nodebuild v{__version__}")
        raise typer.Exit()


def _directory_or_exit(path: Path) -> Path:
    try:
        return resolve_directory(path)
    except (FileNotFoundError, NotADirectoryError) as exc:
        console.print(_styled(str(exc), Styles.ERROR))
        raise typer.Exit(code=1)


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    )
) -> None:
    """Global Typer callback for shared options."""
    return None


@app.command("compile")
def compile_build(
    build_dir: Path = typer.Argument(..., help=Messages.HELP_BUILD_DIR),
    cache_dir: Path = typer.Argument(..., help=Messages.HELP_CACHE_DIR),
    env_dir: Path | None = typer.Option(None, "--env-dir", help=Messages.HELP_ENV_DIR),
    config_path: Path | None = typer.Option(None, "--config", help=Messages.HELP_CONFIG_FILE),
    verbose: bool = typer.Option(False, "--verbose", help=Messages.HELP_VERBOSE),
    no_cache: bool = typer.Option(False, "--no-cache", help=Messages.HELP_NO_CACHE),
    bust_cache: bool = typer.Option(False, "--bust-cache", help=Messages.HELP_BUST_CACHE),
    prune_before_save: bool = typer.Option(
        False,
        "--prune-before-save",
        help=Messages.HELP_PRUNE_BEFORE_SAVE,
    ),
) -> None:
    """Build the application in BUILD_DIR, reusing dependencies cached in CACHE_DIR."""
    build_root = _directory_or_exit(build_dir)
    cache_root = cache_dir.expanduser().resolve()
    cache_root.mkdir(parents=True, exist_ok=True)
    overrides = {
        "verbose": verbose or None,
        "disable_cache": no_cache or None,
        "force_cache_bust": bust_cache or None,
        "prune_before_save": prune_before_save or None,
    }
    request = BuildRequest(
        build_dir=build_root,
        cache_dir=cache_root,
        env_dir=env_dir,
        config_path=config_path,
        overrides=overrides,
    )
    result = BuildOrchestrator(console=console).run(request)
    if not result.success:
        raise typer.Exit(code=1)


@cache_app.command("show", help=Messages.HELP_CACHE_SHOW)
def cache_show(
    cache_dir: Path = typer.Argument(..., help=Messages.HELP_CACHE_DIR),
) -> None:
    root = cache_dir.expanduser().resolve()
    record = load_record(root)
    if record is None:
        console.print(_styled(Messages.INFO_CACHE_NO_RECORD.format(path=root), Styles.WARNING))
        return
    console.print(
        _styled(
            Messages.INFO_CACHE_RECORD.format(
                signature=record.signature.describe(),
                created_at=record.created_at,
            ),
            Styles.INFO,
        )
    )
    table = Table(
        show_header=True,
        header_style=Styles.TABLE_HEADER,
        title=Messages.TABLE_TITLE_CACHE,
    )
    table.add_column(Messages.TABLE_HEADER_PATH, overflow="fold")
    table.add_column(Messages.TABLE_HEADER_SIZE, justify="right")
    for relative, size in list_cached_directories(root, record.directories):
        table.add_row(relative, format_size(size))
    console.print(table)


@cache_app.command("clear", help=Messages.HELP_CACHE_CLEAR)
def cache_clear(
    cache_dir: Path = typer.Argument(..., help=Messages.HELP_CACHE_DIR),
) -> None:
    root = cache_dir.expanduser().resolve()
    if clear_cache(root):
        console.print(
            _styled(Messages.INFO_CACHE_CLEARED.format(path=node_cache_dir(root)), Styles.SUCCESS)
        )
        return
    console.print(_styled(Messages.INFO_CACHE_CLEAR_NONE.format(path=root), Styles.WARNING))


@app.command(help=Messages.HELP_DIAGNOSE)
def diagnose(
    log_file: Path = typer.Argument(..., help=Messages.HELP_LOG_FILE),
) -> None:
    path = log_file.expanduser()
    if not path.is_file():
        console.print(_styled(Messages.ERROR_LOG_MISSING.format(path=path), Styles.ERROR))
        raise typer.Exit(code=1)
    report = run_diagnostics(path.read_text(encoding="utf-8", errors="replace"))
    matched = set(report.names)
    faulted = {name for name, _error in report.faults}
    for name, _predicate in DIAGNOSTICS:
        icon = format_status_icon(name not in matched and name not in faulted, console=console)
        console.print(f"  {icon} [bold]{name}[/bold]")
    for name, error in report.faults:
        console.print(
            _styled(Messages.WARNING_DIAGNOSTIC_FAULT.format(name=name, error=error), Styles.WARNING)
        )
    console.print()
    if not report.matches:
        console.print(_styled(Messages.INFO_DIAGNOSE_NONE, Styles.SUCCESS))
        return
    console.print(_styled(Messages.DIAGNOSE_TITLE, Styles.ERROR))
    for diagnosis in report.matches:
        console.print(f"- {diagnosis.message}", markup=False)


@app.command(help=Messages.HELP_METADATA)
def metadata(
    cache_dir: Path = typer.Argument(..., help=Messages.HELP_CACHE_DIR),
) -> None:
    root = cache_dir.expanduser().resolve()
    document = load_flushed(build_data_dir(root) / SINK_FILENAME)
    if document is None:
        console.print(_styled(Messages.INFO_METADATA_NONE.format(path=root), Styles.WARNING))
        return
    table = Table(
        show_header=True,
        header_style=Styles.TABLE_HEADER,
        title=Messages.TABLE_TITLE_METADATA,
    )
    table.add_column(Messages.TABLE_HEADER_KEY, no_wrap=True)
    table.add_column(Messages.TABLE_HEADER_VALUE, overflow="fold")
    for key, value in document.items():
        table.add_row(str(key), _format_value(value))
    console.print(table)


def _format_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def run(argv: list[str] | None = None) -> None:
    """Entry point wrapper allowing optional argument override."""
    args = list(argv) if argv is not None else sys.argv[1:]
    if argv is None:
        app()
    else:
        app(args=args)
