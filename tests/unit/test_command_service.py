from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

from nodebuild.errors import InstallationError
from nodebuild.services.command_service import CommandRunner, build_environment


def _runner(tmp_path: Path, echoed: list[str] | None = None) -> CommandRunner:
    return CommandRunner(
        tmp_path,
        tmp_path / "logs" / "build.log",
        env=dict(os.environ),
        echo=(echoed.append if echoed is not None else (lambda _line: None)),
    )


def test_run_streams_output_to_echo_and_log(tmp_path):
    echoed: list[str] = []
    runner = _runner(tmp_path, echoed)

    runner.run([sys.executable, "-c", "import sys; print('hello'); print('oops', file=sys.stderr)"])

    assert "hello" in echoed
    assert "oops" in echoed
    log = runner.log_path.read_text(encoding="utf-8")
    assert "hello\n" in log
    assert "oops\n" in log
    assert log.startswith("$ ")


def test_run_raises_on_non_zero_exit(tmp_path):
    runner = _runner(tmp_path)

    with pytest.raises(InstallationError) as exc:
        runner.run([sys.executable, "-c", "import sys; print('npm ERR! code EJSONPARSE'); sys.exit(3)"])

    assert exc.value.returncode == 3
    assert exc.value.command is not None
    log = runner.log_path.read_text(encoding="utf-8")
    assert "EJSONPARSE" in log
    assert "exited with status 3" in log


def test_missing_executable_maps_to_127(tmp_path):
    runner = _runner(tmp_path)

    with pytest.raises(InstallationError) as exc:
        runner.run(["definitely-not-a-real-binary-nodebuild"])

    assert exc.value.returncode == 127
    assert "could not be started" in runner.log_path.read_text(encoding="utf-8")


def test_capture_returns_output_without_echo(tmp_path):
    echoed: list[str] = []
    runner = _runner(tmp_path, echoed)

    output = runner.capture([sys.executable, "-c", "print('10.2.4')"])

    assert output.strip() == "10.2.4"
    assert echoed == []


def test_commands_run_in_build_directory(tmp_path):
    runner = _runner(tmp_path)

    output = runner.capture([sys.executable, "-c", "import os; print(os.getcwd())"])

    assert Path(output.strip()).resolve() == tmp_path.resolve()


def test_run_all_stops_at_first_failure(tmp_path):
    runner = _runner(tmp_path)
    marker = tmp_path / "marker"

    with pytest.raises(InstallationError):
        runner.run_all(
            [
                [sys.executable, "-c", "import sys; sys.exit(1)"],
                [sys.executable, "-c", f"open({str(marker)!r}, 'w').close()"],
            ]
        )

    assert not marker.exists()


def test_append_log_adds_trailing_newline(tmp_path):
    runner = _runner(tmp_path)

    runner.append_log("first")
    runner.append_log("second\n")
    runner.append_log("")

    assert runner.log_path.read_text(encoding="utf-8") == "first\nsecond\n"


def test_build_environment_prepends_bin_paths(tmp_path):
    env = build_environment({"PATH": "/usr/bin", "HOME": "/root"}, [tmp_path / "a", tmp_path / "b"])

    assert env["PATH"] == os.pathsep.join([str(tmp_path / "a"), str(tmp_path / "b"), "/usr/bin"])
    assert env["HOME"] == "/root"
    assert build_environment({"NODE_ENV": "production"}) == {"NODE_ENV": "production"}
