"""Run package-manager commands and capture their output into the build log."""

from __future__ import annotations

import os
import subprocess
from pathlib import Path
from typing import Callable, Iterable, Mapping, Sequence

from ..errors import InstallationError
from ..text import Messages
from ..utils import format_command

Echo = Callable[[str], None]


def _silent(_line: str) -> None:
    return None


def build_environment(
    base: Mapping[str, str],
    bin_paths: Iterable[Path] = (),
) -> dict[str, str]:
    """Return a copy of *base* with *bin_paths* prepended to PATH."""

    env = dict(base)
    prefix = [str(path) for path in bin_paths]
    if prefix:
        current = env.get("PATH", "")
        env["PATH"] = os.pathsep.join(prefix + ([current] if current else []))
    return env


class CommandRunner:
    """Runs commands in the build directory, appending all output to ``log_path``."""

    def __init__(
        self,
        cwd: Path,
        log_path: Path,
        *,
        env: Mapping[str, str] | None = None,
        echo: Echo = _silent,
    ) -> None:
        self.cwd = cwd
        self.log_path = log_path
        self.env = dict(env) if env is not None else dict(os.environ)
        self.echo = echo
        self.log_path.parent.mkdir(parents=True, exist_ok=True)

    def append_log(self, text: str) -> None:
        if not text:
            return
        with self.log_path.open("a", encoding="utf-8") as handle:
            handle.write(text if text.endswith("\n") else f"{text}\n")

    def run(self, command: Sequence[str]) -> None:
        """Run *command*, streaming its output; raise InstallationError on failure."""

        self._execute(command, stream=True)

    def capture(self, command: Sequence[str]) -> str:
        """Run *command* and return its combined output."""

        return self._execute(command, stream=False)

    def run_all(self, commands: Iterable[Sequence[str]]) -> None:
        for command in commands:
            self.run(command)

    def _execute(self, command: Sequence[str], *, stream: bool) -> str:
        rendered = format_command(command)
        self.append_log(Messages.INFO_RUNNING_COMMAND.format(command=rendered))
        if stream:
            self.echo(Messages.INFO_RUNNING_COMMAND.format(command=rendered))
        try:
            process = subprocess.Popen(
                list(command),
                cwd=self.cwd,
                env=self.env,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
            )
        except OSError as exc:
            message = Messages.ERROR_COMMAND_MISSING.format(command=rendered, reason=exc)
            self.append_log(message)
            raise InstallationError(message, command=list(command), returncode=127) from exc

        lines: list[str] = []
        with self.log_path.open("a", encoding="utf-8") as log:
            assert process.stdout is not None
            for line in process.stdout:
                lines.append(line)
                log.write(line)
                if stream:
                    self.echo(line.rstrip("\n"))
        returncode = process.wait()
        if returncode != 0:
            message = Messages.ERROR_COMMAND_FAILED.format(command=rendered, code=returncode)
            self.append_log(message)
            raise InstallationError(message, command=list(command), returncode=returncode)
        return "".join(lines)
