from __future__ import annotations

import os
import shutil
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Protocol, Sequence

TERMINATE_GRACE_S = 5.0


class InvocationError(RuntimeError):
    pass


class ToolNotFound(InvocationError):
    def __init__(self, command: str):
        self.command = command
        super().__init__(f"Executable not found: {command}")


class LaunchError(InvocationError):
    def __init__(self, command: str, message: str):
        self.command = command
        super().__init__(f"Failed to launch {command}: {message}")


class ToolInterrupted(InvocationError):
    def __init__(self, command: str, *, stdout: str = "", stderr: str = "", duration_ms: float = 0.0):
        self.command = command
        self.stdout = stdout
        self.stderr = stderr
        self.duration_ms = duration_ms
        super().__init__(f"Interrupted while running {command}")


@dataclass(frozen=True)
class InvocationResult:
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_ms: float = 0.0
    argv: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class Invoker(Protocol):
    def invoke(
        self,
        command: str,
        args: Sequence[str],
        working_directory: Path,
        env: Mapping[str, str],
    ) -> InvocationResult: ...


class ToolInvoker:
    """Runs one external executable to completion and captures its streams."""

    def invoke(
        self,
        command: str,
        args: Sequence[str],
        working_directory: Path,
        env: Mapping[str, str],
    ) -> InvocationResult:
        executable = _locate(command, working_directory, env)
        if executable is None:
            raise ToolNotFound(command)
        argv = [command, *args]
        started = time.perf_counter()
        try:
            process = subprocess.Popen(  # noqa: S603
                [executable, *args],
                cwd=working_directory,
                env=dict(env),
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
            )
        except OSError as exc:
            raise LaunchError(command, str(exc)) from exc

        try:
            stdout, stderr = process.communicate()
        except KeyboardInterrupt:
            stdout, stderr = _stop(process)
            raise ToolInterrupted(
                command,
                stdout=stdout,
                stderr=stderr,
                duration_ms=_elapsed_ms(started),
            ) from None
        return InvocationResult(
            exit_code=process.returncode,
            stdout=stdout or "",
            stderr=stderr or "",
            duration_ms=_elapsed_ms(started),
            argv=argv,
        )


def _locate(command: str, working_directory: Path, env: Mapping[str, str]) -> str | None:
    # Relative tool paths resolve against the stage working directory.
    if _has_separator(command) and not os.path.isabs(command):
        command = os.path.abspath(os.path.join(working_directory, command))
    return shutil.which(command, path=env.get("PATH", os.defpath))


def _has_separator(command: str) -> bool:
    return os.sep in command or bool(os.altsep and os.altsep in command)


def _stop(process: subprocess.Popen[str]) -> tuple[str, str]:
    process.terminate()
    try:
        stdout, stderr = process.communicate(timeout=TERMINATE_GRACE_S)
    except subprocess.TimeoutExpired:
        process.kill()
        stdout, stderr = process.communicate()
    return stdout or "", stderr or ""


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000
