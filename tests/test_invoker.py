from __future__ import annotations

import os
import signal
import sys
import threading
from pathlib import Path

import pytest

from bevyship.core.invoker import ToolInterrupted, ToolInvoker, ToolNotFound
from bevyship.core.pipeline import run_pipeline

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="needs POSIX signals and shebangs")


def _write_tool(path: Path, body: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f"#!{sys.executable}\n{body}", encoding="utf-8")
    path.chmod(0o755)
    return path


@pytest.mark.integration
def test_invoke_captures_streams_and_exit_code(tmp_path: Path) -> None:
    result = ToolInvoker().invoke(
        sys.executable,
        ["-c", "import sys; print('out'); print('err', file=sys.stderr); sys.exit(0)"],
        tmp_path,
        dict(os.environ),
    )

    assert result.exit_code == 0
    assert result.ok is True
    assert result.stdout.strip() == "out"
    assert result.stderr.strip() == "err"
    assert result.duration_ms >= 0
    assert result.argv[0] == sys.executable


@pytest.mark.integration
def test_non_zero_exit_is_returned_not_raised(tmp_path: Path) -> None:
    result = ToolInvoker().invoke(
        sys.executable,
        ["-c", "import sys; sys.stderr.write('error[E0425]: boom\\n'); sys.exit(101)"],
        tmp_path,
        dict(os.environ),
    )

    assert result.exit_code == 101
    assert result.ok is False
    assert "error[E0425]" in result.stderr


@pytest.mark.integration
def test_invoke_runs_in_working_directory_with_given_env(tmp_path: Path) -> None:
    env = {**os.environ, "BEVYSHIP_MARKER": "marker-value"}
    result = ToolInvoker().invoke(
        sys.executable,
        ["-c", "import os; print(os.getcwd()); print(os.environ['BEVYSHIP_MARKER'])"],
        tmp_path,
        env,
    )

    cwd, marker = result.stdout.strip().splitlines()
    assert Path(cwd).resolve() == tmp_path.resolve()
    assert marker == "marker-value"


def test_missing_executable_raises_tool_not_found(tmp_path: Path) -> None:
    with pytest.raises(ToolNotFound) as excinfo:
        ToolInvoker().invoke(
            "definitely-not-a-real-butler",
            ["push"],
            tmp_path,
            {"PATH": str(tmp_path)},
        )

    assert excinfo.value.command == "definitely-not-a-real-butler"


def test_missing_path_does_not_fall_back_to_process_environment(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _write_tool(tmp_path / "bin" / "bevyship-only-tool", "print('found')\n")
    monkeypatch.setenv("PATH", str(tmp_path / "bin"))

    with pytest.raises(ToolNotFound):
        ToolInvoker().invoke("bevyship-only-tool", [], tmp_path, {})


@pytest.mark.integration
@posix_only
def test_relative_tool_path_resolves_against_project(
    game_project: Path, base_env: dict[str, str], tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _write_tool(
        game_project / "tools" / "fakecargo",
        "import os, sys\nprint(os.getcwd())\nprint(' '.join(sys.argv[1:]))\n",
    )
    (game_project / "bevyship.yaml").write_text(
        "version: v1\ntools:\n  cargo: ./tools/fakecargo\n",
        encoding="utf-8",
    )
    elsewhere = tmp_path / "elsewhere"
    elsewhere.mkdir()
    monkeypatch.chdir(elsewhere)

    run = run_pipeline("wasm-check", project_dir=game_project, env=base_env, invoker=ToolInvoker())

    assert run.exit_code == 0
    result = run.last_result
    assert result is not None
    assert result.reason is None
    cwd, args = result.stdout_tail.splitlines()
    assert Path(cwd).resolve() == game_project.resolve()
    assert args == "check --target wasm32-unknown-unknown"


@pytest.mark.integration
@posix_only
def test_keyboard_interrupt_stops_child_and_keeps_partial_output(tmp_path: Path) -> None:
    script = (
        "import os, sys, time\n"
        "print(os.getpid(), flush=True)\n"
        "print('compiling', flush=True)\n"
        "time.sleep(30)\n"
    )
    timer = threading.Timer(1.0, os.kill, args=(os.getpid(), signal.SIGINT))
    timer.start()
    try:
        with pytest.raises(ToolInterrupted) as excinfo:
            ToolInvoker().invoke(sys.executable, ["-c", script], tmp_path, dict(os.environ))
    finally:
        timer.cancel()

    interrupted = excinfo.value
    pid_line, progress = interrupted.stdout.strip().splitlines()
    assert progress == "compiling"
    assert interrupted.command == sys.executable
    assert 0 < interrupted.duration_ms < 30_000
    with pytest.raises(ProcessLookupError):
        os.kill(int(pid_line), 0)
