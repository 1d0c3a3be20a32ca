from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from bevyship import __version__
from bevyship.cli import run as run_module
from bevyship.cli.app import app
from bevyship.core.invoker import InvocationResult
from conftest import FakeInvoker, produces_bundle

runner = CliRunner()


@pytest.fixture
def cli_invoker(monkeypatch: pytest.MonkeyPatch) -> FakeInvoker:
    invoker = FakeInvoker({"bevy": produces_bundle()})
    monkeypatch.setattr(run_module, "invoker_factory", lambda: invoker)
    return invoker


def test_version() -> None:
    result = runner.invoke(app, ["version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_deploy_without_project_id_exits_two(
    game_project: Path, cli_invoker: FakeInvoker, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.delenv("ITCH_IO_PROJECT_ID", raising=False)

    result = runner.invoke(app, ["wasm-deploy", "--project", str(game_project)])

    assert result.exit_code == 2
    assert "ITCH_IO_PROJECT_ID" in result.output
    assert cli_invoker.calls == []


def test_deploy_json_report_names_missing_key(
    game_project: Path, cli_invoker: FakeInvoker, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.delenv("ITCH_IO_PROJECT_ID", raising=False)

    result = runner.invoke(app, ["wasm-deploy", "--project", str(game_project), "--json"])

    assert result.exit_code == 2
    report = json.loads(result.output)
    assert report["config_error"]["key"] == "ITCH_IO_PROJECT_ID"
    assert report["exit_code"] == 2


def test_build_then_deploy_through_cli(
    game_project: Path, cli_invoker: FakeInvoker, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("ITCH_IO_PROJECT_ID", "abc123")

    build = runner.invoke(app, ["wasm-build", "--project", str(game_project)])
    deploy = runner.invoke(
        app,
        ["wasm-deploy", "--project", str(game_project), "--if-changed", "--user-version", "0.2.0"],
    )

    assert build.exit_code == 0, build.output
    assert deploy.exit_code == 0, deploy.output
    assert cli_invoker.calls[-1].argv == [
        "butler",
        "push",
        "target/bevy_web/web/my_favorite_nightmare",
        "abc123:wasm",
        "--if-changed",
        "--userversion",
        "0.2.0",
    ]
    assert "WASM-DEPLOY OK exit=0" in deploy.output


def test_check_failure_prints_stderr_and_exits_one(
    game_project: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    invoker = FakeInvoker({"cargo": InvocationResult(exit_code=101, stderr="error[E0425]: cannot find value\n")})
    monkeypatch.setattr(run_module, "invoker_factory", lambda: invoker)

    result = runner.invoke(app, ["wasm-check", "--project", str(game_project), "--target", "wasm32-wasip1"])

    assert result.exit_code == 1
    assert "FAIL (tool_exit_nonzero)" in result.output
    assert "error[E0425]: cannot find value" in result.output
    assert invoker.calls[0].args == ["check", "--target", "wasm32-wasip1"]


def test_deploy_skipped_without_bundle(
    game_project: Path, cli_invoker: FakeInvoker, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("ITCH_IO_PROJECT_ID", "abc123")

    result = runner.invoke(app, ["wasm-deploy", "--project", str(game_project)])

    assert result.exit_code == 4
    assert "SKIP (missing_precondition)" in result.output
    assert "bevyship wasm-build" in result.output
    assert cli_invoker.calls == []


@pytest.mark.integration
def test_missing_tool_exits_three(game_project: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (game_project / "bevyship.yaml").write_text(
        "tools:\n  cargo: bevyship-missing-cargo\n",
        encoding="utf-8",
    )

    result = runner.invoke(app, ["wasm-check", "--project", str(game_project)])

    assert result.exit_code == 3
    assert "tool_not_found" in result.output


def test_stages_lists_every_command() -> None:
    result = runner.invoke(app, ["stages", "--json"])

    assert result.exit_code == 0
    payload = json.loads(result.output)
    assert set(payload) == {"dev", "wasm-build", "wasm-check", "wasm-deploy", "wasm-release"}
    assert payload["wasm-deploy"][0]["argv"] == ["<butler>", "push", "{bundle_dir}", "{publish_target}"]
