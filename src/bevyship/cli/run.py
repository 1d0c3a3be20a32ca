from __future__ import annotations

from pathlib import Path
from typing import Any

import typer
from rich.console import Console

from bevyship.cli.renderers import (
    PipelineJsonRenderer,
    PipelinePlainRenderer,
    PipelineRichRenderer,
    Renderer,
    run_events,
)
from bevyship.core.invoker import ToolInvoker
from bevyship.core.pipeline import pipeline_events

console = Console()

# Swapped out in tests so no real toolchain is needed.
invoker_factory = ToolInvoker

PROJECT_OPTION = typer.Option(
    Path("."),
    "--project",
    "-p",
    help="Game project directory (working directory for every tool).",
)
CONFIG_OPTION = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to bevyship.yaml (defaults to ./bevyship.yaml when present).",
)
OUT_DIR_OPTION = typer.Option(
    None,
    "--out-dir",
    help="Override the build output root (default: target).",
)
BUNDLE_DIR_OPTION = typer.Option(
    None,
    "--bundle-dir",
    help="Override the web bundle directory.",
)
TARGET_OPTION = typer.Option(
    None,
    "--target",
    help="Override the WebAssembly target triple.",
)
SKIP_OPTION = typer.Option(
    None,
    "--skip",
    help="Skip a stage by name (repeatable).",
)
DRY_RUN_OPTION = typer.Option(
    False,
    "--dry-run",
    help="Check preconditions and print commands without running them.",
)
JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit the machine-readable run report.",
)
DEBUG_OPTION = typer.Option(
    False,
    "--debug",
    help="Show resolved configuration and stack traces for unexpected errors.",
)
IF_CHANGED_OPTION = typer.Option(
    None,
    "--if-changed/--always",
    help="Ask butler to skip the push when the bundle is unchanged.",
)
USER_VERSION_OPTION = typer.Option(
    None,
    "--user-version",
    help="Version string recorded by butler for this push.",
)


def dev(
    project: Path = PROJECT_OPTION,
    config: Path | None = CONFIG_OPTION,
    skip: list[str] | None = SKIP_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
    json_output: bool = JSON_OPTION,
    debug: bool = DEBUG_OPTION,
) -> None:
    """Run the native development build (cargo run)."""
    _run("dev", project, config, {}, skip, dry_run, json_output, debug)


def wasm_build(
    project: Path = PROJECT_OPTION,
    config: Path | None = CONFIG_OPTION,
    out_dir: Path | None = OUT_DIR_OPTION,
    bundle_dir: Path | None = BUNDLE_DIR_OPTION,
    skip: list[str] | None = SKIP_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
    json_output: bool = JSON_OPTION,
    debug: bool = DEBUG_OPTION,
) -> None:
    """Compile to WebAssembly and produce the web bundle (bevy build web --bundle)."""
    overrides = {"output_root": out_dir, "bundle_dir": bundle_dir}
    _run("wasm-build", project, config, overrides, skip, dry_run, json_output, debug)


def wasm_check(
    project: Path = PROJECT_OPTION,
    config: Path | None = CONFIG_OPTION,
    target: str | None = TARGET_OPTION,
    skip: list[str] | None = SKIP_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
    json_output: bool = JSON_OPTION,
    debug: bool = DEBUG_OPTION,
) -> None:
    """Compile-check the WebAssembly target without producing a bundle."""
    _run("wasm-check", project, config, {"target_triple": target}, skip, dry_run, json_output, debug)


def wasm_deploy(
    project: Path = PROJECT_OPTION,
    config: Path | None = CONFIG_OPTION,
    out_dir: Path | None = OUT_DIR_OPTION,
    bundle_dir: Path | None = BUNDLE_DIR_OPTION,
    if_changed: bool | None = IF_CHANGED_OPTION,
    user_version: str | None = USER_VERSION_OPTION,
    skip: list[str] | None = SKIP_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
    json_output: bool = JSON_OPTION,
    debug: bool = DEBUG_OPTION,
) -> None:
    """Push the built web bundle to itch.io (requires ITCH_IO_PROJECT_ID)."""
    overrides = {
        "output_root": out_dir,
        "bundle_dir": bundle_dir,
        "if_changed": if_changed,
        "user_version": user_version,
    }
    _run("wasm-deploy", project, config, overrides, skip, dry_run, json_output, debug)


def wasm_release(
    project: Path = PROJECT_OPTION,
    config: Path | None = CONFIG_OPTION,
    out_dir: Path | None = OUT_DIR_OPTION,
    bundle_dir: Path | None = BUNDLE_DIR_OPTION,
    if_changed: bool | None = IF_CHANGED_OPTION,
    user_version: str | None = USER_VERSION_OPTION,
    skip: list[str] | None = SKIP_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
    json_output: bool = JSON_OPTION,
    debug: bool = DEBUG_OPTION,
) -> None:
    """Build the web bundle, then push it to itch.io."""
    overrides = {
        "output_root": out_dir,
        "bundle_dir": bundle_dir,
        "if_changed": if_changed,
        "user_version": user_version,
    }
    _run("wasm-release", project, config, overrides, skip, dry_run, json_output, debug)


def _run(
    command: str,
    project: Path,
    config: Path | None,
    overrides: dict[str, Any],
    skip: list[str] | None,
    dry_run: bool,
    json_output: bool,
    debug: bool,
) -> None:
    events = pipeline_events(
        command,
        project_dir=project,
        config_path=config,
        overrides=overrides,
        invoker=invoker_factory(),
        dry_run=dry_run,
        skip=skip or (),
    )
    renderer: Renderer
    if json_output:
        renderer = PipelineJsonRenderer(console)
    elif console.is_terminal:
        renderer = PipelineRichRenderer(console, debug=debug)
    else:
        renderer = PipelinePlainRenderer(console, debug=debug)
    try:
        exit_code = run_events(events, renderer)
    except Exception as exc:  # noqa: BLE001
        if debug:
            raise
        console.print(f"[red]Unexpected error:[/red] {exc}")
        raise typer.Exit(code=1)
    raise typer.Exit(code=exit_code)
