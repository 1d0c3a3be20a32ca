from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from bevyship.config.model import Configuration


@dataclass(frozen=True)
class Stage:
    """One external tool invocation plus the artifacts it consumes and produces.

    ``executable`` names a Configuration field (``cargo``, ``bevy``, ``butler``) so the
    actual binary can be swapped from the project file. ``args`` and the artifact
    patterns are ``str.format`` templates filled from ``Configuration.template_values``.
    """

    name: str
    label: str
    executable: str
    args: tuple[str, ...] = ()
    working_directory: str = "."
    required_artifacts: tuple[str, ...] = ()
    produced_artifacts: tuple[str, ...] = ()
    requires_config: tuple[str, ...] = ()
    optional_args: tuple[tuple[str, tuple[str, ...]], ...] = field(default=())

    def command(self, config: Configuration) -> str:
        return str(getattr(config, self.executable))

    def render_args(self, config: Configuration) -> list[str]:
        values = config.template_values()
        rendered = [arg.format_map(values) for arg in self.args]
        for key, extra in self.optional_args:
            if getattr(config, key):
                rendered.extend(arg.format_map(values) for arg in extra)
        return rendered

    def argv(self, config: Configuration) -> list[str]:
        return [self.command(config), *self.render_args(config)]

    def cwd(self, config: Configuration) -> Path:
        return config.resolve_path(self.working_directory)

    def required_paths(self, config: Configuration) -> list[str]:
        return _render_patterns(self.required_artifacts, config)

    def produced_paths(self, config: Configuration) -> list[str]:
        return _render_patterns(self.produced_artifacts, config)


def _render_patterns(patterns: tuple[str, ...], config: Configuration) -> list[str]:
    values = config.template_values()
    return [pattern.format_map(values) for pattern in patterns]


DEV = Stage(
    name="dev",
    label="Run native build",
    executable="cargo",
    args=("run",),
)

WASM_BUILD = Stage(
    name="wasm-build",
    label="Build web bundle",
    executable="bevy",
    args=("build", "web", "--bundle"),
    produced_artifacts=("{bundle_dir}",),
)

WASM_CHECK = Stage(
    name="wasm-check",
    label="Check wasm target",
    executable="cargo",
    args=("check", "--target", "{target_triple}"),
)

WASM_DEPLOY = Stage(
    name="wasm-deploy",
    label="Push bundle to itch.io",
    executable="butler",
    args=("push", "{bundle_dir}", "{publish_target}"),
    required_artifacts=("{bundle_dir}",),
    requires_config=("project_id",),
    optional_args=(
        ("if_changed", ("--if-changed",)),
        ("user_version", ("--userversion", "{user_version}")),
    ),
)

STAGES = {stage.name: stage for stage in (DEV, WASM_BUILD, WASM_CHECK, WASM_DEPLOY)}

STAGE_SETS: dict[str, tuple[Stage, ...]] = {
    "dev": (DEV,),
    "wasm-build": (WASM_BUILD,),
    "wasm-check": (WASM_CHECK,),
    "wasm-deploy": (WASM_DEPLOY,),
    "wasm-release": (WASM_BUILD, WASM_DEPLOY),
}

STAGE_SET_HELP = {
    "dev": "Run the native development build.",
    "wasm-build": "Compile to WebAssembly and produce the web bundle.",
    "wasm-check": "Compile-check the WebAssembly target without bundling.",
    "wasm-deploy": "Push the built web bundle to the itch.io channel <project>:wasm.",
    "wasm-release": "Build the web bundle, then push it to itch.io.",
}


def stage_set(command: str) -> tuple[Stage, ...]:
    try:
        return STAGE_SETS[command]
    except KeyError:
        raise ValueError(f"Unknown stage set: {command}") from None


def required_config(stages: tuple[Stage, ...]) -> tuple[str, ...]:
    keys: list[str] = []
    for stage in stages:
        for key in stage.requires_config:
            if key not in keys:
                keys.append(key)
    return tuple(keys)
