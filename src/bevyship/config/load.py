from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Iterable, Mapping

from pydantic import ValidationError
from ruamel.yaml import YAML

from .model import Configuration, ProjectFile

PROJECT_ID_ENV = "ITCH_IO_PROJECT_ID"
OUTPUT_ROOT_ENV = "BEVYSHIP_OUTPUT_ROOT"
BUNDLE_DIR_ENV = "BEVYSHIP_BUNDLE_DIR"
TARGET_ENV = "BEVYSHIP_TARGET"

DEFAULT_CONFIG_FILE = Path("bevyship.yaml")

# Configuration field -> environment variable that supplies it.
ENV_KEYS = {
    "project_id": PROJECT_ID_ENV,
    "output_root": OUTPUT_ROOT_ENV,
    "bundle_dir": BUNDLE_DIR_ENV,
    "target_triple": TARGET_ENV,
}


class ConfigError(RuntimeError):
    pass


class MissingConfig(ConfigError):
    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Missing required configuration: {key}")

    def __str__(self) -> str:
        return f'MissingConfig{{key="{self.key}"}}'


_yaml = YAML(typ="safe")


def resolve_config(
    *,
    project_dir: Path,
    env: Mapping[str, str] | None = None,
    config_path: Path | None = None,
    overrides: Mapping[str, Any] | None = None,
    required: Iterable[str] = (),
) -> Configuration:
    """Build the run configuration from overrides, environment, project file and defaults.

    Precedence is overrides > environment > project file > defaults. Every key in
    ``required`` must end up non-empty, otherwise ``MissingConfig`` is raised before
    anything else happens.
    """
    env = dict(os.environ if env is None else env)
    overrides = {key: value for key, value in (overrides or {}).items() if value is not None}
    project_dir = project_dir.resolve()
    project_file = load_project_file(project_dir, config_path)

    output_root = _first(
        overrides.get("output_root"),
        env.get(OUTPUT_ROOT_ENV),
        project_file.output_root,
        "target",
    )
    bundle_dir = _first(
        overrides.get("bundle_dir"),
        env.get(BUNDLE_DIR_ENV),
        project_file.bundle_dir,
        str(Path(output_root) / "bevy_web" / "web" / project_file.app_name),
    )
    target_triple = _first(
        overrides.get("target_triple"),
        env.get(TARGET_ENV),
        project_file.target_triple,
        "wasm32-unknown-unknown",
    )
    values: dict[str, Any] = {
        "project_id": _first(overrides.get("project_id"), env.get(PROJECT_ID_ENV)),
        "project_dir": project_dir,
        "output_root": Path(output_root),
        "app_name": project_file.app_name,
        "bundle_dir": Path(bundle_dir),
        "target_triple": target_triple,
        "channel": project_file.channel,
        "cargo": project_file.tools.cargo,
        "bevy": project_file.tools.bevy,
        "butler": project_file.tools.butler,
        "if_changed": bool(overrides.get("if_changed", project_file.publish.if_changed)),
        "user_version": _first(overrides.get("user_version"), project_file.publish.user_version),
        "tail_lines": project_file.tail_lines,
        "environment": env,
    }

    for key in required:
        if not values.get(key):
            raise MissingConfig(ENV_KEYS.get(key, key))

    try:
        return Configuration(**values)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc


def load_project_file(project_dir: Path, config_path: Path | None = None) -> ProjectFile:
    explicit = config_path is not None
    config_path = config_path or DEFAULT_CONFIG_FILE
    if not config_path.is_absolute():
        config_path = project_dir / config_path
    if not config_path.exists():
        if explicit:
            raise ConfigError(f"Missing config: {config_path}")
        return ProjectFile()
    data = _load_yaml(config_path)
    if data is None:
        return ProjectFile()
    if not isinstance(data, dict):
        raise ConfigError("Config must be a YAML mapping at the top level.")
    try:
        return ProjectFile.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc


def _first(*values: Any) -> Any:
    for value in values:
        if value not in (None, ""):
            return value
    return None


def _load_yaml(path: Path) -> Any:
    try:
        return _yaml.load(path.read_text(encoding="utf-8"))
    except Exception as exc:  # noqa: BLE001
        raise ConfigError(f"Failed to parse YAML: {path}") from exc
