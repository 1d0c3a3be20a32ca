from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_APP_NAME = "my_favorite_nightmare"
DEFAULT_OUTPUT_ROOT = "target"
DEFAULT_TARGET_TRIPLE = "wasm32-unknown-unknown"
DEFAULT_CHANNEL = "wasm"


class Tools(BaseModel):
    model_config = ConfigDict(extra="forbid")

    cargo: str = "cargo"
    bevy: str = "bevy"
    butler: str = "butler"


class Publish(BaseModel):
    model_config = ConfigDict(extra="forbid")

    if_changed: bool = False
    user_version: str | None = None


class ProjectFile(BaseModel):
    model_config = ConfigDict(extra="forbid")

    version: str = "v1"
    app_name: str = DEFAULT_APP_NAME
    output_root: str | None = None
    bundle_dir: str | None = None
    target_triple: str | None = None
    channel: str = DEFAULT_CHANNEL
    tools: Tools = Field(default_factory=Tools)
    publish: Publish = Field(default_factory=Publish)
    tail_lines: int = Field(default=20, ge=1)

    @model_validator(mode="after")
    def _validate_file(self) -> "ProjectFile":
        if self.version != "v1":
            raise ValueError("Only version v1 is supported.")
        if not self.channel:
            raise ValueError("channel must not be empty.")
        return self


class Configuration(BaseModel):
    """Everything a stage needs to know, resolved once per invocation."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    project_id: str | None = None
    project_dir: Path = Path(".")
    output_root: Path = Path(DEFAULT_OUTPUT_ROOT)
    app_name: str = DEFAULT_APP_NAME
    bundle_dir: Path = Path(DEFAULT_OUTPUT_ROOT) / "bevy_web" / "web" / DEFAULT_APP_NAME
    target_triple: str = DEFAULT_TARGET_TRIPLE
    channel: str = DEFAULT_CHANNEL
    cargo: str = "cargo"
    bevy: str = "bevy"
    butler: str = "butler"
    if_changed: bool = False
    user_version: str | None = None
    tail_lines: int = Field(default=20, ge=1)
    environment: Mapping[str, str] = Field(default_factory=dict, repr=False, validate_default=True)

    @field_validator("environment", mode="after")
    @classmethod
    def _freeze_environment(cls, value: Mapping[str, str]) -> Mapping[str, str]:
        return MappingProxyType(dict(value))

    @property
    def publish_target(self) -> str:
        return f"{self.project_id or ''}:{self.channel}"

    @property
    def bundle_path(self) -> Path:
        return self.resolve_path(self.bundle_dir)

    def resolve_path(self, path: Path | str) -> Path:
        path = Path(path)
        return path if path.is_absolute() else self.project_dir / path

    def template_values(self) -> dict[str, Any]:
        return {
            "project_id": self.project_id or "",
            "project_dir": str(self.project_dir),
            "output_root": str(self.output_root),
            "app_name": self.app_name,
            "bundle_dir": str(self.bundle_dir),
            "target_triple": self.target_triple,
            "channel": self.channel,
            "publish_target": self.publish_target,
            "user_version": self.user_version or "",
        }
