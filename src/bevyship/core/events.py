from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any


@dataclass(frozen=True)
class BevyshipEvent:
    ts: float = field(default_factory=time.perf_counter)
    level: str = "INFO"
    command: str = ""
    type: str = ""

    def to_dict(self) -> dict[str, Any]:
        return _serialize(asdict(self))


@dataclass(frozen=True)
class CommandStarted(BevyshipEvent):
    type: str = "CommandStarted"
    project_dir: Path | None = None
    config_path: Path | None = None
    options: dict[str, Any] | None = None


@dataclass(frozen=True)
class CommandCompleted(BevyshipEvent):
    type: str = "CommandCompleted"
    ok: bool = True
    exit_code: int = 0


@dataclass(frozen=True)
class ConfigResolved(BevyshipEvent):
    type: str = "ConfigResolved"
    project_id: str | None = None
    bundle_dir: Path | None = None
    target_triple: str = ""


@dataclass(frozen=True)
class ConfigFailed(BevyshipEvent):
    type: str = "ConfigFailed"
    level: str = "ERROR"
    error_code: str = ""
    key: str | None = None
    message: str = ""
    hint: str | None = None


@dataclass(frozen=True)
class StagesPlanned(BevyshipEvent):
    type: str = "StagesPlanned"
    stages: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class StageStarted(BevyshipEvent):
    type: str = "StageStarted"
    stage_id: str = ""
    label: str = ""


@dataclass(frozen=True)
class ToolInvoked(BevyshipEvent):
    type: str = "ToolInvoked"
    stage_id: str = ""
    argv: list[str] = field(default_factory=list)
    cwd: Path | None = None


@dataclass(frozen=True)
class ArtifactVerified(BevyshipEvent):
    type: str = "ArtifactVerified"
    stage_id: str = ""
    path: Path | None = None
    revision: str | None = None


@dataclass(frozen=True)
class StageCompleted(BevyshipEvent):
    type: str = "StageCompleted"
    stage_id: str = ""
    duration_ms: float = 0.0
    status: str = "success"


@dataclass(frozen=True)
class StageSkipped(BevyshipEvent):
    type: str = "StageSkipped"
    level: str = "WARNING"
    stage_id: str = ""
    reason: str = ""
    message: str = ""
    hint: str | None = None


@dataclass(frozen=True)
class StageFailed(BevyshipEvent):
    type: str = "StageFailed"
    level: str = "ERROR"
    stage_id: str = ""
    duration_ms: float = 0.0
    error_code: str = ""
    message: str = ""
    hint: str | None = None
    exit_code: int | None = None
    stderr_tail: str = ""


@dataclass(frozen=True)
class PipelineReported(BevyshipEvent):
    type: str = "PipelineReported"
    report: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Debug(BevyshipEvent):
    type: str = "Debug"
    level: str = "DEBUG"
    message: str = ""
    data: dict[str, Any] | None = None


def _serialize(value: Any) -> Any:
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, dict):
        return {key: _serialize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_serialize(item) for item in value]
    return value
