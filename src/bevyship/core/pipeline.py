from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping, Sequence

from bevyship.config.load import ConfigError, MissingConfig, resolve_config
from bevyship.config.model import Configuration
from bevyship.core import events as ev
from bevyship.core.invoker import Invoker, ToolNotFound
from bevyship.core.runner import (
    FAILED,
    INTERRUPTED,
    MISSING_PRECONDITION,
    POSTCONDITION_VIOLATED,
    SKIPPED,
    DRY_RUN,
    SKIPPED_BY_OPERATOR,
    TOOL_NOT_FOUND,
    StageResult,
    StageRunner,
)
from bevyship.core.stages import STAGES, Stage, required_config, stage_set

PENDING = "pending"
RUNNING = "running"
COMPLETED = "completed"
HALTED = "halted"

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2
EXIT_TOOL_NOT_FOUND = 3
EXIT_SKIPPED = 4


@dataclass
class PipelineRun:
    """Ordered record of one invocation: results are appended as stages finish."""

    command: str
    state: str = PENDING
    current_index: int | None = None
    halted_at: int | None = None
    results: list[StageResult] = field(default_factory=list)
    config_error: ConfigError | None = None

    def start(self) -> None:
        if self.state != PENDING:
            raise RuntimeError(f"Pipeline run already {self.state}")
        self.state = RUNNING

    def advance(self, index: int) -> None:
        self.current_index = index

    def record(self, result: StageResult) -> None:
        if self.state != RUNNING:
            raise RuntimeError(f"Cannot record a stage result while {self.state}")
        self.results.append(result)
        if result.outcome == FAILED:
            self.state = HALTED
            self.halted_at = self.current_index

    def finish(self) -> None:
        if self.state == RUNNING:
            self.state = COMPLETED
        self.current_index = None

    def fail_config(self, error: ConfigError) -> None:
        self.config_error = error
        self.state = HALTED

    @property
    def last_result(self) -> StageResult | None:
        return self.results[-1] if self.results else None

    @property
    def exit_code(self) -> int:
        if self.config_error is not None:
            return EXIT_CONFIG
        if any(result.reason == TOOL_NOT_FOUND for result in self.results):
            return EXIT_TOOL_NOT_FOUND
        if any(result.outcome == FAILED for result in self.results):
            return EXIT_FAILURE
        if any(result.reason == MISSING_PRECONDITION for result in self.results):
            return EXIT_SKIPPED
        return EXIT_OK

    @property
    def ok(self) -> bool:
        return self.exit_code == EXIT_OK

    def to_dict(self) -> dict[str, Any]:
        config_error = None
        if isinstance(self.config_error, MissingConfig):
            config_error = {
                "code": "missing_config",
                "key": self.config_error.key,
                "message": str(self.config_error),
            }
        elif self.config_error is not None:
            config_error = {"code": "config_error", "key": None, "message": str(self.config_error)}
        return {
            "command": self.command,
            "state": self.state,
            "halted_at": self.halted_at,
            "ok": self.ok,
            "exit_code": self.exit_code,
            "config_error": config_error,
            "stages": [result.to_dict() for result in self.results],
        }


class Pipeline:
    def __init__(
        self,
        command: str,
        stages: Sequence[Stage],
        runner: StageRunner,
        *,
        skip: Iterable[str] = (),
    ):
        self.command = command
        self.stages = tuple(stages)
        self.runner = runner
        self.skip = frozenset(skip)

    def run(self, config: Configuration, run: PipelineRun | None = None) -> PipelineRun:
        run = run or PipelineRun(command=self.command)
        for _event in self.events(config, run):
            pass
        return run

    def events(self, config: Configuration, run: PipelineRun) -> Iterator[ev.BevyshipEvent]:
        run.start()
        planned: set[str] = set()
        for index, stage in enumerate(self.stages):
            run.advance(index)
            yield ev.StageStarted(command=self.command, stage_id=stage.name, label=stage.label)

            if stage.name in self.skip:
                result = StageResult(
                    stage_name=stage.name,
                    outcome=SKIPPED,
                    reason=SKIPPED_BY_OPERATOR,
                    message="Skipped with --skip.",
                    argv=tuple(stage.argv(config)),
                )
                run.record(result)
                yield _skipped_event(self.command, stage, result)
                continue

            result = self.runner.preflight(stage, config, planned)
            if result is not None:
                if result.reason == DRY_RUN:
                    planned.update(stage.produced_paths(config))
                run.record(result)
                yield _skipped_event(self.command, stage, result)
                continue

            yield ev.ToolInvoked(
                command=self.command,
                stage_id=stage.name,
                argv=stage.argv(config),
                cwd=stage.cwd(config),
            )
            started = time.perf_counter()
            try:
                result = self.runner.dispatch(stage, config)
            except ToolNotFound as exc:
                result = StageResult(
                    stage_name=stage.name,
                    outcome=FAILED,
                    duration_ms=_elapsed_ms(started),
                    reason=TOOL_NOT_FOUND,
                    message=str(exc),
                    argv=tuple(stage.argv(config)),
                )
            run.record(result)

            if result.outcome == FAILED:
                yield ev.StageFailed(
                    command=self.command,
                    stage_id=stage.name,
                    duration_ms=result.duration_ms,
                    error_code=result.reason or "",
                    message=result.message,
                    hint=_failure_hint(stage, result, config),
                    exit_code=result.exit_code,
                    stderr_tail=result.stderr_tail,
                )
                break

            for path, revision in result.artifacts.items():
                yield ev.ArtifactVerified(
                    command=self.command,
                    stage_id=stage.name,
                    path=Path(path),
                    revision=revision,
                )
            yield ev.StageCompleted(
                command=self.command,
                stage_id=stage.name,
                duration_ms=result.duration_ms,
                status=result.outcome,
            )
        run.finish()


def pipeline_events(
    command: str,
    *,
    project_dir: Path,
    config_path: Path | None = None,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
    invoker: Invoker | None = None,
    dry_run: bool = False,
    skip: Sequence[str] = (),
    run: PipelineRun | None = None,
) -> Iterable[ev.BevyshipEvent]:
    """Resolve configuration once, then run the named stage set, streaming events."""
    run = run or PipelineRun(command=command)
    stages = stage_set(command)
    options = {
        "dry_run": dry_run,
        "skip": list(skip),
        "overrides": {key: str(value) for key, value in (overrides or {}).items() if value is not None},
    }
    yield ev.CommandStarted(
        command=command,
        project_dir=project_dir,
        config_path=config_path,
        options=options,
    )
    yield ev.StagesPlanned(
        command=command,
        stages=[{"name": stage.name, "label": stage.label} for stage in stages],
    )

    try:
        unknown = sorted(set(skip) - {stage.name for stage in stages})
        if unknown:
            raise ConfigError(f"Cannot skip stages not in {command}: {', '.join(unknown)}")
        active = tuple(stage for stage in stages if stage.name not in skip)
        config = resolve_config(
            project_dir=project_dir,
            env=env,
            config_path=config_path,
            overrides=overrides,
            required=required_config(active),
        )
    except ConfigError as exc:
        run.fail_config(exc)
        yield ev.ConfigFailed(
            command=command,
            error_code="missing_config" if isinstance(exc, MissingConfig) else "config_error",
            key=exc.key if isinstance(exc, MissingConfig) else None,
            message=str(exc),
            hint=_config_hint(exc),
        )
        yield ev.PipelineReported(command=command, report=run.to_dict())
        yield ev.CommandCompleted(command=command, ok=False, exit_code=run.exit_code)
        return

    yield ev.ConfigResolved(
        command=command,
        project_id=config.project_id,
        bundle_dir=config.bundle_dir,
        target_triple=config.target_triple,
    )
    yield ev.Debug(
        command=command,
        message="Resolved configuration",
        data=config.model_dump(mode="json", exclude={"environment"}),
    )

    pipeline = Pipeline(command, stages, StageRunner(invoker, dry_run=dry_run), skip=skip)
    yield from pipeline.events(config, run)

    yield ev.PipelineReported(command=command, report=run.to_dict())
    yield ev.CommandCompleted(command=command, ok=run.ok, exit_code=run.exit_code)


def run_pipeline(command: str, **kwargs: Any) -> PipelineRun:
    run = PipelineRun(command=command)
    for _event in pipeline_events(command, run=run, **kwargs):
        pass
    return run


def producer_of(pattern: str) -> Stage | None:
    for stage in STAGES.values():
        if pattern in stage.produced_artifacts:
            return stage
    return None


def _skipped_event(command: str, stage: Stage, result: StageResult) -> ev.StageSkipped:
    hint = None
    if result.reason == MISSING_PRECONDITION:
        producers = {
            producer.name
            for producer in map(producer_of, stage.required_artifacts)
            if producer is not None
        }
        if producers:
            hint = f"Run {', '.join(f'bevyship {name}' for name in sorted(producers))} first."
    return ev.StageSkipped(
        command=command,
        stage_id=result.stage_name,
        reason=result.reason or "",
        message=result.message,
        hint=hint,
    )


def _failure_hint(stage: Stage, result: StageResult, config: Configuration) -> str | None:
    if result.reason == TOOL_NOT_FOUND:
        tool = stage.command(config)
        if stage.executable == "butler":
            return f"Install {tool} and log in (butler login), or set tools.butler in bevyship.yaml."
        return f"Install {tool} or set tools.{stage.executable} in bevyship.yaml."
    if result.reason == POSTCONDITION_VIOLATED:
        return "The tool exited 0 without producing its output; check --bundle-dir against the bundler layout."
    if result.reason == INTERRUPTED:
        return "Partial output was left in place for inspection."
    if result.stderr_tail:
        return "See the captured stderr below."
    return None


def _config_hint(error: ConfigError) -> str | None:
    if isinstance(error, MissingConfig):
        return f"Set {error.key} in the environment and rerun."
    return None


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000
