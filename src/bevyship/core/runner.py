from __future__ import annotations

import glob
import hashlib
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Collection

from bevyship.config.model import Configuration
from bevyship.core.invoker import Invoker, LaunchError, ToolInterrupted, ToolInvoker
from bevyship.core.stages import Stage

SUCCESS = "success"
FAILED = "failed"
SKIPPED = "skipped"

TOOL_EXIT_NONZERO = "tool_exit_nonzero"
POSTCONDITION_VIOLATED = "postcondition_violated"
MISSING_PRECONDITION = "missing_precondition"
INTERRUPTED = "interrupted"
TOOL_NOT_FOUND = "tool_not_found"
LAUNCH_ERROR = "launch_error"
SKIPPED_BY_OPERATOR = "skipped_by_operator"
DRY_RUN = "dry_run"

INTERRUPTED_EXIT_CODE = 130

_MAGIC = re.compile(r"[*?[]")


@dataclass(frozen=True)
class StageResult:
    stage_name: str
    outcome: str
    exit_code: int | None = None
    duration_ms: float = 0.0
    stdout_tail: str = ""
    stderr_tail: str = ""
    reason: str | None = None
    message: str = ""
    argv: tuple[str, ...] = ()
    artifacts: dict[str, str | None] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.outcome == SUCCESS

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage_name,
            "outcome": self.outcome,
            "reason": self.reason,
            "exit_code": self.exit_code,
            "duration_ms": round(self.duration_ms, 3),
            "message": self.message,
            "argv": list(self.argv),
            "stdout_tail": self.stdout_tail,
            "stderr_tail": self.stderr_tail,
            "artifacts": dict(self.artifacts),
        }


class StageRunner:
    """Runs a single stage: precondition check, one tool invocation, postcondition check.

    ``ToolNotFound`` is not converted into a result here; it is a configuration-class
    problem and the pipeline decides what it means for the whole run.
    """

    def __init__(self, invoker: Invoker | None = None, *, dry_run: bool = False):
        self.invoker = invoker or ToolInvoker()
        self.dry_run = dry_run

    def run(self, stage: Stage, config: Configuration) -> StageResult:
        skipped = self.preflight(stage, config)
        if skipped is not None:
            return skipped
        return self.dispatch(stage, config)

    def preflight(
        self,
        stage: Stage,
        config: Configuration,
        planned: Collection[str] = (),
    ) -> StageResult | None:
        """Return a skipped result when the stage must not be dispatched, else None.

        In a dry run, ``planned`` holds artifacts an earlier dry-run stage of the same
        run would have produced; they count as present.
        """
        argv = tuple(stage.argv(config))
        missing = [pattern for pattern in stage.required_paths(config) if not artifact_exists(pattern, config)]
        if self.dry_run:
            missing = [pattern for pattern in missing if pattern not in planned]
        if missing:
            return StageResult(
                stage_name=stage.name,
                outcome=SKIPPED,
                reason=MISSING_PRECONDITION,
                message=f"Required artifact missing: {', '.join(missing)}",
                argv=argv,
            )
        if self.dry_run:
            return StageResult(
                stage_name=stage.name,
                outcome=SKIPPED,
                reason=DRY_RUN,
                message="Dry run; command not executed.",
                argv=argv,
                artifacts=_revisions(stage.required_paths(config), config),
            )
        return None

    def dispatch(self, stage: Stage, config: Configuration) -> StageResult:
        argv = tuple(stage.argv(config))
        inputs = _revisions(stage.required_paths(config), config)
        try:
            result = self.invoker.invoke(
                stage.command(config),
                stage.render_args(config),
                stage.cwd(config),
                config.environment,
            )
        except ToolInterrupted as exc:
            return StageResult(
                stage_name=stage.name,
                outcome=FAILED,
                exit_code=INTERRUPTED_EXIT_CODE,
                duration_ms=exc.duration_ms,
                stdout_tail=tail(exc.stdout, config.tail_lines),
                stderr_tail=tail(exc.stderr, config.tail_lines),
                reason=INTERRUPTED,
                message=str(exc),
                argv=argv,
            )
        except LaunchError as exc:
            return StageResult(
                stage_name=stage.name,
                outcome=FAILED,
                reason=LAUNCH_ERROR,
                message=str(exc),
                argv=argv,
            )

        stdout_tail = tail(result.stdout, config.tail_lines)
        stderr_tail = tail(result.stderr, config.tail_lines)
        if result.exit_code != 0:
            return StageResult(
                stage_name=stage.name,
                outcome=FAILED,
                exit_code=result.exit_code,
                duration_ms=result.duration_ms,
                stdout_tail=stdout_tail,
                stderr_tail=stderr_tail,
                reason=TOOL_EXIT_NONZERO,
                message=f"{stage.command(config)} exited with code {result.exit_code}",
                argv=argv,
                artifacts=inputs,
            )

        produced = stage.produced_paths(config)
        missing = [pattern for pattern in produced if not artifact_exists(pattern, config)]
        if missing:
            return StageResult(
                stage_name=stage.name,
                outcome=FAILED,
                exit_code=result.exit_code,
                duration_ms=result.duration_ms,
                stdout_tail=stdout_tail,
                stderr_tail=stderr_tail,
                reason=POSTCONDITION_VIOLATED,
                message=f"Tool exited 0 but expected artifact is missing: {', '.join(missing)}",
                argv=argv,
                artifacts=inputs,
            )

        return StageResult(
            stage_name=stage.name,
            outcome=SUCCESS,
            exit_code=result.exit_code,
            duration_ms=result.duration_ms,
            stdout_tail=stdout_tail,
            stderr_tail=stderr_tail,
            argv=argv,
            artifacts={**inputs, **_revisions(produced, config)},
        )


def artifact_exists(pattern: str, config: Configuration) -> bool:
    path = config.resolve_path(pattern)
    if _has_magic(pattern):
        return bool(glob.glob(str(path)))
    return path.exists()


def artifact_revision(path: Path) -> str | None:
    """Content digest of a file or directory tree, or None when it does not exist."""
    if path.is_file():
        return hashlib.sha256(path.read_bytes()).hexdigest()
    if not path.is_dir():
        return None
    digest = hashlib.sha256()
    for item in sorted(path.rglob("*")):
        if not item.is_file():
            continue
        digest.update(item.relative_to(path).as_posix().encode("utf-8"))
        digest.update(b"\0")
        digest.update(item.read_bytes())
    return digest.hexdigest()


def tail(text: str, lines: int) -> str:
    if not text:
        return ""
    return "\n".join(text.rstrip("\n").splitlines()[-lines:])


def _revisions(patterns: list[str], config: Configuration) -> dict[str, str | None]:
    revisions: dict[str, str | None] = {}
    for pattern in patterns:
        if _has_magic(pattern):
            continue
        revisions[pattern] = artifact_revision(config.resolve_path(pattern))
    return revisions


def _has_magic(pattern: str) -> bool:
    return _MAGIC.search(pattern) is not None
