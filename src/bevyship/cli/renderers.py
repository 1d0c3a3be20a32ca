from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Iterable

from rich import box
from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from bevyship import __version__
from bevyship.core import events as ev

RULE_WIDTH = 64
RULE_LINE = "-" * RULE_WIDTH
STATUS_GLYPHS = {
    "pending": "⏸",
    "running": "⠋",
    "success": "✅",
    "failed": "❌",
    "skipped": "⏭",
}


def run_events(events: Iterable[ev.BevyshipEvent], renderer: "Renderer") -> int:
    exit_code = 0
    try:
        for event in events:
            renderer.handle(event)
            if isinstance(event, ev.CommandCompleted):
                exit_code = event.exit_code
    finally:
        renderer.close()
    return exit_code


class Renderer:
    def handle(self, event: ev.BevyshipEvent) -> None:  # noqa: D401
        """Handle a single event."""

    def close(self) -> None:
        return None


class PipelineRichRenderer(Renderer):
    def __init__(self, console: Console, *, debug: bool = False):
        self.console = console
        self.debug = debug
        self.is_tty = console.is_terminal
        self.stages: list[tuple[str, str]] = []
        self.stage_status: dict[str, str] = {}
        self.stage_elapsed: dict[str, float] = {}
        self.stage_notes: dict[str, str] = {}
        self._live: Live | None = None
        self._failure: ev.StageFailed | None = None
        self._config_failure: ev.ConfigFailed | None = None
        self._skips: list[ev.StageSkipped] = []
        self._report: dict[str, Any] | None = None

    def handle(self, event: ev.BevyshipEvent) -> None:
        if isinstance(event, ev.CommandStarted):
            _print_header(self.console, event)
            return
        if isinstance(event, ev.StagesPlanned):
            self.stages = [(item["name"], item["label"]) for item in event.stages]
            self.stage_status = {name: "pending" for name, _ in self.stages}
            return
        if isinstance(event, ev.ConfigFailed):
            self._config_failure = event
            return
        if isinstance(event, ev.ConfigResolved):
            if self.is_tty:
                self._live = Live(self._render(), console=self.console, refresh_per_second=10)
                self._live.__enter__()
            return
        if isinstance(event, ev.Debug):
            if self.debug:
                self.console.print(Text(f"debug: {event.message} {json.dumps(event.data, sort_keys=True)}", style="dim"))
            return
        if isinstance(event, ev.StageStarted):
            self.stage_status[event.stage_id] = "running"
            self._refresh()
            return
        if isinstance(event, ev.ToolInvoked):
            self.stage_notes[event.stage_id] = " ".join(event.argv)
            self._refresh()
            return
        if isinstance(event, ev.StageCompleted):
            self.stage_status[event.stage_id] = event.status
            self.stage_elapsed[event.stage_id] = event.duration_ms
            self._refresh()
            return
        if isinstance(event, ev.StageSkipped):
            self.stage_status[event.stage_id] = "skipped"
            self._skips.append(event)
            self._refresh()
            return
        if isinstance(event, ev.StageFailed):
            self.stage_status[event.stage_id] = "failed"
            self.stage_elapsed[event.stage_id] = event.duration_ms
            self._failure = event
            self._refresh()
            return
        if isinstance(event, ev.PipelineReported):
            self._report = event.report
            return
        if isinstance(event, ev.CommandCompleted):
            self._finish(event)

    def close(self) -> None:
        if self._live:
            self._live.__exit__(None, None, None)
            self._live = None

    def _finish(self, event: ev.CommandCompleted) -> None:
        self.close()
        if not self.is_tty:
            for line in self._stage_lines():
                self.console.print(line)
        if self._config_failure:
            self.console.print(_config_failure_panel(self._config_failure))
        for skip in self._skips:
            self.console.print(_skip_panel(skip))
        if self._failure:
            self.console.print(_stage_failure_panel(self._failure))
        if self._report and self._report.get("stages"):
            self.console.print(_report_table(self._report))
        if event.ok:
            self.console.print(f"[green]{event.command} finished[/green]")
        else:
            self.console.print(f"[red]{event.command} did not complete[/red] (exit code {event.exit_code})")

    def _refresh(self) -> None:
        if self._live:
            self._live.update(self._render())

    def _render(self) -> Group:
        return Group(*(Text(line) for line in self._stage_lines()))

    def _stage_lines(self) -> list[str]:
        lines = []
        for index, (name, label) in enumerate(self.stages, start=1):
            lines.append(
                _format_stage_line(
                    index,
                    label,
                    self.stage_status.get(name, "pending"),
                    self.stage_elapsed.get(name),
                    note=self.stage_notes.get(name),
                    total=len(self.stages),
                )
            )
        return lines


class PipelinePlainRenderer(Renderer):
    def __init__(self, console: Console, *, debug: bool = False):
        self.console = console
        self.debug = debug
        self.stages: list[tuple[str, str]] = []

    def handle(self, event: ev.BevyshipEvent) -> None:
        if isinstance(event, ev.CommandStarted):
            _print_header(self.console, event)
            return
        if isinstance(event, ev.StagesPlanned):
            self.stages = [(item["name"], item["label"]) for item in event.stages]
            return
        if isinstance(event, ev.ConfigFailed):
            key = f" key={event.key}" if event.key else ""
            self._print(f"CONFIG FAIL{key}: {event.message}")
            if event.hint:
                self._print(f"HINT: {event.hint}")
            return
        if isinstance(event, ev.Debug):
            if self.debug:
                self._print(f"DEBUG {event.message} {json.dumps(event.data, sort_keys=True)}")
            return
        if isinstance(event, ev.StageStarted):
            index = _stage_index(event.stage_id, self.stages)
            self._print(_format_stage_start_line(index, event.label, len(self.stages)))
            return
        if isinstance(event, ev.ToolInvoked):
            self._print(f"RUN {' '.join(event.argv)} (cwd={event.cwd})")
            return
        if isinstance(event, ev.ArtifactVerified):
            revision = f" revision={event.revision}" if event.revision else ""
            self._print(f"ARTIFACT {event.path}{revision}")
            return
        if isinstance(event, ev.StageCompleted):
            self._print(self._line(event.stage_id, event.status, event.duration_ms))
            return
        if isinstance(event, ev.StageSkipped):
            line = f"{self._line(event.stage_id, 'skipped', None)}\nSKIP ({event.reason}): {event.message}"
            if event.hint:
                line = f"{line}\nHINT: {event.hint}"
            self._print(line)
            return
        if isinstance(event, ev.StageFailed):
            details = [self._line(event.stage_id, "failed", event.duration_ms)]
            details.append(f"FAIL ({event.error_code}): {_redact(event.message)}")
            if event.stderr_tail:
                details.append("STDERR:")
                details.append(_redact(event.stderr_tail))
            if event.hint:
                details.append(f"HINT: {event.hint}")
            self._print("\n".join(details))
            return
        if isinstance(event, ev.CommandCompleted):
            status = "OK" if event.ok else "FAIL"
            self._print(f"{event.command.upper()} {status} exit={event.exit_code}")

    def _line(self, stage_id: str, status: str, elapsed_ms: float | None) -> str:
        return _format_stage_line(
            _stage_index(stage_id, self.stages),
            _stage_label(stage_id, self.stages),
            status,
            elapsed_ms,
            total=len(self.stages),
            include_status_word=True,
        )

    def _print(self, text: str) -> None:
        self.console.print(text, markup=False, highlight=False, soft_wrap=True)


class PipelineJsonRenderer(Renderer):
    def __init__(self, console: Console):
        self.console = console

    def handle(self, event: ev.BevyshipEvent) -> None:
        if isinstance(event, ev.PipelineReported):
            report = _redact_report(event.report)
            self.console.print(json.dumps(report, indent=2, sort_keys=True), soft_wrap=True, markup=False, highlight=False)


def _format_duration(elapsed_ms: float) -> str:
    if elapsed_ms < 1000:
        return f"{elapsed_ms:.0f}ms"
    seconds = elapsed_ms / 1000
    if seconds < 10:
        return f"{seconds:.2f}s"
    if seconds < 600:
        return f"{seconds:.1f}s"
    return f"{seconds / 60:.1f}m"


def _print_header(console: Console, event: ev.CommandStarted) -> None:
    project = event.project_dir or Path(".")
    console.print(
        f"bevyship v{__version__} | project: {project} | command: {event.command}\n{RULE_LINE}",
        markup=False,
    )


_REDACT_PATTERN = re.compile(
    r"(?i)\b(authorization|token|secret|password|api_key|butler_api_key)\b\s*[:=]\s*[^\s]+"
)


def _redact(text: str) -> str:
    if not text:
        return text
    return _REDACT_PATTERN.sub(r"\1: <redacted>", text)


def _redact_report(report: dict[str, Any]) -> dict[str, Any]:
    stages = []
    for stage in report.get("stages", []):
        stage = dict(stage)
        stage["stdout_tail"] = _redact(stage.get("stdout_tail", ""))
        stage["stderr_tail"] = _redact(stage.get("stderr_tail", ""))
        stages.append(stage)
    return {**report, "stages": stages}


def _format_stage_line(
    index: int,
    label: str,
    status: str,
    elapsed_ms: float | None,
    note: str | None = None,
    total: int = 1,
    include_status_word: bool = False,
) -> str:
    glyph = STATUS_GLYPHS.get(status, "?")
    suffix = ""
    if status == "running":
        suffix = " running"
    elif status in {"skipped", "failed"} and not include_status_word:
        suffix = f" {status}"
    if include_status_word and status in {"success", "failed", "skipped"}:
        suffix = f" {_status_word(status)}"
    if note:
        suffix = f"{suffix} ({note})"
    duration = f"  {_format_duration(elapsed_ms)}" if elapsed_ms is not None else ""
    padding = "." * max(2, 28 - len(label))
    return f"[{index}/{max(total, 0)}] {label} {padding} {glyph}{suffix}{duration}"


def _format_stage_start_line(index: int, label: str, total: int) -> str:
    padding = "." * max(2, 28 - len(label))
    return f"[{index}/{max(total, 0)}] {label} {padding} START"


def _stage_label(stage_id: str, mapping: list[tuple[str, str]]) -> str:
    for key, label in mapping:
        if key == stage_id:
            return label
    return stage_id


def _stage_index(stage_id: str, mapping: list[tuple[str, str]]) -> int:
    for index, (key, _label) in enumerate(mapping, start=1):
        if key == stage_id:
            return index
    return 0


def _status_word(status: str) -> str:
    return {
        "success": "OK",
        "failed": "FAIL",
        "skipped": "SKIP",
    }.get(status, status.upper())


def _status_badge(status: str) -> Text:
    normalized = status.strip().lower()
    label = {
        "success": "ok",
        "failed": "fail",
        "skipped": "skip",
    }.get(normalized, normalized)
    style = {
        "success": "bold black on green3",
        "failed": "bold white on red3",
        "skipped": "bold white on grey35",
    }.get(normalized, "bold white on grey35")
    return Text(f" {label} ", style=style)


def _report_table(report: dict[str, Any]) -> Table:
    table = Table(title="Report", show_header=True, box=box.MINIMAL, title_justify="left")
    table.add_column("STAGE", style="bold")
    table.add_column("OUTCOME")
    table.add_column("REASON")
    table.add_column("EXIT", justify="right")
    table.add_column("TIME", justify="right")
    for stage in report.get("stages", []):
        exit_code = stage.get("exit_code")
        table.add_row(
            stage["stage"],
            _status_badge(stage["outcome"]),
            stage.get("reason") or "",
            "" if exit_code is None else str(exit_code),
            _format_duration(stage.get("duration_ms") or 0.0),
        )
    return table


def _config_failure_panel(event: ev.ConfigFailed) -> Panel:
    lines = [f"error: {event.message}"]
    if event.key:
        lines.insert(0, f"key: {event.key}")
    if event.hint:
        lines.append(f"hint: {event.hint}")
    return Panel(
        Text("\n".join(lines)),
        title="Configuration missing" if event.key else "Configuration error",
        box=box.ROUNDED,
        title_align="left",
    )


def _skip_panel(event: ev.StageSkipped) -> Panel:
    lines = [f"stage: {event.stage_id}", f"reason: {event.reason}", f"detail: {event.message}"]
    if event.hint:
        lines.append(f"hint: {event.hint}")
    return Panel(Text("\n".join(lines)), title="Stage skipped", box=box.ROUNDED, title_align="left")


def _stage_failure_panel(event: ev.StageFailed) -> Panel:
    lines = [
        f"stage: {event.stage_id}",
        f"error: {event.error_code}",
        f"detail: {_redact(event.message)}",
    ]
    if event.exit_code is not None:
        lines.append(f"exit code: {event.exit_code}")
    if event.hint:
        lines.append(f"hint: {_redact(event.hint)}")
    if event.stderr_tail:
        lines.extend(["", "stderr (tail):", _redact(event.stderr_tail)])
    return Panel(Text("\n".join(lines)), title="Stage failed", box=box.ROUNDED, title_align="left")
