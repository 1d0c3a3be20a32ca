from __future__ import annotations

import json

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from bevyship.core.stages import STAGE_SET_HELP, STAGE_SETS, Stage

console = Console()


def stages(
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit machine-readable JSON.",
    ),
) -> None:
    """List the stage sets and the command each stage runs."""
    if json_output:
        payload = {
            command: [_describe(stage) for stage in stage_list]
            for command, stage_list in STAGE_SETS.items()
        }
        console.print(json.dumps(payload, indent=2, sort_keys=True), soft_wrap=True, markup=False, highlight=False)
        return

    table = Table(show_header=True, box=box.MINIMAL)
    table.add_column("COMMAND", style="bold")
    table.add_column("STAGE")
    table.add_column("RUNS")
    table.add_column("NEEDS")
    table.add_column("PRODUCES")
    for command, stage_list in STAGE_SETS.items():
        for index, stage in enumerate(stage_list):
            info = _describe(stage)
            table.add_row(
                command if index == 0 else "",
                stage.name,
                " ".join(info["argv"]),
                ", ".join(info["requires"]),
                ", ".join(info["produces"]),
            )
    console.print(table)
    for command, text in STAGE_SET_HELP.items():
        console.print(f"{command}: {text}", markup=False)


def _describe(stage: Stage) -> dict[str, list[str]]:
    return {
        "argv": [f"<{stage.executable}>", *stage.args],
        "requires": [*stage.required_artifacts, *(f"config:{key}" for key in stage.requires_config)],
        "produces": list(stage.produced_artifacts),
    }
