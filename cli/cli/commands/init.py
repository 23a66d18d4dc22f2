"""``flowcalc init`` -- write the sample flow to disk.

Gives a developer a working ten-module flow (revenue and costs through
profit, tax and ROI into a KPI dashboard) to run, edit, simulate and trace
straight away.
"""

from __future__ import annotations

import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from calc_engine.config import load_settings
from calc_engine.samples import sample_flow
from calc_engine.serialization import save_flow

logger = logging.getLogger(__name__)


def init_command(
    path: Path | None = typer.Argument(
        None,
        help="Where to write the flow. Defaults to FLOWCALC_FLOW_FILE (flows/flow.json).",
        resolve_path=True,
    ),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Overwrite an existing file.",
    ),
) -> None:
    """Write the sample flow to PATH."""
    console = Console(stderr=True)

    target = path or load_settings().flow_file.resolve()
    if target.exists() and not force:
        console.print(f"[red]{target} already exists. Use --force to overwrite.[/red]")
        raise typer.Exit(code=3)

    flow = sample_flow()
    try:
        save_flow(flow, target)
    except OSError as exc:
        console.print(f"[red]Failed to write {target}: {escape(str(exc))}[/red]")
        raise typer.Exit(code=3) from exc

    logger.info("Wrote sample flow to %s", target)
    console.print(
        Panel(
            f"[bold]Sample flow written:[/bold] {target}\n"
            f"[dim]Modules:[/dim] {len(flow.modules)}\n"
            f"[dim]Connections:[/dim] {len(flow.connections)}\n\n"
            f"Next: [cyan]flowcalc run {target}[/cyan]",
            title="FlowCalc Init",
            border_style="blue",
        )
    )
