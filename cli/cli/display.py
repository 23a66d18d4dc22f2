"""Rich output formatting for the FlowCalc CLI.

All functions write to a :class:`rich.console.Console` instance (typically
bound to *stderr*) so that machine-readable output on *stdout* is never
polluted with human-readable decoration.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

if TYPE_CHECKING:
    from calc_engine.engine.propagation import PropagationStats
    from calc_engine.graph.metric_graph import MetricGraph
    from calc_engine.graph.metric_lineage import MetricImpact
    from calc_engine.models.flow import Module
    from calc_engine.simulation.sensitivity import SimulationResult


# ---------------------------------------------------------------------------
# Value formatting
# ---------------------------------------------------------------------------

_TYPE_COLOURS: dict[str, str] = {
    "input": "blue",
    "math": "cyan",
    "logic": "magenta",
    "transform": "yellow",
    "filter": "yellow",
    "output": "green",
    "custom": "white",
}


def _coloured_type(module_type: str) -> str:
    """Return a Rich markup string with the module type colour-coded."""
    colour = _TYPE_COLOURS.get(module_type, "white")
    return f"[{colour}]{module_type}[/{colour}]"


def _format_value(value: Any) -> str:
    """Render a port value compactly: floats to at most 4 decimals."""
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, float):
        return f"{value:,.4f}".rstrip("0").rstrip(".")
    if isinstance(value, int):
        return f"{value:,}"
    return str(value)


def _format_record(record: dict[str, Any]) -> str:
    if not record:
        return "-"
    return ", ".join(f"{key}={_format_value(val)}" for key, val in record.items())


def _coloured_percent(value: float) -> str:
    if value > 0:
        return f"[green]{value:+.2f}%[/green]"
    if value < 0:
        return f"[red]{value:+.2f}%[/red]"
    return f"[dim]{value:+.2f}%[/dim]"


# ---------------------------------------------------------------------------
# Flow state
# ---------------------------------------------------------------------------


def display_modules(
    console: Console,
    modules: Sequence[Module],
    stats: PropagationStats | None = None,
) -> None:
    """Render every module with its inputs, outputs and recalculation status.

    Parameters
    ----------
    console:
        Rich console to write to (typically stderr).
    modules:
        Modules in display order.
    stats:
        Statistics of the pass that produced *modules*, if any.  Adds a
        summary line.
    """
    if not modules:
        console.print("[dim]Flow has no modules.[/dim]")
        return

    table = Table(title=f"Modules ({len(modules)})", show_lines=False, pad_edge=True, expand=False)
    table.add_column("ID", style="dim", justify="right")
    table.add_column("Module", style="bold")
    table.add_column("Type")
    table.add_column("Inputs")
    table.add_column("Outputs")
    table.add_column("Status")

    for module in modules:
        if "error" in module.outputs:
            status = "[red]failed[/red]"
        elif module.was_impacted:
            status = "[yellow]impacted[/yellow]"
        elif module.was_recalculated:
            status = "[green]recalculated[/green]"
        elif module.needs_recalculation:
            status = "[magenta]stale[/magenta]"
        else:
            status = "[dim]-[/dim]"

        table.add_row(
            module.id,
            escape(module.label),
            _coloured_type(module.type.value),
            escape(_format_record(module.inputs)),
            escape(_format_record(module.outputs)),
            status,
        )

    console.print(table)

    if stats is not None:
        parts = [
            f"[bold]{len(stats.evaluated)}[/bold] evaluated",
            f"[green]{len(stats.updated)} updated[/green]",
        ]
        if stats.failed:
            parts.append(f"[red]{len(stats.failed)} failed[/red]")
        console.print(" | ".join(parts))


def display_order(console: Console, order: Sequence[str], modules: Sequence[Module]) -> None:
    """Render the evaluation order as a numbered table."""
    labels = {m.id: m.label for m in modules}

    table = Table(title="Evaluation Order", show_lines=False, pad_edge=True, expand=False)
    table.add_column("#", style="dim", width=4, justify="right")
    table.add_column("ID", justify="right")
    table.add_column("Module", style="bold")

    for idx, module_id in enumerate(order, start=1):
        table.add_row(str(idx), module_id, escape(labels.get(module_id, "?")))

    console.print(table)


def display_validation(console: Console, warnings: Sequence[str]) -> None:
    """Render flow validation warnings, or a success line when there are none."""
    if not warnings:
        console.print("[green]Flow is valid.[/green]")
        return

    console.print(f"[yellow bold]{len(warnings)} warning(s):[/yellow bold]")
    for warning in warnings:
        console.print(f"  [yellow]- {escape(warning)}[/yellow]")


# ---------------------------------------------------------------------------
# Simulation
# ---------------------------------------------------------------------------


def display_simulation(console: Console, result: SimulationResult) -> None:
    """Render a sensitivity simulation: header panel plus affected modules.

    Parameters
    ----------
    console:
        Rich console to write to (typically stderr).
    result:
        The simulation to display.
    """
    changed = result.changed_input
    header_lines = [
        f"[bold]Input:[/bold]    {escape(changed.node_name)}.{escape(changed.input_name)}",
        f"[bold]Change:[/bold]   {_format_value(changed.original_value)} -> {_format_value(changed.new_value)}",
    ]
    target = result.target_metric
    if target is not None:
        header_lines.append(
            f"[bold]Target:[/bold]   {escape(target.node_name)}.{escape(target.metric_name)}  "
            f"{_format_value(target.original_value)} -> {_format_value(target.new_value)}  "
            f"({_coloured_percent(target.percent_change)})"
        )
    console.print(Panel("\n".join(header_lines), title="Sensitivity Simulation", border_style="blue"))

    if not result.affected_nodes:
        console.print("[dim]No modules affected.[/dim]")
    else:
        table = Table(title="Affected Modules", show_lines=False, pad_edge=True, expand=False)
        table.add_column("Module", style="bold")
        table.add_column("Type")
        table.add_column("Before")
        table.add_column("After")

        for node in result.affected_nodes:
            name = escape(node.node_name)
            table.add_row(
                f"[yellow]{name}[/yellow] (target)" if node.is_target else name,
                _coloured_type(node.node_type.value),
                escape(_format_record(node.original_outputs)),
                escape(_format_record(node.new_outputs)),
            )
        console.print(table)

    console.print(escape(result.summary))


def display_sweep(console: Console, results: Sequence[SimulationResult]) -> None:
    """Render one row per percentage of a sensitivity sweep."""
    if not results:
        console.print("[dim]No percentages given.[/dim]")
        return

    first = results[0]
    title = f"Sweep of {first.changed_input.node_name}.{first.changed_input.input_name}"
    table = Table(title=escape(title), show_lines=False, pad_edge=True, expand=False)
    table.add_column("Input", justify="right")
    table.add_column("Target", justify="right")
    table.add_column("Target change", justify="right")
    table.add_column("Affected", justify="right")

    for result in results:
        target = result.target_metric
        table.add_row(
            _format_value(result.changed_input.new_value),
            _format_value(target.new_value) if target else "-",
            _coloured_percent(target.percent_change) if target else "-",
            str(len(result.affected_nodes)),
        )

    console.print(table)


# ---------------------------------------------------------------------------
# Metric lineage
# ---------------------------------------------------------------------------


def _impact_style(score: int) -> str:
    if score >= 75:
        return "bold red"
    if score >= 40:
        return "yellow"
    return "dim"


def display_metric_impacts(
    console: Console,
    node_name: str,
    metric_name: str,
    impacts: Sequence[MetricImpact],
) -> None:
    """Render the upstream metrics feeding ``node_name.metric_name``.

    Direct contributors are listed under their own branch; indirect ones
    show the path that reaches them.
    """
    tree = Tree(f"[bold yellow]{escape(node_name)}[/bold yellow].{escape(metric_name)}", guide_style="dim")

    if not impacts:
        tree.add("[dim]no upstream metrics[/dim]")
        console.print(Panel(tree, title="Metric Sources", border_style="yellow"))
        return

    direct = [i for i in impacts if i.direct_impact]
    indirect = [i for i in impacts if not i.direct_impact]

    if direct:
        direct_branch = tree.add("[bold blue]direct[/bold blue]")
        for impact in direct:
            style = _impact_style(impact.impact_score)
            direct_branch.add(
                f"[{style}]{impact.impact_score:>3}[/{style}]  "
                f"{escape(impact.node_name)}.{escape(impact.metric_name)} "
                f"{_coloured_type(impact.node_type.value)}"
            )

    if indirect:
        indirect_branch = tree.add("[bold green]indirect[/bold green]")
        for impact in indirect:
            style = _impact_style(impact.impact_score)
            indirect_branch.add(
                f"[{style}]{impact.impact_score:>3}[/{style}]  "
                f"{escape(impact.node_name)}.{escape(impact.metric_name)}  "
                f"[dim]{escape(' <- '.join(impact.path))}[/dim]"
            )

    console.print(Panel(tree, title="Metric Sources", border_style="yellow"))
    console.print(f"[bold]{len(direct)}[/bold] direct, [bold]{len(indirect)}[/bold] indirect")


def display_metrics(console: Console, graph: MetricGraph) -> None:
    """Render the port-level metric listing."""
    if not graph.nodes:
        console.print("[dim]No metrics found.[/dim]")
        return

    table = Table(title=f"Metrics ({len(graph.nodes)})", show_lines=False, pad_edge=True, expand=False)
    table.add_column("Module", style="bold")
    table.add_column("Metric")
    table.add_column("Kind")
    table.add_column("Value", justify="right")
    table.add_column("Feeds / Fed by")

    for node in graph.nodes:
        links = node.dependents if node.kind.value == "output" else node.dependencies
        table.add_row(
            escape(node.module_name),
            escape(node.name),
            node.kind.value,
            escape(_format_value(node.value)),
            escape(", ".join(links)) if links else "-",
        )

    console.print(table)
    console.print(f"[bold]{len(graph.edges)}[/bold] metric link(s)")


# ---------------------------------------------------------------------------
# Profiling
# ---------------------------------------------------------------------------


def display_profile_stats(console: Console, stats: Sequence[dict[str, Any]]) -> None:
    """Render per-operation timing statistics."""
    if not stats:
        console.print("[dim]No profiling data recorded.[/dim]")
        return

    table = Table(title="Profiling", show_lines=False, pad_edge=True, expand=False)
    table.add_column("Operation", style="bold")
    table.add_column("Count", justify="right")
    table.add_column("Mean ms", justify="right")
    table.add_column("p50 ms", justify="right")
    table.add_column("p95 ms", justify="right")
    table.add_column("Max ms", justify="right")

    for entry in stats:
        table.add_row(
            entry["operation"],
            str(entry["count"]),
            f"{entry['mean_ms']:.3f}",
            f"{entry['p50_ms']:.3f}",
            f"{entry['p95_ms']:.3f}",
            f"{entry['max_ms']:.3f}",
        )

    console.print(table)
