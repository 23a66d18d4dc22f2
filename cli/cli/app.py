"""FlowCalc CLI application -- Typer-based developer interface.

Provides commands to inspect, recalculate, edit, simulate and trace flow
files on disk.  Human-readable output goes to *stderr* via Rich;
machine-readable output (``--json``) goes to *stdout* so that pipelines
can compose cleanly.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape

from calc_engine.config import Settings, load_settings
from calc_engine.errors import FlowEngineError
from calc_engine.logging_config import configure_logging
from calc_engine.serialization import load_flow, save_flow
from calc_engine.telemetry.profiling import ProfileCollector
from cli.display import (
    display_metric_impacts,
    display_metrics,
    display_modules,
    display_order,
    display_profile_stats,
    display_simulation,
    display_sweep,
    display_validation,
)

if TYPE_CHECKING:
    from calc_engine.models.flow import Flow, Module
    from calc_engine.simulation.sensitivity import SimulationResult

# ---------------------------------------------------------------------------
# App & global state
# ---------------------------------------------------------------------------

app = typer.Typer(
    name="flowcalc",
    help="FlowCalc - recalculation engine for formula module flows",
    no_args_is_help=True,
)
console = Console(stderr=True)

# Register the init command.
from cli.commands.init import init_command  # noqa: E402

app.command(name="init")(init_command)

# Mutable global options populated by the Typer callback.
_json_output: bool = False
_settings: Settings | None = None


# ---------------------------------------------------------------------------
# Callback -- global options
# ---------------------------------------------------------------------------


@app.callback()
def _global_options(
    json_mode: bool = typer.Option(
        False,
        "--json/--no-json",
        help="Emit structured JSON to stdout instead of human-readable output.",
    ),
    log_level: str | None = typer.Option(
        None,
        "--log-level",
        help="Override FLOWCALC_LOG_LEVEL (DEBUG, INFO, WARNING, ...).",
    ),
) -> None:
    """Global options applied to every command."""
    global _json_output, _settings  # noqa: PLW0603
    _json_output = json_mode

    overrides: dict[str, Any] = {}
    if log_level is not None:
        overrides["log_level"] = log_level
    try:
        _settings = load_settings(**overrides)
    except ValidationError as exc:
        console.print(f"[red]Invalid configuration: {escape(str(exc))}[/red]")
        raise typer.Exit(code=3) from exc

    configure_logging(_settings)
    ProfileCollector.configure(_settings.profile_max_results, enabled=_settings.profiling_enabled)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _get_settings() -> Settings:
    return _settings if _settings is not None else load_settings()


def _emit_json(payload: Any) -> None:
    sys.stdout.write(json.dumps(payload, indent=2, default=str) + "\n")


def _load(path: Path) -> Flow:
    """Load a flow file, exiting with code 3 on failure."""
    try:
        return load_flow(path)
    except (OSError, ValidationError, ValueError) as exc:
        console.print(f"[red]Failed to load flow from {path}: {escape(str(exc))}[/red]")
        raise typer.Exit(code=3) from exc


def _save(flow: Flow, path: Path) -> None:
    try:
        save_flow(flow, path)
    except OSError as exc:
        console.print(f"[red]Failed to write {path}: {escape(str(exc))}[/red]")
        raise typer.Exit(code=3) from exc


def _require_module(flow: Flow, module_id: str) -> Module:
    module = flow.get_module(module_id)
    if module is None:
        console.print(f"[red]Module '{module_id}' not found in flow.[/red]")
        available = ", ".join(m.id for m in flow.modules[:10])
        if available:
            console.print(f"[dim]Available modules: {available}[/dim]")
        raise typer.Exit(code=3)
    return module


def _parse_ref(value: str, label: str) -> tuple[str, str]:
    """Split ``MODULE:PORT`` into its two parts."""
    module_id, sep, port = value.partition(":")
    if not sep or not module_id or not port:
        console.print(f"[red]Invalid {label} '{value}': expected MODULE:PORT.[/red]")
        raise typer.Exit(code=3)
    return module_id, port


def _parse_value(raw: str) -> Any:
    """Interpret a command-line value as JSON, falling back to a plain string."""
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def _parse_percents(raw: str) -> list[float]:
    try:
        return [float(part) for part in raw.split(",") if part.strip()]
    except ValueError as exc:
        console.print(f"[red]Invalid percent list '{raw}': {escape(str(exc))}[/red]")
        raise typer.Exit(code=3) from exc


def _module_rows(modules: list[Module]) -> list[dict[str, Any]]:
    return [
        {
            "id": m.id,
            "label": m.label,
            "type": m.type.value,
            "inputs": m.inputs,
            "outputs": m.outputs,
            "was_recalculated": m.was_recalculated,
            "was_impacted": m.was_impacted,
        }
        for m in modules
    ]


def _simulate(
    flow: Flow,
    target: str,
    input_ref: str,
    percents: list[float],
) -> list[SimulationResult]:
    from calc_engine.simulation import SensitivityAnalyzer

    target_id, metric = _parse_ref(target, "target")
    input_id, port = _parse_ref(input_ref, "input")
    try:
        return SensitivityAnalyzer(flow.modules, flow.connections).sweep(target_id, metric, input_id, port, percents)
    except FlowEngineError as exc:
        console.print(f"[red]Simulation failed: {escape(str(exc))}[/red]")
        raise typer.Exit(code=3) from exc


_FLOW_FILE_ARG = typer.Argument(
    ...,
    help="Path to a flow JSON file.",
    exists=True,
    dir_okay=False,
    resolve_path=True,
)


# ---------------------------------------------------------------------------
# validate / order
# ---------------------------------------------------------------------------


@app.command()
def validate(flow_file: Path = _FLOW_FILE_ARG) -> None:
    """Check a flow file for schema errors and structural problems.

    Exits with code 1 when any warning is reported.
    """
    from calc_engine.graph import validate_flow
    from calc_engine.serialization import validate_flow_schema

    schema_errors = validate_flow_schema(flow_file.read_text(encoding="utf-8"))
    if schema_errors:
        warnings = schema_errors
    else:
        flow = _load(flow_file)
        warnings = validate_flow(flow.modules, flow.connections)

    if _json_output:
        _emit_json({"valid": not warnings, "warnings": warnings})
    else:
        display_validation(console, warnings)

    if warnings:
        raise typer.Exit(code=1)


@app.command()
def order(flow_file: Path = _FLOW_FILE_ARG) -> None:
    """Show the order in which modules are evaluated."""
    from calc_engine.graph import build_dependency_graph, topological_order

    flow = _load(flow_file)
    evaluation_order = topological_order(build_dependency_graph(flow.modules, flow.connections))

    if _json_output:
        _emit_json({"order": evaluation_order})
    else:
        display_order(console, evaluation_order, flow.modules)


# ---------------------------------------------------------------------------
# run / set
# ---------------------------------------------------------------------------


@app.command()
def run(
    flow_file: Path = _FLOW_FILE_ARG,
    node: str | None = typer.Option(
        None,
        "--node",
        "-n",
        help="Module whose edit triggered the pass. Without it every module is re-evaluated.",
    ),
    write: bool = typer.Option(
        False,
        "--write",
        "-w",
        help="Save the recalculated flow back to the file when anything changed.",
    ),
) -> None:
    """Propagate values through a flow and show the resulting outputs."""
    from calc_engine.engine import propagate_with_stats

    flow = _load(flow_file)
    if node is not None:
        _require_module(flow, node)

    updated, stats = propagate_with_stats(flow.modules, flow.connections, node)
    changed = updated is not flow.modules

    if write and changed:
        _save(flow.model_copy(update={"modules": updated}), flow_file)

    if _json_output:
        _emit_json(
            {
                "changed": changed,
                "written": write and changed,
                "order": stats.order,
                "evaluated": stats.evaluated,
                "updated": stats.updated,
                "failed": stats.failed,
                "modules": _module_rows(updated),
            }
        )
        return

    display_modules(console, updated, stats)
    if not changed:
        console.print("[dim]No changes.[/dim]")
    elif write:
        console.print(f"[green]Saved {flow_file}[/green]")


@app.command("set")
def set_input(
    flow_file: Path = _FLOW_FILE_ARG,
    node: str = typer.Argument(..., help="Module to edit."),
    port: str = typer.Argument(..., help="Input port to set."),
    value: str = typer.Argument(..., help="New value, parsed as JSON when possible (e.g. 42, 0.5, true)."),
) -> None:
    """Set one module input, recalculate dependents, and save the flow."""
    from calc_engine.engine import RecalculationController

    flow = _load(flow_file)
    module = _require_module(flow, node)
    if port not in module.inputs:
        console.print(f"[red]Module '{node}' has no input '{port}'.[/red]")
        console.print(f"[dim]Inputs: {', '.join(module.inputs) or '(none)'}[/dim]")
        raise typer.Exit(code=3)

    settings = _get_settings()
    controller = RecalculationController.from_flow(flow, auto_recalculate=settings.auto_recalculate)
    controller.set_input(node, port, _parse_value(value))
    if controller.needs_recalculation:
        controller.request_recalculation(node)

    _save(controller.to_flow(flow.metadata), flow_file)

    impacted = [m.id for m in controller.modules if m.was_recalculated]
    if _json_output:
        _emit_json({"node": node, "port": port, "value": _parse_value(value), "recalculated": impacted})
        return

    display_modules(console, controller.modules, controller.last_stats)
    console.print(f"[green]Set {node}.{port} and saved {flow_file}[/green]")


# ---------------------------------------------------------------------------
# simulate / sweep
# ---------------------------------------------------------------------------


@app.command()
def simulate(
    flow_file: Path = _FLOW_FILE_ARG,
    target: str = typer.Option(..., "--target", "-t", help="Metric to watch, as MODULE:OUTPUT."),
    input_ref: str = typer.Option(..., "--input", "-i", help="Input to perturb, as MODULE:INPUT."),
    percent: float | None = typer.Option(
        None,
        "--percent",
        "-p",
        help="Percent change to apply. Defaults to FLOWCALC_DEFAULT_PERCENT_CHANGE.",
    ),
    apply: bool = typer.Option(
        False,
        "--apply",
        help="Write the perturbed input into the flow and save it.",
    ),
) -> None:
    """Run a what-if simulation without modifying the flow (unless --apply)."""
    flow = _load(flow_file)
    pct = percent if percent is not None else _get_settings().default_percent_change
    (result,) = _simulate(flow, target, input_ref, [pct])

    if apply:
        from calc_engine.engine import RecalculationController

        controller = RecalculationController.from_flow(flow)
        controller.apply_simulation(result)
        if controller.needs_recalculation:
            controller.request_recalculation(result.changed_input.node_id)
        _save(controller.to_flow(flow.metadata), flow_file)

    if _json_output:
        _emit_json({**result.model_dump(mode="json"), "applied": apply})
        return

    display_simulation(console, result)
    if apply:
        console.print(f"[green]Applied and saved {flow_file}[/green]")


@app.command()
def sweep(
    flow_file: Path = _FLOW_FILE_ARG,
    target: str = typer.Option(..., "--target", "-t", help="Metric to watch, as MODULE:OUTPUT."),
    input_ref: str = typer.Option(..., "--input", "-i", help="Input to perturb, as MODULE:INPUT."),
    percents: str = typer.Option(
        "-20,-10,10,20",
        "--percents",
        help="Comma-separated percent changes.",
    ),
) -> None:
    """Run one simulation per percent change and tabulate the target's response."""
    flow = _load(flow_file)
    results = _simulate(flow, target, input_ref, _parse_percents(percents))

    if _json_output:
        _emit_json([r.model_dump(mode="json") for r in results])
        return

    display_sweep(console, results)


# ---------------------------------------------------------------------------
# trace / metrics
# ---------------------------------------------------------------------------


@app.command()
def trace(
    flow_file: Path = _FLOW_FILE_ARG,
    node: str = typer.Option(..., "--node", "-n", help="Module owning the metric."),
    metric: str = typer.Option(..., "--metric", "-m", help="Output metric to trace."),
    direct_only: bool = typer.Option(False, "--direct-only", help="Only list immediate upstream metrics."),
    sort: str = typer.Option("impact", "--sort", help="Order by impact, module or metric."),
    search: str | None = typer.Option(None, "--search", help="Filter by module, metric or type."),
    depth: int | None = typer.Option(
        None,
        "--depth",
        help="Maximum trace depth. Defaults to FLOWCALC_TRACE_MAX_DEPTH.",
        min=0,
    ),
) -> None:
    """List the upstream metrics that feed a module's output metric."""
    from calc_engine.graph import ImpactSortKey, rank_metric_impacts, trace_metric_sources

    try:
        sort_key = ImpactSortKey(sort)
    except ValueError as exc:
        console.print(f"[red]Invalid sort '{sort}': use impact, module or metric.[/red]")
        raise typer.Exit(code=3) from exc

    flow = _load(flow_file)
    module = _require_module(flow, node)
    max_depth = depth if depth is not None else _get_settings().trace_max_depth

    impacts = trace_metric_sources(flow.modules, flow.connections, node, metric, max_depth=max_depth)
    ranked = rank_metric_impacts(impacts, sort_by=sort_key, direct_only=direct_only, search=search)

    if _json_output:
        _emit_json({"node": node, "metric": metric, "impacts": [i.model_dump(mode="json") for i in ranked]})
        return

    display_metric_impacts(console, module.label, metric, ranked)


@app.command()
def metrics(
    flow_file: Path = _FLOW_FILE_ARG,
    name: str | None = typer.Option(None, "--name", help="Only list metrics whose name contains this text."),
) -> None:
    """List every input and output metric of a flow."""
    from calc_engine.graph import extract_metrics, filter_metrics_by_name

    flow = _load(flow_file)
    graph = extract_metrics(flow.modules, flow.connections)
    if name:
        graph = filter_metrics_by_name(graph, name)

    if _json_output:
        _emit_json(graph.model_dump(mode="json"))
        return

    display_metrics(console, graph)


# ---------------------------------------------------------------------------
# profile
# ---------------------------------------------------------------------------


@app.command()
def profile(
    flow_file: Path = _FLOW_FILE_ARG,
    iterations: int = typer.Option(10, "--iterations", "-n", help="Full passes to time.", min=1),
) -> None:
    """Time repeated full recalculation passes and report per-operation stats."""
    from calc_engine.engine import propagate

    flow = _load(flow_file)
    collector = ProfileCollector.get_instance()
    collector.clear()
    # Profiling may be disabled by configuration; this command always records.
    collector.enabled = True

    for _ in range(iterations):
        propagate(flow.modules, flow.connections)

    stats = collector.get_all_stats()
    if _json_output:
        _emit_json(stats)
        return

    display_profile_stats(console, stats)
