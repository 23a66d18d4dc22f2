"""What-if sensitivity simulation over the flow graph.

Perturbs one module input by a percentage, lets the change ripple through
a private deep copy of the graph, and reports which modules changed and
how a chosen target metric moved.

All analysis is read-only: the caller's modules and connections are never
mutated.  Applying a simulated change to the live graph is a separate,
explicit mutation (see
:meth:`calc_engine.engine.controller.RecalculationController.apply_simulation`).
Formula failures inside the simulated copy degrade only the failing
module's simulated outputs; a result is still returned for the rest of
the graph.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from pydantic import BaseModel, Field

from calc_engine.engine.propagation import propagate_with_stats
from calc_engine.engine.values import is_number, values_equal
from calc_engine.errors import SimulationError
from calc_engine.models.flow import Connection, Module, ModuleType
from calc_engine.telemetry.profiling import profile_operation

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result models
# ---------------------------------------------------------------------------


class ChangedInput(BaseModel):
    """The input that was perturbed."""

    node_id: str
    node_name: str
    input_name: str
    original_value: Any = None
    new_value: Any = None


class AffectedNode(BaseModel):
    """A module whose outputs differ from the baseline after the perturbation."""

    node_id: str
    node_name: str
    node_type: ModuleType
    original_outputs: dict[str, Any] = Field(default_factory=dict)
    new_outputs: dict[str, Any] = Field(default_factory=dict)
    is_target: bool = False


class TargetMetric(BaseModel):
    """Before/after values of the metric the user is watching."""

    node_id: str
    node_name: str
    metric_name: str
    original_value: Any = None
    new_value: Any = None
    percent_change: float = Field(default=0.0, description="Relative change in percent.")


class SimulationResult(BaseModel):
    """Complete report of a single sensitivity simulation."""

    changed_input: ChangedInput
    affected_nodes: list[AffectedNode] = Field(
        default_factory=list,
        description="Modules whose outputs changed, in evaluation order.",
    )
    target_metric: TargetMetric | None = None
    summary: str = Field(default="", description="Human-readable summary.")


# ---------------------------------------------------------------------------
# Arithmetic
# ---------------------------------------------------------------------------


def perturb_value(value: Any, percent_change: float) -> Any:
    """Scale *value* by ``1 + percent_change / 100``.

    Non-numeric values (strings, booleans, ``None``) are not perturbable
    and are returned unchanged.
    """
    if not is_number(value):
        return value
    return value * (1 + percent_change / 100)


def percent_difference(original: Any, new: Any) -> float:
    """``(new - original) / |original| * 100``, or ``0.0`` when undefined."""
    if not is_number(original) or not is_number(new) or original == 0:
        return 0.0
    return (new - original) / abs(original) * 100


# ---------------------------------------------------------------------------
# Analyzer
# ---------------------------------------------------------------------------


class SensitivityAnalyzer:
    """Run sensitivity simulations against a snapshot of the flow.

    Parameters
    ----------
    modules:
        Modules of the live flow.  Never mutated.
    connections:
        Connections of the live flow.
    """

    def __init__(self, modules: Sequence[Module], connections: Sequence[Connection]) -> None:
        self._modules = list(modules)
        self._connections = list(connections)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @profile_operation("flow.simulate")
    def simulate(
        self,
        target_node_id: str,
        target_metric: str,
        input_node_id: str,
        input_port: str,
        percent_change: float,
    ) -> SimulationResult:
        """Perturb ``input_node_id.inputs[input_port]`` and report the impact.

        Raises
        ------
        SimulationError
            If either module id is unknown, or the input port does not exist
            on the input module.
        """
        clone = [m.model_copy(deep=True) for m in self._modules]
        clone_map = {m.id: m for m in clone}

        target = clone_map.get(target_node_id)
        if target is None:
            raise SimulationError(f"Target module '{target_node_id}' not found")
        source = clone_map.get(input_node_id)
        if source is None:
            raise SimulationError(f"Input module '{input_node_id}' not found")
        if input_port not in source.inputs:
            raise SimulationError(f"Module '{input_node_id}' has no input '{input_port}'")

        # Baseline snapshot.
        baseline: dict[str, dict[str, Any]] = {m.id: dict(m.outputs) for m in clone}
        original_target_value = target.outputs.get(target_metric)

        # Perturb.
        original_value = source.inputs[input_port]
        new_value = perturb_value(original_value, percent_change)
        source.inputs[input_port] = new_value
        source.needs_recalculation = True
        if source.type == ModuleType.INPUT and input_port in source.outputs:
            source.outputs[input_port] = new_value

        # Ripple.
        updated, stats = propagate_with_stats(clone, self._connections, changed_node_id=input_node_id)
        updated_map = {m.id: m for m in updated}

        affected: list[AffectedNode] = []
        for node_id in stats.order:
            module = updated_map.get(node_id)
            if module is None or values_equal(module.outputs, baseline[node_id]):
                continue
            affected.append(
                AffectedNode(
                    node_id=node_id,
                    node_name=module.label,
                    node_type=module.type,
                    original_outputs=baseline[node_id],
                    new_outputs=dict(module.outputs),
                    is_target=node_id == target_node_id,
                )
            )

        new_target_value = updated_map[target_node_id].outputs.get(target_metric)
        target_result = TargetMetric(
            node_id=target_node_id,
            node_name=target.label,
            metric_name=target_metric,
            original_value=original_target_value,
            new_value=new_target_value,
            percent_change=percent_difference(original_target_value, new_target_value),
        )
        changed_input = ChangedInput(
            node_id=input_node_id,
            node_name=source.label,
            input_name=input_port,
            original_value=original_value,
            new_value=new_value,
        )

        summary = self._generate_summary(changed_input, percent_change, affected, target_result)
        logger.info("Sensitivity simulation: %s", summary)

        return SimulationResult(
            changed_input=changed_input,
            affected_nodes=affected,
            target_metric=target_result,
            summary=summary,
        )

    def sweep(
        self,
        target_node_id: str,
        target_metric: str,
        input_node_id: str,
        input_port: str,
        percent_changes: Sequence[float],
    ) -> list[SimulationResult]:
        """Run :meth:`simulate` once per percentage, in the order given."""
        return [
            self.simulate(target_node_id, target_metric, input_node_id, input_port, pct) for pct in percent_changes
        ]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _generate_summary(
        changed: ChangedInput,
        percent_change: float,
        affected: list[AffectedNode],
        target: TargetMetric,
    ) -> str:
        parts = [f"Changing {changed.node_name}.{changed.input_name} by {percent_change:+g}%"]
        if values_equal(changed.original_value, changed.new_value):
            parts.append("(value not perturbable, left unchanged)")
        parts.append(f"affects {len(affected)} module(s).")
        parts.append(f"{target.node_name}.{target.metric_name} changes by {target.percent_change:+.2f}%.")
        return " ".join(parts)


def simulate_sensitivity(
    modules: Sequence[Module],
    connections: Sequence[Connection],
    target_node_id: str,
    target_metric: str,
    input_node_id: str,
    input_port: str,
    percent_change: float,
) -> SimulationResult:
    """Convenience wrapper around :meth:`SensitivityAnalyzer.simulate`."""
    analyzer = SensitivityAnalyzer(modules, connections)
    return analyzer.simulate(target_node_id, target_metric, input_node_id, input_port, percent_change)
