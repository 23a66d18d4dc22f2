"""Propagate value changes through the flow graph.

A propagation pass walks modules in dependency order, pipes each
upstream output into the downstream input it is connected to, and
re-evaluates the modules whose inputs actually changed.  The pass works
on deep copies of the supplied modules and never mutates them.

When the pass changes nothing, the *original* list object is returned.
Callers use that identity as a cheap "did anything change" signal to skip
UI refreshes and persistence::

    updated = propagate(modules, connections, changed_node_id="revenue")
    if updated is not modules:
        save(updated)

Formula failures stay local to their module (see
:mod:`calc_engine.engine.evaluator`); nothing raised by a formula crosses
this module's public functions.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from calc_engine.engine.evaluator import evaluate_module, is_execution_failure
from calc_engine.engine.values import values_equal
from calc_engine.graph.dependency_graph import build_dependency_graph, topological_order
from calc_engine.models.flow import Connection, Flow, Module
from calc_engine.telemetry.profiling import profile_operation

logger = logging.getLogger(__name__)


@dataclass
class PropagationStats:
    """What a single propagation pass did."""

    order: list[str] = field(default_factory=list)
    evaluated: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    inputs_synced: list[str] = field(default_factory=list)
    flags_cleared: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        """True when the returned modules differ from the ones passed in."""
        return bool(self.updated or self.inputs_synced or self.flags_cleared)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _group_by_target(
    connections: Sequence[Connection],
    module_map: dict[str, Module],
) -> dict[str, dict[str, list[Connection]]]:
    """Group live connections as ``target -> target_port -> [connections]``.

    Connections whose source or target no longer resolves are dropped.
    Per-port lists keep connection order, so the last one listed wins.
    """
    grouped: dict[str, dict[str, list[Connection]]] = {}
    for conn in connections:
        if conn.source not in module_map or conn.target not in module_map:
            logger.debug("Skipping stale connection '%s' (%s -> %s)", conn.id, conn.source, conn.target)
            continue
        grouped.setdefault(conn.target, {}).setdefault(conn.target_port, []).append(conn)
    return grouped


def _resolve_port_value(
    bindings: list[Connection],
    module_map: dict[str, Module],
) -> tuple[bool, Any]:
    """Return ``(found, value)`` for an input port fed by *bindings*.

    Equivalent to applying every binding in order and letting the last one
    whose source exposes the port win.
    """
    for conn in reversed(bindings):
        source_outputs = module_map[conn.source].outputs
        if conn.source_port in source_outputs:
            return True, source_outputs[conn.source_port]
    return False, None


def _sync_inputs(
    module: Module,
    port_bindings: dict[str, list[Connection]],
    module_map: dict[str, Module],
) -> bool:
    """Copy upstream outputs into *module*'s inputs; True if any input changed."""
    touched = False
    for port, bindings in port_bindings.items():
        found, value = _resolve_port_value(bindings, module_map)
        if not found:
            continue
        if port in module.inputs and values_equal(module.inputs[port], value):
            continue
        logger.debug(
            "Updated input %s of module %s from %r to %r",
            port,
            module.id,
            module.inputs.get(port),
            value,
        )
        module.inputs[port] = copy.deepcopy(value)
        touched = True
    return touched


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


@profile_operation("flow.propagate")
def propagate_with_stats(
    modules: list[Module],
    connections: Sequence[Connection],
    changed_node_id: str | None = None,
) -> tuple[list[Module], PropagationStats]:
    """Run one propagation pass and report what it did.

    Parameters
    ----------
    modules:
        Current modules.  Never mutated.
    connections:
        Current connections.  Connections referencing missing modules are
        skipped.
    changed_node_id:
        The module whose edit triggered this pass.  It is always
        re-evaluated; other modules are re-evaluated only when their inputs
        changed during the pass or they are flagged ``needs_recalculation``.
        When ``None``, every module is re-evaluated (full recalculation).

    Returns
    -------
    tuple[list[Module], PropagationStats]
        The updated module list (or *modules* itself when nothing
        changed) and the pass statistics.
    """
    stats = PropagationStats()

    working = [m.model_copy(deep=True) for m in modules]
    for module in working:
        module.was_recalculated = False
        module.was_impacted = False
    module_map = {m.id: m for m in working}

    graph = build_dependency_graph(working, connections)
    stats.order = topological_order(graph)
    edges_by_target = _group_by_target(connections, module_map)

    for node_id in stats.order:
        module = module_map.get(node_id)
        if module is None:
            continue

        touched = _sync_inputs(module, edges_by_target.get(node_id, {}), module_map)
        if touched:
            stats.inputs_synced.append(node_id)

        should_evaluate = (
            touched or changed_node_id is None or node_id == changed_node_id or module.needs_recalculation
        )
        if not should_evaluate:
            continue

        new_outputs = evaluate_module(module)
        stats.evaluated.append(node_id)
        if is_execution_failure(new_outputs):
            stats.failed.append(node_id)

        if module.needs_recalculation:
            module.needs_recalculation = False
            stats.flags_cleared.append(node_id)

        if not values_equal(new_outputs, module.outputs):
            module.outputs = new_outputs
            module.was_recalculated = True
            if node_id != changed_node_id:
                module.was_impacted = True
            stats.updated.append(node_id)
            logger.debug("Module %s (%s) output updated", node_id, module.label)

    logger.info(
        "Recalculation complete%s: %d evaluated, %d updated, %d failed",
        f" from changed module {changed_node_id}" if changed_node_id else "",
        len(stats.evaluated),
        len(stats.updated),
        len(stats.failed),
    )

    if not stats.changed:
        return modules, stats
    return working, stats


def propagate(
    modules: list[Module],
    connections: Sequence[Connection],
    changed_node_id: str | None = None,
) -> list[Module]:
    """Propagate changes; return updated modules or *modules* itself if unchanged.

    See :func:`propagate_with_stats` for parameter semantics.
    """
    updated, _ = propagate_with_stats(modules, connections, changed_node_id)
    return updated


def recalculate_flow(flow: Flow, changed_node_id: str | None = None) -> Flow:
    """Propagate over a :class:`Flow`; return *flow* itself when nothing changed."""
    updated = propagate(flow.modules, flow.connections, changed_node_id)
    if updated is flow.modules:
        return flow
    return flow.model_copy(update={"modules": updated})
