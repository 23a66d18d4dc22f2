"""Dependency graph construction and cycle-tolerant scheduling.

The dependency graph is a plain adjacency mapping
``module_id -> [predecessor_id, ...]`` derived from the connection list.
It answers "which modules must be evaluated before X" and ignores port
detail, which propagation resolves later.

:func:`topological_order` is a depth-first post-order walk with
three-colour marking.  Unlike a strict topological sort it never fails:
when the walk meets a module that is still in progress, the back edge is
dropped and the walk continues, so every module is scheduled exactly once
even when the graph contains cycles.

NetworkX is used only for diagnostics (:func:`find_cycles`,
:func:`to_digraph`); scheduling itself must stay cycle tolerant.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterator, Mapping, Sequence
from enum import Enum

import networkx as nx

from calc_engine.models.flow import Connection, Module
from calc_engine.telemetry.profiling import profile_operation

logger = logging.getLogger(__name__)

DependencyGraph = dict[str, list[str]]


# ---------------------------------------------------------------------------
# Graph construction
# ---------------------------------------------------------------------------


@profile_operation("flow.build_graph")
def build_dependency_graph(
    modules: Sequence[Module],
    connections: Sequence[Connection],
) -> DependencyGraph:
    """Build the ``module_id -> predecessors`` adjacency mapping.

    Every module starts with an empty predecessor list so that isolated
    modules are represented.  Each connection contributes its source to
    the target's list once, however many port-level connections join the
    same pair.  Connections whose source or target is not a known module
    are skipped.

    Parameters
    ----------
    modules:
        Modules of the flow, in insertion order.
    connections:
        Connections of the flow, in insertion order.

    Returns
    -------
    dict[str, list[str]]
        Predecessor lists in first-seen order.
    """
    graph: DependencyGraph = {m.id: [] for m in modules}

    for conn in connections:
        if conn.source not in graph or conn.target not in graph:
            logger.debug(
                "Skipping connection '%s': %s -> %s references a missing module",
                conn.id,
                conn.source,
                conn.target,
            )
            continue
        predecessors = graph[conn.target]
        if conn.source not in predecessors:
            predecessors.append(conn.source)

    return graph


def build_reverse_graph(graph: Mapping[str, Sequence[str]]) -> DependencyGraph:
    """Invert a predecessor mapping into ``module_id -> successors``."""
    reverse: DependencyGraph = {node: [] for node in graph}
    for node, predecessors in graph.items():
        for pred in predecessors:
            successors = reverse.setdefault(pred, [])
            if node not in successors:
                successors.append(node)
    return reverse


# ---------------------------------------------------------------------------
# Scheduling
# ---------------------------------------------------------------------------


class _Mark(Enum):
    IN_PROGRESS = 1
    DONE = 2


@profile_operation("flow.topo_order")
def topological_order(graph: Mapping[str, Sequence[str]]) -> list[str]:
    """Order modules so that every predecessor precedes its dependents.

    Roots are visited in mapping order and predecessors in list order, so
    the result is deterministic for a fixed insertion order.  For acyclic
    graphs the order is a valid topological order.  For cyclic graphs the
    edge that closes each cycle is ignored; the resulting order depends on
    where the walk entered the cycle.

    The walk is iterative, so arbitrarily long dependency chains do not hit
    the interpreter's recursion limit.

    Parameters
    ----------
    graph:
        Mapping of module id to predecessor ids, as produced by
        :func:`build_dependency_graph`.

    Returns
    -------
    list[str]
        Every module id (and every referenced predecessor id) exactly once.
    """
    marks: dict[str, _Mark] = {}
    order: list[str] = []

    for root in graph:
        if root in marks:
            continue

        marks[root] = _Mark.IN_PROGRESS
        stack: list[tuple[str, Iterator[str]]] = [(root, iter(graph.get(root, ())))]

        while stack:
            node, predecessors = stack[-1]
            for pred in predecessors:
                mark = marks.get(pred)
                if mark is _Mark.IN_PROGRESS:
                    logger.warning(
                        "Cycle detected in module dependencies: ignoring edge %s -> %s",
                        pred,
                        node,
                    )
                    continue
                if mark is _Mark.DONE:
                    continue
                marks[pred] = _Mark.IN_PROGRESS
                stack.append((pred, iter(graph.get(pred, ()))))
                break
            else:
                stack.pop()
                marks[node] = _Mark.DONE
                order.append(node)

    return order


# ---------------------------------------------------------------------------
# Traversal helpers
# ---------------------------------------------------------------------------


def get_upstream(graph: Mapping[str, Sequence[str]], module_id: str) -> set[str]:
    """Return every module transitively upstream of *module_id*.

    *module_id* itself is only included when it sits on a cycle.
    """
    if module_id not in graph:
        return set()

    visited: set[str] = set()
    queue: deque[str] = deque(graph[module_id])

    while queue:
        current = queue.popleft()
        if current in visited:
            continue
        visited.add(current)
        queue.extend(graph.get(current, ()))

    return visited


def get_downstream(graph: Mapping[str, Sequence[str]], module_id: str) -> set[str]:
    """Return every module transitively downstream of *module_id*.

    *graph* is a predecessor mapping; it is inverted internally.
    """
    return get_upstream(build_reverse_graph(graph), module_id)


def find_dependent_modules(module_id: str, connections: Sequence[Connection]) -> list[str]:
    """List modules reachable from *module_id* along connections.

    Results are in depth-first discovery order, each id once.  The starting
    module is only listed when a cycle leads back to it.
    """
    outgoing: dict[str, list[str]] = {}
    for conn in connections:
        outgoing.setdefault(conn.source, []).append(conn.target)

    dependents: list[str] = []
    seen: set[str] = set()
    visited: set[str] = {module_id}
    stack: list[Iterator[str]] = [iter(outgoing.get(module_id, []))]

    while stack:
        for target in stack[-1]:
            if target not in seen:
                seen.add(target)
                dependents.append(target)
            if target not in visited:
                visited.add(target)
                stack.append(iter(outgoing.get(target, [])))
                break
        else:
            stack.pop()

    return dependents


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------


def to_digraph(graph: Mapping[str, Sequence[str]]) -> nx.DiGraph:
    """Convert a predecessor mapping into a NetworkX graph (edges point downstream)."""
    dag = nx.DiGraph()
    dag.add_nodes_from(graph)
    for node, predecessors in graph.items():
        for pred in predecessors:
            dag.add_edge(pred, node)
    return dag


def find_cycles(graph: Mapping[str, Sequence[str]]) -> list[list[str]]:
    """Return every elementary cycle, each rotated to start at its smallest id.

    Cycles are reported, never raised: the scheduler tolerates them.
    """
    cycles: list[list[str]] = []
    for cycle in nx.simple_cycles(to_digraph(graph)):
        pivot = cycle.index(min(cycle))
        cycles.append(cycle[pivot:] + cycle[:pivot])
    return sorted(cycles)
