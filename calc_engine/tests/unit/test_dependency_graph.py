"""Unit tests for calc_engine.graph.dependency_graph."""

from __future__ import annotations

import logging

import networkx as nx

from calc_engine.graph.dependency_graph import (
    build_dependency_graph,
    build_reverse_graph,
    find_cycles,
    find_dependent_modules,
    get_downstream,
    get_upstream,
    to_digraph,
    topological_order,
)
from calc_engine.models.flow import Connection, Module

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _module(module_id: str) -> Module:
    return Module(id=module_id, outputs={"out": 0}, inputs={"in": 0})


def _conn(source: str, target: str, source_port: str = "out", target_port: str = "in") -> Connection:
    return Connection(
        id=f"e{source}-{target}-{source_port}-{target_port}",
        source=source,
        target=target,
        source_port=source_port,
        target_port=target_port,
    )


def _assert_topological(order: list[str], connections: list[Connection]) -> None:
    position = {node: idx for idx, node in enumerate(order)}
    for conn in connections:
        assert position[conn.source] < position[conn.target], f"{conn.source} must precede {conn.target}"


# ---------------------------------------------------------------------------
# build_dependency_graph
# ---------------------------------------------------------------------------


class TestBuildDependencyGraph:
    def test_isolated_modules_have_empty_predecessors(self):
        graph = build_dependency_graph([_module("A"), _module("B")], [])
        assert graph == {"A": [], "B": []}

    def test_linear_chain(self):
        """A -> B -> C."""
        graph = build_dependency_graph(
            [_module("A"), _module("B"), _module("C")],
            [_conn("A", "B"), _conn("B", "C")],
        )
        assert graph == {"A": [], "B": ["A"], "C": ["B"]}

    def test_parallel_port_connections_deduplicated(self):
        """Two port-level connections between the same pair give one dependency."""
        graph = build_dependency_graph(
            [_module("A"), _module("B")],
            [_conn("A", "B", "x", "p"), _conn("A", "B", "y", "q")],
        )
        assert graph["B"] == ["A"]

    def test_predecessors_in_first_seen_order(self):
        graph = build_dependency_graph(
            [_module("A"), _module("B"), _module("C")],
            [_conn("B", "C"), _conn("A", "C"), _conn("B", "C", "out", "other")],
        )
        assert graph["C"] == ["B", "A"]

    def test_stale_connections_skipped(self):
        graph = build_dependency_graph(
            [_module("A")],
            [_conn("A", "ghost"), _conn("ghost", "A")],
        )
        assert graph == {"A": []}

    def test_reverse_graph(self):
        graph = {"A": [], "B": ["A"], "C": ["A", "B"]}
        assert build_reverse_graph(graph) == {"A": ["B", "C"], "B": ["C"], "C": []}


# ---------------------------------------------------------------------------
# topological_order
# ---------------------------------------------------------------------------


class TestTopologicalOrder:
    def test_empty_graph(self):
        assert topological_order({}) == []

    def test_linear_chain_order(self):
        graph = {"C": ["B"], "B": ["A"], "A": []}
        assert topological_order(graph) == ["A", "B", "C"]

    def test_diamond_respects_every_edge(self):
        """
        A -> B -> D
        A -> C -> D
        """
        connections = [_conn("A", "B"), _conn("A", "C"), _conn("B", "D"), _conn("C", "D")]
        modules = [_module(x) for x in ("D", "C", "B", "A")]
        order = topological_order(build_dependency_graph(modules, connections))
        assert sorted(order) == ["A", "B", "C", "D"]
        _assert_topological(order, connections)

    def test_wide_random_dag_respects_every_edge(self):
        ids = [f"n{i}" for i in range(30)]
        connections = [
            _conn(ids[i], ids[j], target_port=f"in{i}") for i in range(30) for j in range(i + 1, 30) if (i * 7 + j) % 5 == 0
        ]
        # Insert modules in reverse so the walk cannot rely on insertion order.
        modules = [_module(x) for x in reversed(ids)]
        order = topological_order(build_dependency_graph(modules, connections))
        assert len(order) == 30
        _assert_topological(order, connections)

    def test_deterministic_for_fixed_insertion_order(self):
        graph = {"A": [], "B": ["A"], "C": ["A"], "D": ["C", "B"]}
        assert topological_order(graph) == topological_order(dict(graph))
        assert topological_order(graph) == ["A", "B", "C", "D"]

    def test_deep_chain_does_not_hit_recursion_limit(self):
        size = 5000
        graph = {f"n{i}": ([f"n{i - 1}"] if i else []) for i in range(size)}
        order = topological_order(dict(reversed(list(graph.items()))))
        assert order == [f"n{i}" for i in range(size)]

    def test_pure_two_cycle_terminates(self):
        """A -> B and B -> A: both scheduled exactly once."""
        graph = build_dependency_graph([_module("A"), _module("B")], [_conn("A", "B"), _conn("B", "A")])
        order = topological_order(graph)
        assert sorted(order) == ["A", "B"]
        assert len(order) == 2

    def test_self_loop_terminates(self):
        assert topological_order({"A": ["A"]}) == ["A"]

    def test_cycle_with_tail_schedules_everything_once(self):
        graph = {"A": [], "B": ["A", "C"], "C": ["B"], "D": ["C"]}
        order = topological_order(graph)
        assert sorted(order) == ["A", "B", "C", "D"]
        assert order.index("A") < order.index("B")
        assert order.index("C") < order.index("D")

    def test_cycle_logs_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="calc_engine.graph.dependency_graph"):
            topological_order({"A": ["B"], "B": ["A"]})
        assert any("Cycle detected" in rec.message for rec in caplog.records)

    def test_unknown_predecessor_is_scheduled(self):
        assert topological_order({"B": ["A"]}) == ["A", "B"]


# ---------------------------------------------------------------------------
# Traversal
# ---------------------------------------------------------------------------


class TestTraversal:
    def test_upstream_and_downstream(self):
        graph = {"A": [], "B": ["A"], "C": ["B"], "D": []}
        assert get_upstream(graph, "C") == {"A", "B"}
        assert get_downstream(graph, "A") == {"B", "C"}
        assert get_upstream(graph, "D") == set()
        assert get_downstream(graph, "missing") == set()

    def test_upstream_includes_self_only_on_cycle(self):
        graph = {"A": ["B"], "B": ["A"]}
        assert get_upstream(graph, "A") == {"A", "B"}

    def test_find_dependent_modules_discovery_order(self):
        connections = [_conn("A", "B"), _conn("B", "D"), _conn("A", "C"), _conn("C", "D")]
        assert find_dependent_modules("A", connections) == ["B", "D", "C"]

    def test_find_dependent_modules_terminates_on_cycle(self):
        connections = [_conn("A", "B"), _conn("B", "A")]
        assert find_dependent_modules("A", connections) == ["B", "A"]

    def test_find_dependent_modules_leaf(self):
        assert find_dependent_modules("Z", [_conn("A", "B")]) == []


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------


class TestDiagnostics:
    def test_to_digraph_edges_point_downstream(self):
        dag = to_digraph({"A": [], "B": ["A"]})
        assert isinstance(dag, nx.DiGraph)
        assert dag.has_edge("A", "B")
        assert not dag.has_edge("B", "A")

    def test_find_cycles_acyclic(self):
        assert find_cycles({"A": [], "B": ["A"]}) == []

    def test_find_cycles_normalised(self):
        cycles = find_cycles({"A": ["C"], "B": ["A"], "C": ["B"]})
        assert cycles == [["A", "B", "C"]]
