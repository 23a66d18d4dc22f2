"""Unit tests for calc_engine.graph.metric_graph."""

from __future__ import annotations

from calc_engine.graph.metric_graph import (
    MetricKind,
    extract_metrics,
    filter_metrics_by_name,
    get_metric_dependencies,
    get_metric_dependents,
    get_unique_metric_names,
    make_metric_id,
)
from calc_engine.models.flow import Connection, Module

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _flow() -> tuple[list[Module], list[Connection]]:
    modules = [
        Module(id="1", label="Revenue Data", inputs={"monthlyRevenue": 50000}, outputs={"revenue": 50000}),
        Module(id="3", label="Profit", inputs={"revenue": 50000, "costs": 0}, outputs={"profit": 50000}),
    ]
    connections = [
        Connection(id="e1-3", source="1", target="3", source_port="revenue", target_port="revenue"),
        Connection(id="dangling", source="1", target="3", source_port="nope", target_port="costs"),
    ]
    return modules, connections


class TestExtractMetrics:
    def test_metric_ids(self):
        assert make_metric_id("3", MetricKind.INPUT, "revenue") == "3-input-revenue"
        assert make_metric_id("3", MetricKind.OUTPUT, "profit") == "3-output-profit"

    def test_one_node_per_port(self):
        graph = extract_metrics(*_flow())
        assert [n.id for n in graph.nodes] == [
            "1-input-monthlyRevenue",
            "1-output-revenue",
            "3-input-revenue",
            "3-input-costs",
            "3-output-profit",
        ]
        revenue = graph.get("1-output-revenue")
        assert revenue is not None
        assert revenue.value == 50000
        assert revenue.module_name == "Revenue Data"
        assert revenue.kind == MetricKind.OUTPUT

    def test_every_connection_becomes_an_edge(self):
        graph = extract_metrics(*_flow())
        assert [(e.source, e.target) for e in graph.edges] == [
            ("1-output-revenue", "3-input-revenue"),
            ("1-output-nope", "3-input-costs"),
        ]

    def test_links_only_between_existing_metrics(self):
        graph = extract_metrics(*_flow())
        assert graph.get("1-output-revenue").dependents == ["3-input-revenue"]
        assert graph.get("3-input-revenue").dependencies == ["1-output-revenue"]
        assert graph.get("3-input-costs").dependencies == []

    def test_get_missing_metric(self):
        assert extract_metrics(*_flow()).get("9-output-x") is None


class TestMetricQueries:
    def test_dependencies_and_dependents(self):
        graph = extract_metrics(*_flow())
        assert [m.id for m in get_metric_dependencies("3-input-revenue", graph)] == ["1-output-revenue"]
        assert [m.id for m in get_metric_dependents("1-output-revenue", graph)] == ["3-input-revenue"]
        assert get_metric_dependencies("unknown", graph) == []
        assert get_metric_dependents("unknown", graph) == []

    def test_unique_names_sorted(self):
        graph = extract_metrics(*_flow())
        assert get_unique_metric_names(graph) == ["costs", "monthlyRevenue", "profit", "revenue"]

    def test_filter_by_name(self):
        graph = extract_metrics(*_flow())
        filtered = filter_metrics_by_name(graph, "REVENUE")
        assert {n.id for n in filtered.nodes} == {"1-input-monthlyRevenue", "1-output-revenue", "3-input-revenue"}
        assert [(e.source, e.target) for e in filtered.edges] == [("1-output-revenue", "3-input-revenue")]

    def test_empty_filter_returns_graph(self):
        graph = extract_metrics(*_flow())
        assert filter_metrics_by_name(graph, "") is graph
