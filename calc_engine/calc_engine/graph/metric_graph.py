"""Port-level metric graph.

Every input and output port of every module becomes a *metric* node
(``"<module>-input-<port>"`` / ``"<module>-output-<port>"``) and every
connection becomes an edge from an output metric to an input metric.
This is the finer-grained view behind metric listings and drilldowns;
the module-level view lives in :mod:`calc_engine.graph.dependency_graph`.
"""

from __future__ import annotations

from collections.abc import Sequence
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from calc_engine.models.flow import Connection, Module


class MetricKind(str, Enum):
    INPUT = "input"
    OUTPUT = "output"


class MetricNode(BaseModel):
    id: str
    name: str
    module_id: str
    module_name: str
    value: Any = None
    kind: MetricKind
    dependencies: list[str] = Field(default_factory=list)
    dependents: list[str] = Field(default_factory=list)


class MetricEdge(BaseModel):
    id: str
    source: str
    target: str


class MetricGraph(BaseModel):
    nodes: list[MetricNode] = Field(default_factory=list)
    edges: list[MetricEdge] = Field(default_factory=list)

    def get(self, metric_id: str) -> MetricNode | None:
        for node in self.nodes:
            if node.id == metric_id:
                return node
        return None


def make_metric_id(module_id: str, kind: MetricKind, port: str) -> str:
    return f"{module_id}-{kind.value}-{port}"


def extract_metrics(modules: Sequence[Module], connections: Sequence[Connection]) -> MetricGraph:
    """Build the metric graph for a flow.

    Connections are always recorded as edges; dependency links are only
    filled in when both endpoint metrics exist on their modules.
    """
    nodes: list[MetricNode] = []
    by_id: dict[str, MetricNode] = {}

    for module in modules:
        for kind, ports in ((MetricKind.INPUT, module.inputs), (MetricKind.OUTPUT, module.outputs)):
            for port, value in ports.items():
                node = MetricNode(
                    id=make_metric_id(module.id, kind, port),
                    name=port,
                    module_id=module.id,
                    module_name=module.label,
                    value=value,
                    kind=kind,
                )
                nodes.append(node)
                by_id[node.id] = node

    edges: list[MetricEdge] = []
    for conn in connections:
        source_id = make_metric_id(conn.source, MetricKind.OUTPUT, conn.source_port)
        target_id = make_metric_id(conn.target, MetricKind.INPUT, conn.target_port)
        edges.append(MetricEdge(id=f"{source_id}-to-{target_id}", source=source_id, target=target_id))

        source_metric = by_id.get(source_id)
        target_metric = by_id.get(target_id)
        if source_metric is not None and target_metric is not None:
            source_metric.dependents.append(target_id)
            target_metric.dependencies.append(source_id)

    return MetricGraph(nodes=nodes, edges=edges)


def get_metric_dependencies(metric_id: str, graph: MetricGraph) -> list[MetricNode]:
    """Metrics feeding directly into *metric_id*."""
    metric = graph.get(metric_id)
    if metric is None:
        return []
    return [dep for dep_id in metric.dependencies if (dep := graph.get(dep_id)) is not None]


def get_metric_dependents(metric_id: str, graph: MetricGraph) -> list[MetricNode]:
    """Metrics fed directly by *metric_id*."""
    metric = graph.get(metric_id)
    if metric is None:
        return []
    return [dep for dep_id in metric.dependents if (dep := graph.get(dep_id)) is not None]


def get_unique_metric_names(graph: MetricGraph) -> list[str]:
    return sorted({node.name for node in graph.nodes})


def filter_metrics_by_name(graph: MetricGraph, name: str) -> MetricGraph:
    """Keep metrics whose name contains *name* (case-insensitive) and the edges between them."""
    if not name:
        return graph

    term = name.lower()
    nodes = [node for node in graph.nodes if term in node.name.lower()]
    kept = {node.id for node in nodes}
    edges = [edge for edge in graph.edges if edge.source in kept and edge.target in kept]
    return MetricGraph(nodes=nodes, edges=edges)
