"""Dependency graph, scheduling, validation, and metric-level lineage."""

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
from calc_engine.graph.metric_graph import (
    MetricGraph,
    extract_metrics,
    filter_metrics_by_name,
    get_metric_dependencies,
    get_metric_dependents,
    get_unique_metric_names,
)
from calc_engine.graph.metric_lineage import (
    ImpactSortKey,
    MetricImpact,
    rank_metric_impacts,
    trace_metric_sources,
)
from calc_engine.graph.validation import validate_flow

__all__ = [
    # Dependency graph
    "build_dependency_graph",
    "build_reverse_graph",
    "find_cycles",
    "find_dependent_modules",
    "get_downstream",
    "get_upstream",
    "to_digraph",
    "topological_order",
    # Metric graph
    "MetricGraph",
    "extract_metrics",
    "filter_metrics_by_name",
    "get_metric_dependencies",
    "get_metric_dependents",
    "get_unique_metric_names",
    # Metric lineage
    "ImpactSortKey",
    "MetricImpact",
    "rank_metric_impacts",
    "trace_metric_sources",
    # Validation
    "validate_flow",
]
