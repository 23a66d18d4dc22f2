"""Metric-level lineage: which upstream metrics feed a given metric.

Traces ``(module, metric)`` backward along incoming connections and ranks
every upstream metric it reaches with a proximity heuristic::

    impact_score = max(10, round(100 / (depth + 1)))

Depth 0 is the immediate upstream neighbourhood of the queried metric
(``direct_impact=True``).  The score rewards proximity only; it is not a
numeric sensitivity measure.  See
:mod:`calc_engine.simulation.sensitivity` for that.

Traversal is bounded by a depth limit and a visited set keyed by
``(module_id, metric_name)``, so cyclic graphs terminate.  The result is a
flat list with no de-duplication across paths; callers filter and sort
with :func:`rank_metric_impacts`.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from enum import Enum

from pydantic import BaseModel, Field

from calc_engine.models.flow import Connection, Module, ModuleType
from calc_engine.telemetry.profiling import profile_operation

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH: int = 10
MIN_IMPACT_SCORE: int = 10


class ImpactSortKey(str, Enum):
    """Ordering options for ranked impacts."""

    IMPACT = "impact"
    MODULE = "module"
    METRIC = "metric"


class MetricImpact(BaseModel):
    """An upstream metric contributing to the queried metric."""

    node_id: str = Field(..., description="Module exposing the upstream metric.")
    node_name: str = Field(..., description="Label of that module.")
    node_type: ModuleType = Field(..., description="Type of that module.")
    metric_name: str = Field(..., description="Output port feeding downstream.")
    impact_score: int = Field(..., ge=0, le=100, description="Proximity heuristic, 10-100.")
    direct_impact: bool = Field(..., description="True for immediate upstream neighbours.")
    path: list[str] = Field(
        default_factory=list,
        description="'module:metric' chain from the queried metric down to this source.",
    )


def impact_score_for_depth(depth: int) -> int:
    """Decay heuristic: 100 at depth 0, halving-ish per hop, floored at 10.

    Rounds half up (12.5 -> 13), not to even.
    """
    return max(MIN_IMPACT_SCORE, math.floor(100 / (depth + 1) + 0.5))


def _metric_key(module_id: str, metric_name: str) -> str:
    return f"{module_id}:{metric_name}"


@profile_operation("flow.trace")
def trace_metric_sources(
    modules: Sequence[Module],
    connections: Sequence[Connection],
    node_id: str,
    metric_name: str,
    *,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> list[MetricImpact]:
    """List the upstream metrics that feed ``node_id.metric_name``.

    Every incoming connection of a module is followed, regardless of which
    input port it binds: a module's formula may combine any of its inputs
    into any output.

    Parameters
    ----------
    modules:
        Modules of the flow.
    connections:
        Connections of the flow.
    node_id:
        Module owning the queried metric.
    metric_name:
        Output metric to trace.
    max_depth:
        Deepest hop expanded (depth 0 is the queried metric itself).

    Returns
    -------
    list[MetricImpact]
        Impacts in discovery order (depth-first along connection order).
    """
    module_map = {m.id: m for m in modules}
    if node_id not in module_map:
        logger.debug("Metric trace requested for unknown module '%s'", node_id)
        return []

    incoming: dict[str, list[Connection]] = {}
    for conn in connections:
        incoming.setdefault(conn.target, []).append(conn)

    impacts: list[MetricImpact] = []
    visited: set[tuple[str, str]] = set()

    def _trace(current_id: str, current_metric: str, depth: int, path: list[str]) -> None:
        visit_key = (current_id, current_metric)
        if visit_key in visited or depth > max_depth:
            return
        visited.add(visit_key)

        current_path = [*path, _metric_key(current_id, current_metric)]
        score = impact_score_for_depth(depth)

        for conn in incoming.get(current_id, []):
            source = module_map.get(conn.source)
            if source is None:
                continue

            impacts.append(
                MetricImpact(
                    node_id=source.id,
                    node_name=source.label,
                    node_type=source.type,
                    metric_name=conn.source_port,
                    impact_score=score,
                    direct_impact=depth == 0,
                    path=[*current_path, _metric_key(source.id, conn.source_port)],
                )
            )
            _trace(source.id, conn.source_port, depth + 1, current_path)

    _trace(node_id, metric_name, 0, [])
    return impacts


def rank_metric_impacts(
    impacts: Sequence[MetricImpact],
    *,
    sort_by: ImpactSortKey | str = ImpactSortKey.IMPACT,
    direct_only: bool = False,
    search: str | None = None,
) -> list[MetricImpact]:
    """Filter and order traced impacts for display.

    Parameters
    ----------
    impacts:
        Output of :func:`trace_metric_sources`.
    sort_by:
        ``impact`` (highest score first), ``module`` (by module label) or
        ``metric`` (by metric name).  Sorting is stable.
    direct_only:
        Keep only immediate upstream neighbours.
    search:
        Case-insensitive substring matched against module label, metric
        name and module type.
    """
    sort_key = ImpactSortKey(sort_by)
    filtered = list(impacts)

    if direct_only:
        filtered = [i for i in filtered if i.direct_impact]

    if search:
        term = search.lower()
        filtered = [
            i
            for i in filtered
            if term in i.node_name.lower() or term in i.metric_name.lower() or term in i.node_type.value
        ]

    if sort_key == ImpactSortKey.IMPACT:
        return sorted(filtered, key=lambda i: -i.impact_score)
    if sort_key == ImpactSortKey.MODULE:
        return sorted(filtered, key=lambda i: i.node_name.casefold())
    return sorted(filtered, key=lambda i: i.metric_name.casefold())
