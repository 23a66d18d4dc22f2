"""What-if sensitivity simulation for flow graphs.

All analysis is read-only; the live graph is never mutated.
"""

from __future__ import annotations

from calc_engine.simulation.sensitivity import (
    AffectedNode,
    ChangedInput,
    SensitivityAnalyzer,
    SimulationResult,
    TargetMetric,
    percent_difference,
    perturb_value,
    simulate_sensitivity,
)

__all__ = [
    "AffectedNode",
    "ChangedInput",
    "SensitivityAnalyzer",
    "SimulationResult",
    "TargetMetric",
    "percent_difference",
    "perturb_value",
    "simulate_sensitivity",
]
