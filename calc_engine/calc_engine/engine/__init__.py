"""Module evaluation, change propagation, and live-flow state."""

from calc_engine.engine.controller import RecalculationController
from calc_engine.engine.evaluator import (
    EXECUTION_FAILED,
    evaluate_module,
    execution_failed,
    is_execution_failure,
)
from calc_engine.engine.propagation import (
    PropagationStats,
    propagate,
    propagate_with_stats,
    recalculate_flow,
)
from calc_engine.engine.values import is_number, values_equal

__all__ = [
    # Evaluation
    "EXECUTION_FAILED",
    "evaluate_module",
    "execution_failed",
    "is_execution_failure",
    # Propagation
    "PropagationStats",
    "propagate",
    "propagate_with_stats",
    "recalculate_flow",
    # State
    "RecalculationController",
    # Values
    "is_number",
    "values_equal",
]
