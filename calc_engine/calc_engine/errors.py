"""Exception hierarchy for the recalculation engine.

Formula failures never cross the propagation boundary: the evaluator
converts them into a sentinel outputs record.  The remaining exceptions
signal caller mistakes (unknown ids) or are recovered where formulas are
assigned.
"""

from __future__ import annotations


class FlowEngineError(Exception):
    """Base class for all engine errors."""


class MalformedFormulaError(FlowEngineError):
    """Raised when formula source text cannot be turned into a callable.

    Attributes
    ----------
    source:
        The offending source text.
    reason:
        Short description of why compilation failed.
    """

    def __init__(self, source: str, reason: str) -> None:
        self.source = source
        self.reason = reason
        super().__init__(f"Malformed formula: {reason}")


class FormulaExecutionError(FlowEngineError):
    """Raised when a formula fails while running against a module's inputs."""

    def __init__(self, module_id: str, cause: BaseException) -> None:
        self.module_id = module_id
        self.cause = cause
        super().__init__(f"Formula of module '{module_id}' failed: {type(cause).__name__}: {cause}")


class ModuleNotFoundInFlowError(FlowEngineError, KeyError):
    """Raised when a mutation references a module id that does not exist."""

    def __init__(self, module_id: str) -> None:
        self.module_id = module_id
        super().__init__(f"Module '{module_id}' not found in flow")

    def __str__(self) -> str:
        return self.args[0]


class SimulationError(FlowEngineError):
    """Raised when a sensitivity simulation is requested for unknown ids."""
