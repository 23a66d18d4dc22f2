"""Single-module evaluation with failure isolation.

The evaluator is the only place a user formula runs.  It hands the
formula a private deep copy of the module's inputs, so a formula can
neither mutate graph state nor keep aliases into it, and it converts any
failure into the :data:`EXECUTION_FAILED` sentinel so that one broken
formula never halts propagation of the rest of the graph.
"""

from __future__ import annotations

import copy
import logging
from typing import Any

from calc_engine.errors import FormulaExecutionError
from calc_engine.models.flow import Module

logger = logging.getLogger(__name__)

EXECUTION_FAILED: dict[str, Any] = {"error": "Execution failed"}


def execution_failed() -> dict[str, Any]:
    """Return a fresh copy of the failure sentinel."""
    return dict(EXECUTION_FAILED)


def is_execution_failure(outputs: dict[str, Any]) -> bool:
    """True when *outputs* is the failure sentinel."""
    return outputs == EXECUTION_FAILED


def _run_formula(module: Module) -> dict[str, Any]:
    """Run the formula, raising :class:`FormulaExecutionError` on any failure."""
    inputs_copy = copy.deepcopy(module.inputs)
    try:
        result = module.formula(inputs_copy)  # type: ignore[misc]
    except Exception as exc:
        raise FormulaExecutionError(module.id, exc) from exc

    if not isinstance(result, dict):
        raise FormulaExecutionError(
            module.id,
            TypeError(f"formula returned {type(result).__name__}, expected dict"),
        )
    # A formula may return a module-level constant; never let it be shared.
    return copy.deepcopy(result)


def evaluate_module(module: Module) -> dict[str, Any]:
    """Evaluate *module*'s formula against its current inputs.

    Parameters
    ----------
    module:
        The module to evaluate.  It is not modified.

    Returns
    -------
    dict
        A fresh outputs record.  Modules without a formula pass their
        last-known outputs through (as a copy).  A formula that raises, or
        returns something other than a dict, yields
        ``{"error": "Execution failed"}``.
    """
    if module.formula is None:
        return copy.deepcopy(module.outputs)

    try:
        return _run_formula(module)
    except FormulaExecutionError as exc:
        logger.warning("%s", exc, extra={"module_id": module.id})
        logger.debug("Formula failure detail for module '%s'", module.id, exc_info=exc.cause)
        return execution_failed()
