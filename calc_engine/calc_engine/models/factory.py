"""Create modules with per-type defaults, and reset them to their defaults."""

from __future__ import annotations

import copy
import logging
from collections.abc import Sequence
from typing import Any

from calc_engine.engine.evaluator import evaluate_module
from calc_engine.formula.compiler import compile_formula_or_default
from calc_engine.models.flow import Module, ModuleType

logger = logging.getLogger(__name__)

DEFAULT_INPUTS: dict[str, Any] = {"value": 0}
DEFAULT_FORMULA_CODE = 'return {"output": float(inputs["value"])}'

_DEFAULT_DESCRIPTIONS: dict[ModuleType, str] = {
    ModuleType.INPUT: "Source data input for {name}",
    ModuleType.MATH: "Performs mathematical calculations on inputs",
    ModuleType.LOGIC: "Performs logical operations on boolean inputs",
    ModuleType.TRANSFORM: "Transforms input data into a different format",
    ModuleType.FILTER: "Filters input based on specified conditions",
    ModuleType.OUTPUT: "Final output module that summarizes results",
    ModuleType.CUSTOM: "Custom module with user-defined functionality",
}


def next_module_id(existing: Sequence[Module]) -> str:
    """Return one more than the largest numeric id in *existing* (``"1"`` if none)."""
    numeric_ids = [int(m.id) for m in existing if m.id.isdigit()]
    return str(max(numeric_ids, default=0) + 1)


def create_module(
    module_type: ModuleType | str,
    name: str,
    existing: Sequence[Module],
    *,
    description: str | None = None,
    inputs: dict[str, Any] | None = None,
    formula_code: str | None = None,
    category: str | None = None,
) -> Module:
    """Create a user-added module ready to be inserted into a flow.

    The formula is compiled from *formula_code* and smoke-tested against
    empty inputs (falling back to a constant-zero formula when either fails) and evaluated once against the
    initial inputs so that the module starts with consistent outputs.

    Parameters
    ----------
    module_type:
        Module classification.
    name:
        Display label.
    existing:
        Modules already in the flow; used to allocate a unique id.
    description:
        Optional description; a per-type default is used otherwise.
    inputs:
        Initial inputs; ``{"value": 0}`` by default.  Also stored as the
        module's default inputs.
    formula_code:
        Formula source text; ``return {"output": float(inputs["value"])}``
        by default.
    category:
        Optional library category.
    """
    module_type = ModuleType(module_type)
    initial_inputs = copy.deepcopy(inputs) if inputs is not None else dict(DEFAULT_INPUTS)
    formula = compile_formula_or_default(formula_code or DEFAULT_FORMULA_CODE, smoke_test=True)

    module = Module(
        id=next_module_id(existing),
        label=name,
        type=module_type,
        description=description or _DEFAULT_DESCRIPTIONS[module_type].format(name=name),
        category=category,
        inputs=initial_inputs,
        default_inputs=copy.deepcopy(initial_inputs),
        formula=formula,
        formula_code=formula.source,
        is_user_added=True,
    )
    module.outputs = evaluate_module(module)
    logger.debug("Created %s module '%s' with id %s", module_type.value, name, module.id)
    return module


def reset_to_defaults(module: Module) -> Module:
    """Return a copy of *module* whose inputs are restored from ``default_inputs``.

    The copy is flagged ``needs_recalculation`` so the next propagation pass
    re-evaluates it.
    """
    reset = module.model_copy(deep=True)
    reset.inputs = copy.deepcopy(module.default_inputs)
    reset.needs_recalculation = True
    return reset
