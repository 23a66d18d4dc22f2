"""Flow graph schema: modules, connections, and the flow container.

A *module* is a unit of computation with named input and output ports and
an opaque formula mapping an inputs record to an outputs record.  A
*connection* routes one module's output port into another module's input
port.  Connections carry no data; they are consulted at evaluation time.

The formula callable is runtime-only state.  Its persisted form is the
``formula_code`` source text, which collaborators compile back into a
callable via :mod:`calc_engine.formula` after loading.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator

FormulaFn = Callable[[dict[str, Any]], dict[str, Any]]


class ModuleType(str, Enum):
    """Classification tag for a module.

    The engine does not branch on the type, with one exception: the
    sensitivity simulator mirrors a perturbed input into the outputs of an
    ``INPUT`` module.
    """

    INPUT = "input"
    MATH = "math"
    LOGIC = "logic"
    TRANSFORM = "transform"
    FILTER = "filter"
    OUTPUT = "output"
    CUSTOM = "custom"


class Module(BaseModel):
    """A node of the flow graph.

    ``outputs`` always hold the result of applying ``formula`` to the most
    recently *evaluated* inputs.  After an input edit the outputs are stale
    until the module is re-evaluated, which ``needs_recalculation`` tracks.
    """

    # -- Identity --
    id: str = Field(..., min_length=1, description="Unique, stable module identifier.")
    label: str = Field(default="", description="Display name; defaults to the id.")
    type: ModuleType = Field(default=ModuleType.CUSTOM, description="Classification tag.")
    description: str = Field(default="", description="Free-text description.")
    category: str | None = Field(default=None, description="Library category, if any.")

    # -- Ports --
    inputs: dict[str, Any] = Field(
        default_factory=dict,
        description="Input port name -> current value.",
    )
    outputs: dict[str, Any] = Field(
        default_factory=dict,
        description="Output port name -> last computed value.  Derived.",
    )
    default_inputs: dict[str, Any] = Field(
        default_factory=dict,
        description="Snapshot restored when the module is reset.",
    )

    # -- Formula --
    formula: FormulaFn | None = Field(
        default=None,
        exclude=True,
        description="Runtime callable; never serialized.",
    )
    formula_code: str | None = Field(
        default=None,
        description="Formula source text; the persisted representation of ``formula``.",
    )

    # -- Recalculation state --
    needs_recalculation: bool = Field(
        default=False,
        description="True when inputs changed since outputs were last computed.",
    )
    was_recalculated: bool = Field(
        default=False,
        description="Outputs changed during the most recent propagation pass.",
    )
    was_impacted: bool = Field(
        default=False,
        description="Outputs changed as a consequence of another module's change.",
    )
    is_user_added: bool = Field(
        default=False,
        description="Created by the user rather than shipped with the flow.",
    )

    @model_validator(mode="after")
    def default_label_to_id(self) -> Module:
        """Use the id as the label when none was given."""
        if not self.label:
            self.label = self.id
        return self


class Connection(BaseModel):
    """A directed binding from ``source.outputs[source_port]`` to ``target.inputs[target_port]``."""

    id: str = Field(..., min_length=1, description="Unique connection identifier.")
    source: str = Field(..., min_length=1, description="Upstream module id.")
    target: str = Field(..., min_length=1, description="Downstream module id.")
    source_port: str = Field(..., min_length=1, description="Output port on the source module.")
    target_port: str = Field(..., min_length=1, description="Input port on the target module.")


class Flow(BaseModel):
    """A complete flow graph: modules plus the connections between them."""

    modules: list[Module] = Field(default_factory=list)
    connections: list[Connection] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    def module_map(self) -> dict[str, Module]:
        return {m.id: m for m in self.modules}

    def get_module(self, module_id: str) -> Module | None:
        for module in self.modules:
            if module.id == module_id:
                return module
        return None
