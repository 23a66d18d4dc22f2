"""Flow graph schema."""

from calc_engine.models.flow import Connection, Flow, FormulaFn, Module, ModuleType

__all__ = [
    "Connection",
    "Flow",
    "FormulaFn",
    "Module",
    "ModuleType",
]
