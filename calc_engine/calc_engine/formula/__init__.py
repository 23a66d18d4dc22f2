"""Formula source text <-> callable conversion."""

from calc_engine.formula.compiler import (
    DEFAULT_FALLBACK_CODE,
    Formula,
    compile_formula,
    compile_formula_or_default,
    normalize_formula_source,
    smoke_test_formula,
)

__all__ = [
    "DEFAULT_FALLBACK_CODE",
    "Formula",
    "compile_formula",
    "compile_formula_or_default",
    "normalize_formula_source",
    "smoke_test_formula",
]
