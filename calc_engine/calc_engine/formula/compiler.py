"""Compile formula source text into callables.

A formula is the body of a Python function with a single parameter,
``inputs``, that returns the module's outputs record::

    return {"profit": float(inputs["revenue"]) - float(inputs["costs"])}

A body that does not start with ``return`` is treated as a single
expression and prefixed with one, so ``{"double": inputs["x"] * 2}`` is
accepted too.

Source text is the persisted form of a formula; :class:`Formula` is its
runtime form.  Compilation runs in a restricted namespace: imports,
``global``/``nonlocal`` statements, and dunder names or attributes are
rejected at parse time, and only a whitelist of builtins plus the
:mod:`math` module is reachable at run time.  This is not a security
sandbox; it keeps accidental misuse out of user formulas.
"""

from __future__ import annotations

import ast
import builtins
import logging
import math
import re
import textwrap
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from calc_engine.errors import MalformedFormulaError

logger = logging.getLogger(__name__)

DEFAULT_FALLBACK_CODE = 'return {"result": 0}'

_FUNCTION_NAME = "_formula"

_RETURN_PREFIX = re.compile(r"return\b")

_SAFE_BUILTIN_NAMES: tuple[str, ...] = (
    "abs",
    "all",
    "any",
    "bool",
    "dict",
    "enumerate",
    "float",
    "int",
    "isinstance",
    "len",
    "list",
    "max",
    "min",
    "pow",
    "range",
    "round",
    "sorted",
    "str",
    "sum",
    "tuple",
    "zip",
    "ArithmeticError",
    "KeyError",
    "TypeError",
    "ValueError",
    "ZeroDivisionError",
)

_SAFE_BUILTINS: dict[str, Any] = {name: getattr(builtins, name) for name in _SAFE_BUILTIN_NAMES}

# Exceptions a formula may legitimately raise when smoke-tested against an
# empty inputs record: they depend on data, not on the formula being broken.
_DATA_DEPENDENT_ERRORS: tuple[type[BaseException], ...] = (
    KeyError,
    AttributeError,
    IndexError,
    TypeError,
    ValueError,
    ArithmeticError,
)


@dataclass(frozen=True)
class Formula:
    """An immutable compiled formula that remembers its source text."""

    source: str
    _fn: Callable[[dict[str, Any]], Any] = field(repr=False, compare=False)

    def __call__(self, inputs: dict[str, Any]) -> Any:
        return self._fn(inputs)

    def __deepcopy__(self, memo: dict[int, Any]) -> Formula:
        return self


# ---------------------------------------------------------------------------
# Source normalisation & validation
# ---------------------------------------------------------------------------


def normalize_formula_source(code: str) -> str:
    """Return *code* as a function body, prefixing ``return`` for bare expressions."""
    body = textwrap.dedent(code).strip()
    if not body:
        raise MalformedFormulaError(code, "formula is empty")
    if _RETURN_PREFIX.match(body):
        return body
    try:
        ast.parse(body, mode="eval")
    except SyntaxError:
        # Multi-statement body without a leading return; keep as-is and let
        # the statement parser decide.
        return body
    return f"return {body}"


class _FormulaValidator(ast.NodeVisitor):
    """Reject constructs that have no place in a pure formula."""

    def __init__(self, source: str) -> None:
        self._source = source

    def _reject(self, reason: str) -> None:
        raise MalformedFormulaError(self._source, reason)

    def visit_Import(self, node: ast.Import) -> None:
        self._reject("imports are not allowed")

    def visit_ImportFrom(self, node: ast.ImportFrom) -> None:
        self._reject("imports are not allowed")

    def visit_Global(self, node: ast.Global) -> None:
        self._reject("global statements are not allowed")

    def visit_Nonlocal(self, node: ast.Nonlocal) -> None:
        self._reject("nonlocal statements are not allowed")

    def visit_Name(self, node: ast.Name) -> None:
        if node.id.startswith("__"):
            self._reject(f"name '{node.id}' is not allowed")
        self.generic_visit(node)

    def visit_Attribute(self, node: ast.Attribute) -> None:
        if node.attr.startswith("_"):
            self._reject(f"attribute '{node.attr}' is not allowed")
        self.generic_visit(node)


# ---------------------------------------------------------------------------
# Compilation
# ---------------------------------------------------------------------------


def compile_formula(code: str) -> Formula:
    """Compile formula source text into a :class:`Formula`.

    Parameters
    ----------
    code:
        A function body with ``inputs`` in scope, or a bare expression.

    Returns
    -------
    Formula
        The compiled callable.  ``Formula.source`` holds *code* verbatim so
        that re-serialising a loaded flow is lossless.

    Raises
    ------
    MalformedFormulaError
        If the source does not parse or uses a rejected construct.  A
        formula that compiles but fails when called (an undefined name, a
        non-dict result) is not malformed; that failure surfaces at
        evaluation time.
    """
    body = normalize_formula_source(code)
    wrapped = f"def {_FUNCTION_NAME}(inputs):\n{textwrap.indent(body, '    ')}\n"

    try:
        tree = ast.parse(wrapped, mode="exec")
    except SyntaxError as exc:
        raise MalformedFormulaError(code, f"syntax error: {exc.msg}") from exc

    _FormulaValidator(code).visit(tree)

    namespace: dict[str, Any] = {"__builtins__": _SAFE_BUILTINS, "math": math}
    exec(compile(tree, "<formula>", "exec"), namespace)  # noqa: S102
    return Formula(source=code, _fn=namespace[_FUNCTION_NAME])


def smoke_test_formula(formula: Formula) -> None:
    """Call *formula* with an empty inputs record and reject obvious breakage.

    Errors caused by the missing data (``KeyError``, ``TypeError``, ...) are
    accepted.

    Raises
    ------
    MalformedFormulaError
        On an undefined name, any other unexpected error, or a non-dict
        result.
    """
    try:
        probe = formula({})
    except NameError as exc:
        raise MalformedFormulaError(formula.source, f"undefined name: {exc}") from exc
    except _DATA_DEPENDENT_ERRORS:
        return
    except Exception as exc:
        raise MalformedFormulaError(formula.source, f"{type(exc).__name__}: {exc}") from exc

    if not isinstance(probe, dict):
        raise MalformedFormulaError(formula.source, f"formula must return a dict, got {type(probe).__name__}")


def compile_formula_or_default(code: str | None, *, smoke_test: bool = False) -> Formula:
    """Compile *code*, falling back to a constant-zero formula when malformed.

    This is where malformed formulas are recovered: a module never holds an
    unusable callable.  ``None`` or blank source also yields the fallback.
    With *smoke_test* the compiled formula must also pass
    :func:`smoke_test_formula`, as it must when a module is first created.
    """
    if code is None or not code.strip():
        return compile_formula(DEFAULT_FALLBACK_CODE)
    try:
        formula = compile_formula(code)
        if smoke_test:
            smoke_test_formula(formula)
        return formula
    except MalformedFormulaError as exc:
        logger.warning("Falling back to default formula: %s", exc.reason)
        return compile_formula(DEFAULT_FALLBACK_CODE)
