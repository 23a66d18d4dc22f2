"""Value-level equality for port values and records.

Inputs and outputs are always freshly copied, so change detection must
compare by value, never by identity.  Plain ``==`` is almost right but
treats ``NaN`` as different from itself (which would make every pass over
a NaN-producing formula look like a change) and treats ``True`` as equal
to ``1``.  :func:`values_equal` fixes both while keeping dict comparison
key-order insensitive and ``1 == 1.0``.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from typing import Any


def values_equal(left: Any, right: Any) -> bool:
    """Deep value equality with NaN == NaN and bool distinct from int."""
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left is right

    if isinstance(left, float) and isinstance(right, float):
        if math.isnan(left) and math.isnan(right):
            return True
        return left == right

    if isinstance(left, Mapping) and isinstance(right, Mapping):
        if left.keys() != right.keys():
            return False
        return all(values_equal(left[key], right[key]) for key in left)

    if isinstance(left, (list, tuple)) and isinstance(right, (list, tuple)):
        if len(left) != len(right):
            return False
        return all(values_equal(a, b) for a, b in zip(left, right))

    try:
        return bool(left == right)
    except Exception:
        return left is right


def is_number(value: Any) -> bool:
    """True for ints and floats, excluding booleans."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)
