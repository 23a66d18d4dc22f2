"""Flow persistence: deterministic JSON with formulas stored as source text."""

from calc_engine.serialization.flow_serializer import (
    deserialize_flow,
    load_flow,
    save_flow,
    serialize_flow,
    validate_flow_schema,
)

__all__ = [
    "deserialize_flow",
    "load_flow",
    "save_flow",
    "serialize_flow",
    "validate_flow_schema",
]
