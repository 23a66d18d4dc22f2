"""Unit tests for calc_engine.serialization.flow_serializer."""

from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from calc_engine.engine.propagation import propagate
from calc_engine.formula.compiler import compile_formula
from calc_engine.models.flow import Connection, Flow, Module
from calc_engine.samples import sample_flow
from calc_engine.serialization.flow_serializer import (
    deserialize_flow,
    load_flow,
    save_flow,
    serialize_flow,
    validate_flow_schema,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _flow() -> Flow:
    code = 'return {"double": inputs["x"] * 2}'
    return Flow(
        modules=[
            Module(id="1", inputs={"x": 3}, outputs={"double": 6}, formula=compile_formula(code), formula_code=code),
            Module(id="2", outputs={"constant": "kept"}),
        ],
        connections=[Connection(id="e1-2", source="1", target="2", source_port="double", target_port="x")],
        metadata={"name": "demo"},
    )


class TestSerializeFlow:
    def test_deterministic(self):
        assert serialize_flow(_flow()) == serialize_flow(_flow())

    def test_sorted_keys_and_indent(self):
        text = serialize_flow(_flow())
        assert text.startswith('{\n  "connections"')
        parsed = json.loads(text)
        assert list(parsed) == sorted(parsed)

    def test_formula_callable_excluded_source_kept(self):
        parsed = json.loads(serialize_flow(_flow()))
        module = parsed["modules"][0]
        assert "formula" not in module
        assert module["formula_code"] == 'return {"double": inputs["x"] * 2}'


class TestDeserializeFlow:
    def test_round_trip_rebuilds_formulas(self):
        restored = deserialize_flow(serialize_flow(_flow()))
        first = restored.get_module("1")
        assert first.formula is not None
        assert first.formula({"x": 5}) == {"double": 10}
        assert restored.get_module("2").formula is None
        assert serialize_flow(restored) == serialize_flow(_flow())

    def test_restored_flow_propagates(self):
        restored = deserialize_flow(serialize_flow(_flow()))
        first = restored.get_module("1")
        first.inputs["x"] = 4
        first.needs_recalculation = True
        updated = {m.id: m for m in propagate(restored.modules, restored.connections, "1")}
        assert updated["1"].outputs == {"double": 8}

    def test_sample_flow_round_trip(self):
        flow = sample_flow()
        restored = deserialize_flow(serialize_flow(flow))
        assert propagate(restored.modules, restored.connections) is restored.modules

    def test_malformed_formula_falls_back(self, caplog):
        raw = json.loads(serialize_flow(_flow()))
        raw["modules"][0]["formula_code"] = "return {"
        restored = deserialize_flow(json.dumps(raw))
        assert restored.get_module("1").formula({}) == {"result": 0}
        assert any("malformed formula" in rec.message for rec in caplog.records)

    def test_runtime_failure_survives_round_trip(self):
        code = 'return {"result": undefined_var * inputs["x"]}'
        flow = Flow(
            modules=[
                Module(id="S", inputs={"x": 1}, outputs={"x": 1}, formula=compile_formula('return {"x": inputs["x"]}')),
                Module(id="D", inputs={"x": 0}, formula=compile_formula(code), formula_code=code),
            ],
            connections=[Connection(id="eS-D", source="S", target="D", source_port="x", target_port="x")],
        )
        restored = deserialize_flow(serialize_flow(flow))
        assert restored.get_module("D").formula.source == code

        updated = {m.id: m for m in propagate(restored.modules, restored.connections)}
        assert updated["D"].outputs == {"error": "Execution failed"}

    def test_invalid_schema_raises(self):
        with pytest.raises(ValidationError):
            deserialize_flow('{"modules": [{"label": "no id"}]}')

    def test_invalid_json_raises(self):
        with pytest.raises(ValueError):
            deserialize_flow("{not json")


class TestValidateFlowSchema:
    def test_valid(self):
        assert validate_flow_schema(serialize_flow(_flow())) == []

    def test_missing_field_reported_with_location(self):
        errors = validate_flow_schema('{"connections": [{"id": "c", "source": "a"}]}')
        assert any(e.startswith("connections.0.target") for e in errors)

    def test_invalid_json_reported(self):
        errors = validate_flow_schema("not json")
        assert errors


class TestFileHelpers:
    def test_save_and_load(self, tmp_path):
        path = tmp_path / "nested" / "flow.json"
        save_flow(_flow(), path)
        assert path.read_text(encoding="utf-8").endswith("}\n")

        loaded = load_flow(path)
        assert loaded.metadata == {"name": "demo"}
        assert loaded.get_module("1").formula({"x": 1}) == {"double": 2}

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(OSError):
            load_flow(tmp_path / "missing.json")
