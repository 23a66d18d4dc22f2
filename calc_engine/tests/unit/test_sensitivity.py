"""Unit tests for calc_engine.simulation.sensitivity."""

from __future__ import annotations

import pytest

from calc_engine.engine.propagation import propagate
from calc_engine.errors import SimulationError
from calc_engine.models.flow import Connection, Module, ModuleType
from calc_engine.simulation.sensitivity import (
    SensitivityAnalyzer,
    SimulationResult,
    percent_difference,
    perturb_value,
    simulate_sensitivity,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _conn(source: str, source_port: str, target: str, target_port: str) -> Connection:
    return Connection(
        id=f"e{source}-{target}-{target_port}",
        source=source,
        target=target,
        source_port=source_port,
        target_port=target_port,
    )


def _profit_flow() -> tuple[list[Module], list[Connection]]:
    """A (revenue) and B (cost) feed C (profit); D (tax) hangs off C; U is unrelated."""
    modules = [
        Module(
            id="A",
            label="Revenue",
            type=ModuleType.INPUT,
            inputs={"revenue": 50000},
            outputs={"revenue": 50000},
            formula=lambda i: {"revenue": i["revenue"]},
        ),
        Module(
            id="B",
            label="Cost",
            type=ModuleType.INPUT,
            inputs={"cost": 35000},
            outputs={"cost": 35000},
            formula=lambda i: {"cost": i["cost"]},
        ),
        Module(
            id="C",
            label="Profit",
            type=ModuleType.MATH,
            inputs={"revenue": 0, "cost": 0},
            formula=lambda i: {"profit": i["revenue"] - i["cost"]},
        ),
        Module(
            id="D",
            label="Tax",
            type=ModuleType.MATH,
            inputs={"profit": 0},
            formula=lambda i: {"tax": i["profit"] * 0.2},
        ),
        Module(id="U", label="Unrelated", inputs={"k": 1}, formula=lambda i: {"k": i["k"]}),
    ]
    connections = [
        _conn("A", "revenue", "C", "revenue"),
        _conn("B", "cost", "C", "cost"),
        _conn("C", "profit", "D", "profit"),
    ]
    return propagate(modules, connections), connections


def _snapshot(modules: list[Module]) -> list[dict]:
    return [m.model_dump() for m in modules]


# ---------------------------------------------------------------------------
# Arithmetic
# ---------------------------------------------------------------------------


class TestArithmetic:
    def test_perturb_value(self):
        assert perturb_value(50000, 10) == pytest.approx(55000)
        assert perturb_value(200, -25) == pytest.approx(150)
        assert perturb_value(0, 50) == 0

    def test_non_numeric_not_perturbed(self):
        assert perturb_value("high", 10) == "high"
        assert perturb_value(True, 10) is True
        assert perturb_value(None, 10) is None

    def test_percent_difference(self):
        assert percent_difference(15000, 20000) == pytest.approx(33.3333, rel=1e-4)
        assert percent_difference(-100, -50) == pytest.approx(50.0)

    def test_percent_difference_undefined_is_zero(self):
        assert percent_difference(0, 10) == 0.0
        assert percent_difference("a", 10) == 0.0
        assert percent_difference(10, None) == 0.0


# ---------------------------------------------------------------------------
# simulate
# ---------------------------------------------------------------------------


class TestSimulate:
    def test_revenue_plus_ten_percent(self):
        modules, connections = _profit_flow()
        result = simulate_sensitivity(modules, connections, "C", "profit", "A", "revenue", 10)

        assert isinstance(result, SimulationResult)
        assert result.changed_input.original_value == 50000
        assert result.changed_input.new_value == pytest.approx(55000)
        assert result.target_metric is not None
        assert result.target_metric.original_value == 15000
        assert result.target_metric.new_value == pytest.approx(20000)
        assert result.target_metric.percent_change == pytest.approx(33.33, abs=0.01)

    def test_affected_nodes_in_evaluation_order(self):
        modules, connections = _profit_flow()
        result = simulate_sensitivity(modules, connections, "C", "profit", "A", "revenue", 10)

        assert [n.node_id for n in result.affected_nodes] == ["A", "C", "D"]
        affected = {n.node_id: n for n in result.affected_nodes}
        assert affected["A"].new_outputs["revenue"] == pytest.approx(55000)
        assert affected["C"].is_target
        assert not affected["D"].is_target
        assert affected["D"].original_outputs == {"tax": 3000}
        assert affected["D"].new_outputs["tax"] == pytest.approx(4000)
        assert affected["C"].node_type == ModuleType.MATH

    def test_caller_state_not_mutated(self):
        modules, connections = _profit_flow()
        before_modules = _snapshot(modules)
        before_connections = [c.model_dump() for c in connections]

        simulate_sensitivity(modules, connections, "D", "tax", "B", "cost", -50)

        assert _snapshot(modules) == before_modules
        assert [c.model_dump() for c in connections] == before_connections

    def test_input_module_output_mirrored(self):
        """An INPUT module without a formula still reflects the perturbed value."""
        modules, connections = _profit_flow()
        modules = [m.model_copy(update={"formula": None}) if m.id == "A" else m for m in modules]

        result = simulate_sensitivity(modules, connections, "C", "profit", "A", "revenue", 10)
        assert result.target_metric.new_value == pytest.approx(20000)

    def test_non_numeric_input_left_unchanged(self):
        modules = [
            Module(
                id="S",
                type=ModuleType.INPUT,
                inputs={"mode": "fast"},
                outputs={"mode": "fast"},
                formula=lambda i: {"mode": i["mode"]},
            ),
        ]
        result = simulate_sensitivity(modules, [], "S", "mode", "S", "mode", 10)
        assert result.changed_input.new_value == "fast"
        assert result.affected_nodes == []
        assert result.target_metric.percent_change == 0.0
        assert "not perturbable" in result.summary

    def test_zero_original_target_reports_zero_percent(self):
        modules, connections = _profit_flow()
        modules = [m.model_copy(update={"inputs": {"cost": 50000}}) if m.id == "B" else m for m in modules]
        modules = propagate(modules, connections)

        result = simulate_sensitivity(modules, connections, "C", "profit", "A", "revenue", 10)
        assert result.target_metric.original_value == 0
        assert result.target_metric.percent_change == 0.0

    def test_failure_inside_clone_still_returns_result(self):
        modules, connections = _profit_flow()
        modules.append(
            Module(
                id="R",
                inputs={"revenue": 50000},
                outputs={"ratio": 1.0},
                # Divides by zero once revenue crosses 52000.
                formula=lambda i: {"ratio": 1 / (i["revenue"] < 52000)},
            )
        )
        connections.append(_conn("A", "revenue", "R", "revenue"))

        result = simulate_sensitivity(modules, connections, "C", "profit", "A", "revenue", 10)
        affected = {n.node_id: n for n in result.affected_nodes}
        assert affected["R"].new_outputs == {"error": "Execution failed"}
        assert result.target_metric.new_value == pytest.approx(20000)

    def test_summary_mentions_input_and_target(self):
        modules, connections = _profit_flow()
        result = simulate_sensitivity(modules, connections, "C", "profit", "A", "revenue", 10)
        assert "Revenue.revenue" in result.summary
        assert "+10%" in result.summary
        assert "Profit.profit" in result.summary
        assert "+33.33%" in result.summary

    def test_unknown_target_raises(self):
        modules, connections = _profit_flow()
        with pytest.raises(SimulationError, match="Target module 'nope'"):
            simulate_sensitivity(modules, connections, "nope", "profit", "A", "revenue", 10)

    def test_unknown_input_module_raises(self):
        modules, connections = _profit_flow()
        with pytest.raises(SimulationError, match="Input module 'nope'"):
            simulate_sensitivity(modules, connections, "C", "profit", "nope", "revenue", 10)

    def test_unknown_input_port_raises(self):
        modules, connections = _profit_flow()
        with pytest.raises(SimulationError, match="no input 'price'"):
            simulate_sensitivity(modules, connections, "C", "profit", "A", "price", 10)


class TestSweep:
    def test_one_result_per_percent(self):
        modules, connections = _profit_flow()
        analyzer = SensitivityAnalyzer(modules, connections)
        results = analyzer.sweep("C", "profit", "A", "revenue", [-10, 0, 10])

        assert [r.target_metric.new_value for r in results] == pytest.approx([10000, 15000, 20000])
        assert results[1].affected_nodes == []

    def test_sweep_runs_are_independent(self):
        modules, connections = _profit_flow()
        analyzer = SensitivityAnalyzer(modules, connections)
        first, second = analyzer.sweep("C", "profit", "A", "revenue", [10, 10])
        assert first.target_metric.new_value == second.target_metric.new_value
