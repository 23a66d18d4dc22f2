"""Demonstration flow: revenue and costs through profit, tax, ROI and a KPI dashboard.

``flowcalc init`` writes this flow to disk, and the tests use it as a
realistic ten-module fixture.  Outputs are not hard-coded: they are
computed by a full propagation pass, so the sample is consistent by
construction.
"""

from __future__ import annotations

from typing import Any

from calc_engine.engine.propagation import recalculate_flow
from calc_engine.formula.compiler import compile_formula
from calc_engine.models.flow import Connection, Flow, Module, ModuleType

_THRESHOLD_CODE = """\
roi = float(inputs["roi"])
threshold = float(inputs["threshold"])
return {
    "meetsTarget": roi >= threshold,
    "status": "Target achieved" if roi >= threshold else "Below target",
}"""

_DASHBOARD_CODE = """\
revenue = float(inputs["revenue"])
profit_margin = float(inputs["profit"]) / revenue * 100
net_margin = float(inputs["netProfit"]) / revenue * 100
status = "Critical"
if net_margin > 20:
    status = "Healthy"
elif net_margin > 10:
    status = "Stable"
elif net_margin > 5:
    status = "Concerning"
return {
    "profitMargin": round(profit_margin, 1),
    "netMargin": round(net_margin, 1),
    "status": status,
}"""

# (id, label, type, description, inputs, formula source)
_MODULE_SPECS: list[tuple[str, str, ModuleType, str, dict[str, Any], str]] = [
    (
        "1",
        "Revenue Data",
        ModuleType.INPUT,
        "Source data for monthly revenue figures",
        {"monthlyRevenue": 50000},
        'return {"revenue": float(inputs["monthlyRevenue"])}',
    ),
    (
        "2",
        "Cost Data",
        ModuleType.INPUT,
        "Source data for monthly operating costs",
        {"fixedCosts": 20000, "variableCosts": 15000},
        'return {"totalCosts": float(inputs["fixedCosts"]) + float(inputs["variableCosts"])}',
    ),
    (
        "3",
        "Profit Calculator",
        ModuleType.MATH,
        "Calculates gross profit from revenue and costs",
        {"revenue": 50000, "costs": 35000},
        'return {"profit": float(inputs["revenue"]) - float(inputs["costs"])}',
    ),
    (
        "4",
        "Tax Rate",
        ModuleType.INPUT,
        "Current tax rate as a percentage",
        {"taxPercentage": 21},
        'return {"taxRate": float(inputs["taxPercentage"]) / 100}',
    ),
    (
        "5",
        "Tax Calculator",
        ModuleType.MATH,
        "Calculates tax amount based on profit and tax rate",
        {"profit": 15000, "taxRate": 0.21},
        'return {"taxAmount": float(inputs["profit"]) * float(inputs["taxRate"])}',
    ),
    (
        "6",
        "Net Profit",
        ModuleType.MATH,
        "Calculates net profit after taxes",
        {"profit": 15000, "taxAmount": 3150},
        'return {"netProfit": float(inputs["profit"]) - float(inputs["taxAmount"])}',
    ),
    (
        "7",
        "Investment Data",
        ModuleType.INPUT,
        "Capital investment information",
        {"totalInvestment": 100000},
        'return {"investment": float(inputs["totalInvestment"])}',
    ),
    (
        "8",
        "ROI Calculator",
        ModuleType.MATH,
        "Calculates Return on Investment percentage",
        {"netProfit": 11850, "investment": 100000},
        'return {"roi": float(inputs["netProfit"]) / float(inputs["investment"]) * 100}',
    ),
    (
        "9",
        "Performance Threshold",
        ModuleType.FILTER,
        "Evaluates if ROI meets target threshold",
        {"roi": 11.85, "threshold": 10},
        _THRESHOLD_CODE,
    ),
    (
        "10",
        "Business KPI Dashboard",
        ModuleType.OUTPUT,
        "Final KPI metrics for business performance",
        {
            "revenue": 50000,
            "costs": 35000,
            "profit": 15000,
            "netProfit": 11850,
            "roi": 11.85,
            "performanceStatus": "Target achieved",
        },
        _DASHBOARD_CODE,
    ),
]

# (source, source_port, target, target_port)
_CONNECTION_SPECS: list[tuple[str, str, str, str]] = [
    ("1", "revenue", "3", "revenue"),
    ("2", "totalCosts", "3", "costs"),
    ("3", "profit", "5", "profit"),
    ("4", "taxRate", "5", "taxRate"),
    ("3", "profit", "6", "profit"),
    ("5", "taxAmount", "6", "taxAmount"),
    ("7", "investment", "8", "investment"),
    ("6", "netProfit", "8", "netProfit"),
    ("8", "roi", "9", "roi"),
    ("1", "revenue", "10", "revenue"),
    ("2", "totalCosts", "10", "costs"),
    ("3", "profit", "10", "profit"),
    ("6", "netProfit", "10", "netProfit"),
    ("8", "roi", "10", "roi"),
    ("9", "status", "10", "performanceStatus"),
]


def sample_flow() -> Flow:
    """Build the sample flow with outputs computed by a full pass."""
    modules = [
        Module(
            id=module_id,
            label=label,
            type=module_type,
            description=description,
            inputs=dict(inputs),
            default_inputs=dict(inputs),
            formula=compile_formula(code),
            formula_code=code,
        )
        for module_id, label, module_type, description, inputs, code in _MODULE_SPECS
    ]
    connections = [
        Connection(
            id=f"e{source}-{target}",
            source=source,
            target=target,
            source_port=source_port,
            target_port=target_port,
        )
        for source, source_port, target, target_port in _CONNECTION_SPECS
    ]

    flow = recalculate_flow(Flow(modules=modules, connections=connections, metadata={"name": "Business KPIs"}))
    for module in flow.modules:
        module.was_recalculated = False
        module.was_impacted = False
    return flow
