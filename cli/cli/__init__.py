"""FlowCalc command-line interface."""
