"""Structural validation of a flow.

Validation never raises and never blocks propagation: the engine
tolerates every condition reported here (stale connections are skipped,
cycles are broken by the scheduler, duplicate bindings resolve last-wins).
The warnings exist so that editors and the CLI can surface them.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence

from calc_engine.graph.dependency_graph import build_dependency_graph, find_cycles
from calc_engine.models.flow import Connection, Module


def validate_flow(modules: Sequence[Module], connections: Sequence[Connection]) -> list[str]:
    """Return human-readable warnings for *modules* and *connections*.

    An empty list means the flow is clean.  Checks, in order:

    1. Duplicate module ids.
    2. Connections referencing missing modules.
    3. Connections naming ports that do not exist on their modules.  Output
       ports are checked against the last computed outputs, so a module
       whose last evaluation failed reports all of its outgoing ports.
    4. Input ports bound by more than one connection (the last one wins).
    5. Dependency cycles.
    """
    warnings: list[str] = []

    id_counts = Counter(m.id for m in modules)
    for module_id, count in sorted(id_counts.items()):
        if count > 1:
            warnings.append(f"Module id '{module_id}' is used by {count} modules.")

    module_map = {m.id: m for m in modules}

    for conn in connections:
        missing = [end for end in (conn.source, conn.target) if end not in module_map]
        if missing:
            warnings.append(
                f"Connection '{conn.id}' ({conn.source} -> {conn.target}) references "
                f"missing module(s): {', '.join(missing)}."
            )
            continue
        if conn.source_port not in module_map[conn.source].outputs:
            warnings.append(
                f"Connection '{conn.id}' reads '{conn.source_port}', which is not an output of "
                f"module '{conn.source}'."
            )
        if conn.target_port not in module_map[conn.target].inputs:
            warnings.append(
                f"Connection '{conn.id}' writes '{conn.target_port}', which is not an input of "
                f"module '{conn.target}'."
            )

    bindings: dict[tuple[str, str], list[str]] = {}
    for conn in connections:
        bindings.setdefault((conn.target, conn.target_port), []).append(conn.id)
    for (target, port), conn_ids in bindings.items():
        if len(conn_ids) > 1:
            warnings.append(
                f"Input '{target}.{port}' is bound by {len(conn_ids)} connections "
                f"({', '.join(conn_ids)}); '{conn_ids[-1]}' wins."
            )

    for cycle in find_cycles(build_dependency_graph(modules, connections)):
        warnings.append(f"Cyclic dependency: {' -> '.join([*cycle, cycle[0]])}.")

    return warnings
