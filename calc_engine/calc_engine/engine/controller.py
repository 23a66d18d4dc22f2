"""Stateful owner of a live flow.

:class:`RecalculationController` holds the current modules and
connections, applies editor mutations, and runs propagation after each
one.  Re-entrancy is handled with a busy flag and a single pending slot:
a recalculation requested while a pass is in flight (for example by a
change listener) is recorded and run once the pass finishes, and any
number of such requests collapse into one.

Listeners registered with :meth:`RecalculationController.subscribe` are
called with the new module list only when a pass actually changed
something.  That is the hook for UI refresh and persistence.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Any

from calc_engine.engine.propagation import PropagationStats, propagate_with_stats
from calc_engine.errors import FlowEngineError, ModuleNotFoundInFlowError
from calc_engine.models.flow import Connection, Flow, Module

if TYPE_CHECKING:
    from calc_engine.simulation.sensitivity import SimulationResult

logger = logging.getLogger(__name__)

ChangeListener = Callable[[list[Module]], None]

# Sentinel for "pending full recalculation" as opposed to a seeded one.
_FULL_PASS = object()


class RecalculationController:
    """Own a flow's state and keep its outputs consistent with its inputs.

    Parameters
    ----------
    modules:
        Initial modules.
    connections:
        Initial connections.
    auto_recalculate:
        When ``True`` every mutation immediately requests a recalculation
        seeded from the mutated module.  When ``False`` mutations only mark
        the flow dirty and :meth:`request_recalculation` must be called.
    """

    def __init__(
        self,
        modules: Sequence[Module] | None = None,
        connections: Sequence[Connection] | None = None,
        *,
        auto_recalculate: bool = True,
    ) -> None:
        self._modules: list[Module] = list(modules or [])
        self._connections: list[Connection] = list(connections or [])
        self.auto_recalculate = auto_recalculate
        self._busy = False
        self._pending: object | None = None
        self._dirty = False
        self._listeners: list[ChangeListener] = []
        self.last_stats: PropagationStats | None = None

    # ------------------------------------------------------------------
    # State access
    # ------------------------------------------------------------------

    @classmethod
    def from_flow(cls, flow: Flow, *, auto_recalculate: bool = True) -> RecalculationController:
        return cls(flow.modules, flow.connections, auto_recalculate=auto_recalculate)

    @property
    def modules(self) -> list[Module]:
        return self._modules

    @property
    def connections(self) -> list[Connection]:
        return self._connections

    @property
    def busy(self) -> bool:
        """True while a propagation pass is running."""
        return self._busy

    @property
    def needs_recalculation(self) -> bool:
        """True when a mutation has not yet been followed by a pass."""
        return self._dirty

    def to_flow(self, metadata: dict[str, Any] | None = None) -> Flow:
        return Flow(modules=list(self._modules), connections=list(self._connections), metadata=metadata or {})

    def get_module(self, module_id: str) -> Module:
        for module in self._modules:
            if module.id == module_id:
                return module
        raise ModuleNotFoundInFlowError(module_id)

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register *listener*; returns a callable that unregisters it."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    # ------------------------------------------------------------------
    # Recalculation
    # ------------------------------------------------------------------

    def request_recalculation(self, changed_node_id: str | None = None) -> bool:
        """Run a propagation pass, or queue one if a pass is in flight.

        Queued requests coalesce: at most one pending pass is kept, and a
        pending full pass absorbs seeded ones.  The pending pass runs as
        soon as the in-flight one completes, inside this same call.

        Returns
        -------
        bool
            True if this call ran at least one pass that changed the flow.
            Always False when the request was queued.
        """
        if self._busy:
            self._queue(changed_node_id)
            logger.debug("Recalculation in flight; queued request (changed=%s)", changed_node_id)
            return False

        changed_any = False
        request: object | None = _FULL_PASS if changed_node_id is None else changed_node_id
        try:
            while request is not None:
                changed_any |= self._run_pass(None if request is _FULL_PASS else str(request))
                request, self._pending = self._pending, None
        finally:
            # A pass that raised abandons whatever it queued.
            self._pending = None
        return changed_any

    def _queue(self, changed_node_id: str | None) -> None:
        if changed_node_id is None or self._pending is _FULL_PASS:
            self._pending = _FULL_PASS
        elif self._pending is None or self._pending == changed_node_id:
            self._pending = changed_node_id
        else:
            # Two different seeds: only a full pass covers both.
            self._pending = _FULL_PASS

    def _run_pass(self, changed_node_id: str | None) -> bool:
        # Listeners run while still busy; a request they make becomes the
        # pending pass picked up by the drain loop.
        self._busy = True
        self._dirty = False
        try:
            updated, stats = propagate_with_stats(self._modules, self._connections, changed_node_id)
            self.last_stats = stats
            if updated is self._modules:
                return False
            self._modules = updated
            for listener in list(self._listeners):
                listener(self._modules)
            return True
        finally:
            self._busy = False

    def _after_mutation(self, changed_node_id: str | None) -> None:
        self._dirty = True
        if self.auto_recalculate:
            self.request_recalculation(changed_node_id)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_module(self, module: Module) -> Module:
        if any(m.id == module.id for m in self._modules):
            raise FlowEngineError(f"Module '{module.id}' already exists")
        self._modules = [*self._modules, module]
        logger.info("Added module %s (%s)", module.id, module.label)
        self._after_mutation(module.id)
        return module

    def delete_module(self, module_id: str) -> None:
        """Remove a module and every connection attached to it."""
        self.get_module(module_id)
        self._modules = [m for m in self._modules if m.id != module_id]
        self._connections = [c for c in self._connections if c.source != module_id and c.target != module_id]
        logger.info("Deleted module %s and its connections", module_id)
        self._after_mutation(None)

    def add_connection(self, connection: Connection) -> Connection:
        self.get_module(connection.source)
        self.get_module(connection.target)
        self._connections = [*self._connections, connection]
        logger.info(
            "Connected %s.%s -> %s.%s",
            connection.source,
            connection.source_port,
            connection.target,
            connection.target_port,
        )
        self._after_mutation(connection.target)
        return connection

    def connect(self, source: str, source_port: str, target: str, target_port: str) -> Connection:
        """Create and add a connection with a generated id."""
        existing = {c.id for c in self._connections}
        base = f"e{source}-{target}-{source_port}-{target_port}"
        conn_id, suffix = base, 1
        while conn_id in existing:
            suffix += 1
            conn_id = f"{base}-{suffix}"
        return self.add_connection(
            Connection(id=conn_id, source=source, target=target, source_port=source_port, target_port=target_port)
        )

    def delete_connection(self, connection_id: str) -> None:
        remaining = [c for c in self._connections if c.id != connection_id]
        if len(remaining) == len(self._connections):
            raise FlowEngineError(f"Connection '{connection_id}' not found")
        self._connections = remaining
        logger.info("Deleted connection %s", connection_id)
        self._after_mutation(None)

    def set_input(self, module_id: str, port: str, value: Any) -> None:
        """Edit one input of a module and flag it for recalculation."""
        self._replace_module(module_id, lambda m: _with_input(m, port, value))
        self._after_mutation(module_id)

    def replace_formula(self, module_id: str, formula_code: str) -> Module:
        """Swap a module's formula wholesale, compiling *formula_code*.

        Malformed source falls back to the default constant formula.
        """
        from calc_engine.formula.compiler import compile_formula_or_default

        formula = compile_formula_or_default(formula_code)
        updated = self._replace_module(
            module_id,
            lambda m: m.model_copy(
                update={"formula": formula, "formula_code": formula_code, "needs_recalculation": True}
            ),
        )
        self._after_mutation(module_id)
        return updated

    def reset_module(self, module_id: str) -> bool:
        """Restore a user-added module's default inputs.

        Returns False (and changes nothing) for modules that were not added
        by the user.
        """
        from calc_engine.models.factory import reset_to_defaults

        if not self.get_module(module_id).is_user_added:
            return False
        self._replace_module(module_id, reset_to_defaults)
        self._after_mutation(module_id)
        return True

    def replace_flow(self, modules: Sequence[Module], connections: Sequence[Connection]) -> None:
        """Swap the whole flow (e.g. after an import) and recalculate everything."""
        self._modules = list(modules)
        self._connections = list(connections)
        self._after_mutation(None)

    def apply_simulation(self, result: SimulationResult) -> None:
        """Write a simulation's perturbed input into the live flow."""
        changed = result.changed_input
        self.set_input(changed.node_id, changed.input_name, changed.new_value)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _replace_module(self, module_id: str, transform: Callable[[Module], Module]) -> Module:
        replaced: Module | None = None
        modules: list[Module] = []
        for module in self._modules:
            if module.id == module_id:
                replaced = transform(module)
                modules.append(replaced)
            else:
                modules.append(module)
        if replaced is None:
            raise ModuleNotFoundInFlowError(module_id)
        self._modules = modules
        return replaced


def _with_input(module: Module, port: str, value: Any) -> Module:
    updated = module.model_copy(deep=True)
    updated.inputs[port] = value
    updated.needs_recalculation = True
    return updated
