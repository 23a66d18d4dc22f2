"""Timing instrumentation for engine hot paths.

``@profile_operation(name)`` wraps graph building, scheduling,
propagation, simulation, and tracing.  Each call's wall time
(``perf_counter_ns``) is logged at DEBUG level and stored in the
thread-safe :class:`ProfileCollector` singleton, which keeps the last
``max_results`` samples per operation and aggregates them into
p50/p95/p99/mean statistics.

Usage::

    from calc_engine.telemetry.profiling import profile_operation

    @profile_operation("flow.propagate")
    def propagate(modules, connections, changed_node_id=None):
        ...
"""

from __future__ import annotations

import functools
import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


@dataclass(frozen=True)
class ProfileResult:
    """Immutable record of a single timed call."""

    operation: str
    duration_ms: float
    metadata: dict[str, Any] = field(default_factory=dict)


class ProfileCollector:
    """Thread-safe store of recent timings, keyed by operation name.

    Parameters
    ----------
    max_results:
        Maximum number of samples retained per operation.
    enabled:
        When ``False`` :meth:`record` is a no-op.
    """

    _instance: ProfileCollector | None = None
    _lock_cls = threading.Lock()

    def __init__(self, max_results: int = 100, *, enabled: bool = True) -> None:
        self._max_results = max_results
        self.enabled = enabled
        self._data: dict[str, deque[ProfileResult]] = {}
        self._lock = threading.Lock()

    @classmethod
    def get_instance(cls) -> ProfileCollector:
        """Return the process-wide collector, creating it on first use."""
        if cls._instance is None:
            with cls._lock_cls:
                if cls._instance is None:
                    cls._instance = ProfileCollector()
        return cls._instance

    @classmethod
    def configure(cls, max_results: int, *, enabled: bool = True) -> ProfileCollector:
        """Replace the singleton with one using the given limits."""
        with cls._lock_cls:
            cls._instance = ProfileCollector(max_results, enabled=enabled)
            return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Drop the singleton (for testing)."""
        with cls._lock_cls:
            cls._instance = None

    def record(self, result: ProfileResult) -> None:
        if not self.enabled:
            return
        with self._lock:
            if result.operation not in self._data:
                self._data[result.operation] = deque(maxlen=self._max_results)
            self._data[result.operation].append(result)

    def get_stats(self, operation: str) -> dict[str, Any] | None:
        """Aggregate statistics for *operation*, or ``None`` if never recorded.

        Returns
        -------
        dict
            ``{"operation", "count", "mean_ms", "p50_ms", "p95_ms",
            "p99_ms", "min_ms", "max_ms"}``
        """
        with self._lock:
            results = self._data.get(operation)
            if not results:
                return None
            durations = sorted(r.duration_ms for r in results)

        count = len(durations)
        return {
            "operation": operation,
            "count": count,
            "mean_ms": round(sum(durations) / count, 3),
            "p50_ms": round(self._percentile(durations, 50), 3),
            "p95_ms": round(self._percentile(durations, 95), 3),
            "p99_ms": round(self._percentile(durations, 99), 3),
            "min_ms": round(durations[0], 3),
            "max_ms": round(durations[-1], 3),
        }

    def get_all_stats(self) -> list[dict[str, Any]]:
        """Stats for every recorded operation, sorted by name."""
        with self._lock:
            operations = sorted(self._data.keys())
        return [stats for op in operations if (stats := self.get_stats(op)) is not None]

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    @staticmethod
    def _percentile(sorted_data: list[float], p: float) -> float:
        """Linear-interpolated p-th percentile of already sorted data."""
        if not sorted_data:
            return 0.0
        n = len(sorted_data)
        k = (p / 100.0) * (n - 1)
        floor_k = int(k)
        ceil_k = min(floor_k + 1, n - 1)
        frac = k - floor_k
        return sorted_data[floor_k] + frac * (sorted_data[ceil_k] - sorted_data[floor_k])


def profile_operation(name: str) -> Callable[[F], F]:
    """Decorator timing every call of the wrapped function under *name*.

    The timing is recorded even when the wrapped function raises.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            start_ns = time.perf_counter_ns()
            try:
                return func(*args, **kwargs)
            finally:
                duration_ms = (time.perf_counter_ns() - start_ns) / 1_000_000
                ProfileCollector.get_instance().record(
                    ProfileResult(operation=name, duration_ms=round(duration_ms, 3))
                )
                logger.debug("PROFILE %s: %.3f ms", name, duration_ms)

        return wrapper  # type: ignore[return-value]

    return decorator
