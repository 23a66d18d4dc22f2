"""Profiling instrumentation for the recalculation engine."""

from __future__ import annotations

from calc_engine.telemetry.profiling import ProfileCollector, ProfileResult, profile_operation

__all__ = [
    "ProfileCollector",
    "ProfileResult",
    "profile_operation",
]
