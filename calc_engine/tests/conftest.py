"""Shared fixtures for calc_engine tests."""

from __future__ import annotations

import pytest

from calc_engine.telemetry.profiling import ProfileCollector


@pytest.fixture(autouse=True)
def _reset_profile_collector():
    """Give every test a fresh profiling singleton."""
    ProfileCollector.reset()
    yield
    ProfileCollector.reset()
