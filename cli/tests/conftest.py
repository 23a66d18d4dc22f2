"""Shared fixtures for CLI tests.

The app callback installs a handler on the ``calc_engine`` logger and
reconfigures the profiling singleton on every invocation.  Both are
process-wide, so they are reset around each test.
"""

from __future__ import annotations

import logging
import os

import pytest

from calc_engine.telemetry.profiling import ProfileCollector


@pytest.fixture(autouse=True)
def _reset_process_state():
    engine_logger = logging.getLogger("calc_engine")
    level = engine_logger.level
    ProfileCollector.reset()
    yield
    for handler in list(engine_logger.handlers):
        if getattr(handler, "_calc_engine_handler", False):
            engine_logger.removeHandler(handler)
    engine_logger.setLevel(level)
    ProfileCollector.reset()


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path):
    """Keep FLOWCALC_* variables and .env files of the host out of the tests."""
    for key in list(os.environ):
        if key.upper().startswith("FLOWCALC_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)
