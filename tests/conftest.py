"""Shared test fixtures."""

from __future__ import annotations

import os

import pytest

from microgrid_miner.scheduler import DispatchMode, ExecutionMode, Miner, RetryPolicy

NO_WAIT = RetryPolicy(attempts=5, cooldown_seconds=0)


@pytest.fixture(autouse=True)
def _clean_microgrid_env(monkeypatch):
    """Keep developer MICROGRID_* variables out of the tests."""
    for name in list(os.environ):
        if name.startswith("MICROGRID_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def make_miner():
    """Build a thread-mode Miner with zero cooldowns; keyword overrides win."""

    def _make(**overrides) -> Miner:
        options = {
            "workers": 1,
            "dispatch_mode": DispatchMode.CONTINUOUS,
            "fetch_policy": NO_WAIT,
            "store_policy": NO_WAIT,
            "execution_mode": ExecutionMode.THREAD,
        }
        options.update(overrides)
        return Miner(**options)

    return _make
