"""Execution units for the computation."""

from __future__ import annotations

import signal
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor

from microgrid_miner.scheduler.models import ExecutionMode


def create_executor(mode: ExecutionMode, workers: int) -> Executor:
    """Return an executor with exactly ``workers`` parallel units."""

    if mode == ExecutionMode.PROCESS:
        return ProcessPoolExecutor(max_workers=workers, initializer=_ignore_interrupts)
    return ThreadPoolExecutor(max_workers=workers, thread_name_prefix="computation")


def _ignore_interrupts() -> None:
    # Ctrl-C goes to the whole process group; only the parent handles it.
    signal.signal(signal.SIGINT, signal.SIG_IGN)
