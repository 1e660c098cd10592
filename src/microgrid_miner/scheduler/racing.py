"""Racing dispatch: whichever computation finishes first gets the next task."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import FIRST_COMPLETED, Executor, Future, ThreadPoolExecutor, wait

from microgrid_miner.compute import Computation
from microgrid_miner.protocol.base import ResultSink
from microgrid_miner.protocol.models import Task
from microgrid_miner.scheduler.feed import TaskFeed
from microgrid_miner.scheduler.models import TaskResult, WorkerState
from microgrid_miner.scheduler.prefetch import POLL_INTERVAL_SECONDS
from microgrid_miner.scheduler.retry import RetryPolicy
from microgrid_miner.scheduler.worker import (
    FailureCallback,
    complete_computation,
    log_worker_failure,
    store_result,
    timed_computation,
)

logger = logging.getLogger(__name__)

_Outcome = Future[tuple[object | None, float]]


class RacingDispatcher:
    """Keeps one computation in flight per slot; stores run on a side pool.

    A slot is refilled as soon as its computation completes, while the
    previous result is still being stored. Idle slots only take tasks that
    are already queued, so an empty feed never delays collecting finished
    computations. A slot whose compute or store fails is not refilled.
    """

    def __init__(
        self,
        *,
        workers: int,
        feed: TaskFeed,
        computation: Computation,
        executor: Executor,
        sink: ResultSink,
        store_policy: RetryPolicy,
        on_failure: FailureCallback,
        sleep: Callable[[float], object] = time.sleep,
    ) -> None:
        self.states = [WorkerState(index=index) for index in range(workers)]
        self._feed = feed
        self._computation = computation
        self._executor = executor
        self._sink = sink
        self._store_policy = store_policy
        self._on_failure = on_failure
        self._sleep = sleep
        self._lock = threading.Lock()
        self._dead: set[int] = set()

    def run(self) -> list[WorkerState]:
        pending: dict[_Outcome, tuple[int, Task]] = {}
        idle: list[int] = list(range(len(self.states)))
        stores = ThreadPoolExecutor(max_workers=len(self.states), thread_name_prefix="miner-store")
        with stores:
            while True:
                self._fill_idle(idle, pending)
                if pending:
                    done, _ = wait(
                        pending,
                        timeout=POLL_INTERVAL_SECONDS,
                        return_when=FIRST_COMPLETED,
                    )
                    for outcome in done:
                        slot, task = pending.pop(outcome)
                        if self._collect(slot, task, outcome, stores):
                            idle.append(slot)
                    continue
                # Nothing in flight: block on the feed until a task or its end.
                live = [slot for slot in idle if not self._is_dead(slot)]
                if not live:
                    break
                slot = live[0]
                idle.remove(slot)
                task = self._feed.acquire(slot)
                if task is None:
                    break
                self._start(slot, task, pending)
        return self.states

    def _fill_idle(self, idle: list[int], pending: dict[_Outcome, tuple[int, Task]]) -> None:
        for slot in list(idle):
            if self._is_dead(slot):
                idle.remove(slot)
                continue
            task = self._feed.try_acquire(slot)
            if task is None:
                return
            idle.remove(slot)
            self._start(slot, task, pending)

    def _collect(
        self,
        slot: int,
        task: Task,
        outcome: _Outcome,
        stores: ThreadPoolExecutor,
    ) -> bool:
        """Hand a finished computation to the store pool; ``True`` frees the slot."""

        state = self.states[slot]
        state.current_task = None
        try:
            result = complete_computation(state, task, outcome)
        except Exception as error:  # noqa: BLE001
            self._fail(slot, "compute", error, task)
            return False
        stores.submit(self._store, result)
        return not self._is_dead(slot)

    def _start(self, slot: int, task: Task, pending: dict[_Outcome, tuple[int, Task]]) -> None:
        state = self.states[slot]
        state.current_task = task
        logger.info(
            "[%02d][%d] Checking range %d..%d",
            slot,
            task.uid,
            task.start_number,
            task.stop_number,
        )
        outcome = self._executor.submit(timed_computation, self._computation, task)
        pending[outcome] = (slot, task)

    def _is_dead(self, slot: int) -> bool:
        with self._lock:
            return slot in self._dead

    def _store(self, result: TaskResult) -> None:
        slot = result.worker_index
        try:
            store_result(self._sink, result, policy=self._store_policy, sleep=self._sleep)
        except Exception as error:  # noqa: BLE001
            self._fail(slot, "store", error, result.task)
            return
        with self._lock:
            self.states[slot].stored += 1

    def _fail(self, slot: int, phase: str, error: BaseException, task: Task) -> None:
        with self._lock:
            self._dead.add(slot)
            state = self.states[slot]
            state.failed += 1
            if state.error is None:
                state.error = error
        log_worker_failure(slot, phase, error, task)
        self._on_failure(slot, error)
