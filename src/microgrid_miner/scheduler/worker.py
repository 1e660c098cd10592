"""Worker lane: acquire -> compute -> store until the feed runs dry."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from concurrent.futures import Executor, Future

from microgrid_miner.compute import Computation
from microgrid_miner.protocol.base import ResultSink
from microgrid_miner.protocol.models import Task
from microgrid_miner.scheduler.failure_classifier import classify_failure
from microgrid_miner.scheduler.feed import TaskFeed
from microgrid_miner.scheduler.models import ComputationError, TaskResult, WorkerState
from microgrid_miner.scheduler.retry import RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)

FailureCallback = Callable[[int, BaseException], None]


def timed_computation(computation: Computation, task: Task) -> tuple[object | None, float]:
    """Run ``computation`` and measure it inside the execution unit."""

    started = time.perf_counter()
    payload = computation(task)
    return payload, time.perf_counter() - started


def complete_computation(
    state: WorkerState,
    task: Task,
    outcome: Future[tuple[object | None, float]],
) -> TaskResult:
    """Turn a finished computation future into a result and update ``state``."""

    try:
        payload, duration = outcome.result()
    except Exception as error:  # noqa: BLE001
        raise ComputationError(
            message=f"Computation failed for task {task.uid}: {error}",
            task_uid=task.uid,
        ) from error
    if payload is None:
        raise ComputationError(
            message=f"Computation produced no result for task {task.uid}",
            task_uid=task.uid,
        )
    average = state.average.update(duration)
    state.computed += 1
    logger.info(
        "[%02d][%d] Finished range %d..%d in %.0f ms, average %.0f ms",
        state.index,
        task.uid,
        task.start_number,
        task.stop_number,
        duration * 1000,
        average * 1000,
    )
    return TaskResult(
        task=task,
        payload=payload,
        duration_seconds=duration,
        worker_index=state.index,
    )


def store_result(
    sink: ResultSink,
    result: TaskResult,
    *,
    policy: RetryPolicy,
    sleep: Callable[[float], object] = time.sleep,
) -> None:
    """Store one result; the retry budget is never cut short by cancellation."""

    call_with_retry(
        lambda: sink.store_result(result.submission_id, result.payload),
        policy=policy,
        label=f"[{result.worker_index:02d}][{result.task.uid}] store",
        sleep=sleep,
    )
    logger.info("[%02d][%d] Stored result", result.worker_index, result.task.uid)


def log_worker_failure(
    index: int,
    phase: str,
    error: BaseException,
    task: Task | None = None,
) -> None:
    classification = classify_failure(error)
    logger.error(
        "[%02d][%s] %s failed (%s/%s), worker exiting: %s",
        index,
        task.uid if task is not None else "-",
        phase,
        classification.failure_class.value,
        classification.reason_code,
        error,
    )


class MinerWorker:
    """One scheduling lane; owns its ``WorkerState`` exclusively."""

    def __init__(
        self,
        *,
        index: int,
        feed: TaskFeed,
        computation: Computation,
        executor: Executor,
        sink: ResultSink,
        store_policy: RetryPolicy,
        on_failure: FailureCallback,
        sleep: Callable[[float], object] = time.sleep,
    ) -> None:
        self.state = WorkerState(index=index)
        self._feed = feed
        self._computation = computation
        self._executor = executor
        self._sink = sink
        self._store_policy = store_policy
        self._on_failure = on_failure
        self._sleep = sleep

    @property
    def index(self) -> int:
        return self.state.index

    def run(self) -> WorkerState:
        logger.info("[%02d] Worker started", self.index)
        while True:
            try:
                task = self._feed.acquire(self.index)
            except Exception as error:  # noqa: BLE001
                self._fail("fetch", error)
                break
            if task is None:
                break
            if not self._process(task):
                break
        logger.info(
            "[%02d] Worker exiting: computed=%d stored=%d average=%.0f ms",
            self.index,
            self.state.computed,
            self.state.stored,
            self.state.average.value * 1000,
        )
        return self.state

    def _process(self, task: Task) -> bool:
        self.state.current_task = task
        try:
            logger.info(
                "[%02d][%d] Checking range %d..%d",
                self.index,
                task.uid,
                task.start_number,
                task.stop_number,
            )
            try:
                outcome = self._executor.submit(timed_computation, self._computation, task)
                result = complete_computation(self.state, task, outcome)
            except Exception as error:  # noqa: BLE001
                self._fail("compute", error, task)
                return False
            try:
                store_result(self._sink, result, policy=self._store_policy, sleep=self._sleep)
            except Exception as error:  # noqa: BLE001
                self._fail("store", error, task)
                return False
            self.state.stored += 1
            return True
        finally:
            self.state.current_task = None

    def _fail(self, phase: str, error: BaseException, task: Task | None = None) -> None:
        if task is not None:
            self.state.failed += 1
        self.state.error = error
        log_worker_failure(self.index, phase, error, task)
        self._on_failure(self.index, error)
