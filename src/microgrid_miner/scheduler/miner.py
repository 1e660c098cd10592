"""Top-level miner: runs a fixed pool of lanes until cancelled or drained."""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Callable
from concurrent.futures import Executor

from microgrid_miner.compute import Computation
from microgrid_miner.protocol.base import ResultSink, TaskSource
from microgrid_miner.scheduler.cancellation import CancellationSignal, CancellationToken
from microgrid_miner.scheduler.executors import create_executor
from microgrid_miner.scheduler.failure_classifier import classify_failure
from microgrid_miner.scheduler.feed import DirectTaskFeed, TaskFeed
from microgrid_miner.scheduler.models import (
    DispatchMode,
    ExecutionMode,
    MinerRunSummary,
    WorkerState,
)
from microgrid_miner.scheduler.prefetch import TaskPrefetcher
from microgrid_miner.scheduler.racing import RacingDispatcher
from microgrid_miner.scheduler.retry import RetryPolicy
from microgrid_miner.scheduler.worker import MinerWorker

logger = logging.getLogger(__name__)

ExecutorFactory = Callable[[ExecutionMode, int], Executor]

JOIN_POLL_SECONDS = 0.5


class Miner:
    """Fetch -> compute -> store with ``workers`` lanes sharing one executor."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        source: TaskSource,
        sink: ResultSink,
        computation: Computation,
        workers: int | None = None,
        dispatch_mode: DispatchMode = DispatchMode.PREFETCH,
        prefetch_overhead: int | None = None,
        fetch_policy: RetryPolicy | None = None,
        store_policy: RetryPolicy | None = None,
        execution_mode: ExecutionMode = ExecutionMode.PROCESS,
        executor_factory: ExecutorFactory = create_executor,
    ) -> None:
        self.workers = workers if workers is not None else (os.cpu_count() or 1)
        if self.workers < 1:
            raise ValueError("Worker count must be >= 1.")
        self.prefetch_overhead = (
            prefetch_overhead if prefetch_overhead is not None else self.workers
        )
        if self.prefetch_overhead < 0:
            raise ValueError("Prefetch overhead must be >= 0.")
        self.dispatch_mode = DispatchMode(dispatch_mode)
        self.execution_mode = ExecutionMode(execution_mode)
        self.source = source
        self.sink = sink
        self.computation = computation
        self.fetch_policy = fetch_policy or RetryPolicy()
        self.store_policy = store_policy or RetryPolicy()
        self._executor_factory = executor_factory
        self._cancellation = CancellationToken()
        self._failure_lock = threading.Lock()
        self._first_error: BaseException | None = None
        self._feed: TaskFeed | None = None
        self._started = False

    @property
    def cancellation(self) -> CancellationToken:
        return self._cancellation

    def request_stop(self, reason: str = "requested") -> None:
        """Ask every lane to finish its current task and exit."""

        if self._cancellation.cancel(reason):
            logger.warning("Stop requested (%s); finishing in-flight tasks", reason)
        else:
            logger.info("Stop already in progress (%s)", self._cancellation.reason)

    def run(self, cancel_signal: CancellationSignal | None = None) -> MinerRunSummary:
        """Run until cancelled or until every lane has exited.

        Failures are reported through ``MinerRunSummary.error``; ``None`` there
        means a clean run.
        """

        if self._started:
            raise RuntimeError("Miner.run can only be called once per instance.")
        self._started = True

        summary = MinerRunSummary(workers=self.workers, dispatch_mode=self.dispatch_mode)
        logger.info(
            "Starting %d worker(s): dispatch=%s execution=%s",
            self.workers,
            self.dispatch_mode.value,
            self.execution_mode.value,
        )
        executor: Executor | None = None
        try:
            if cancel_signal is not None:
                cancel_signal.subscribe(self.request_stop)
            executor = self._executor_factory(self.execution_mode, self.workers)
            feed = self._build_feed()
            try:
                states = self._run_dispatch(feed, executor)
            finally:
                feed.close()
            abandoned = feed.drain()
        finally:
            if cancel_signal is not None:
                cancel_signal.close()
            if executor is not None:
                executor.shutdown(wait=True)

        for task in abandoned:
            logger.warning(
                "[--][%d] Abandoned fetched task %d..%d",
                task.uid,
                task.start_number,
                task.stop_number,
            )
        summary.fetched = feed.fetched
        summary.abandoned = len(abandoned)
        for state in states:
            summary.computed += state.computed
            summary.stored += state.stored
            summary.failed += state.failed
            summary.averages[state.index] = state.average.value
        summary.cancel_reason = self._cancellation.reason
        summary.error = self._first_error
        logger.info(
            "Miner finished: fetched=%d computed=%d stored=%d failed=%d abandoned=%d",
            summary.fetched,
            summary.computed,
            summary.stored,
            summary.failed,
            summary.abandoned,
        )
        return summary

    def _build_feed(self) -> TaskFeed:
        if self.dispatch_mode == DispatchMode.CONTINUOUS:
            self._feed = DirectTaskFeed(
                source=self.source,
                policy=self.fetch_policy,
                cancellation=self._cancellation,
            )
            return self._feed
        prefetcher = TaskPrefetcher(
            source=self.source,
            policy=self.fetch_policy,
            cancellation=self._cancellation,
            capacity=self.workers + self.prefetch_overhead,
            on_failure=lambda error: self._record_failure("prefetch", error),
        )
        self._feed = prefetcher
        prefetcher.start()
        return prefetcher

    def _run_dispatch(self, feed: TaskFeed, executor: Executor) -> list[WorkerState]:
        if self.dispatch_mode == DispatchMode.RACING:
            dispatcher = RacingDispatcher(
                workers=self.workers,
                feed=feed,
                computation=self.computation,
                executor=executor,
                sink=self.sink,
                store_policy=self.store_policy,
                on_failure=self._on_worker_failure,
            )
            try:
                return dispatcher.run()
            except Exception as error:  # noqa: BLE001
                logger.exception("Racing dispatcher crashed")
                self._record_failure("dispatcher", error)
                self.request_stop(reason=classify_failure(error).reason_code)
                return dispatcher.states

        lanes = [
            MinerWorker(
                index=index,
                feed=feed,
                computation=self.computation,
                executor=executor,
                sink=self.sink,
                store_policy=self.store_policy,
                on_failure=self._on_worker_failure,
            )
            for index in range(self.workers)
        ]
        threads = [
            threading.Thread(
                target=self._run_lane,
                args=(lane,),
                name=f"miner-lane-{lane.index:02d}",
            )
            for lane in lanes
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            # Short joins keep the main thread responsive to signal handlers.
            while thread.is_alive():
                thread.join(timeout=JOIN_POLL_SECONDS)
        return [lane.state for lane in lanes]

    def _run_lane(self, lane: MinerWorker) -> None:
        try:
            lane.run()
        except Exception as error:  # noqa: BLE001
            logger.exception("[%02d] Worker crashed", lane.index)
            lane.state.error = error
            self._record_failure(f"worker {lane.index:02d}", error)

    def _on_worker_failure(self, index: int, error: BaseException) -> None:
        self._record_failure(f"worker {index:02d}", error)

    def _record_failure(self, origin: str, error: BaseException) -> None:
        classification = classify_failure(error)
        with self._failure_lock:
            if self._first_error is None:
                self._first_error = error
        if not classification.fatal_for_run:
            return
        logger.error(
            "%s hit a run-level failure (%s); stopping all workers",
            origin,
            classification.reason_code,
        )
        self.request_stop(reason=classification.reason_code)
        if self._feed is not None:
            self._feed.close()
