"""Bounded prefetch queue filled by a single background fetcher."""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable

from microgrid_miner.protocol.base import TaskSource
from microgrid_miner.protocol.models import Task
from microgrid_miner.scheduler.cancellation import CancellationToken
from microgrid_miner.scheduler.models import RetryAbortedError
from microgrid_miner.scheduler.retry import RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 0.1


class TaskPrefetcher:
    """Keeps up to ``capacity`` fetched tasks ready for the lanes.

    The refill thread is the only caller of ``source.next_task`` and owns the
    fetch retry budget. After cancellation it stops fetching, and lanes keep
    draining whatever was already queued. ``close`` stops the lanes too; tasks
    left behind are reported by ``drain``.
    """

    def __init__(
        self,
        *,
        source: TaskSource,
        policy: RetryPolicy,
        cancellation: CancellationToken,
        capacity: int,
        on_failure: Callable[[BaseException], None],
    ) -> None:
        if capacity < 1:
            raise ValueError("Prefetch capacity must be >= 1.")
        self._source = source
        self._policy = policy
        self._cancellation = cancellation
        self._on_failure = on_failure
        self._queue: queue.Queue[Task] = queue.Queue(maxsize=capacity)
        self._overflow: list[Task] = []
        self._stopped = threading.Event()
        self._closed = threading.Event()
        self._lock = threading.Lock()
        self._fetched = 0
        self._thread: threading.Thread | None = None

    @property
    def capacity(self) -> int:
        return self._queue.maxsize

    @property
    def fetched(self) -> int:
        with self._lock:
            return self._fetched

    @property
    def queued(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._refill_loop,
            name="miner-prefetch",
            daemon=True,
        )
        self._thread.start()

    def acquire(self, worker_index: int) -> Task | None:
        while not self._closed.is_set():
            try:
                return self._queue.get(timeout=POLL_INTERVAL_SECONDS)
            except queue.Empty:
                if self._stopped.is_set() and self._queue.empty():
                    return None
        return None

    def try_acquire(self, worker_index: int) -> Task | None:
        if self._closed.is_set():
            return None
        try:
            return self._queue.get_nowait()
        except queue.Empty:
            return None

    def close(self) -> None:
        self._closed.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join()

    def drain(self) -> list[Task]:
        remaining: list[Task] = []
        while True:
            try:
                remaining.append(self._queue.get_nowait())
            except queue.Empty:
                break
        with self._lock:
            remaining.extend(self._overflow)
            self._overflow.clear()
        return remaining

    def _should_stop(self) -> bool:
        return self._cancellation.cancelled or self._closed.is_set()

    def _sleep(self, seconds: float) -> None:
        self._cancellation.sleep(seconds)

    def _refill_loop(self) -> None:
        logger.debug("Prefetch started (capacity=%d)", self.capacity)
        try:
            while not self._should_stop():
                try:
                    task = call_with_retry(
                        self._source.next_task,
                        policy=self._policy,
                        label="[prefetch] fetch",
                        sleep=self._sleep,
                        should_abort=self._should_stop,
                    )
                except RetryAbortedError:
                    break
                except Exception as error:  # noqa: BLE001
                    logger.error("[prefetch] Fetching stopped: %s", error)
                    self._on_failure(error)
                    break
                with self._lock:
                    self._fetched += 1
                self._put(task)
        finally:
            self._stopped.set()
            logger.debug("Prefetch stopped (fetched=%d)", self.fetched)

    def _put(self, task: Task) -> None:
        while True:
            try:
                self._queue.put(task, timeout=POLL_INTERVAL_SECONDS)
                return
            except queue.Full:
                if self._closed.is_set():
                    with self._lock:
                        self._overflow.append(task)
                    return
