"""Task feeds: where a lane gets its next task from."""

from __future__ import annotations

import threading
from typing import Protocol

from microgrid_miner.protocol.base import TaskSource
from microgrid_miner.protocol.models import Task
from microgrid_miner.scheduler.cancellation import CancellationToken
from microgrid_miner.scheduler.models import RetryAbortedError
from microgrid_miner.scheduler.retry import RetryPolicy, call_with_retry


class TaskFeed(Protocol):
    """Hands tasks to lanes; ``None`` tells the lane to exit."""

    @property
    def fetched(self) -> int:
        raise NotImplementedError

    def acquire(self, worker_index: int) -> Task | None:
        raise NotImplementedError

    def try_acquire(self, worker_index: int) -> Task | None:
        """Return a task that is already fetched, without waiting."""
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError

    def drain(self) -> list[Task]:
        """Return tasks fetched but never handed out."""
        raise NotImplementedError


class DirectTaskFeed:
    """Every lane fetches from the source itself, one task at a time."""

    def __init__(
        self,
        *,
        source: TaskSource,
        policy: RetryPolicy,
        cancellation: CancellationToken,
    ) -> None:
        self._source = source
        self._policy = policy
        self._cancellation = cancellation
        self._lock = threading.Lock()
        self._fetched = 0

    @property
    def fetched(self) -> int:
        with self._lock:
            return self._fetched

    def acquire(self, worker_index: int) -> Task | None:
        if self._cancellation.cancelled:
            return None
        try:
            task = call_with_retry(
                self._source.next_task,
                policy=self._policy,
                label=f"[{worker_index:02d}] fetch",
                sleep=self._cancellation.sleep,
                should_abort=lambda: self._cancellation.cancelled,
            )
        except RetryAbortedError:
            return None
        with self._lock:
            self._fetched += 1
        return task

    def try_acquire(self, worker_index: int) -> Task | None:
        # Nothing is fetched ahead of time.
        return None

    def close(self) -> None:
        return None

    def drain(self) -> list[Task]:
        return []
