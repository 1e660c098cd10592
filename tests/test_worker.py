from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import allure
import pytest

from fakes import FakeSink, echo_computation, make_task, none_computation
from microgrid_miner.protocol import UnavailableError
from microgrid_miner.protocol.models import Task
from microgrid_miner.scheduler import ComputationError, RetryExhaustedError, RetryPolicy
from microgrid_miner.scheduler.models import RunningAverage
from microgrid_miner.scheduler.worker import MinerWorker

pytestmark = [
    allure.epic("Scheduler"),
    allure.feature("Worker Lane"),
]


class _ListFeed:
    def __init__(self, tasks: list[Task]) -> None:
        self._tasks = list(tasks)
        self.fetched = 0

    def acquire(self, worker_index: int) -> Task | None:
        if not self._tasks:
            return None
        self.fetched += 1
        return self._tasks.pop(0)

    def close(self) -> None:
        return None

    def drain(self) -> list[Task]:
        return list(self._tasks)


def _explode(task: Task) -> list[int]:
    raise ZeroDivisionError(f"bad range {task.uid}")


@pytest.fixture()
def executor():
    with ThreadPoolExecutor(max_workers=1) as pool:
        yield pool


def _worker(executor, *, tasks, computation, sink, failures, store_attempts: int = 3):
    return MinerWorker(
        index=7,
        feed=_ListFeed(tasks),
        computation=computation,
        executor=executor,
        sink=sink,
        store_policy=RetryPolicy(attempts=store_attempts, cooldown_seconds=0),
        on_failure=lambda index, error: failures.append((index, error)),
    )


def test_running_average_halves_towards_latest_duration() -> None:
    average = RunningAverage()
    assert average.update(0.4) == pytest.approx(0.2)
    assert average.update(0.4) == pytest.approx(0.3)
    assert average.samples == 2


def test_worker_processes_until_feed_is_empty(executor) -> None:
    sink = FakeSink()
    failures: list = []
    worker = _worker(
        executor,
        tasks=[make_task(1), make_task(2)],
        computation=echo_computation,
        sink=sink,
        failures=failures,
    )

    state = worker.run()

    assert state.computed == 2
    assert state.stored == 2
    assert state.error is None
    assert not state.busy
    assert failures == []
    assert sink.stored == {1001: [100, 200], 1002: [200, 300]}
    assert state.average.samples == 2


def test_computation_without_result_is_not_stored(executor) -> None:
    sink = FakeSink()
    failures: list = []
    worker = _worker(
        executor,
        tasks=[make_task(1), make_task(2)],
        computation=none_computation,
        sink=sink,
        failures=failures,
    )

    state = worker.run()

    assert sink.calls == 0
    assert state.failed == 1
    assert isinstance(state.error, ComputationError)
    assert state.error.task_uid == 1
    assert failures == [(7, state.error)]


def test_computation_exception_is_wrapped(executor) -> None:
    failures: list = []
    worker = _worker(
        executor,
        tasks=[make_task(3)],
        computation=_explode,
        sink=FakeSink(),
        failures=failures,
    )

    state = worker.run()

    assert isinstance(state.error, ComputationError)
    assert isinstance(state.error.__cause__, ZeroDivisionError)
    assert state.computed == 0


def test_exhausted_store_retry_terminates_worker(executor) -> None:
    sink = FakeSink(always_fail=lambda: UnavailableError(message="busy"))
    failures: list = []
    worker = _worker(
        executor,
        tasks=[make_task(1), make_task(2)],
        computation=echo_computation,
        sink=sink,
        failures=failures,
        store_attempts=3,
    )

    state = worker.run()

    assert sink.calls == 3
    assert state.computed == 1
    assert state.stored == 0
    assert isinstance(state.error, RetryExhaustedError)
    assert len(failures) == 1
