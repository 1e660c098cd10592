from __future__ import annotations

import io
import threading

import allure
import pytest

from fakes import (
    ConcurrencyGauge,
    FailingSource,
    FakeSink,
    FakeSource,
    GatedComputation,
    ManualSignal,
    echo_computation,
    none_computation,
    wait_until,
)
from microgrid_miner.compute.twin_prime import twin_prime_computation
from microgrid_miner.protocol import AuthExpiredError, UnavailableError, VersionMismatchError
from microgrid_miner.scheduler import (
    ComputationError,
    CompositeSignal,
    DispatchMode,
    ExecutionMode,
    KeypressSignal,
    Miner,
    RetryExhaustedError,
    RetryPolicy,
    TimerSignal,
)

pytestmark = [
    allure.epic("Scheduler"),
    allure.feature("Worker Pool"),
]

ALL_MODES = [DispatchMode.CONTINUOUS, DispatchMode.PREFETCH, DispatchMode.RACING]


def _stop_after(miner_ref: dict, stored_target: int):
    stored = {"count": 0}
    lock = threading.Lock()

    def _on_store(_: int, __: object) -> None:
        with lock:
            stored["count"] += 1
            done = stored["count"] >= stored_target
        if done:
            miner_ref["miner"].request_stop("test")

    return _on_store


def test_miner_rejects_invalid_pool_size() -> None:
    with pytest.raises(ValueError, match="Worker count"):
        Miner(source=FakeSource(), sink=FakeSink(), computation=echo_computation, workers=0)


def test_miner_run_is_single_use(make_miner) -> None:
    miner = make_miner(source=FakeSource(limit=0), sink=FakeSink(), computation=echo_computation)
    miner.request_stop()
    miner.run()
    with pytest.raises(RuntimeError, match="once"):
        miner.run()


def test_timer_cancellation_stores_every_fetched_task(make_miner) -> None:
    source = FakeSource()
    sink = FakeSink()
    gauge = ConcurrencyGauge(seconds=0.01)
    miner = make_miner(source=source, sink=sink, computation=gauge, workers=4)

    summary = miner.run(TimerSignal(0.05))

    assert summary.error is None
    assert summary.cancel_reason == "timer"
    assert 4 <= summary.stored <= 24
    assert sorted(sink.stored) == sorted(task.submission_id for task in source.fetched)
    assert sink.duplicates == []
    assert gauge.peak <= 4


@pytest.mark.parametrize("dispatch_mode", ALL_MODES)
def test_cancellation_loses_no_fetched_task(make_miner, dispatch_mode) -> None:
    source = FakeSource()
    sink = FakeSink()
    gauge = ConcurrencyGauge(seconds=0.005)
    miner = make_miner(
        source=source,
        sink=sink,
        computation=gauge,
        workers=3,
        dispatch_mode=dispatch_mode,
    )

    summary = miner.run(TimerSignal(0.05))

    assert summary.ok
    assert summary.abandoned == 0
    assert summary.fetched == len(source.fetched)
    assert summary.stored == summary.fetched
    assert sorted(sink.stored) == sorted(task.submission_id for task in source.fetched)
    assert sink.duplicates == []


def _fetches_around_stop(make_miner, *, dispatch_mode, workers: int) -> tuple:
    """Stop while every lane is mid-computation; report fetch calls before and after."""

    computation = GatedComputation()
    source = FakeSource()
    sink = FakeSink()
    miner = make_miner(
        source=source,
        sink=sink,
        computation=computation,
        workers=workers,
        dispatch_mode=dispatch_mode,
    )
    observed: dict[str, int] = {}

    def _stop_mid_flight() -> None:
        wait_until(lambda: source.calls >= workers)
        computation.started.wait(timeout=5)
        observed["calls"] = source.calls
        miner.request_stop("test")
        computation.release.set()

    stopper = threading.Thread(target=_stop_mid_flight)
    stopper.start()
    summary = miner.run()
    stopper.join()
    return summary, source, sink, observed["calls"]


def test_continuous_lanes_fetch_at_most_once_more_after_stop(make_miner) -> None:
    summary, source, sink, calls_at_stop = _fetches_around_stop(
        make_miner,
        dispatch_mode=DispatchMode.CONTINUOUS,
        workers=3,
    )

    assert summary.ok
    assert source.calls <= calls_at_stop + 3
    assert summary.stored == summary.fetched == len(source.fetched)
    assert sorted(sink.stored) == sorted(task.submission_id for task in source.fetched)


def test_prefetch_refill_fetches_at_most_once_more_after_stop(make_miner) -> None:
    summary, source, sink, calls_at_stop = _fetches_around_stop(
        make_miner,
        dispatch_mode=DispatchMode.PREFETCH,
        workers=2,
    )

    assert summary.ok
    # A single refill thread does all fetching.
    assert source.calls <= calls_at_stop + 1
    assert summary.abandoned == 0
    assert summary.stored == summary.fetched == len(source.fetched)
    assert sorted(sink.stored) == sorted(task.submission_id for task in source.fetched)


@pytest.mark.parametrize("dispatch_mode", ALL_MODES)
def test_never_more_than_worker_count_computations_in_flight(make_miner, dispatch_mode) -> None:
    gauge = ConcurrencyGauge(seconds=0.01)
    miner_ref: dict = {}
    sink = FakeSink(on_store=_stop_after(miner_ref, 20))
    miner = make_miner(
        source=FakeSource(),
        sink=sink,
        computation=gauge,
        workers=3,
        dispatch_mode=dispatch_mode,
    )
    miner_ref["miner"] = miner

    summary = miner.run()

    assert summary.ok
    assert gauge.peak <= 3
    assert summary.stored >= 20


def test_fetch_retries_then_processes_task(make_miner) -> None:
    source = FakeSource(
        failures=[UnavailableError(message="busy"), UnavailableError(message="busy")],
    )
    miner_ref: dict = {}
    sink = FakeSink(on_store=_stop_after(miner_ref, 1))
    miner = make_miner(
        source=source,
        sink=sink,
        computation=echo_computation,
        fetch_policy=RetryPolicy(attempts=3, cooldown_seconds=0),
    )
    miner_ref["miner"] = miner

    summary = miner.run()

    assert summary.ok
    assert source.calls == 3
    assert summary.stored == 1
    assert list(sink.stored) == [source.fetched[0].submission_id]


@pytest.mark.parametrize("dispatch_mode", [DispatchMode.CONTINUOUS, DispatchMode.PREFETCH])
def test_permanently_failing_source_stops_after_attempts(make_miner, dispatch_mode) -> None:
    source = FailingSource(lambda: UnavailableError(message="down"))
    miner = make_miner(
        source=source,
        sink=FakeSink(),
        computation=echo_computation,
        dispatch_mode=dispatch_mode,
        fetch_policy=RetryPolicy(attempts=3, cooldown_seconds=0),
    )

    summary = miner.run()

    assert source.calls == 3
    assert isinstance(summary.error, RetryExhaustedError)
    assert summary.stored == 0


def test_version_mismatch_is_not_retried(make_miner) -> None:
    sink = FakeSink(always_fail=lambda: VersionMismatchError(message="stale version"))
    miner = make_miner(source=FakeSource(), sink=sink, computation=echo_computation)

    summary = miner.run()

    assert sink.calls == 1
    assert isinstance(summary.error, VersionMismatchError)
    assert summary.failed == 1
    assert summary.stored == 0


def test_store_transient_failure_is_retried(make_miner) -> None:
    miner_ref: dict = {}
    sink = FakeSink(
        failures=[UnavailableError(message="busy")],
        on_store=_stop_after(miner_ref, 1),
    )
    miner = make_miner(source=FakeSource(), sink=sink, computation=echo_computation)
    miner_ref["miner"] = miner

    summary = miner.run()

    assert summary.ok
    assert sink.calls == 2
    assert summary.stored == 1


@pytest.mark.parametrize("dispatch_mode", ALL_MODES)
def test_in_flight_task_is_stored_after_cancellation(make_miner, dispatch_mode) -> None:
    computation = GatedComputation()
    signal = ManualSignal()
    source = FakeSource()
    sink = FakeSink()
    miner = make_miner(
        source=source,
        sink=sink,
        computation=computation,
        dispatch_mode=dispatch_mode,
    )

    def _cancel_mid_flight() -> None:
        computation.started.wait(timeout=5)
        signal.fire("keypress")
        computation.release.set()

    canceller = threading.Thread(target=_cancel_mid_flight)
    canceller.start()
    summary = miner.run(signal)
    canceller.join()

    assert summary.ok
    assert summary.cancel_reason == "keypress"
    assert source.fetched[0].submission_id in sink.stored
    assert summary.stored == summary.fetched
    assert signal.closed


@pytest.mark.parametrize("dispatch_mode", ALL_MODES)
def test_auth_expiry_stops_the_whole_run(make_miner, dispatch_mode) -> None:
    source = FakeSource(limit=3, exhausted_error=lambda: AuthExpiredError(message="Wrong token"))
    gauge = ConcurrencyGauge(seconds=0.01)
    miner = make_miner(
        source=source,
        sink=FakeSink(),
        computation=gauge,
        workers=2,
        dispatch_mode=dispatch_mode,
    )

    summary = miner.run()

    assert isinstance(summary.error, AuthExpiredError)
    assert summary.cancel_reason == "auth_expired"
    assert 4 <= source.calls <= 5
    assert summary.stored + summary.abandoned == 3


def test_auth_expiry_on_store_stops_other_workers(make_miner) -> None:
    sink = FakeSink(always_fail=lambda: AuthExpiredError(message="Wrong token"))
    miner = make_miner(source=FakeSource(), sink=sink, computation=echo_computation, workers=3)

    summary = miner.run()

    assert isinstance(summary.error, AuthExpiredError)
    assert summary.cancel_reason == "auth_expired"
    assert summary.stored == 0
    assert sink.calls <= 3


def test_computation_without_result_is_worker_fatal(make_miner) -> None:
    sink = FakeSink()
    miner = make_miner(source=FakeSource(), sink=sink, computation=none_computation)

    summary = miner.run()

    assert isinstance(summary.error, ComputationError)
    assert sink.calls == 0
    assert summary.failed == 1


def test_summary_reports_average_per_worker(make_miner) -> None:
    miner_ref: dict = {}
    sink = FakeSink(on_store=_stop_after(miner_ref, 4))
    miner = make_miner(
        source=FakeSource(),
        sink=sink,
        computation=ConcurrencyGauge(seconds=0.01),
        workers=2,
    )
    miner_ref["miner"] = miner

    summary = miner.run()

    assert set(summary.averages) == {0, 1}
    assert all(value > 0 for value in summary.averages.values())


def test_process_execution_mode_runs_module_level_computation(make_miner) -> None:
    miner_ref: dict = {}
    sink = FakeSink(on_store=_stop_after(miner_ref, 2))
    miner = make_miner(
        source=FakeSource(),
        sink=sink,
        computation=twin_prime_computation,
        workers=2,
        execution_mode=ExecutionMode.PROCESS,
    )
    miner_ref["miner"] = miner

    summary = miner.run()

    assert summary.ok
    assert summary.stored >= 2
    first = next(iter(sink.stored.values()))
    assert isinstance(first, list)


def test_partially_subscribed_signal_is_closed_when_subscribe_fails(make_miner) -> None:
    manual = ManualSignal()
    composite = CompositeSignal(manual, KeypressSignal(stream=io.StringIO()))
    miner = make_miner(source=FakeSource(), sink=FakeSink(), computation=echo_computation)

    with pytest.raises(RuntimeError, match="TTY"):
        miner.run(composite)

    assert manual.closed


def test_signal_is_closed_when_executor_cannot_start(make_miner) -> None:
    def _broken_executor(mode, workers):
        raise OSError("no processes left")

    signal = ManualSignal()
    miner = make_miner(
        source=FakeSource(),
        sink=FakeSink(),
        computation=echo_computation,
        executor_factory=_broken_executor,
    )

    with pytest.raises(OSError, match="no processes"):
        miner.run(signal)

    assert signal.closed
