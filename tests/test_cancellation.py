from __future__ import annotations

import io
import signal
import threading
import time

import allure
import pytest

from fakes import ManualSignal
from microgrid_miner.scheduler import (
    CancellationToken,
    CompositeSignal,
    KeypressSignal,
    ProcessSignal,
    TimerSignal,
)

pytestmark = [
    allure.epic("Scheduler"),
    allure.feature("Cancellation"),
]


def test_token_is_write_once() -> None:
    token = CancellationToken()
    assert not token.cancelled
    assert token.reason is None

    assert token.cancel("keypress") is True
    assert token.cancel("sigterm") is False

    assert token.cancelled
    assert token.reason == "keypress"


def test_token_sleep_wakes_up_on_cancel() -> None:
    token = CancellationToken()
    threading.Timer(0.05, token.cancel, args=("timer",)).start()

    started = time.monotonic()
    token.sleep(5)

    assert time.monotonic() - started < 2
    assert token.cancelled


def test_timer_signal_fires_once() -> None:
    reasons: list[str] = []
    fired = threading.Event()
    timer = TimerSignal(0.01)

    def _callback(reason: str) -> None:
        reasons.append(reason)
        fired.set()

    timer.subscribe(_callback)

    assert fired.wait(timeout=2)
    timer.close()
    assert reasons == ["timer"]


def test_closed_timer_never_fires() -> None:
    reasons: list[str] = []
    timer = TimerSignal(0.2)
    timer.subscribe(reasons.append)
    timer.close()
    time.sleep(0.3)
    assert reasons == []


def test_composite_signal_forwards_every_source() -> None:
    first = ManualSignal()
    second = ManualSignal()
    reasons: list[str] = []
    composite = CompositeSignal(first, second)

    composite.subscribe(reasons.append)
    second.fire("sigterm")
    composite.close()

    assert reasons == ["sigterm"]
    assert first.closed
    assert second.closed


def test_keypress_signal_requires_tty() -> None:
    keypress = KeypressSignal(stream=io.StringIO())
    with pytest.raises(RuntimeError, match="TTY"):
        keypress.subscribe(lambda _: None)


@pytest.mark.skipif(not hasattr(signal, "SIGTERM"), reason="SIGTERM is not available")
def test_process_signal_turns_sigterm_into_cancellation() -> None:
    token = CancellationToken()
    original = signal.getsignal(signal.SIGTERM)
    process_signal = ProcessSignal()

    process_signal.subscribe(token.cancel)
    try:
        signal.raise_signal(signal.SIGTERM)
    finally:
        process_signal.close()

    assert token.reason == "sigterm"
    assert signal.getsignal(signal.SIGTERM) == original


def test_token_cancel_reenters_from_signal_handler() -> None:
    token = CancellationToken()
    results: list[bool] = []

    def _handler_fires_inside_cancel() -> None:
        # A signal handler interrupting cancel() runs on the same thread.
        with token._lock:
            results.append(token.cancel("sigint"))
        results.append(token.cancel("auth_expired"))

    runner = threading.Thread(target=_handler_fires_inside_cancel, daemon=True)
    runner.start()
    runner.join(timeout=2)

    assert not runner.is_alive()
    assert results == [True, False]
    assert token.reason == "sigint"
    assert token.cancelled
