"""Cooperative cancellation: a write-once token plus one-shot shutdown signals."""

from __future__ import annotations

import logging
import os
import select
import signal
import sys
import threading
from collections.abc import Callable
from typing import Protocol, TextIO

logger = logging.getLogger(__name__)

CancelCallback = Callable[[str], None]


class CancellationToken:
    """Process-wide stop flag; flips false -> true once and never back."""

    def __init__(self) -> None:
        self._event = threading.Event()
        # Reentrant: a signal handler may cancel while the main thread holds it.
        self._lock = threading.RLock()
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "requested") -> bool:
        """Set the flag. Returns ``False`` if it was already set."""

        with self._lock:
            if self._reason is not None:
                return False
            self._reason = reason
        self._event.set()
        return True

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)

    def sleep(self, seconds: float) -> None:
        """Sleep up to ``seconds``, waking early on cancellation."""

        self._event.wait(max(0.0, seconds))


class CancellationSignal(Protocol):
    """Single-fire shutdown notification, subscribed to once per run."""

    def subscribe(self, callback: CancelCallback) -> None:
        """Register the callback that receives the cancellation reason."""
        raise NotImplementedError

    def close(self) -> None:
        """Release listeners/handlers installed by ``subscribe``."""
        raise NotImplementedError


class KeypressSignal:
    """Fires when the operator presses any key on an interactive terminal."""

    def __init__(self, stream: TextIO | None = None, poll_interval_seconds: float = 0.2) -> None:
        self._stream = stream if stream is not None else sys.stdin
        self._poll_interval_seconds = poll_interval_seconds
        self._closed = threading.Event()
        self._thread: threading.Thread | None = None

    def subscribe(self, callback: CancelCallback) -> None:
        if self._thread is not None:
            raise RuntimeError("KeypressSignal supports a single subscriber.")
        if not self._stream.isatty():
            raise RuntimeError("Keypress can be read only under TTY.")
        self._thread = threading.Thread(
            target=self._listen,
            args=(callback,),
            daemon=True,
            name="keypress-listener",
        )
        self._thread.start()

    def close(self) -> None:
        self._closed.set()
        if self._thread is not None:
            self._thread.join(timeout=2 * self._poll_interval_seconds + 1.0)

    def _listen(self, callback: CancelCallback) -> None:
        import termios  # noqa: PLC0415
        import tty  # noqa: PLC0415

        fd = self._stream.fileno()
        saved = termios.tcgetattr(fd)
        try:
            tty.setcbreak(fd)
            while not self._closed.is_set():
                readable, _, _ = select.select([fd], [], [], self._poll_interval_seconds)
                if readable:
                    os.read(fd, 1024)
                    logger.warning("Detected keypress, finishing tasks and exiting...")
                    callback("keypress")
                    return
        finally:
            termios.tcsetattr(fd, termios.TCSADRAIN, saved)


class ProcessSignal:
    """Turns SIGINT/SIGTERM into a cancellation request."""

    def __init__(self, signals: tuple[signal.Signals, ...] | None = None) -> None:
        if signals is None:
            signals = tuple(
                getattr(signal, name) for name in ("SIGINT", "SIGTERM") if hasattr(signal, name)
            )
        self._signals = signals
        self._originals: dict[signal.Signals, object] = {}

    def subscribe(self, callback: CancelCallback) -> None:
        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            logger.warning("Received %s, finishing tasks and exiting...", name)
            callback(name.lower())

        try:
            for signum in self._signals:
                self._originals[signum] = signal.getsignal(signum)
                signal.signal(signum, _handler)
        except ValueError:
            # Signal handlers can only be installed in main thread.
            logger.debug("Not in main thread; process signals stay untouched")

    def close(self) -> None:
        for signum, original in self._originals.items():
            try:
                signal.signal(signum, original)  # type: ignore[arg-type]
            except ValueError:
                pass
        self._originals.clear()


class TimerSignal:
    """Fires after a fixed number of seconds."""

    def __init__(self, seconds: float) -> None:
        self.seconds = seconds
        self._timer: threading.Timer | None = None

    def subscribe(self, callback: CancelCallback) -> None:
        self._timer = threading.Timer(self.seconds, callback, args=("timer",))
        self._timer.daemon = True
        self._timer.start()

    def close(self) -> None:
        if self._timer is not None:
            self._timer.cancel()


class CompositeSignal:
    """Whichever of several signals fires first."""

    def __init__(self, *signals: CancellationSignal) -> None:
        self._signals = signals

    def subscribe(self, callback: CancelCallback) -> None:
        for item in self._signals:
            item.subscribe(callback)

    def close(self) -> None:
        for item in self._signals:
            item.close()
