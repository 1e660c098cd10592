"""Bounded fixed-delay retry for fetch/store calls.

The delay between attempts is constant, not exponential, so the worst-case
wait of one call is ``(attempts - 1) * cooldown``.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from microgrid_miner.scheduler.failure_classifier import classify_failure
from microgrid_miner.scheduler.models import RetryAbortedError, RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ATTEMPTS = 5
DEFAULT_COOLDOWN_SECONDS = 10.0


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """Attempt count and fixed cooldown shared by every call of one kind."""

    attempts: int = DEFAULT_ATTEMPTS
    cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("Retry attempts must be >= 1.")
        if self.cooldown_seconds < 0:
            raise ValueError("Retry cooldown must be >= 0.")

    def new_budget(self) -> RetryBudget:
        return RetryBudget(max_attempts=self.attempts, cooldown_seconds=self.cooldown_seconds)


@dataclass(slots=True)
class RetryBudget:
    """Per-call attempt accounting; discarded on success or exhaustion."""

    max_attempts: int
    cooldown_seconds: float
    attempts: int = 0

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    def consume(self) -> int:
        self.attempts += 1
        return self.attempts


def call_with_retry(
    operation: Callable[[], T],
    *,
    policy: RetryPolicy,
    label: str,
    sleep: Callable[[float], object] = time.sleep,
    should_abort: Callable[[], bool] | None = None,
) -> T:
    """Run ``operation`` until it succeeds or its budget runs out.

    Only failures classified as transient are retried; anything else is
    re-raised untouched on the first occurrence. ``should_abort`` is consulted
    after each cooldown, never before the first attempt.
    """

    budget = policy.new_budget()
    while True:
        attempt = budget.consume()
        try:
            return operation()
        except Exception as error:  # noqa: BLE001
            classification = classify_failure(error)
            if not classification.retryable:
                raise
            if budget.exhausted:
                logger.error(
                    "%s failed after %d attempt(s) (%s): %s",
                    label,
                    attempt,
                    classification.reason_code,
                    error,
                )
                raise RetryExhaustedError(
                    message=f"{label} failed after {attempt} attempt(s): {error}",
                    operation=label,
                    attempts=attempt,
                ) from error
            logger.warning(
                "%s failed (attempt %d/%d, %s): %s; retrying in %.1fs",
                label,
                attempt,
                budget.max_attempts,
                classification.reason_code,
                error,
                budget.cooldown_seconds,
            )
        sleep(budget.cooldown_seconds)
        if should_abort is not None and should_abort():
            raise RetryAbortedError(
                message=f"{label} aborted by cancellation after {attempt} attempt(s)",
                attempts=attempt,
            )
