"""Deterministic failure classification for the scheduler retry policy."""

from __future__ import annotations

import re
from dataclasses import dataclass

from microgrid_miner.protocol.base import (
    AuthExpiredError,
    MalformedResponseError,
    MicrogridError,
    UnavailableError,
    VersionMismatchError,
)
from microgrid_miner.scheduler.models import (
    ComputationError,
    FailureClass,
    FailureScope,
    RetryExhaustedError,
    SchedulerError,
)

_RULES: tuple[tuple[type[BaseException], FailureClass, FailureScope], ...] = (
    (AuthExpiredError, FailureClass.AUTH, FailureScope.RUN),
    (UnavailableError, FailureClass.TRANSIENT, FailureScope.RETRY),
    (MalformedResponseError, FailureClass.PROTOCOL, FailureScope.WORKER),
    (VersionMismatchError, FailureClass.PROTOCOL, FailureScope.WORKER),
    (RetryExhaustedError, FailureClass.RETRY_EXHAUSTED, FailureScope.WORKER),
    (ComputationError, FailureClass.COMPUTATION, FailureScope.WORKER),
    (OSError, FailureClass.TRANSIENT, FailureScope.RETRY),
)


@dataclass(slots=True, frozen=True)
class FailureClassification:
    """Normalized failure classification result."""

    failure_class: FailureClass
    scope: FailureScope
    reason_code: str

    @property
    def retryable(self) -> bool:
        return self.scope == FailureScope.RETRY

    @property
    def fatal_for_run(self) -> bool:
        return self.scope == FailureScope.RUN


def classify_failure(error: BaseException) -> FailureClassification:
    """Classify a fetch/compute/store failure into its retry class and reach."""

    for error_type, failure_class, scope in _RULES:
        if isinstance(error, error_type):
            return FailureClassification(
                failure_class=failure_class,
                scope=scope,
                reason_code=_reason_code(error),
            )
    return FailureClassification(
        failure_class=FailureClass.UNEXPECTED,
        scope=FailureScope.WORKER,
        reason_code=_reason_code(error),
    )


def _reason_code(error: BaseException) -> str:
    if isinstance(error, (MicrogridError, SchedulerError)):
        return error.code
    return re.sub(r"(?<!^)(?=[A-Z])", "_", type(error).__name__).lower()
