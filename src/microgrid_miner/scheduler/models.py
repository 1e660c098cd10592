"""Domain models for the worker-pool scheduler."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from microgrid_miner.protocol.models import Task


class DispatchMode(str, Enum):
    """How tasks reach the worker lanes."""

    CONTINUOUS = "continuous"
    PREFETCH = "prefetch"
    RACING = "racing"


class ExecutionMode(str, Enum):
    """Where the computation itself runs."""

    PROCESS = "process"
    THREAD = "thread"


class FailureClass(str, Enum):
    """Normalized failure classes used by retry policy."""

    TRANSIENT = "transient"
    PROTOCOL = "protocol"
    AUTH = "auth"
    RETRY_EXHAUSTED = "retry_exhausted"
    COMPUTATION = "computation"
    UNEXPECTED = "unexpected"


class FailureScope(str, Enum):
    """How far a failure reaches."""

    RETRY = "retry"
    WORKER = "worker"
    RUN = "run"


@dataclass(slots=True)
class SchedulerError(Exception):
    """Base scheduler error."""

    message: str
    code: str = "scheduler_error"

    def __str__(self) -> str:
        return self.message


@dataclass(slots=True)
class RetryExhaustedError(SchedulerError):
    """Every attempt of a retried operation failed transiently."""

    code: str = "retry_exhausted"
    operation: str = ""
    attempts: int = 0


@dataclass(slots=True)
class RetryAbortedError(SchedulerError):
    """Cancellation arrived while an operation was backing off."""

    code: str = "retry_aborted"
    attempts: int = 0


@dataclass(slots=True)
class ComputationError(SchedulerError):
    """The computation produced no usable result for a task."""

    code: str = "computation_failed"
    task_uid: int | None = None


@dataclass(slots=True)
class RunningAverage:
    """Cheap duration indicator: ``average = (average + duration) / 2``.

    This is an exponentially weighted estimate, not an arithmetic mean.
    """

    value: float = 0.0
    samples: int = 0

    def update(self, duration: float) -> float:
        self.value = (self.value + duration) / 2
        self.samples += 1
        return self.value


@dataclass(slots=True, frozen=True)
class TaskResult:
    """Computation output bound for the result sink."""

    task: Task
    payload: object
    duration_seconds: float
    worker_index: int

    @property
    def submission_id(self) -> int:
        return self.task.submission_id


@dataclass(slots=True)
class WorkerState:
    """State owned by exactly one lane for its whole lifetime."""

    index: int
    average: RunningAverage = field(default_factory=RunningAverage)
    current_task: Task | None = None
    computed: int = 0
    stored: int = 0
    failed: int = 0
    error: BaseException | None = None

    @property
    def busy(self) -> bool:
        return self.current_task is not None


@dataclass(slots=True)
class MinerRunSummary:
    """Aggregate run counters for CLI reporting."""

    workers: int
    dispatch_mode: DispatchMode
    fetched: int = 0
    computed: int = 0
    stored: int = 0
    failed: int = 0
    abandoned: int = 0
    averages: dict[int, float] = field(default_factory=dict)
    cancel_reason: str | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None
