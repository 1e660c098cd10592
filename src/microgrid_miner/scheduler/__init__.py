"""Worker-pool scheduler: fetch, compute and store tasks with bounded retry."""

from microgrid_miner.scheduler.cancellation import (
    CancellationSignal,
    CancellationToken,
    CompositeSignal,
    KeypressSignal,
    ProcessSignal,
    TimerSignal,
)
from microgrid_miner.scheduler.executors import create_executor
from microgrid_miner.scheduler.failure_classifier import FailureClassification, classify_failure
from microgrid_miner.scheduler.miner import Miner
from microgrid_miner.scheduler.models import (
    ComputationError,
    DispatchMode,
    ExecutionMode,
    FailureClass,
    FailureScope,
    MinerRunSummary,
    RetryAbortedError,
    RetryExhaustedError,
    RunningAverage,
    SchedulerError,
    TaskResult,
    WorkerState,
)
from microgrid_miner.scheduler.retry import RetryBudget, RetryPolicy, call_with_retry

__all__ = [
    "CancellationSignal",
    "CancellationToken",
    "CompositeSignal",
    "ComputationError",
    "DispatchMode",
    "ExecutionMode",
    "FailureClass",
    "FailureClassification",
    "FailureScope",
    "KeypressSignal",
    "Miner",
    "MinerRunSummary",
    "ProcessSignal",
    "RetryAbortedError",
    "RetryBudget",
    "RetryExhaustedError",
    "RetryPolicy",
    "RunningAverage",
    "SchedulerError",
    "TaskResult",
    "TimerSignal",
    "WorkerState",
    "call_with_retry",
    "classify_failure",
    "create_executor",
]
