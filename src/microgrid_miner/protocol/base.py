"""Task source / result sink contracts and protocol errors."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from microgrid_miner.protocol.models import Task


@dataclass(slots=True)
class MicrogridError(Exception):
    """Base protocol error."""

    message: str
    code: str = "microgrid_error"

    def __str__(self) -> str:
        return self.message


@dataclass(slots=True)
class AuthExpiredError(MicrogridError):
    """Session token was rejected; the whole run has to stop."""

    code: str = "auth_expired"


@dataclass(slots=True)
class MalformedResponseError(MicrogridError):
    """Response body could not be interpreted."""

    code: str = "malformed_response"


@dataclass(slots=True)
class VersionMismatchError(MicrogridError):
    """Server refused the result for the submitted result version."""

    code: str = "version_mismatch"


@dataclass(slots=True)
class UnavailableError(MicrogridError):
    """Retryable transport or server-side failure."""

    code: str = "unavailable"
    status_code: int | None = None


class TaskSource(Protocol):
    """Yields one task per successful call."""

    def next_task(self) -> Task:
        """Fetch the next task or raise a ``MicrogridError``."""
        raise NotImplementedError


class ResultSink(Protocol):
    """Accepts computed results."""

    def store_result(self, submission_id: int, result: object) -> None:
        """Store ``result`` under ``submission_id`` or raise a ``MicrogridError``."""
        raise NotImplementedError
