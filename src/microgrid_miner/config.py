"""Runtime configuration for the Microgrid miner."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TypeVar
from urllib.parse import urlparse

from microgrid_miner.compute import COMPUTATIONS
from microgrid_miner.protocol.client import DEFAULT_BASE_URL
from microgrid_miner.scheduler.models import DispatchMode, ExecutionMode

E = TypeVar("E", bound=Enum)


@dataclass(slots=True)
class MicrogridSettings:
    """Project server settings."""

    base_url: str = DEFAULT_BASE_URL
    project: int = 1
    result_version: int = 2
    request_timeout_seconds: float = 30.0
    session_path: Path = Path("session.json")


@dataclass(slots=True)
class MinerSettings:
    """Worker pool settings."""

    workers: int = field(default_factory=lambda: os.cpu_count() or 1)
    dispatch_mode: DispatchMode = DispatchMode.PREFETCH
    prefetch_overhead: int | None = None
    fetch_attempts: int = 5
    store_attempts: int = 5
    retry_cooldown_seconds: float = 10.0
    execution_mode: ExecutionMode = ExecutionMode.PROCESS
    computation: str = "twin-primes"
    keypress_cancel: bool = True


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    microgrid: MicrogridSettings = field(default_factory=MicrogridSettings)
    miner: MinerSettings = field(default_factory=MinerSettings)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment with defaults matching the public server."""

        overhead = os.getenv("MICROGRID_PREFETCH_OVERHEAD")
        return cls(
            microgrid=MicrogridSettings(
                base_url=os.getenv("MICROGRID_BASE_URL", DEFAULT_BASE_URL),
                project=int(os.getenv("MICROGRID_PROJECT", "1")),
                result_version=int(os.getenv("MICROGRID_RESULT_VERSION", "2")),
                request_timeout_seconds=float(
                    os.getenv("MICROGRID_REQUEST_TIMEOUT_SECONDS", "30.0"),
                ),
                session_path=Path(os.getenv("MICROGRID_SESSION_PATH", "session.json")),
            ),
            miner=MinerSettings(
                workers=int(os.getenv("MICROGRID_WORKERS", str(os.cpu_count() or 1))),
                dispatch_mode=_env_choice("MICROGRID_DISPATCH_MODE", DispatchMode, "prefetch"),
                prefetch_overhead=int(overhead) if overhead else None,
                fetch_attempts=int(os.getenv("MICROGRID_FETCH_ATTEMPTS", "5")),
                store_attempts=int(os.getenv("MICROGRID_STORE_ATTEMPTS", "5")),
                retry_cooldown_seconds=float(
                    os.getenv("MICROGRID_RETRY_COOLDOWN_SECONDS", "10.0"),
                ),
                execution_mode=_env_choice("MICROGRID_EXECUTION_MODE", ExecutionMode, "process"),
                computation=os.getenv("MICROGRID_COMPUTATION", "twin-primes"),
                keypress_cancel=_env_bool("MICROGRID_KEYPRESS_CANCEL", default=True),
            ),
            log_level=os.getenv("MICROGRID_LOG_LEVEL", "INFO").strip().upper(),
        )

    def validate(self) -> None:
        """Raise configuration error naming the offending variable."""

        parsed = urlparse(self.microgrid.base_url)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError(
                f"MICROGRID_BASE_URL must be an absolute http(s) URL: {self.microgrid.base_url!r}",
            )
        if self.microgrid.request_timeout_seconds <= 0:
            raise ValueError("MICROGRID_REQUEST_TIMEOUT_SECONDS must be > 0.")
        if self.miner.workers < 1:
            raise ValueError("MICROGRID_WORKERS must be >= 1.")
        if self.miner.prefetch_overhead is not None and self.miner.prefetch_overhead < 0:
            raise ValueError("MICROGRID_PREFETCH_OVERHEAD must be >= 0.")
        if self.miner.fetch_attempts < 1:
            raise ValueError("MICROGRID_FETCH_ATTEMPTS must be >= 1.")
        if self.miner.store_attempts < 1:
            raise ValueError("MICROGRID_STORE_ATTEMPTS must be >= 1.")
        if self.miner.retry_cooldown_seconds < 0:
            raise ValueError("MICROGRID_RETRY_COOLDOWN_SECONDS must be >= 0.")
        if self.miner.computation not in COMPUTATIONS:
            supported = ", ".join(sorted(COMPUTATIONS))
            raise ValueError(
                f"MICROGRID_COMPUTATION must be one of: {supported}. "
                f"Got {self.miner.computation!r}.",
            )
        if not isinstance(logging.getLevelName(self.log_level), int):
            raise ValueError(f"MICROGRID_LOG_LEVEL is not a logging level: {self.log_level!r}")


def _env_choice(name: str, enum_type: type[E], default: str) -> E:
    value = os.getenv(name, default).strip().lower()
    try:
        return enum_type(value)
    except ValueError:
        supported = ", ".join(item.value for item in enum_type)
        raise ValueError(f"Invalid value for {name}: {value!r}. Supported: {supported}.") from None


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
