"""Controllers for miner CLI commands."""

from __future__ import annotations

import sys
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from pathlib import Path

from microgrid_miner.compute import resolve_computation
from microgrid_miner.compute.twin_prime import twin_primes, twin_primes_parallel
from microgrid_miner.config import MicrogridSettings, Settings
from microgrid_miner.protocol import (
    LoginMessage,
    LogoutMessage,
    MicrogridClient,
    MicrogridError,
    RegisterMessage,
    Session,
    SessionStore,
)
from microgrid_miner.scheduler import (
    CancellationSignal,
    CompositeSignal,
    DispatchMode,
    ExecutionMode,
    KeypressSignal,
    Miner,
    MinerRunSummary,
    ProcessSignal,
    RetryPolicy,
    TimerSignal,
)

ClientFactory = Callable[[MicrogridSettings, Session | None], MicrogridClient]

CHECK_PREVIEW_LIMIT = 20


@dataclass(slots=True)
class LoginCommand:
    """CLI input for interactive login."""

    session_path: Path | None
    login: str
    password: str
    captcha_path: Path


@dataclass(slots=True)
class RegisterCommand:
    """CLI input for account registration."""

    session_path: Path | None
    login: str
    mail: str
    password: str
    password_confirmation: str
    withdraw_address: str
    captcha_path: Path


@dataclass(slots=True)
class LogoutCommand:
    """CLI input for logout."""

    session_path: Path | None


@dataclass(slots=True)
class MineCommand:
    """CLI input for a mining run."""

    session_path: Path | None = None
    workers: int | None = None
    dispatch_mode: str | None = None
    execution_mode: str | None = None
    computation: str | None = None
    duration_seconds: float | None = None
    keypress: bool | None = None


@dataclass(slots=True)
class CheckCommand:
    """CLI input for a local twin-prime check."""

    start: int
    stop: int
    processes: int = 1


@dataclass(slots=True)
class CommandResult:
    """Report to render in CLI."""

    lines: list[str]
    success: bool


def _default_client(settings: MicrogridSettings, session: Session | None) -> MicrogridClient:
    return MicrogridClient(
        session=session,
        base_url=settings.base_url,
        project=settings.project,
        result_version=settings.result_version,
        timeout_seconds=settings.request_timeout_seconds,
    )


class MinerCliController:
    """Coordinates login, mining and local check CLI operations."""

    def __init__(self, client_factory: ClientFactory = _default_client) -> None:
        self._client_factory = client_factory

    def login(self, command: LoginCommand, *, read_captcha: Callable[[Path], str]) -> CommandResult:
        """Start a session, solve the captcha, log in and persist the session."""

        settings = _load_settings(session_path=command.session_path)
        with self._client_factory(settings.microgrid, None) as client:
            try:
                session = _start_session(client, command.captcha_path)
                code = read_captcha(command.captcha_path)
                message = client.login(
                    login=command.login,
                    password=command.password,
                    captcha=code,
                )
            except MicrogridError as error:
                return CommandResult(lines=[f"Login failed: {error}"], success=False)

        if message != LoginMessage.SUCCESSFUL:
            return CommandResult(lines=[f"Login failed: {message.value}"], success=False)
        SessionStore(settings.microgrid.session_path).save(session)
        return CommandResult(
            lines=[
                f"Logged in as {command.login}.",
                f"Session saved to {settings.microgrid.session_path}",
            ],
            success=True,
        )

    def register(
        self,
        command: RegisterCommand,
        *,
        read_captcha: Callable[[Path], str],
    ) -> CommandResult:
        """Create an account; keep the session when the server logs it in."""

        settings = _load_settings(session_path=command.session_path)
        with self._client_factory(settings.microgrid, None) as client:
            try:
                session = _start_session(client, command.captcha_path)
                code = read_captcha(command.captcha_path)
                message = client.register(
                    login=command.login,
                    mail=command.mail,
                    password1=command.password,
                    password2=command.password_confirmation,
                    withdraw_address=command.withdraw_address,
                    captcha=code,
                )
            except MicrogridError as error:
                return CommandResult(lines=[f"Registration failed: {error}"], success=False)

        if message == RegisterMessage.LOGIN_SUCCESSFUL:
            SessionStore(settings.microgrid.session_path).save(session)
            return CommandResult(
                lines=[
                    f"Registered and logged in as {command.login}.",
                    f"Session saved to {settings.microgrid.session_path}",
                ],
                success=True,
            )
        if message == RegisterMessage.SUCCESSFUL:
            return CommandResult(
                lines=[f"Registered {command.login}. Run `microgrid-miner login` to start."],
                success=True,
            )
        return CommandResult(lines=[f"Registration failed: {message.value}"], success=False)

    def logout(self, command: LogoutCommand) -> CommandResult:
        settings = _load_settings(session_path=command.session_path)
        store = SessionStore(settings.microgrid.session_path)
        session = store.load()
        if session is None:
            return CommandResult(lines=[_missing_session_line(settings)], success=False)
        with self._client_factory(settings.microgrid, session) as client:
            try:
                message = client.logout()
            except MicrogridError as error:
                return CommandResult(lines=[f"Logout failed: {error}"], success=False)
        if message != LogoutMessage.SUCCESSFUL:
            return CommandResult(lines=[f"Logout failed: {message.value}"], success=False)
        store.clear()
        return CommandResult(lines=["Logged out."], success=True)

    def mine(
        self,
        command: MineCommand,
        *,
        cancel_signal: CancellationSignal | None = None,
    ) -> CommandResult:
        """Run the miner until cancelled or until every worker has exited."""

        try:
            settings = _load_settings(
                session_path=command.session_path,
                workers=command.workers,
                dispatch_mode=command.dispatch_mode,
                execution_mode=command.execution_mode,
                computation=command.computation,
            )
            computation = resolve_computation(settings.miner.computation)
        except ValueError as error:
            return CommandResult(lines=[f"Configuration error: {error}"], success=False)

        session = SessionStore(settings.microgrid.session_path).load()
        if session is None:
            return CommandResult(lines=[_missing_session_line(settings)], success=False)

        if cancel_signal is None:
            cancel_signal = _cancel_signal(settings, command)
        miner_settings = settings.miner
        with self._client_factory(settings.microgrid, session) as client:
            miner = Miner(
                source=client,
                sink=client,
                computation=computation,
                workers=miner_settings.workers,
                dispatch_mode=miner_settings.dispatch_mode,
                prefetch_overhead=miner_settings.prefetch_overhead,
                fetch_policy=RetryPolicy(
                    attempts=miner_settings.fetch_attempts,
                    cooldown_seconds=miner_settings.retry_cooldown_seconds,
                ),
                store_policy=RetryPolicy(
                    attempts=miner_settings.store_attempts,
                    cooldown_seconds=miner_settings.retry_cooldown_seconds,
                ),
                execution_mode=miner_settings.execution_mode,
            )
            summary = miner.run(cancel_signal)
        return CommandResult(lines=render_summary_lines(summary), success=summary.ok)

    def check(self, command: CheckCommand) -> list[str]:
        """Compute twin primes locally without talking to the server."""

        if command.stop < command.start:
            raise ValueError("STOP must be >= START.")
        started = time.perf_counter()
        if command.processes > 1:
            found = twin_primes_parallel(command.start, command.stop, processes=command.processes)
        else:
            found = twin_primes(command.start, command.stop)
        elapsed_ms = (time.perf_counter() - started) * 1000

        lines = [
            f"Twin primes in ({command.start}, {command.stop}]: "
            f"pairs={len(found)} elapsed={elapsed_ms:.0f} ms processes={command.processes}",
        ]
        preview = ", ".join(f"({p}, {p + 2})" for p in found[:CHECK_PREVIEW_LIMIT])
        if preview:
            suffix = ", ..." if len(found) > CHECK_PREVIEW_LIMIT else ""
            lines.append(f"Pairs: {preview}{suffix}")
        return lines


def render_summary_lines(summary: MinerRunSummary) -> list[str]:
    lines = [
        "Miner summary: "
        f"workers={summary.workers} dispatch={summary.dispatch_mode.value} "
        f"fetched={summary.fetched} computed={summary.computed} stored={summary.stored} "
        f"failed={summary.failed} abandoned={summary.abandoned}",
    ]
    if summary.averages:
        averages = " ".join(
            f"[{index:02d}]={value * 1000:.0f}ms"
            for index, value in sorted(summary.averages.items())
        )
        lines.append(f"Average task time: {averages}")
    if summary.cancel_reason is not None:
        lines.append(f"Stopped by: {summary.cancel_reason}")
    if summary.error is not None:
        lines.append(f"Error: {summary.error}")
    return lines


def _load_settings(  # noqa: PLR0913
    *,
    session_path: Path | None = None,
    workers: int | None = None,
    dispatch_mode: str | None = None,
    execution_mode: str | None = None,
    computation: str | None = None,
) -> Settings:
    settings = Settings.from_env()
    microgrid = settings.microgrid
    if session_path is not None:
        microgrid = replace(microgrid, session_path=session_path)
    miner = settings.miner
    if workers is not None:
        miner = replace(miner, workers=workers)
    if dispatch_mode is not None:
        miner = replace(miner, dispatch_mode=DispatchMode(dispatch_mode))
    if execution_mode is not None:
        miner = replace(miner, execution_mode=ExecutionMode(execution_mode))
    if computation is not None:
        miner = replace(miner, computation=computation)
    settings = replace(settings, microgrid=microgrid, miner=miner)
    settings.validate()
    return settings


def _cancel_signal(settings: Settings, command: MineCommand) -> CancellationSignal:
    signals: list[CancellationSignal] = [ProcessSignal()]
    if command.duration_seconds is not None:
        signals.append(TimerSignal(command.duration_seconds))
    keypress = settings.miner.keypress_cancel if command.keypress is None else command.keypress
    if keypress and sys.stdin.isatty():
        signals.append(KeypressSignal())
    return CompositeSignal(*signals)


def _start_session(client: MicrogridClient, captcha_path: Path) -> Session:
    session = client.bootstrap()
    captcha_path.write_bytes(client.captcha())
    return session


def _missing_session_line(settings: Settings) -> str:
    return (
        f"No session found at {settings.microgrid.session_path}. "
        "Run `microgrid-miner login` first."
    )
