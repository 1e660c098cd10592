"""CLI entrypoint for microgrid-miner."""

from pathlib import Path

import rich_click as click

from microgrid_miner import __version__
from microgrid_miner.config import Settings
from microgrid_miner.controllers import (
    CheckCommand,
    LoginCommand,
    LogoutCommand,
    MineCommand,
    MinerCliController,
    RegisterCommand,
)
from microgrid_miner.logging_setup import configure_logging
from microgrid_miner.scheduler import DispatchMode, ExecutionMode

click.rich_click.USE_MARKDOWN = True
CONTROLLER = MinerCliController()


@click.group()
@click.version_option(version=__version__, prog_name="microgrid-miner")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Logging level. Defaults to MICROGRID_LOG_LEVEL or INFO.",
)
def microgrid_miner(log_level: str | None) -> None:
    """Microgrid distributed computing client.

    Fetches tasks from the project server, computes them on local cores
    and stores the results back.
    """

    try:
        level = log_level or Settings.from_env().log_level
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    configure_logging(level.upper())


@microgrid_miner.command("login")
@click.option(
    "--session-path",
    type=click.Path(path_type=Path),
    default=None,
    help="Where to store session credentials.",
)
@click.option("--login", "login_name", prompt="Login", help="Account login.")
@click.option("--password", prompt="Password", hide_input=True, help="Account password.")
@click.option(
    "--captcha-path",
    type=click.Path(path_type=Path),
    default=Path("captcha.png"),
    show_default=True,
    help="Where to write the captcha image.",
)
def login(session_path: Path | None, login_name: str, password: str, captcha_path: Path) -> None:
    """Log in and save the session for `mine`."""

    def _read_captcha(path: Path) -> str:
        return click.prompt(f"Captcha (see {path})")

    try:
        result = CONTROLLER.login(
            LoginCommand(
                session_path=session_path,
                login=login_name,
                password=password,
                captcha_path=captcha_path,
            ),
            read_captcha=_read_captcha,
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Login failed.")


@microgrid_miner.command("register")
@click.option(
    "--session-path",
    type=click.Path(path_type=Path),
    default=None,
    help="Where to store session credentials.",
)
@click.option("--login", "login_name", prompt="Login", help="Account login.")
@click.option("--mail", prompt="Mail", help="Account e-mail.")
@click.option(
    "--password",
    prompt="Password",
    hide_input=True,
    confirmation_prompt=True,
    help="Account password.",
)
@click.option(
    "--withdraw-address",
    prompt="Withdraw address",
    default="",
    help="Wallet address for payouts.",
)
@click.option(
    "--captcha-path",
    type=click.Path(path_type=Path),
    default=Path("captcha.png"),
    show_default=True,
    help="Where to write the captcha image.",
)
def register(  # noqa: PLR0913
    session_path: Path | None,
    login_name: str,
    mail: str,
    password: str,
    withdraw_address: str,
    captcha_path: Path,
) -> None:
    """Create a Microgrid account."""

    def _read_captcha(path: Path) -> str:
        return click.prompt(f"Captcha (see {path})")

    try:
        result = CONTROLLER.register(
            RegisterCommand(
                session_path=session_path,
                login=login_name,
                mail=mail,
                password=password,
                password_confirmation=password,
                withdraw_address=withdraw_address,
                captcha_path=captcha_path,
            ),
            read_captcha=_read_captcha,
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Registration failed.")


@microgrid_miner.command("logout")
@click.option("--session-path", type=click.Path(path_type=Path), default=None, help="Session file.")
def logout(session_path: Path | None) -> None:
    """Invalidate the saved session."""

    try:
        result = CONTROLLER.logout(LogoutCommand(session_path=session_path))
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Logout failed.")


@microgrid_miner.command("mine")
@click.option("--session-path", type=click.Path(path_type=Path), default=None, help="Session file.")
@click.option(
    "--workers",
    type=click.IntRange(min=1),
    default=None,
    help="Parallel workers. Defaults to MICROGRID_WORKERS or CPU count.",
)
@click.option(
    "--dispatch-mode",
    type=click.Choice([mode.value for mode in DispatchMode]),
    default=None,
    help="How tasks reach workers. Defaults to MICROGRID_DISPATCH_MODE or prefetch.",
)
@click.option(
    "--execution-mode",
    type=click.Choice([mode.value for mode in ExecutionMode]),
    default=None,
    help="Run computations in processes or threads.",
)
@click.option("--computation", default=None, help="Computation name, for example twin-primes.")
@click.option(
    "--duration",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Stop after this many seconds.",
)
@click.option(
    "--keypress/--no-keypress",
    default=None,
    help="Stop on any key press (TTY only).",
)
def mine(  # noqa: PLR0913
    session_path: Path | None,
    workers: int | None,
    dispatch_mode: str | None,
    execution_mode: str | None,
    computation: str | None,
    duration: float | None,
    keypress: bool | None,
) -> None:
    """Fetch, compute and store tasks until stopped.

    Press any key, Ctrl-C, or send SIGTERM to finish in-flight tasks and exit.
    """

    result = CONTROLLER.mine(
        MineCommand(
            session_path=session_path,
            workers=workers,
            dispatch_mode=dispatch_mode,
            execution_mode=execution_mode,
            computation=computation,
            duration_seconds=duration,
            keypress=keypress,
        ),
    )
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Mining run ended with an error.")


@microgrid_miner.command("check")
@click.argument("start", type=click.IntRange(min=0))
@click.argument("stop", type=click.IntRange(min=0))
@click.option(
    "--processes",
    type=click.IntRange(min=1),
    default=1,
    show_default=True,
    help="Split the range across this many processes.",
)
def check(start: int, stop: int, processes: int) -> None:
    """Count twin primes (p, p + 2) with START < p and p + 2 <= STOP."""

    try:
        lines = CONTROLLER.check(CheckCommand(start=start, stop=stop, processes=processes))
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    microgrid_miner()
