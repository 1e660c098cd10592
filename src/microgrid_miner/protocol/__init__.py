"""Microgrid project server protocol."""

from microgrid_miner.protocol.base import (
    AuthExpiredError,
    MalformedResponseError,
    MicrogridError,
    ResultSink,
    TaskSource,
    UnavailableError,
    VersionMismatchError,
)
from microgrid_miner.protocol.client import MicrogridClient
from microgrid_miner.protocol.models import (
    LoginMessage,
    LogoutMessage,
    RegisterMessage,
    Session,
    Task,
    UserChangeSettingsMessage,
)
from microgrid_miner.protocol.session import SessionStore

__all__ = [
    "AuthExpiredError",
    "LoginMessage",
    "LogoutMessage",
    "MalformedResponseError",
    "MicrogridClient",
    "MicrogridError",
    "RegisterMessage",
    "ResultSink",
    "Session",
    "SessionStore",
    "Task",
    "TaskSource",
    "UnavailableError",
    "UserChangeSettingsMessage",
    "VersionMismatchError",
]
