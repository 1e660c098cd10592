"""Wire-level models for the Microgrid project server."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


@dataclass(slots=True, frozen=True)
class Task:
    """One unit of remote work: a number range plus its result submission id."""

    uid: int
    workunit_result_uid: int
    project_uid: int
    start_number: int
    stop_number: int

    @property
    def submission_id(self) -> int:
        return self.workunit_result_uid


@dataclass(slots=True, frozen=True)
class Session:
    """Authenticated session credentials."""

    session_id: str
    token: str


class LoginMessage(str, Enum):
    """Outcome of a login attempt."""

    SUCCESSFUL = "successful"
    FAILED = "failed"
    FAILED_WRONG_TOKEN = "failed_wrong_token"
    FAILED_INVALID_CAPTCHA = "failed_invalid_captcha"
    FAILED_REQUEST = "failed_request"


class LogoutMessage(str, Enum):
    """Outcome of a logout attempt."""

    SUCCESSFUL = "successful"
    FAILED = "failed"
    FAILED_WRONG_TOKEN = "failed_wrong_token"


class RegisterMessage(str, Enum):
    """Outcome of an account registration."""

    SUCCESSFUL = "successful"
    LOGIN_SUCCESSFUL = "login_successful"
    FAILED = "failed"
    FAILED_WRONG_TOKEN = "failed_wrong_token"
    FAILED_DISABLED = "failed_disabled"
    FAILED_PASSWORD_MISMATCH = "failed_password_mismatch"
    FAILED_INVALID_CAPTCHA = "failed_invalid_captcha"
    FAILED_INVALID_PASSWORD = "failed_invalid_password"
    FAILED_INVALID_LOGIN = "failed_invalid_login"


class UserChangeSettingsMessage(str, Enum):
    """Outcome of an account settings change."""

    SUCCESSFUL = "successful"
    FAILED = "failed"
    FAILED_WRONG_TOKEN = "failed_wrong_token"
    FAILED_NEW_PASSWORD_MISMATCH = "failed_new_password_mismatch"
    FAILED_PASSWORD_INCORRECT = "failed_password_incorrect"
