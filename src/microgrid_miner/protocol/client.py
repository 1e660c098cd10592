"""HTTP client for the Microgrid project server."""

from __future__ import annotations

import json
import logging
import re

import httpx

from microgrid_miner.protocol.base import (
    AuthExpiredError,
    MalformedResponseError,
    MicrogridError,
    UnavailableError,
    VersionMismatchError,
)
from microgrid_miner.protocol.models import (
    LoginMessage,
    LogoutMessage,
    RegisterMessage,
    Session,
    Task,
    UserChangeSettingsMessage,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://microgrid.arikado.ru/"
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_PROJECT = 1
DEFAULT_RESULT_VERSION = 2
SESSION_COOKIE = "session_id"
MESSAGE_COOKIE = "message"
WRONG_TOKEN_BODY = "Wrong token"
HTTP_BAD_REQUEST = 400
RETRYABLE_HTTP_STATUS_CODES = frozenset({429, 500, 502, 503, 504})
AUTH_HTTP_STATUS_CODES = frozenset({401, 403})
TASK_FIELDS = ("workunit_result_uid", "uid", "project_uid", "start_number", "stop_number")

_TOKEN_PATTERN = re.compile(r"<input type=hidden name=token value='(.*)'>")

_LOGIN_MESSAGES = {
    "login_successful": LoginMessage.SUCCESSFUL,
    "login_failed_invalid_captcha": LoginMessage.FAILED_INVALID_CAPTCHA,
}
_REGISTER_MESSAGES = {
    "register_successful": RegisterMessage.SUCCESSFUL,
    "login_successful": RegisterMessage.LOGIN_SUCCESSFUL,
    "register_failed_disabled": RegisterMessage.FAILED_DISABLED,
    "register_failed_password_mismatch": RegisterMessage.FAILED_PASSWORD_MISMATCH,
    "register_failed_invalid_captcha": RegisterMessage.FAILED_INVALID_CAPTCHA,
    "register_failed_invalid_password": RegisterMessage.FAILED_INVALID_PASSWORD,
    "register_failed_invalid_login": RegisterMessage.FAILED_INVALID_LOGIN,
}
_USER_CHANGE_SETTINGS_MESSAGES = {
    "user_change_settings_successful": UserChangeSettingsMessage.SUCCESSFUL,
    "user_change_settings_failed_new_password_mismatch": (
        UserChangeSettingsMessage.FAILED_NEW_PASSWORD_MISMATCH
    ),
    "user_change_settings_failed_password_incorrect": (
        UserChangeSettingsMessage.FAILED_PASSWORD_INCORRECT
    ),
}


class MicrogridClient:
    """Session-bound client; implements both ``TaskSource`` and ``ResultSink``."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        session: Session | None = None,
        base_url: str = DEFAULT_BASE_URL,
        project: int = DEFAULT_PROJECT,
        result_version: int = DEFAULT_RESULT_VERSION,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url
        self.project = project
        self.result_version = result_version
        self._session = session
        self._client = httpx.Client(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            transport=transport,
            follow_redirects=False,
        )
        if session is not None:
            self._client.cookies.set(SESSION_COOKIE, session.session_id)

    @property
    def session(self) -> Session:
        if self._session is None:
            raise RuntimeError("Client has no session; call bootstrap() first.")
        return self._session

    def bootstrap(self) -> Session:
        """Obtain a fresh anonymous session id and its form token."""

        response = self._send("GET", "/")
        session_id = response.cookies.get(SESSION_COOKIE)
        if not session_id:
            raise MalformedResponseError(
                message="Server did not set a session cookie.",
                code="missing_session_cookie",
            )
        page = self._send("GET", "/", params={"ajax": "1", "block": "login"})
        match = _TOKEN_PATTERN.search(page.text)
        if match is None:
            raise MalformedResponseError(
                message="Login form did not contain a token.",
                code="missing_token",
            )
        self._session = Session(session_id=session_id, token=match.group(1))
        logger.info("Initialized new session %s", session_id)
        return self._session

    def captcha(self) -> bytes:
        response = self._send("GET", "/", params={"captcha": ""})
        content_type = response.headers.get("content-type", "")
        if not content_type.startswith("image/png"):
            raise MalformedResponseError(
                message=f"Expected a PNG captcha, got {content_type or 'no content type'}.",
                code="captcha_not_png",
            )
        return response.content

    def login(self, *, login: str, password: str, captcha: str) -> LoginMessage:
        try:
            response = self._post_form(
                {
                    "action": "login",
                    "token": self.session.token,
                    "login": login,
                    "password": password,
                    "captcha_code": captcha,
                },
            )
        except UnavailableError as error:
            logger.warning("Login request failed: %s", error)
            return LoginMessage.FAILED_REQUEST

        if response.text == WRONG_TOKEN_BODY:
            return LoginMessage.FAILED_WRONG_TOKEN
        return _LOGIN_MESSAGES.get(response.cookies.get(MESSAGE_COOKIE), LoginMessage.FAILED)

    def register(  # noqa: PLR0913
        self,
        *,
        login: str,
        mail: str,
        password1: str,
        password2: str,
        withdraw_address: str,
        captcha: str,
    ) -> RegisterMessage:
        """Create an account; the server may log the new account in right away."""

        response = self._post_form(
            {
                "action": "register",
                "token": self.session.token,
                "captcha_code": captcha,
                "login": login,
                "mail": mail,
                "password1": password1,
                "password2": password2,
                "withdraw_address": withdraw_address,
            },
        )
        if response.text == WRONG_TOKEN_BODY:
            return RegisterMessage.FAILED_WRONG_TOKEN
        return _REGISTER_MESSAGES.get(response.cookies.get(MESSAGE_COOKIE), RegisterMessage.FAILED)

    def user_change_settings(
        self,
        *,
        mail: str,
        password: str,
        new_password1: str,
        new_password2: str,
        withdraw_address: str,
    ) -> UserChangeSettingsMessage:
        response = self._post_form(
            {
                "action": "user_change_settings",
                "token": self.session.token,
                "mail": mail,
                "password": password,
                "new_password1": new_password1,
                "new_password2": new_password2,
                "withdraw_address": withdraw_address,
            },
        )
        if response.text == WRONG_TOKEN_BODY:
            return UserChangeSettingsMessage.FAILED_WRONG_TOKEN
        return _USER_CHANGE_SETTINGS_MESSAGES.get(
            response.cookies.get(MESSAGE_COOKIE),
            UserChangeSettingsMessage.FAILED,
        )

    def project_script(self, project_uid: int) -> str | None:
        """Return the project's browser worker script, or ``None`` if it has none."""

        response = self._send("GET", "/", params={"project_script": str(project_uid)})
        if response.headers.get("content-type", "").startswith("application/javascript"):
            return response.text
        return None

    def logout(self) -> LogoutMessage:
        response = self._post_form({"action": "logout", "token": self.session.token})
        if response.text == WRONG_TOKEN_BODY:
            return LogoutMessage.FAILED_WRONG_TOKEN
        if response.cookies.get(MESSAGE_COOKIE) == "logout_successful":
            return LogoutMessage.SUCCESSFUL
        return LogoutMessage.FAILED

    def next_task(self) -> Task:
        response = self._post_form(
            {
                "action": "get_new_task",
                "token": self.session.token,
                "project": str(self.project),
            },
        )
        body = response.text
        if body == WRONG_TOKEN_BODY:
            raise AuthExpiredError(message="Server rejected the session token while fetching.")
        try:
            payload = json.loads(body)
        except json.JSONDecodeError as error:
            raise MalformedResponseError(
                message=f"Task response is not JSON: {body[:80]!r}",
                code="incorrect_body",
            ) from error
        task = _parse_task(payload)
        if task is None:
            raise UnavailableError(
                message=f"Server returned no task: {body[:80]!r}",
                code="no_task",
            )
        return task

    def store_result(self, submission_id: int, result: object) -> None:
        response = self._post_form(
            {
                "action": "task_store_result",
                "token": self.session.token,
                "version": str(self.result_version),
                "workunit_result_uid": str(submission_id),
                "result": json.dumps(result, separators=(",", ":")),
            },
        )
        body = response.text
        if body == WRONG_TOKEN_BODY:
            raise AuthExpiredError(message="Server rejected the session token while storing.")
        try:
            payload = json.loads(body)
        except json.JSONDecodeError:
            payload = None
        outcome = payload.get("result") if isinstance(payload, dict) else None
        if outcome == "ok":
            return
        if outcome == "fail":
            raise VersionMismatchError(
                message=(
                    f"Server refused result version {self.result_version} "
                    f"for submission {submission_id}."
                ),
            )
        raise UnavailableError(
            message=f"Result store failed for submission {submission_id}: {body[:80]!r}",
            code="store_failed",
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> MicrogridClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def _post_form(self, data: dict[str, str]) -> httpx.Response:
        return self._send(
            "POST",
            "/",
            data=data,
            headers={"Origin": self.base_url, "Referer": self.base_url},
        )

    def _send(self, method: str, url: str, **kwargs: object) -> httpx.Response:
        try:
            response = self._client.request(method, url, **kwargs)  # type: ignore[arg-type]
        except httpx.TimeoutException as error:
            raise UnavailableError(
                message=f"Microgrid request timed out: {error}",
                code="timeout",
            ) from error
        except httpx.TransportError as error:
            raise UnavailableError(
                message=f"Microgrid transport error: {error}",
                code="transport",
            ) from error
        _raise_for_status(response)
        return response


def _raise_for_status(response: httpx.Response) -> None:
    status = response.status_code
    if status < HTTP_BAD_REQUEST:
        return
    if status in RETRYABLE_HTTP_STATUS_CODES:
        raise UnavailableError(
            message=f"Temporary Microgrid HTTP error: {status}",
            code=str(status),
            status_code=status,
        )
    error: MicrogridError
    if status in AUTH_HTTP_STATUS_CODES:
        error = AuthExpiredError(message=f"Microgrid HTTP error: {status}", code=str(status))
    else:
        error = MalformedResponseError(
            message=f"Non-retryable Microgrid HTTP error: {status}",
            code=str(status),
        )
    raise error


def _parse_task(payload: object) -> Task | None:
    if not isinstance(payload, dict):
        return None
    values: dict[str, int] = {}
    for name in TASK_FIELDS:
        value = _coerce_int(payload.get(name))
        if value is None:
            return None
        values[name] = value
    return Task(**values)


def _coerce_int(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None
