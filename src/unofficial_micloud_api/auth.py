"""Xiaomi account login for the MiOT cloud API.

Implements the three-step ``serviceLogin`` flow used by the Mi Home Android app:
probe for a sign token, exchange the credentials, then follow the STS redirect
to collect the ``serviceToken`` cookie.
"""

from __future__ import annotations

import hashlib
import json
import logging
import secrets
import string
import time
from collections.abc import Callable

import requests

from .const import (
    LOGIN_AUTH_URL,
    LOGIN_CALLBACK,
    LOGIN_QS,
    LOGIN_RESPONSE_PREFIX,
    LOGIN_SID,
    LOGIN_URL,
    REQUEST_TIMEOUT,
    SDK_VERSION,
    USER_AGENT,
)
from .exceptions import (
    AuthChallengeRequiredError,
    AuthFailedError,
    TransportError,
    TransportTimeoutError,
)
from .models import (
    AccountSession,
    ActiveSession,
    LoginChallenge,
    LoginRejected,
    SignToken,
    parse_login_step1,
    parse_login_step2,
)

_LOGGER = logging.getLogger(__name__)


def generate_device_id() -> str:
    """Generate the 16-character lowercase device identity sent as ``deviceId``."""
    return "".join(secrets.choice(string.ascii_lowercase) for _ in range(16))


def hash_password(password: str) -> str:
    """Unsalted MD5 of the password as uppercase hex, as serviceLoginAuth2 expects."""
    return hashlib.md5(password.encode("utf-8")).hexdigest().upper()


def parse_login_response(text: str) -> dict:
    """Strip the ``&&&START&&&`` prefix and decode the JSON body.

    Raises:
        AuthFailedError: If the body is not a JSON object.
    """
    body = text.strip()
    if body.startswith(LOGIN_RESPONSE_PREFIX):
        body = body[len(LOGIN_RESPONSE_PREFIX):]
    try:
        data = json.loads(body)
    except json.JSONDecodeError as exc:
        raise AuthFailedError("Malformed login response") from exc
    if not isinstance(data, dict):
        raise AuthFailedError("Malformed login response")
    return data


def live_cookies(jar) -> dict[str, str]:
    """Cookies set by a login response, minus those the server is deleting."""
    now = time.time()
    cookies = {}
    for cookie in jar:
        if not cookie.value or cookie.value == "EXPIRED":
            continue
        if cookie.expires is not None and cookie.expires <= now:
            continue
        cookies[cookie.name] = cookie.value
    return cookies


def _first_cookie(jar, name: str) -> str | None:
    # The STS may set the same cookie for several domains
    return next((cookie.value for cookie in jar if cookie.name == name and cookie.value), None)


class AuthSession:
    """Owns the account credentials and the login handshake that produces them.

    The session is replaced only by :meth:`login` and :meth:`restore`; callers
    must not run two of those at once.
    """

    def __init__(self, http: requests.Session | None = None, logger: logging.Logger | None = None) -> None:
        self._http = http or requests.Session()
        self._logger = logger or _LOGGER
        self._session: AccountSession | None = None

    @property
    def session(self) -> AccountSession | None:
        return self._session

    @property
    def is_authenticated(self) -> bool:
        return self._session is not None and self._session.is_complete

    def invalidate(self) -> None:
        """Drop the session; the caller has to log in again."""
        self._session = None

    def _send(self, method: str, url: str, device_id: str, **kwargs) -> requests.Response:
        headers = {"User-Agent": USER_AGENT.format(device_id=device_id)}
        headers.update(kwargs.pop("headers", {}))
        try:
            return self._http.request(
                method, url, headers=headers, timeout=REQUEST_TIMEOUT, **kwargs
            )
        except requests.Timeout as exc:
            raise TransportTimeoutError(f"Login request timed out: {url}") from exc
        except requests.RequestException as exc:
            raise TransportError(f"Login request failed: {exc}") from exc

    def login(self, username: str, password: str) -> AccountSession:
        """Run the three-step login and install the resulting session.

        Raises:
            AuthChallengeRequiredError: If 2FA or a captcha is required.
            AuthFailedError: On bad credentials or an unexpected handshake.
            TransportError: If one of the login requests fails.
        """
        device_id = generate_device_id()
        self._http.cookies.clear()

        step1, cookies = self._service_login(device_id)
        if isinstance(step1, ActiveSession):
            self._logger.debug("Login step 1 recognised an active session, skipping step 2")
            user_id, security_key, location = step1.user_id, step1.security_key, step1.location
        else:
            step2 = self._service_login_auth(username, password, step1, cookies, device_id)
            if isinstance(step2, LoginChallenge):
                raise AuthChallengeRequiredError(
                    f"Account requires {step2.kind} verification; complete it in the"
                    " Mi Home app and log in again",
                    challenge_url=step2.url,
                    kind=step2.kind,
                )
            if isinstance(step2, LoginRejected):
                raise AuthFailedError(step2.description, code=step2.code)
            user_id, security_key, location = step2.user_id, step2.security_key, step2.location

        service_token = self._fetch_service_token(location, device_id)
        session = AccountSession(
            service_token=service_token,
            security_key=security_key,
            user_id=user_id,
            device_id=device_id,
        )
        self._session = session
        self._logger.info("Login successful for user %s", user_id)
        return session

    def restore(self, serialized: str, check: Callable[[], bool] | None = None) -> bool:
        """Install a serialized session and optionally confirm it still works.

        Never raises; returns False and leaves the client unauthenticated
        when the string is malformed or ``check`` rejects the session.
        """
        self._session = None
        try:
            session = AccountSession.deserialize(serialized or "")
        except ValueError:
            self._logger.warning("Stored session is malformed, login required")
            return False

        self._session = session
        if check is not None and not check():
            self._session = None
            self._logger.info("Stored session for user %s has expired", session.user_id)
            return False

        self._logger.info("Session restored for user %s", session.user_id)
        return True

    def _service_login(self, device_id: str) -> tuple[ActiveSession | SignToken, dict[str, str]]:
        """Step 1: probe serviceLogin for a sign token or an active session."""
        resp = self._send(
            "GET",
            LOGIN_URL,
            device_id,
            params={"sid": LOGIN_SID, "_json": "true"},
            cookies={"sdkVersion": SDK_VERSION, "deviceId": device_id},
        )
        cookies = live_cookies(resp.cookies)
        self._logger.debug(
            "Login step 1: HTTP %s, carrying %d cookie(s)", resp.status_code, len(cookies)
        )
        return parse_login_step1(parse_login_response(resp.text)), cookies

    def _service_login_auth(
        self,
        username: str,
        password: str,
        step1: SignToken,
        cookies: dict[str, str],
        device_id: str,
    ):
        """Step 2: exchange the credentials for userId/ssecurity/location."""
        form = {
            "user": username,
            "hash": hash_password(password),
            "callback": LOGIN_CALLBACK,
            "sid": LOGIN_SID,
            "qs": LOGIN_QS,
        }
        if step1.sign:
            form["_sign"] = step1.sign

        resp = self._send(
            "POST",
            LOGIN_AUTH_URL,
            device_id,
            params={"_json": "true"},
            data=form,
            cookies={"sdkVersion": SDK_VERSION, "deviceId": device_id, **cookies},
        )
        data = parse_login_response(resp.text)
        self._logger.debug(
            "Login step 2: HTTP %s, response fields %s", resp.status_code, sorted(data)
        )
        return parse_login_step2(data)

    def _fetch_service_token(self, location: str, device_id: str) -> str:
        """Step 3: follow the STS redirect (and at most one more hop) for the token."""
        resp = self._send("GET", location, device_id, allow_redirects=False)
        token = _first_cookie(resp.cookies, "serviceToken")
        if token:
            return token

        next_hop = resp.headers.get("Location")
        if 300 <= resp.status_code < 400 and next_hop:
            self._logger.debug("Login step 3: no serviceToken on first hop, following redirect")
            resp = self._send("GET", next_hop, device_id, allow_redirects=False)
            token = _first_cookie(resp.cookies, "serviceToken")
            if token:
                return token

        raise AuthFailedError("Failed to obtain serviceToken from login redirect")
