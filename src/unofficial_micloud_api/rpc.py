"""Encrypted request/response transport for the Xiaomi MiOT cloud API."""

from __future__ import annotations

import binascii
import json
import logging
import random
import time
from typing import Any

import requests

from .auth import AuthSession
from .const import (
    MAX_RETRIES,
    REQUEST_TIMEOUT,
    RETRY_JITTER,
    SESSION_CHECK_PATH,
    SESSION_EXPIRED_CODES,
    SESSION_EXPIRED_MESSAGES,
    USER_AGENT,
)
from .crypto import (
    StreamCipher,
    build_signed_request,
    default_cipher,
    generate_nonce,
    signed_nonce,
)
from .exceptions import (
    NotAuthenticatedError,
    ProtocolError,
    RpcError,
    SessionExpiredError,
    TransportError,
    TransportTimeoutError,
)
from .models import AccountSession

_LOGGER = logging.getLogger(__name__)


def is_session_expired(payload: dict) -> bool:
    """Whether a decoded response says the serviceToken is no longer accepted."""
    if payload.get("code") in SESSION_EXPIRED_CODES:
        return True
    message = str(payload.get("message") or payload.get("desc") or "")
    return any(fragment in message for fragment in SESSION_EXPIRED_MESSAGES)


def _timezone_cookies() -> dict[str, str]:
    """The timezone cookies the app sends, e.g. ``GMT+01:00`` plus DST flags."""
    local = time.localtime()
    offset = (local.tm_gmtoff or 0) // 60
    sign = "+" if offset >= 0 else "-"
    hours, minutes = divmod(abs(offset), 60)
    is_dst = local.tm_isdst > 0
    return {
        "timezone": f"GMT{sign}{hours:02d}:{minutes:02d}",
        "is_daylight": "1" if is_dst else "0",
        "dst_offset": "3600000" if is_dst else "0",
    }


class EncryptedRpcClient:
    """Sends RC4-encrypted, signed POSTs on behalf of an :class:`AuthSession`.

    Each call derives its own key from a fresh nonce and keeps no state
    between calls beyond the session it reads.
    """

    def __init__(
        self,
        auth: AuthSession,
        base_url: str,
        http: requests.Session | None = None,
        cipher: StreamCipher | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._auth = auth
        self._base_url = base_url.rstrip("/")
        self._http = http or requests.Session()
        self._cipher = cipher or default_cipher()
        self._logger = logger or _LOGGER

    def _headers(self, session: AccountSession) -> dict[str, str]:
        return {
            "User-Agent": USER_AGENT.format(device_id=session.device_id),
            "Accept-Encoding": "identity",
            "Content-Type": "application/x-www-form-urlencoded",
            "x-xiaomi-protocal-flag-cli": "PROTOCAL-HTTP2",
            "MIOT-ENCRYPT-ALGORITHM": "ENCRYPT-RC4",
        }

    def _cookies(self, session: AccountSession) -> dict[str, str]:
        return {
            "userId": session.user_id,
            "yetAnotherServiceToken": session.service_token,
            "serviceToken": session.service_token,
            "locale": "en",
            **_timezone_cookies(),
            "channel": "MI_APP_STORE",
        }

    @property
    def user_id(self) -> str | None:
        session = self._auth.session
        return session.user_id if session else None

    def _invalidate(self, session: AccountSession) -> None:
        # A concurrent login may already have replaced the session
        if self._auth.session is session:
            self._auth.invalidate()

    def call(self, path: str, params: dict | list | None = None) -> dict[str, Any]:
        """Make an encrypted API call and return the decoded JSON envelope.

        Transport failures are retried up to ``MAX_RETRIES`` times with linear
        backoff plus jitter. Nothing else is retried.

        Raises:
            NotAuthenticatedError: If there is no session.
            SessionExpiredError: If the server rejects the session.
            TransportError: If every attempt failed in transport.
            ProtocolError: If the response does not decrypt to a JSON object.
        """
        session = self._auth.session
        if session is None or not session.is_complete:
            raise NotAuthenticatedError("Not logged in")

        url = f"{self._base_url}/{path.lstrip('/')}"
        payload = {"data": json.dumps(params if params is not None else {}, separators=(",", ":"))}

        attempt = 1
        while True:
            try:
                result = self._call_once(session, url, payload)
                break
            except SessionExpiredError:
                self._invalidate(session)
                raise
            except TransportError as exc:
                if attempt >= MAX_RETRIES:
                    self._logger.error(
                        "API %s failed after %d attempts: %s", path, attempt, exc
                    )
                    raise
                delay = attempt + random.uniform(0, RETRY_JITTER)
                self._logger.warning(
                    "API %s attempt %d/%d failed: %s (retrying in %.2fs)",
                    path,
                    attempt,
                    MAX_RETRIES,
                    exc,
                    delay,
                )
                time.sleep(delay)
                attempt += 1

        if is_session_expired(result):
            self._invalidate(session)
            self._logger.info("Session expired during %s, login required", path)
            raise SessionExpiredError(
                str(result.get("message") or "Session expired"), code=result.get("code")
            )
        return result

    def _call_once(self, session: AccountSession, url: str, payload: dict[str, str]) -> dict:
        nonce = generate_nonce()
        key = signed_nonce(session.security_key, nonce)
        form = build_signed_request(
            url, "POST", key, nonce, payload, session.security_key, self._cipher
        )

        try:
            resp = self._http.post(
                url,
                data=form,
                headers=self._headers(session),
                cookies=self._cookies(session),
                timeout=REQUEST_TIMEOUT,
            )
        except requests.Timeout as exc:
            raise TransportTimeoutError(f"Request timed out after {REQUEST_TIMEOUT}s") from exc
        except requests.RequestException as exc:
            raise TransportError(str(exc)) from exc

        if resp.status_code == 401:
            raise SessionExpiredError("Unauthorized", code=401)
        if resp.status_code >= 500:
            raise TransportError(f"Server error {resp.status_code}", code=resp.status_code)
        if resp.status_code >= 400:
            raise ProtocolError(f"Request rejected with HTTP {resp.status_code}", code=resp.status_code)

        body = resp.text.strip()
        if not body:
            raise TransportError("Empty response body")

        if body.startswith("{"):
            # Some error envelopes come back unencrypted
            decoded = body.encode("utf-8")
        else:
            # Re-derive from the nonce that was sent rather than anything echoed back
            response_key = signed_nonce(session.security_key, form["_nonce"])
            try:
                decoded = self._cipher.decrypt(response_key, body)
            except binascii.Error as exc:
                raise TransportError("Malformed response body") from exc

        try:
            data = json.loads(decoded.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ProtocolError("Response did not decrypt to JSON") from exc
        if not isinstance(data, dict):
            raise ProtocolError("Response is not a JSON object")
        return data

    def check_session(self) -> bool:
        """Make a cheap authenticated call to see whether the session still works."""
        try:
            self.call(SESSION_CHECK_PATH, {"begin_at": int(time.time()) - 60})
        except (NotAuthenticatedError, SessionExpiredError):
            return False
        except RpcError as exc:
            self._logger.warning("Session check failed: %s", exc)
            return False
        return True
