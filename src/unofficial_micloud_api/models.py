"""Data models for Xiaomi cloud sessions, login responses and devices."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from typing import Any, Union


@dataclass(frozen=True)
class AccountSession:
    """The credentials produced by a successful login.

    Serialized as ``"serviceToken ssecurity userId deviceId"``, the format the
    Mi Home integrations persist.
    """

    service_token: str = field(repr=False)
    security_key: str = field(repr=False)
    user_id: str
    device_id: str

    @property
    def is_complete(self) -> bool:
        """True when all four fields are present; partial sessions are unusable."""
        return all((self.service_token, self.security_key, self.user_id, self.device_id))

    def serialize(self) -> str:
        return " ".join((self.service_token, self.security_key, self.user_id, self.device_id))

    @classmethod
    def deserialize(cls, data: str) -> AccountSession:
        """Parse a serialized session.

        Raises:
            ValueError: If the string does not hold four non-empty fields, or
                the security key is not base64.
        """
        parts = data.split(" ")
        if len(parts) != 4 or not all(parts):
            raise ValueError("Serialized session must hold 4 space-separated fields")
        try:
            base64.b64decode(parts[1], validate=True)
        except binascii.Error as exc:
            raise ValueError("Serialized session has a malformed security key") from exc
        return cls(
            service_token=parts[0],
            security_key=parts[1],
            user_id=parts[2],
            device_id=parts[3],
        )


# Login step 1: serviceLogin probe


@dataclass
class ActiveSession:
    """Cookies were recognised; step 2 can be skipped."""

    user_id: str
    security_key: str = field(repr=False)
    location: str


@dataclass
class SignToken:
    """No active session; carries the ``_sign`` for the credential exchange."""

    sign: str | None


LoginStep1Response = Union[ActiveSession, SignToken]


def parse_login_step1(data: dict) -> LoginStep1Response:
    """Decode a serviceLogin response into its variant."""
    user_id = data.get("userId")
    security_key = data.get("ssecurity")
    location = data.get("location")
    if data.get("code") == 0 and user_id and security_key and location:
        return ActiveSession(user_id=str(user_id), security_key=security_key, location=location)
    return SignToken(sign=data.get("_sign") or None)


# Login step 2: serviceLoginAuth2 credential exchange


@dataclass
class LoginSuccess:
    user_id: str
    security_key: str = field(repr=False)
    location: str


@dataclass
class LoginChallenge:
    """The account needs 2FA (``notification``) or a ``captcha``."""

    url: str
    kind: str


@dataclass
class LoginRejected:
    code: int | None
    description: str


LoginStep2Response = Union[LoginSuccess, LoginChallenge, LoginRejected]


def parse_login_step2(data: dict) -> LoginStep2Response:
    """Decode a serviceLoginAuth2 response into its variant."""
    if data.get("notificationUrl"):
        return LoginChallenge(url=data["notificationUrl"], kind="notification")
    if data.get("captchaUrl"):
        return LoginChallenge(url=data["captchaUrl"], kind="captcha")

    user_id = data.get("userId")
    security_key = data.get("ssecurity")
    location = data.get("location")
    if location and user_id and security_key:
        return LoginSuccess(user_id=str(user_id), security_key=security_key, location=location)

    return LoginRejected(
        code=data.get("code"),
        description=data.get("desc") or data.get("description") or "invalid credentials",
    )


@dataclass
class DeviceRecord:
    """A device from one of the cloud discovery endpoints."""

    did: str
    mac: str | None
    model: str
    name: str
    host: str | None = None
    token: str | None = field(default=None, repr=False)
    online: bool = False
    home_id: str | None = None
    raw: dict = field(default_factory=dict, repr=False)

    @classmethod
    def from_api(cls, data: dict, home_id: str | None = None) -> DeviceRecord:
        """Parse a ``device_info`` / ``list`` entry."""
        return cls(
            did=str(data.get("did", "")),
            mac=data.get("mac") or None,
            model=data.get("model") or "",
            name=data.get("name") or "Unknown",
            host=data.get("localip") or None,
            token=data.get("token") or None,
            online=bool(data.get("isOnline")),
            home_id=home_id,
            raw=data,
        )


@dataclass
class PropertyResult:
    """One entry of a ``get_properties`` / ``set_properties`` result."""

    did: str
    siid: int
    piid: int
    value: Any = None
    code: int = 0

    @property
    def ok(self) -> bool:
        return self.code == 0

    @classmethod
    def from_api(cls, data: dict) -> PropertyResult:
        return cls(
            did=str(data.get("did", "")),
            siid=data.get("siid", 0),
            piid=data.get("piid", 0),
            value=data.get("value"),
            code=data.get("code", 0),
        )
