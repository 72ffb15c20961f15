"""Unofficial Python API client for the Xiaomi MiOT cloud."""

__version__ = "0.1.0"

from .client import MiCloudAPI
from .const import Region
from .exceptions import (
    AuthChallengeRequiredError,
    AuthError,
    AuthFailedError,
    CommandError,
    MiCloudError,
    NotAuthenticatedError,
    ProtocolError,
    RpcError,
    SessionExpiredError,
    TransportError,
    TransportTimeoutError,
)
from .models import AccountSession, DeviceRecord, PropertyResult

__all__ = [
    "MiCloudAPI",
    "Region",
    "AccountSession",
    "DeviceRecord",
    "PropertyResult",
    "MiCloudError",
    "AuthError",
    "AuthFailedError",
    "AuthChallengeRequiredError",
    "RpcError",
    "NotAuthenticatedError",
    "SessionExpiredError",
    "TransportError",
    "TransportTimeoutError",
    "ProtocolError",
    "CommandError",
]
