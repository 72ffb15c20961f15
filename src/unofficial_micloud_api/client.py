"""Xiaomi MiOT cloud API client.

Synchronous HTTP client for the encrypted Xiaomi cloud API used by the Mi Home
app: account login, device discovery, and MiOT property/action RPC.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from typing import Any

import requests

from .auth import AuthSession
from .const import MAX_PROPERTIES_PER_CALL, Region, api_base_url
from .crypto import StreamCipher
from .directory import DeviceDirectory
from .exceptions import CommandError
from .models import DeviceRecord, PropertyResult
from .rpc import EncryptedRpcClient

_LOGGER = logging.getLogger(__name__)


def _property_ref(prop: Sequence[int] | dict) -> tuple[int, int]:
    if isinstance(prop, dict):
        return prop["siid"], prop["piid"]
    siid, piid = prop
    return siid, piid


class MiCloudAPI:
    """Client for the Xiaomi MiOT cloud API.

    ``session_saver`` is called with the serialized session after every
    successful login, so the application can persist it wherever it likes and
    hand it back to :meth:`restore_session` later. ``logger`` replaces the
    module logger; nothing secret is ever logged.
    """

    def __init__(
        self,
        region: str | Region = "de",
        session_saver: Callable[[str], None] | None = None,
        logger: logging.Logger | None = None,
        cipher: StreamCipher | None = None,
    ) -> None:
        if isinstance(region, Region):
            region = region.value
        regions = [r.value for r in Region]
        if region not in regions:
            raise ValueError(f"Unknown region: {region}. Must be one of: {regions}")
        self.region = region
        self._logger = logger or _LOGGER
        self._session_saver = session_saver
        self._session = requests.Session()
        self.auth = AuthSession(self._session, logger=self._logger)
        self.rpc = EncryptedRpcClient(
            self.auth, api_base_url(region), self._session, cipher=cipher, logger=self._logger
        )
        self.directory = DeviceDirectory(self.rpc, logger=self._logger)

    @property
    def is_logged_in(self) -> bool:
        return self.auth.is_authenticated

    def login(self, username: str, password: str) -> str:
        """Log in and return the serialized session.

        Raises:
            AuthChallengeRequiredError: If 2FA or a captcha is required.
            AuthFailedError: If the credentials are rejected.
        """
        serialized = self.auth.login(username, password).serialize()
        if self._session_saver is not None:
            self._session_saver(serialized)
        return serialized

    def restore_session(self, serialized: str) -> bool:
        """Restore a serialized session, checking it against the server first."""
        return self.auth.restore(serialized, check=self.rpc.check_session)

    def call(self, path: str, params: dict | list | None = None) -> dict[str, Any]:
        """Make a raw encrypted call, e.g. ``call("v2/homeroom/gethome", {...})``."""
        return self.rpc.call(path, params)

    def list_devices(self, model_prefix: str = "") -> list[DeviceRecord]:
        """Get all devices on the account whose model starts with ``model_prefix``."""
        return self.directory.list_devices(model_prefix)

    def _rpc(self, did: str, method: str, params: Any) -> Any:
        """Call a MiOT method on a device through ``v2/home/rpc/<did>``.

        Raises:
            CommandError: If the RPC envelope reports a non-zero code.
        """
        response = self.rpc.call(f"v2/home/rpc/{did}", {"method": method, "params": params})
        code = response.get("code", 0)
        if code != 0:
            raise CommandError(str(response.get("message") or f"{method} failed"), code=code)
        return response.get("result")

    def read_properties(
        self,
        did: str,
        props: Iterable[Sequence[int] | dict],
        batch_limit: int = MAX_PROPERTIES_PER_CALL,
    ) -> list[PropertyResult]:
        """Read properties, ``batch_limit`` per request.

        Args:
            did: Device id.
            props: ``(siid, piid)`` pairs such as ``PropertyRef(2, 1)``, or
                ``{"siid": ..., "piid": ...}`` dicts.
            batch_limit: Max properties per request.
        """
        if batch_limit < 1:
            raise ValueError("batch_limit must be at least 1")
        refs = [_property_ref(p) for p in props]
        results = []
        for start in range(0, len(refs), batch_limit):
            batch = [
                {"did": did, "siid": siid, "piid": piid}
                for siid, piid in refs[start:start + batch_limit]
            ]
            result = self._rpc(did, "get_properties", batch)
            if isinstance(result, list):
                results.extend(PropertyResult.from_api(item) for item in result)
        return results

    def write_property(self, did: str, siid: int, piid: int, value: Any) -> PropertyResult:
        """Set one property. The returned result's ``ok``/``code`` is the device's ack."""
        result = self._rpc(
            did, "set_properties", [{"did": did, "siid": siid, "piid": piid, "value": value}]
        )
        if isinstance(result, list) and result:
            return PropertyResult.from_api(result[0])
        return PropertyResult(did=did, siid=siid, piid=piid, value=value)

    def invoke_action(
        self, did: str, siid: int, aiid: int, params: Sequence[Any] = ()
    ) -> dict[str, Any]:
        """Execute a MiOT action, e.g. ``invoke_action(did, 2, 1)`` to start a vacuum."""
        result = self._rpc(
            did, "action", {"did": did, "siid": siid, "aiid": aiid, "in": list(params)}
        )
        return result if isinstance(result, dict) else {}

    def close(self) -> None:
        """Close the HTTP session."""
        self._session.close()

    def __enter__(self) -> MiCloudAPI:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
