"""Device discovery across an account's own and shared homes."""

from __future__ import annotations

import logging

from .exceptions import NotAuthenticatedError, RpcError, SessionExpiredError
from .models import DeviceRecord
from .rpc import EncryptedRpcClient

_LOGGER = logging.getLogger(__name__)


def _result(response: dict) -> dict:
    result = response.get("result")
    return result if isinstance(result, dict) else {}


class DeviceDirectory:
    """Lists devices using the encrypted API.

    Devices are gathered from every home the account owns or has been shared,
    plus the flat ``home/device_list`` endpoint, and deduplicated by MAC with
    the first-seen record kept.
    """

    def __init__(self, rpc: EncryptedRpcClient, logger: logging.Logger | None = None) -> None:
        self._rpc = rpc
        self._logger = logger or _LOGGER

    def _homes(self) -> dict[str, str]:
        """Map of home id -> owner user id, own homes first."""
        response = self._rpc.call(
            "v2/homeroom/gethome",
            {"fg": True, "fetch_share": True, "fetch_share_dev": True, "limit": 100, "app_ver": 7},
        )
        homes = {}
        for home in _result(response).get("homelist") or []:
            home_id = home.get("id") if isinstance(home, dict) else None
            if home_id is None:
                self._logger.warning("Skipping home entry without an id")
                continue
            homes[str(home_id)] = self._rpc.user_id or ""

        try:
            response = self._rpc.call("v2/user/get_device_cnt", {"fetch_own": True, "fetch_share": True})
        except (SessionExpiredError, NotAuthenticatedError):
            raise
        except RpcError as exc:
            self._logger.warning("Shared homes query failed, continuing without them: %s", exc)
            return homes

        share = _result(response).get("share")
        entries = share.get("share_family") if isinstance(share, dict) else None
        for entry in entries or []:
            if not isinstance(entry, dict) or None in (entry.get("home_id"), entry.get("home_owner")):
                self._logger.warning("Skipping incomplete shared home entry")
                continue
            homes.setdefault(str(entry["home_id"]), str(entry["home_owner"]))
        return homes

    def _home_devices(self, home_id: str, owner: str) -> list[DeviceRecord]:
        response = self._rpc.call(
            "v2/home/home_device_list",
            {
                "home_id": int(home_id) if home_id.isdigit() else home_id,
                "home_owner": int(owner) if owner.isdigit() else owner,
                "limit": 100,
                "get_split_device": True,
                "support_smart_home": True,
            },
        )
        return [
            DeviceRecord.from_api(item, home_id=home_id)
            for item in _result(response).get("device_info") or []
            if isinstance(item, dict)
        ]

    def _fallback_devices(self) -> list[DeviceRecord]:
        response = self._rpc.call("home/device_list", {"getVirtualModel": False, "getHuamiDevices": 0})
        return [
            DeviceRecord.from_api(item)
            for item in _result(response).get("list") or []
            if isinstance(item, dict)
        ]

    def list_devices(self, model_prefix: str = "") -> list[DeviceRecord]:
        """Return every device whose model starts with ``model_prefix``.

        Raises:
            SessionExpiredError: If the session is rejected at any step.
            RpcError: If the own-homes listing fails.
        """
        sources: list[list[DeviceRecord]] = []
        for home_id, owner in self._homes().items():
            try:
                sources.append(self._home_devices(home_id, owner))
            except (SessionExpiredError, NotAuthenticatedError):
                raise
            except RpcError as exc:
                self._logger.warning("Device list for home %s failed: %s", home_id, exc)

        try:
            sources.append(self._fallback_devices())
        except (SessionExpiredError, NotAuthenticatedError):
            raise
        except RpcError as exc:
            self._logger.warning("Fallback device list failed: %s", exc)

        devices = []
        seen_macs: set[str] = set()
        for records in sources:
            for record in records:
                if record.mac:
                    if record.mac in seen_macs:
                        continue
                    seen_macs.add(record.mac)
                devices.append(record)

        matched = [d for d in devices if d.model.startswith(model_prefix)]
        self._logger.debug(
            "Discovered %d device(s), %d matching model prefix %r",
            len(devices),
            len(matched),
            model_prefix,
        )
        return matched
