"""Tests for device discovery across homes."""

from unittest.mock import MagicMock

import pytest

from unofficial_micloud_api.directory import DeviceDirectory
from unofficial_micloud_api.exceptions import (
    ProtocolError,
    SessionExpiredError,
    TransportError,
)


def _device(did, mac, model="dreame.vacuum.r2228o", name=None):
    return {"did": did, "mac": mac, "model": model, "name": name or f"device {did}", "isOnline": True}


def _envelope(result):
    return {"code": 0, "message": "ok", "result": result}


class FakeRpc:
    """Answers the discovery endpoints from canned tables."""

    def __init__(self, homes, shared=None, home_devices=None, fallback=None, errors=None, results=None):
        self.homes = homes
        self.shared = shared or []
        self.home_devices = home_devices or {}
        self.fallback = fallback or []
        self.errors = errors or {}
        self.results = results or {}

    def __call__(self, path, params):
        key = path
        if path == "v2/home/home_device_list":
            key = (path, params["home_id"])
        if key in self.errors:
            raise self.errors[key]
        if key in self.results:
            return _envelope(self.results[key])
        if path == "v2/homeroom/gethome":
            return _envelope({"homelist": [{"id": h} for h in self.homes]})
        if path == "v2/user/get_device_cnt":
            return _envelope({"share": {"share_family": self.shared}})
        if path == "v2/home/home_device_list":
            return _envelope({"device_info": self.home_devices.get(params["home_id"], [])})
        if path == "home/device_list":
            return _envelope({"list": self.fallback})
        raise AssertionError(f"unexpected path {path}")


def _directory(fake):
    rpc = MagicMock()
    rpc.user_id = "123456789"
    rpc.call.side_effect = fake
    return DeviceDirectory(rpc), rpc


def _calls(rpc, path):
    return [c[0][1] for c in rpc.call.call_args_list if c[0][0] == path]


class TestListDevices:
    def test_dedup_keeps_first_seen(self):
        fake = FakeRpc(
            homes=["1001"],
            shared=[{"home_id": "2002", "home_owner": "555"}],
            home_devices={
                1001: [_device("1", "AA:AA", name="own copy"), _device("2", "BB:BB")],
                2002: [_device("1", "AA:AA", name="shared copy"), _device("3", "CC:CC")],
            },
            fallback=[_device("2", "BB:BB", name="flat copy"), _device("4", "DD:DD")],
        )
        directory, _ = _directory(fake)

        devices = directory.list_devices()

        assert [d.did for d in devices] == ["1", "2", "3", "4"]
        assert devices[0].name == "own copy"
        assert devices[1].name == "device 2"
        assert devices[0].home_id == "1001"
        assert devices[2].home_id == "2002"
        assert devices[3].home_id is None

    def test_model_prefix_filter(self):
        fake = FakeRpc(
            homes=["1001"],
            home_devices={
                1001: [
                    _device("1", "AA:AA"),
                    _device("2", "BB:BB", model="xiaomi.plug.v3"),
                    _device("3", "CC:CC", model="dreame.vacuum.p2009"),
                ]
            },
        )
        directory, _ = _directory(fake)

        assert [d.did for d in directory.list_devices("dreame.vacuum.")] == ["1", "3"]
        assert [d.did for d in directory.list_devices("xiaomi.")] == ["2"]
        assert directory.list_devices("roborock.") == []

    def test_records_without_mac_are_kept(self):
        fake = FakeRpc(
            homes=["1001"],
            home_devices={1001: [_device("1", None), _device("2", "")]},
            fallback=[_device("1", None)],
        )
        directory, _ = _directory(fake)
        assert [d.did for d in directory.list_devices()] == ["1", "2", "1"]

    def test_home_query_parameters(self):
        fake = FakeRpc(homes=["1001"], shared=[{"home_id": 2002, "home_owner": 555}])
        directory, rpc = _directory(fake)

        directory.list_devices()

        own, shared = _calls(rpc, "v2/home/home_device_list")
        assert own["home_id"] == 1001
        assert own["home_owner"] == 123456789
        assert shared["home_id"] == 2002
        assert shared["home_owner"] == 555
        assert _calls(rpc, "v2/homeroom/gethome")[0]["fetch_share"] is True

    def test_shared_home_already_owned_is_listed_once(self):
        fake = FakeRpc(homes=["1001"], shared=[{"home_id": "1001", "home_owner": "555"}])
        directory, rpc = _directory(fake)
        directory.list_devices()
        (only,) = _calls(rpc, "v2/home/home_device_list")
        assert only["home_owner"] == 123456789

    def test_shared_home_failure_is_not_fatal(self):
        fake = FakeRpc(
            homes=["1001"],
            home_devices={1001: [_device("1", "AA:AA")]},
            fallback=[_device("4", "DD:DD")],
            errors={"v2/user/get_device_cnt": TransportError("reset")},
        )
        directory, _ = _directory(fake)
        assert [d.did for d in directory.list_devices()] == ["1", "4"]

    def test_single_home_failure_is_not_fatal(self):
        fake = FakeRpc(
            homes=["1001", "1002"],
            home_devices={1002: [_device("2", "BB:BB")]},
            errors={("v2/home/home_device_list", 1001): ProtocolError("bad body")},
        )
        directory, _ = _directory(fake)
        assert [d.did for d in directory.list_devices()] == ["2"]

    def test_fallback_failure_is_not_fatal(self):
        fake = FakeRpc(
            homes=["1001"],
            home_devices={1001: [_device("1", "AA:AA")]},
            errors={"home/device_list": TransportError("reset")},
        )
        directory, _ = _directory(fake)
        assert [d.did for d in directory.list_devices()] == ["1"]

    def test_own_homes_failure_propagates(self):
        fake = FakeRpc(homes=[], errors={"v2/homeroom/gethome": TransportError("reset")})
        directory, _ = _directory(fake)
        with pytest.raises(TransportError):
            directory.list_devices()

    @pytest.mark.parametrize(
        "path",
        ["v2/user/get_device_cnt", ("v2/home/home_device_list", 1001), "home/device_list"],
    )
    def test_session_expired_propagates(self, path):
        fake = FakeRpc(
            homes=["1001"],
            errors={path: SessionExpiredError("auth err", code=3)},
        )
        directory, _ = _directory(fake)
        with pytest.raises(SessionExpiredError):
            directory.list_devices()

    def test_empty_account(self):
        directory, _ = _directory(FakeRpc(homes=[]))
        assert directory.list_devices() == []

    def test_null_or_missing_model(self):
        fake = FakeRpc(
            homes=[],
            fallback=[
                {"did": "1", "mac": "AA:AA", "model": None},
                {"did": "2", "mac": "BB:BB"},
                _device("3", "CC:CC"),
            ],
        )
        directory, _ = _directory(fake)

        assert [d.did for d in directory.list_devices()] == ["1", "2", "3"]
        assert [d.did for d in directory.list_devices("dreame.vacuum.")] == ["3"]

    def test_incomplete_shared_home_entries_are_skipped(self):
        fake = FakeRpc(
            homes=["1001"],
            shared=[{"home_id": 5}, {"home_owner": 555}, None, {"home_id": 2002, "home_owner": 555}],
            home_devices={1001: [_device("1", "AA:AA")], 2002: [_device("2", "BB:BB")]},
            fallback=[_device("4", "DD:DD")],
        )
        directory, rpc = _directory(fake)

        assert [d.did for d in directory.list_devices()] == ["1", "2", "4"]
        assert [c["home_id"] for c in _calls(rpc, "v2/home/home_device_list")] == [1001, 2002]

    @pytest.mark.parametrize("share", [None, [], "oops", {"share_family": None}])
    def test_malformed_share_section(self, share):
        fake = FakeRpc(
            homes=["1001"],
            home_devices={1001: [_device("1", "AA:AA")]},
            results={"v2/user/get_device_cnt": {"share": share}},
        )
        directory, _ = _directory(fake)
        assert [d.did for d in directory.list_devices()] == ["1"]

    def test_home_without_id_is_skipped(self):
        fake = FakeRpc(
            homes=[],
            home_devices={1001: [_device("1", "AA:AA")]},
            fallback=[_device("4", "DD:DD")],
            results={"v2/homeroom/gethome": {"homelist": [{"name": "Flat"}, "junk", {"id": 1001}]}},
        )
        directory, rpc = _directory(fake)

        assert [d.did for d in directory.list_devices()] == ["1", "4"]
        assert len(_calls(rpc, "v2/home/home_device_list")) == 1

    def test_non_numeric_home_id_is_sent_as_is(self):
        fake = FakeRpc(homes=["home-a"])
        directory, rpc = _directory(fake)
        directory.list_devices()
        assert _calls(rpc, "v2/home/home_device_list")[0]["home_id"] == "home-a"

    def test_non_object_device_entries_are_skipped(self):
        fake = FakeRpc(homes=["1001"], home_devices={1001: [None, _device("1", "AA:AA")]}, fallback=["junk"])
        directory, _ = _directory(fake)
        assert [d.did for d in directory.list_devices()] == ["1"]
