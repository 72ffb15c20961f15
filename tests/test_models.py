"""Tests for data model parsing."""

import pytest

from unofficial_micloud_api.miot import (
    VACUUM_PROPERTIES,
    VacuumStatus,
    decode_cleaning_mode,
)
from unofficial_micloud_api.models import (
    AccountSession,
    ActiveSession,
    DeviceRecord,
    LoginChallenge,
    LoginRejected,
    LoginSuccess,
    PropertyResult,
    SignToken,
    parse_login_step1,
    parse_login_step2,
)

SAMPLE_DEVICE_API = {
    "did": "372840218",
    "token": "8d1ff3c5b0a4e2f5a1c9d6e7f8091a2b",
    "longitude": "0.0",
    "latitude": "0.0",
    "name": "Dreame Bot L10s Ultra",
    "pid": "0",
    "localip": "192.168.1.42",
    "mac": "70:C9:32:AA:BB:CC",
    "ssid": "home-wifi",
    "bssid": "11:22:33:44:55:66",
    "parent_id": "",
    "parent_model": "",
    "show_mode": 1,
    "model": "dreame.vacuum.r2228o",
    "adminFlag": 1,
    "shareFlag": 0,
    "permitLevel": 16,
    "isOnline": True,
    "desc": "Charging",
    "rssi": -48,
}


class TestAccountSession:
    def test_serialize_roundtrip(self):
        session = AccountSession("token-abc", "c2VjdXJpdHk=", "123456", "abcdefghijklmnop")
        assert session.serialize() == "token-abc c2VjdXJpdHk= 123456 abcdefghijklmnop"
        assert AccountSession.deserialize(session.serialize()) == session

    def test_is_complete(self):
        assert AccountSession("t", "k", "u", "d").is_complete
        assert not AccountSession("", "k", "u", "d").is_complete

    @pytest.mark.parametrize(
        "data",
        ["", "token key user", "token key user device extra", "token  user device"],
    )
    def test_deserialize_rejects_partial(self, data):
        with pytest.raises(ValueError):
            AccountSession.deserialize(data)

    def test_deserialize_rejects_malformed_security_key(self):
        with pytest.raises(ValueError):
            AccountSession.deserialize("token-abc !!!bad!!! 123456 abcdefghijklmnop")

    def test_repr_hides_secrets(self):
        text = repr(AccountSession("token-abc", "c2VjdXJpdHk=", "123456", "abcdefghijklmnop"))
        assert "token-abc" not in text
        assert "c2VjdXJpdHk=" not in text
        assert "123456" in text


class TestLoginStep1:
    def test_sign_token(self):
        result = parse_login_step1({"code": 70016, "_sign": "2&V1_passport&abc=", "qs": "%3Fsid"})
        assert result == SignToken(sign="2&V1_passport&abc=")

    def test_missing_sign(self):
        assert parse_login_step1({"code": 70016}) == SignToken(sign=None)

    def test_active_session(self):
        result = parse_login_step1(
            {
                "code": 0,
                "userId": 123456,
                "ssecurity": "c2VjdXJpdHk=",
                "location": "https://sts.api.io.mi.com/sts?d=x",
            }
        )
        assert isinstance(result, ActiveSession)
        assert result.user_id == "123456"
        assert result.location == "https://sts.api.io.mi.com/sts?d=x"

    def test_partial_active_session_is_not_trusted(self):
        result = parse_login_step1({"code": 0, "userId": 123456, "_sign": "s"})
        assert isinstance(result, SignToken)


class TestLoginStep2:
    def test_success(self):
        result = parse_login_step2(
            {
                "code": 0,
                "userId": 123456,
                "ssecurity": "c2VjdXJpdHk=",
                "location": "https://sts.api.io.mi.com/sts?d=x",
            }
        )
        assert result == LoginSuccess("123456", "c2VjdXJpdHk=", "https://sts.api.io.mi.com/sts?d=x")

    def test_notification_challenge(self):
        result = parse_login_step2({"code": 0, "notificationUrl": "https://account.xiaomi.com/identity"})
        assert result == LoginChallenge(url="https://account.xiaomi.com/identity", kind="notification")

    def test_captcha_challenge(self):
        result = parse_login_step2({"code": 87001, "captchaUrl": "/pass/getCode?icodeType=login"})
        assert result == LoginChallenge(url="/pass/getCode?icodeType=login", kind="captcha")

    def test_challenge_wins_over_location(self):
        result = parse_login_step2(
            {
                "notificationUrl": "https://account.xiaomi.com/identity",
                "location": "https://sts.api.io.mi.com/sts",
                "userId": 1,
                "ssecurity": "k",
            }
        )
        assert isinstance(result, LoginChallenge)

    def test_rejected(self):
        result = parse_login_step2({"code": 70016, "desc": "Incorrect password"})
        assert result == LoginRejected(code=70016, description="Incorrect password")

    def test_rejected_without_description(self):
        result = parse_login_step2({"code": 70016})
        assert isinstance(result, LoginRejected)
        assert result.description


class TestDeviceRecord:
    def test_from_api(self):
        device = DeviceRecord.from_api(SAMPLE_DEVICE_API, home_id="2001")
        assert device.did == "372840218"
        assert device.mac == "70:C9:32:AA:BB:CC"
        assert device.model == "dreame.vacuum.r2228o"
        assert device.name == "Dreame Bot L10s Ultra"
        assert device.host == "192.168.1.42"
        assert device.online is True
        assert device.home_id == "2001"
        assert device.raw is SAMPLE_DEVICE_API

    def test_from_api_minimal(self):
        device = DeviceRecord.from_api({"did": 42, "model": "xiaomi.plug.v3"})
        assert device.did == "42"
        assert device.mac is None
        assert device.host is None
        assert device.online is False
        assert device.name == "Unknown"

    def test_from_api_null_fields(self):
        device = DeviceRecord.from_api({"did": "1", "mac": "AA", "model": None, "name": None})
        assert device.model == ""
        assert device.name == "Unknown"

    def test_repr_hides_token(self):
        assert SAMPLE_DEVICE_API["token"] not in repr(DeviceRecord.from_api(SAMPLE_DEVICE_API))


class TestPropertyResult:
    def test_from_api(self):
        result = PropertyResult.from_api({"did": "1", "siid": 3, "piid": 1, "value": 87, "code": 0})
        assert result == PropertyResult(did="1", siid=3, piid=1, value=87, code=0)
        assert result.ok

    def test_error_code(self):
        result = PropertyResult.from_api({"did": "1", "siid": 99, "piid": 1, "code": -4003})
        assert not result.ok
        assert result.value is None


def _result(name, value, code=0):
    ref = VACUUM_PROPERTIES[name]
    return PropertyResult(did="1", siid=ref.siid, piid=ref.piid, value=value, code=code)


class TestVacuumStatus:
    def test_from_results(self):
        status = VacuumStatus.from_results(
            [
                _result("state", 6),
                _result("battery_level", 87),
                _result("suction_level", 2),
                _result("water_volume", 3),
                _result("cleaning_mode", 1),
                _result("cleaned_area", 42),
                _result("main_brush_left", 71),
            ]
        )
        assert status.state == "charging"
        assert status.is_charging
        assert not status.is_cleaning
        assert status.battery_level == 87
        assert status.suction_level == "strong"
        assert status.water_volume == "high"
        assert status.cleaning_mode == "mopping"
        assert status.cleaned_area == 42
        assert status.main_brush_left == 71
        assert status.filter_left is None
        assert len(status.raw) == 7

    def test_skips_failed_and_unknown(self):
        status = VacuumStatus.from_results(
            [
                _result("battery_level", None, code=-4001),
                PropertyResult(did="1", siid=99, piid=9, value=1),
                _result("state", "not a number"),
            ]
        )
        assert status.battery_level is None
        assert status.state is None

    def test_unknown_state_value(self):
        assert VacuumStatus.from_results([_result("state", 99)]).state == "unknown"


@pytest.mark.parametrize(
    "raw, expected",
    [
        (0, "sweeping"),
        (1, "mopping"),
        (2, "sweeping_and_mopping"),
        (0x0500, "sweeping_and_mopping"),
        (0x0501, "mopping"),
        (0x0502, "sweeping"),
        (0x0503, "sweeping_and_mopping"),
    ],
)
def test_decode_cleaning_mode(raw, expected):
    assert decode_cleaning_mode(raw) == expected
