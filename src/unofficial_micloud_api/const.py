"""Constants and region configuration for the Xiaomi MiOT cloud API."""

from enum import Enum


class Region(Enum):
    """Supported Xiaomi cloud server regions."""

    CN = "cn"
    DE = "de"
    US = "us"
    RU = "ru"
    SG = "sg"
    I2 = "i2"


def api_base_url(region: str) -> str:
    """Return the encrypted API base URL for a region. ``cn`` has no host prefix."""
    if region == Region.CN.value:
        return "https://api.io.mi.com/app"
    return f"https://{region}.api.io.mi.com/app"


LOGIN_URL = "https://account.xiaomi.com/pass/serviceLogin"
LOGIN_AUTH_URL = "https://account.xiaomi.com/pass/serviceLoginAuth2"
LOGIN_CALLBACK = "https://sts.api.io.mi.com/sts"
LOGIN_SID = "xiaomiio"
LOGIN_QS = "%3Fsid%3Dxiaomiio%26_json%3Dtrue"
LOGIN_RESPONSE_PREFIX = "&&&START&&&"

SDK_VERSION = "3.8.6"
USER_AGENT = (
    "Android-7.1.1-1.0.0-ONEPLUS A3010-136-{device_id} APP/xiaomi.smarthome APPV/62830"
)

REQUEST_TIMEOUT = 10
MAX_RETRIES = 3
RETRY_JITTER = 0.5
MAX_PROPERTIES_PER_CALL = 15
RC4_DROP = 1024

SESSION_CHECK_PATH = "v2/message/v2/check_new_msg"

# Envelope codes / message fragments meaning the serviceToken is no longer accepted
SESSION_EXPIRED_CODES = frozenset({2, 3})
SESSION_EXPIRED_MESSAGES = ("auth err", "invalid signature", "SERVICETOKEN_EXPIRED")
