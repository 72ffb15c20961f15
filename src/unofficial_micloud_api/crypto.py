"""Request encryption and signing for the Xiaomi MiOT cloud API.

These implement the ``ENCRYPT-RC4`` transport used by the Mi Home Android app:
every request carries a fresh nonce, a per-call key derived from the account's
``ssecurity`` and that nonce, RC4-drop1024 encrypted parameter values and two
SHA-1 signatures computed over the parameters in insertion order.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import os
import secrets
import time
from collections.abc import Callable, Mapping
from urllib.parse import urlsplit

from Crypto.Cipher import ARC4

from .const import RC4_DROP

_LOGGER = logging.getLogger(__name__)

# RC4-drop1024("sixteen byte key", "test"), checked against OpenSSL's rc4
_PROBE_KEY = b"sixteen byte key"
_PROBE_PLAINTEXT = b"test"
_PROBE_CIPHERTEXT = bytes.fromhex("4878b20c")


def generate_nonce(clock: Callable[[], float] = time.time) -> str:
    """Generate a request nonce: 8 random bytes + minutes since the Unix epoch.

    The minute counter is big-endian and only as wide as its value needs, so
    the nonce grows by a byte whenever the counter crosses a byte boundary.
    """
    minutes = int(clock() // 60)
    width = max(1, (minutes.bit_length() + 7) // 8)
    raw = secrets.token_bytes(8) + minutes.to_bytes(width, "big")
    return base64.b64encode(raw).decode("utf-8")


def signed_nonce(security_key: str, nonce: str) -> str:
    """SHA-256(b64decode(ssecurity) + b64decode(nonce)), base64 encoded."""
    digest = hashlib.sha256()
    digest.update(base64.b64decode(security_key))
    digest.update(base64.b64decode(nonce))
    return base64.b64encode(digest.digest()).decode("utf-8")


class SoftwareRC4Backend:
    """Pure-Python RC4 keystream with the leading bytes dropped."""

    name = "software"

    def __init__(self, drop: int = RC4_DROP) -> None:
        self.drop = drop

    def crypt(self, key: bytes, data: bytes) -> bytes:
        state = list(range(256))
        j = 0
        for i in range(256):
            j = (j + state[i] + key[i % len(key)]) & 0xFF
            state[i], state[j] = state[j], state[i]

        i = j = 0
        for _ in range(self.drop):
            i = (i + 1) & 0xFF
            j = (j + state[i]) & 0xFF
            state[i], state[j] = state[j], state[i]

        out = bytearray(len(data))
        for n, byte in enumerate(data):
            i = (i + 1) & 0xFF
            j = (j + state[i]) & 0xFF
            state[i], state[j] = state[j], state[i]
            out[n] = byte ^ state[(state[i] + state[j]) & 0xFF]
        return bytes(out)


class NativeRC4Backend:
    """RC4 from pycryptodome, which supports the keystream drop natively."""

    name = "native"

    def __init__(self, drop: int = RC4_DROP) -> None:
        self.drop = drop

    def crypt(self, key: bytes, data: bytes) -> bytes:
        return ARC4.new(key, drop=self.drop).encrypt(data)


def select_backend(preference: str | None = None) -> NativeRC4Backend | SoftwareRC4Backend:
    """Pick the RC4 backend, probing the native one against a pinned vector.

    ``preference`` (or ``$MICLOUD_RC4_BACKEND``) may force ``native`` or
    ``software``. Without it, the native backend is used when it produces the
    expected probe ciphertext and the software one otherwise.
    """
    if preference is None:
        preference = os.environ.get("MICLOUD_RC4_BACKEND") or None
    if preference not in (None, "native", "software"):
        raise ValueError(f"Unknown RC4 backend: {preference}. Must be 'native' or 'software'")
    if preference == "software":
        return SoftwareRC4Backend()

    native = NativeRC4Backend()
    try:
        probe = native.crypt(_PROBE_KEY, _PROBE_PLAINTEXT)
    except (ValueError, TypeError, OSError) as exc:
        if preference == "native":
            raise
        _LOGGER.warning("Native RC4 unavailable (%s), using software fallback", exc)
        return SoftwareRC4Backend()

    if probe != _PROBE_CIPHERTEXT:
        if preference == "native":
            raise ValueError("Native RC4 backend failed its self-test")
        _LOGGER.warning("Native RC4 failed its self-test, using software fallback")
        return SoftwareRC4Backend()

    _LOGGER.debug("Using native RC4 backend")
    return native


class StreamCipher:
    """RC4-drop1024 keyed by a base64 signed nonce, with base64 ciphertext."""

    def __init__(self, backend: NativeRC4Backend | SoftwareRC4Backend | None = None) -> None:
        self.backend = backend or select_backend()

    def encrypt(self, key: str, plaintext: str | bytes) -> str:
        if isinstance(plaintext, str):
            plaintext = plaintext.encode("utf-8")
        encrypted = self.backend.crypt(base64.b64decode(key), plaintext)
        return base64.b64encode(encrypted).decode("utf-8")

    def decrypt(self, key: str, ciphertext: str | bytes) -> bytes:
        """Decrypt base64 ciphertext. Raises ``binascii.Error`` on bad base64."""
        raw = base64.b64decode(ciphertext, validate=True)
        return self.backend.crypt(base64.b64decode(key), raw)


_default_cipher: StreamCipher | None = None


def default_cipher() -> StreamCipher:
    """Return the process-wide cipher; the backend is probed on first use only."""
    global _default_cipher
    if _default_cipher is None:
        _default_cipher = StreamCipher()
        _LOGGER.debug("RC4 backend selected: %s", _default_cipher.backend.name)
    return _default_cipher


def signed_path(url: str) -> str:
    """Strip scheme and host, and collapse the ``/app/`` prefix to ``/``."""
    path = urlsplit(url).path
    if path.startswith("/app/"):
        path = path[len("/app"):]
    return path


def sign(method: str, url: str, signed_nonce_b64: str, params: Mapping[str, object]) -> str:
    """SHA-1 over METHOD&path&k=v...&signed_nonce, base64 encoded.

    Parameters are taken in insertion order and must not be sorted; the
    server recomputes the signature over the order they were sent in.
    """
    parts = [method.upper(), signed_path(url)]
    parts.extend(f"{key}={value}" for key, value in params.items())
    parts.append(signed_nonce_b64)
    digest = hashlib.sha1("&".join(parts).encode("utf-8")).digest()
    return base64.b64encode(digest).decode("utf-8")


def build_signed_request(
    url: str,
    method: str,
    signed_nonce_b64: str,
    nonce: str,
    params: Mapping[str, str],
    security_key: str,
    cipher: StreamCipher | None = None,
) -> dict[str, str]:
    """Build the form fields for an encrypted request.

    The caller's mapping is not modified. The returned dict's order is the
    wire order: the encrypted params, ``rc4_hash__``, ``signature``, then the
    cleartext ``ssecurity`` and ``_nonce``.
    """
    cipher = cipher or default_cipher()
    wire = dict(params)
    wire["rc4_hash__"] = sign(method, url, signed_nonce_b64, wire)
    for key in list(wire):
        wire[key] = cipher.encrypt(signed_nonce_b64, wire[key])
    wire["signature"] = sign(method, url, signed_nonce_b64, wire)
    wire["ssecurity"] = security_key
    wire["_nonce"] = nonce
    return wire
