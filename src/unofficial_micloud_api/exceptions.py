"""Custom exceptions for the Xiaomi MiOT cloud client."""


class MiCloudError(Exception):
    """Base exception for MiOT cloud errors."""

    def __init__(self, message: str, code: int | None = None):
        self.code = code
        self.message = message
        super().__init__(f"API error {code}: {message}" if code else message)


class AuthError(MiCloudError):
    """Raised when the login handshake does not produce a session."""


class AuthFailedError(AuthError):
    """Raised for bad credentials or a malformed login handshake."""


class AuthChallengeRequiredError(AuthError):
    """Raised when the account asks for 2FA or a captcha.

    The flow cannot complete unattended; the user has to clear the challenge
    in the Mi Home app and log in again.
    """

    def __init__(self, message: str, challenge_url: str, kind: str):
        self.challenge_url = challenge_url
        self.kind = kind
        super().__init__(message)


class RpcError(MiCloudError):
    """Base exception for encrypted API calls."""


class NotAuthenticatedError(RpcError):
    """Raised when a call is attempted without a session."""


class SessionExpiredError(RpcError):
    """Raised when the server stops accepting the session's serviceToken."""


class TransportError(RpcError):
    """Raised when the HTTP exchange itself fails. Retried by the client."""


class TransportTimeoutError(TransportError):
    """Raised when a request exceeds its timeout."""


class ProtocolError(RpcError):
    """Raised when a response cannot be decrypted or decoded. Never retried."""


class CommandError(RpcError):
    """Raised when a MiOT RPC returns a non-zero result code."""
