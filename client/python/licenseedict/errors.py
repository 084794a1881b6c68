"""Exception hierarchy and stable failure codes for the LicenseEdict SDK."""

from __future__ import annotations

from enum import Enum
from typing import Optional

__all__ = [
    "ErrorCode",
    "LicenseEdictError",
    "ValidationError",
    "NoPublicKeyError",
    "NoTokenError",
    "NoServerURLError",
    "ClientClosedError",
    "HeartbeatAlreadyRunningError",
    "HeartbeatNotRunningError",
    "TransportError",
    "CacheError",
    "CacheMissError",
]


class ErrorCode(str, Enum):
    """Machine-readable failure codes carried by :class:`ValidationError`.

    The values are the wire/log representation and are stable across
    releases.  Message text is not.
    """

    DECODE_ERROR = "LICENSE_DECODE_ERROR"
    PUBKEY_DECODE_ERROR = "PUBKEY_DECODE_ERROR"
    INVALID_SIGNATURE = "INVALID_LICENSE_SIGNATURE"
    NOT_VALID_BEFORE = "LICENSE_NOT_VALID_BEFORE"
    NOT_VALID_AFTER = "LICENSE_NOT_VALID_AFTER"
    REVOKED = "LICENSE_REVOKED"
    SERVER_UNREACHABLE = "SERVER_UNREACHABLE"
    SEAT_LIMIT_REACHED = "SEAT_LIMIT_REACHED"
    RENEWAL_FAILED = "RENEWAL_FAILED"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class LicenseEdictError(Exception):
    """Base exception for all LicenseEdict client errors."""


class ValidationError(LicenseEdictError):
    """A license operation failed with one of the :class:`ErrorCode` kinds.

    Attributes:
        code: The failure kind.  Compare against this, never the message.
        message: Human-readable description.
        cause: The underlying exception, if any (also set as ``__cause__``
            when raised with ``raise ... from``).
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        cause: Optional[BaseException] = None,
    ) -> None:
        self.code = ErrorCode(code)
        self.message = message
        self.cause = cause
        super().__init__(str(self))

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.code.value}: {self.message}: {self.cause}"
        return f"{self.code.value}: {self.message}"

    def __repr__(self) -> str:
        return f"ValidationError(code={self.code.value!r}, message={self.message!r})"

    def matches(self, code: ErrorCode) -> bool:
        """True if this error is of the given kind."""
        return self.code is ErrorCode(code)


class NoPublicKeyError(LicenseEdictError):
    """Raised when no Ed25519 verification key is configured."""

    def __init__(self) -> None:
        super().__init__("licenseedict: no public key configured")


class NoTokenError(LicenseEdictError):
    """Raised when no signed token was provided or stored."""

    def __init__(self) -> None:
        super().__init__("licenseedict: no signed token provided")


class NoServerURLError(LicenseEdictError):
    """Raised when an operation needs the licensing server but none is known."""

    def __init__(self) -> None:
        super().__init__("licenseedict: no server URL available")


class ClientClosedError(LicenseEdictError):
    """Raised when a closed client is used."""

    def __init__(self) -> None:
        super().__init__("licenseedict: client is closed")


class HeartbeatAlreadyRunningError(LicenseEdictError):
    """Raised by ``start_heartbeat`` when a heartbeat loop is already active."""

    def __init__(self) -> None:
        super().__init__("licenseedict: heartbeat already running")


class HeartbeatNotRunningError(LicenseEdictError):
    """Raised when an operation requires a running heartbeat loop."""

    def __init__(self) -> None:
        super().__init__("licenseedict: heartbeat not running")


class TransportError(LicenseEdictError):
    """Raised when an HTTP request could not be completed or decoded."""


class CacheError(LicenseEdictError):
    """Raised when the license cache cannot be read or written."""


class CacheMissError(CacheError):
    """Raised by ``CacheStore.load`` when no cached license exists."""
