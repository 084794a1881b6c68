"""
LicenseEdict - Python client SDK

Verifies Ed25519-signed license tokens issued by a LicenseEdict server,
keeps the last verified license in a local cache for offline use, renews
licenses before they expire, and reports seat liveness with a background
heartbeat.

Requirements:
    pip install cryptography httpx

Token format:
    base64( Ed25519 signature [64 bytes] || JSON payload )

Usage:
    One-shot check::

        from licenseedict import check_license

        license = check_license(public_key_b64, token)
        if license.valid and license.has_feature("PRO"):
            ...

    Client with heartbeat and renewal::

        from licenseedict import EventType, HeartbeatOptions, LicenseClient

        with LicenseClient(public_key=public_key_b64,
                           app_name="MyApp", app_publisher="MyCompany") as client:
            license = client.validate(token)
            events = client.start_heartbeat(HeartbeatOptions(hostname="ws-01"))
            for event in events:
                if event.type is EventType.HEARTBEAT_REJECTED:
                    print("seat limit reached")
            client.checkout()

    ``validate()`` is offline-first: it returns a license (possibly cached,
    possibly with ``valid=False``) whenever it can.  Always check
    ``license.valid``.
"""

from __future__ import annotations

__version__ = "1.0.0"

from .cache import CacheStore
from .check import check_feature, check_feature_legacy, check_license, check_license_legacy
from .client import LicenseClient
from .config import ClientConfig
from .errors import (
    CacheError,
    CacheMissError,
    ClientClosedError,
    ErrorCode,
    HeartbeatAlreadyRunningError,
    HeartbeatNotRunningError,
    LicenseEdictError,
    NoPublicKeyError,
    NoServerURLError,
    NoTokenError,
    TransportError,
    ValidationError,
)
from .events import Event, EventBus, EventType, HeartbeatStatus, RenewalResult
from .heartbeat import HeartbeatOptions
from .license import License
from .token import TokenPayload, decode_public_key, decode_token_payload, verify_token

__all__ = [
    "__version__",
    "CacheError",
    "CacheMissError",
    "CacheStore",
    "ClientClosedError",
    "ClientConfig",
    "ErrorCode",
    "Event",
    "EventBus",
    "EventType",
    "HeartbeatAlreadyRunningError",
    "HeartbeatNotRunningError",
    "HeartbeatOptions",
    "HeartbeatStatus",
    "License",
    "LicenseClient",
    "LicenseEdictError",
    "NoPublicKeyError",
    "NoServerURLError",
    "NoTokenError",
    "RenewalResult",
    "TokenPayload",
    "TransportError",
    "ValidationError",
    "check_feature",
    "check_feature_legacy",
    "check_license",
    "check_license_legacy",
    "decode_public_key",
    "decode_token_payload",
    "verify_token",
]
