"""Signed token decoding and Ed25519 verification.

Wire format::

    base64( signature[64 bytes] || json_payload )

The signature covers the exact payload bytes as transmitted.  The payload is
never re-serialized for verification.
"""

from __future__ import annotations

import base64
import binascii
import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Optional, Tuple, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from .errors import ErrorCode, ValidationError

__all__ = [
    "SIGNATURE_SIZE",
    "PUBLIC_KEY_SIZE",
    "TokenPayload",
    "verify_token",
    "decode_token_payload",
    "decode_public_key",
    "load_public_key",
    "parse_timestamp",
    "format_timestamp",
]

SIGNATURE_SIZE = 64
PUBLIC_KEY_SIZE = 32

# Servers that do not omit unset times emit the zero time instead.
_ZERO_TIME_YEAR = 1

_FRACTION_RE = re.compile(r"\.(\d+)")


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an RFC 3339 timestamp (or epoch seconds) into an aware datetime.

    Returns ``None`` for null, empty, or zero-time values.

    Raises:
        ValueError: If *value* is not a recognizable timestamp.
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"invalid timestamp: {value!r}")
    if isinstance(value, (int, float)):
        if value == 0:
            return None
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if not isinstance(value, str):
        raise ValueError(f"invalid timestamp: {value!r}")

    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    # fromisoformat accepts at most microsecond precision.
    text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)

    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    if parsed.year == _ZERO_TIME_YEAR:
        return None
    return parsed


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Render an aware datetime as RFC 3339 in UTC, or ``None``."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


# ---------------------------------------------------------------------------
# Payload
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TokenPayload:
    """License claims carried inside a signed token.

    Instances produced by :func:`decode_token_payload` are NOT authenticated.
    Only :func:`verify_token` output may be trusted.
    """

    license_id: str = ""
    product_id: str = ""
    license_key: str = ""
    licensee: str = ""
    plan: str = ""
    features: FrozenSet[str] = field(default_factory=frozenset)
    max_seats: int = 0
    issued_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    server_url: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TokenPayload":
        """Build a payload from decoded JSON.

        Raises:
            ValueError: On missing structure or wrongly typed fields.
        """
        if not isinstance(data, dict):
            raise ValueError("token payload is not a JSON object")

        features = data.get("features") or []
        if not isinstance(features, list) or not all(
            isinstance(f, str) for f in features
        ):
            raise ValueError("features must be a list of strings")

        max_seats = data.get("max_seats") or 0
        if isinstance(max_seats, bool) or not isinstance(max_seats, int):
            raise ValueError("max_seats must be an integer")

        return cls(
            license_id=_str_field(data, "license_id"),
            product_id=_str_field(data, "product_id"),
            license_key=_str_field(data, "license_key"),
            licensee=_str_field(data, "licensee"),
            plan=_str_field(data, "plan"),
            features=frozenset(features),
            max_seats=max_seats,
            issued_at=parse_timestamp(data.get("issued_at")),
            expires_at=parse_timestamp(data.get("expires_at")),
            server_url=_str_field(data, "server_url"),
        )


def _str_field(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"{key} must be a string")
    return value


# ---------------------------------------------------------------------------
# Decoding and verification
# ---------------------------------------------------------------------------


def _split_token(signed_token: str) -> Tuple[bytes, bytes]:
    """Return ``(signature, payload_bytes)`` from a base64 token."""
    try:
        combined = base64.b64decode(signed_token.strip(), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError(
            ErrorCode.DECODE_ERROR, "failed to base64-decode token", exc
        ) from exc

    if len(combined) <= SIGNATURE_SIZE:
        raise ValidationError(ErrorCode.DECODE_ERROR, "token too short")

    return combined[:SIGNATURE_SIZE], combined[SIGNATURE_SIZE:]


def _parse_payload(payload_bytes: bytes) -> TokenPayload:
    try:
        return TokenPayload.from_dict(json.loads(payload_bytes))
    except (ValueError, TypeError, OverflowError, OSError) as exc:
        raise ValidationError(
            ErrorCode.DECODE_ERROR, "failed to decode token payload", exc
        ) from exc


def verify_token(public_key: Ed25519PublicKey, signed_token: str) -> TokenPayload:
    """Verify the Ed25519 signature of *signed_token* and return its payload.

    No temporal checks are applied here.

    Raises:
        ValidationError: ``DECODE_ERROR`` for malformed tokens or payloads,
            ``INVALID_SIGNATURE`` when the signature does not match.
    """
    signature, payload_bytes = _split_token(signed_token)

    try:
        public_key.verify(signature, payload_bytes)
    except InvalidSignature as exc:
        raise ValidationError(
            ErrorCode.INVALID_SIGNATURE, "Ed25519 signature verification failed"
        ) from exc

    return _parse_payload(payload_bytes)


def decode_token_payload(signed_token: str) -> TokenPayload:
    """Decode the payload WITHOUT verifying the signature.

    Useful to peek at ``server_url`` or ``license_key`` before verification.
    The result must never be treated as trusted.
    """
    _signature, payload_bytes = _split_token(signed_token)
    return _parse_payload(payload_bytes)


# ---------------------------------------------------------------------------
# Public keys
# ---------------------------------------------------------------------------


def decode_public_key(encoded: str) -> Ed25519PublicKey:
    """Decode a base64-encoded raw Ed25519 public key.

    Raises:
        ValidationError: ``PUBKEY_DECODE_ERROR`` on bad encoding or length.
    """
    try:
        raw = base64.b64decode(encoded.strip(), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError(
            ErrorCode.PUBKEY_DECODE_ERROR, "failed to base64-decode public key", exc
        ) from exc
    return _public_key_from_bytes(raw)


def _public_key_from_bytes(raw: bytes) -> Ed25519PublicKey:
    if len(raw) != PUBLIC_KEY_SIZE:
        raise ValidationError(
            ErrorCode.PUBKEY_DECODE_ERROR, "invalid public key length"
        )
    try:
        return Ed25519PublicKey.from_public_bytes(raw)
    except ValueError as exc:
        raise ValidationError(
            ErrorCode.PUBKEY_DECODE_ERROR, "invalid public key", exc
        ) from exc


def load_public_key(
    key: Union[str, bytes, Ed25519PublicKey, None],
) -> Optional[Ed25519PublicKey]:
    """Accept a base64 string, raw 32 bytes, or a key object.

    Empty values yield ``None``.
    """
    if key is None or key == "" or key == b"":
        return None
    if isinstance(key, Ed25519PublicKey):
        return key
    if isinstance(key, bytes):
        return _public_key_from_bytes(key)
    return decode_public_key(key)
