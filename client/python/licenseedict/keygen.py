"""Vendor-side key generation and token signing.

The licensing server owns the private key in production.  These helpers
exist for development, examples, and tests.
"""

from __future__ import annotations

import base64
import json
from datetime import datetime
from typing import Any, Dict, Tuple

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from .token import format_timestamp

__all__ = ["generate_keypair", "encode_public_key", "sign_token"]


def generate_keypair() -> Tuple[Ed25519PrivateKey, str]:
    """Create a new signing key and its base64-encoded public key."""
    private_key = Ed25519PrivateKey.generate()
    return private_key, encode_public_key(private_key.public_key())


def encode_public_key(public_key: Ed25519PublicKey) -> str:
    """Base64-encode the raw 32-byte form of *public_key*."""
    raw = public_key.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    return base64.b64encode(raw).decode("ascii")


def sign_token(private_key: Ed25519PrivateKey, payload: Dict[str, Any]) -> str:
    """Serialize *payload* to JSON, sign it, and return the token.

    ``datetime`` values are written as RFC 3339 strings and sets as sorted
    lists.
    """
    payload_bytes = json.dumps(payload, default=_json_default).encode("utf-8")
    signature = private_key.sign(payload_bytes)
    return base64.b64encode(signature + payload_bytes).decode("ascii")


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"cannot serialize {type(value).__name__}")
