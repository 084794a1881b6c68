"""One-shot license checks that need no client instance."""

from __future__ import annotations

import logging
from typing import Optional

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from .cache import CacheStore
from .errors import CacheError, NoPublicKeyError, NoTokenError, ValidationError
from .license import License
from .token import decode_public_key, verify_token

__all__ = [
    "check_license",
    "check_feature",
    "check_license_legacy",
    "check_feature_legacy",
]

logger = logging.getLogger("licenseedict.check")


def check_license(
    public_key: str,
    token: str,
    app_name: str = "",
    app_publisher: str = "",
) -> License:
    """Verify *token* with a base64-encoded Ed25519 *public_key*.

    Applies the same offline-first rules as
    :meth:`~licenseedict.client.LicenseClient.validate`: a cached license is
    returned when verification fails, and a license outside its validity
    window comes back with ``valid=False`` rather than an error.

    Raises:
        NoPublicKeyError: If *public_key* is empty.
        NoTokenError: If *token* is empty.
        ValidationError: On a malformed key, or a verification failure with
            nothing cached.
    """
    if not public_key:
        raise NoPublicKeyError()
    if not token:
        raise NoTokenError()
    return _check(decode_public_key(public_key), token, app_name, app_publisher)


def check_feature(public_key: str, token: str, feature: str) -> bool:
    """Validate *token* and report whether it grants *feature*."""
    return check_license(public_key, token).has_feature(feature)


def check_license_legacy(
    token: str,
    public_key: Optional[Ed25519PublicKey],
    app_name: str = "",
    app_publisher: str = "",
) -> License:
    """Variant of :func:`check_license` taking an already-decoded key."""
    if public_key is None:
        raise NoPublicKeyError()
    if not token:
        raise NoTokenError()
    return _check(public_key, token, app_name, app_publisher)


def check_feature_legacy(feature: str, license: Optional[License]) -> bool:
    """True if *license* is present and includes *feature*."""
    return license is not None and license.has_feature(feature)


def _check(
    public_key: Ed25519PublicKey, token: str, app_name: str, app_publisher: str
) -> License:
    cache = CacheStore.for_app(app_name, app_publisher)

    try:
        payload = verify_token(public_key, token)
    except ValidationError:
        try:
            return cache.load()
        except CacheError as exc:
            logger.debug("no cached license available: %s", exc)
        raise

    license = License.evaluate(payload, token)
    try:
        cache.save(license)
    except CacheError as exc:
        logger.debug("license cache write failed: %s", exc)
    return license
