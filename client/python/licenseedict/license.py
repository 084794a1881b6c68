"""The user-facing License record."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Optional

from .token import TokenPayload, format_timestamp, parse_timestamp

__all__ = ["License"]


@dataclass(frozen=True)
class License:
    """Decoded license information.

    A ``License`` is never modified in place.  Validation and renewal build
    a new instance and replace the previous one.  ``License()`` with all
    defaults stands for "no license".

    Attributes:
        valid: True only if the signature verified and neither the
            not-valid-before nor the expiry check failed.
        license_id: Server-side license identifier.
        product_id: Product the license belongs to.
        license_key: Human-facing license key.
        licensee: Name of the license holder.
        plan: Plan name.
        features: Feature names enabled by the license.
        max_seats: Maximum number of concurrent seats.
        issued_at: Start of validity, if any.
        expires_at: End of validity, if any.
        server_url: Licensing server base URL embedded in the token.
        signed_token: The token this license was decoded from.
    """

    valid: bool = False
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
    signed_token: str = ""

    @classmethod
    def from_payload(
        cls, payload: TokenPayload, signed_token: str, valid: bool
    ) -> "License":
        return cls(
            valid=valid,
            license_id=payload.license_id,
            product_id=payload.product_id,
            license_key=payload.license_key,
            licensee=payload.licensee,
            plan=payload.plan,
            features=frozenset(payload.features),
            max_seats=payload.max_seats,
            issued_at=payload.issued_at,
            expires_at=payload.expires_at,
            server_url=payload.server_url,
            signed_token=signed_token,
        )

    @classmethod
    def evaluate(
        cls, payload: TokenPayload, signed_token: str, now: Optional[datetime] = None
    ) -> "License":
        """Build a License from a *verified* payload, applying the time checks.

        The not-valid-before and expiry checks are independent; each can
        only mark the license invalid.
        """
        now = now or datetime.now(timezone.utc)
        valid = True
        if payload.issued_at is not None and now < payload.issued_at:
            valid = False
        if payload.expires_at is not None and now > payload.expires_at:
            valid = False
        return cls.from_payload(payload, signed_token, valid)

    def has_feature(self, feature: str) -> bool:
        """True if the license includes *feature*."""
        return feature in self.features

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """True if the license has an expiry that has passed."""
        if self.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        return now > self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "license_id": self.license_id,
            "product_id": self.product_id,
            "license_key": self.license_key,
            "licensee": self.licensee,
            "plan": self.plan,
            "features": sorted(self.features),
            "max_seats": self.max_seats,
            "issued_at": format_timestamp(self.issued_at),
            "expires_at": format_timestamp(self.expires_at),
            "server_url": self.server_url,
            "signed_token": self.signed_token,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "License":
        """Rebuild a License from :meth:`to_dict` output.

        Raises:
            ValueError: If *data* is not a mapping or a timestamp is invalid.
        """
        if not isinstance(data, dict):
            raise ValueError("license data is not a JSON object")
        return cls(
            valid=bool(data.get("valid", False)),
            license_id=data.get("license_id") or "",
            product_id=data.get("product_id") or "",
            license_key=data.get("license_key") or "",
            licensee=data.get("licensee") or "",
            plan=data.get("plan") or "",
            features=frozenset(data.get("features") or ()),
            max_seats=int(data.get("max_seats") or 0),
            issued_at=parse_timestamp(data.get("issued_at")),
            expires_at=parse_timestamp(data.get("expires_at")),
            server_url=data.get("server_url") or "",
            signed_token=data.get("signed_token") or "",
        )
