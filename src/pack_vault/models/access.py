# src/pack_vault/models/access.py
"""Identity and capability claim value objects."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class Identity:
    """A caller verified by the identity provider."""

    id: str
    email: str | None = None
    display_name: str | None = None

    @property
    def username(self) -> str:
        """Return the label used for watermarks when none is requested."""
        if self.email and "@" in self.email:
            local_part = self.email.split("@", 1)[0]
            if local_part:
                return local_part
        if self.display_name:
            return self.display_name
        return self.id


# Wire names of the signed claim fields, in payload order
CLAIM_FIELDS: tuple[str, ...] = (
    "userId",
    "username",
    "packId",
    "orderId",
    "contentKey",
    "vendorId",
    "vendorUsername",
)


@dataclass(frozen=True)
class AccessClaim:
    """Payload of a capability token.

    The field set is closed: a token carrying anything else, or missing any
    of these, is rejected by the codec.
    """

    user_id: str
    username: str
    pack_id: str
    order_id: str
    content_key: str
    vendor_id: str
    vendor_username: str
    issued_at: int
    expires_at: int

    def to_payload(self) -> dict[str, Any]:
        """Return the JWT claim set for this access claim."""
        return {
            "userId": self.user_id,
            "username": self.username,
            "packId": self.pack_id,
            "orderId": self.order_id,
            "contentKey": self.content_key,
            "vendorId": self.vendor_id,
            "vendorUsername": self.vendor_username,
            "iat": self.issued_at,
            "exp": self.expires_at,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> AccessClaim:
        """Build a claim from a decoded JWT claim set.

        Raises:
            ValueError: If a field is missing, has the wrong type, or the
                payload carries unexpected fields.
        """
        expected = set(CLAIM_FIELDS) | {"iat", "exp"}
        keys = set(payload)
        if keys != expected:
            raise ValueError("Claim set does not match the capability schema")
        for name in CLAIM_FIELDS:
            if not isinstance(payload[name], str):
                raise ValueError(f"Claim {name} must be a string")
        for name in ("iat", "exp"):
            if not isinstance(payload[name], int) or isinstance(payload[name], bool):
                raise ValueError(f"Claim {name} must be an integer")
        return cls(
            user_id=payload["userId"],
            username=payload["username"],
            pack_id=payload["packId"],
            order_id=payload["orderId"],
            content_key=payload["contentKey"],
            vendor_id=payload["vendorId"],
            vendor_username=payload["vendorUsername"],
            issued_at=payload["iat"],
            expires_at=payload["exp"],
        )
