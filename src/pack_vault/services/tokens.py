"""Capability and integrity tokens for pack content access.

Two independent schemes live here:

- Capability tokens are compact HS256 JWTs bound to a single
  ``AccessClaim``. They authorize one call to the watermark renderer and
  expire after a short absolute TTL.
- Integrity tokens are hex HMAC-SHA256 digests over a canonical payload,
  re-derived by a second party that shares the secret. The expiry is part
  of the signed payload, so a leaked digest stops verifying once it lapses.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Final

from jose import jwt
from jose.exceptions import JOSEError

from pack_vault.models import AccessClaim

Clock = Callable[[], float]

INTEGRITY_PAYLOAD_VERSION: Final[int] = 1
INTEGRITY_DIGEST_LENGTH: Final[int] = 64


class TokenError(ValueError):
    """Base exception for token verification failures."""


class InvalidToken(TokenError):
    """Raised when a token cannot be parsed or its signature does not match."""


class ExpiredToken(TokenError):
    """Raised when a correctly signed token is past its expiry."""


class CapabilityTokenCodec:
    """Issue and verify signed capability tokens."""

    def __init__(
        self,
        secret: str,
        *,
        algorithm: str = "HS256",
        ttl_seconds: int = 120,
        clock: Clock = time.time,
    ) -> None:
        if not secret:
            raise ValueError("Capability token secret must not be empty")
        self._secret = secret
        self._algorithm = algorithm
        self._ttl_seconds = ttl_seconds
        self._clock = clock

    def issue(
        self,
        *,
        user_id: str,
        username: str,
        pack_id: str,
        order_id: str,
        content_key: str,
        vendor_id: str = "",
        vendor_username: str = "vendor",
        ttl_seconds: int | None = None,
    ) -> str:
        """Sign a new capability token.

        Args:
            user_id: Verified buyer identifier.
            username: Watermark label burned into the media.
            pack_id: Purchased pack.
            order_id: Order granting the access.
            content_key: Normalized object store key.
            vendor_id: Pack author identifier.
            vendor_username: Pack author label.
            ttl_seconds: Overrides the codec default lifetime.

        Returns:
            Compact three-segment JWT string.
        """
        lifetime = self._ttl_seconds if ttl_seconds is None else ttl_seconds
        if lifetime <= 0:
            raise ValueError("Capability token lifetime must be positive")

        now = int(self._clock())
        claim = AccessClaim(
            user_id=user_id,
            username=username,
            pack_id=pack_id,
            order_id=order_id,
            content_key=content_key,
            vendor_id=vendor_id,
            vendor_username=vendor_username,
            issued_at=now,
            expires_at=now + lifetime,
        )
        return jwt.encode(claim.to_payload(), self._secret, algorithm=self._algorithm)

    def verify(self, token: str) -> AccessClaim:
        """Return the claim embedded in ``token``.

        Raises:
            InvalidToken: Malformed token, bad signature, wrong algorithm or
                a claim set outside the capability schema.
            ExpiredToken: The current time is at or past ``expiresAt``.
        """
        try:
            payload: dict[str, Any] = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"verify_exp": False, "verify_iat": False, "verify_nbf": False},
            )
        except JOSEError as err:
            raise InvalidToken("Capability token signature or format is invalid") from err
        except (ValueError, TypeError, AttributeError) as err:
            raise InvalidToken("Capability token could not be decoded") from err

        try:
            claim = AccessClaim.from_payload(payload)
        except ValueError as err:
            raise InvalidToken(str(err)) from err

        if self._clock() >= claim.expires_at:
            raise ExpiredToken("Capability token has expired")
        return claim


@dataclass(frozen=True)
class IntegrityToken:
    """Hex digest plus the absolute expiry it was computed over."""

    token: str
    expires_at: int


class IntegrityTokenCodec:
    """Deterministic keyed digests for stateless re-verification."""

    def __init__(
        self,
        secret: str,
        *,
        ttl_seconds: int = 3600,
        clock: Clock = time.time,
        version: int = INTEGRITY_PAYLOAD_VERSION,
    ) -> None:
        if not secret:
            raise ValueError("Integrity token secret must not be empty")
        self._secret = secret.encode("utf-8")
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._version = version

    def _canonical_payload(self, user_id: str, pack_id: str, order_id: str, expires_at: int) -> bytes:
        payload = {
            "v": self._version,
            "userId": user_id,
            "packId": pack_id,
            "orderId": order_id,
            "expiresAt": int(expires_at),
        }
        return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")

    def digest(self, user_id: str, pack_id: str, order_id: str, expires_at: int) -> str:
        """Return the hex HMAC-SHA256 digest for the given inputs."""
        message = self._canonical_payload(user_id, pack_id, order_id, expires_at)
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    def issue(
        self,
        user_id: str,
        pack_id: str,
        order_id: str,
        *,
        expires_at: int | None = None,
    ) -> IntegrityToken:
        """Issue an integrity token valid until ``expires_at`` (default now + TTL)."""
        if expires_at is None:
            expires_at = int(self._clock()) + self._ttl_seconds
        return IntegrityToken(
            token=self.digest(user_id, pack_id, order_id, expires_at),
            expires_at=int(expires_at),
        )

    def verify(
        self,
        token: str,
        user_id: str,
        pack_id: str,
        order_id: str,
        expires_at: int,
    ) -> bool:
        """Recompute the digest and compare it in constant time."""
        if len(token) != INTEGRITY_DIGEST_LENGTH:
            return False
        try:
            provided = bytes.fromhex(token)
        except ValueError:
            return False
        if self._clock() >= expires_at:
            return False
        expected = bytes.fromhex(self.digest(user_id, pack_id, order_id, expires_at))
        return hmac.compare_digest(provided, expected)
