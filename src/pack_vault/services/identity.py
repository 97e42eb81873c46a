"""Credential verification against the identity provider."""

from __future__ import annotations

import logging
from typing import Any, Protocol

from firebase_admin import auth as firebase_auth
from jose import jwt
from jose.exceptions import JOSEError
from starlette.concurrency import run_in_threadpool

from pack_vault.core.firebase import get_firebase_app
from pack_vault.models import Identity
from pack_vault.services.errors import Unauthenticated, UpstreamFailure

logger = logging.getLogger(__name__)

BEARER_PREFIX = "bearer "


class IdentityProvider(Protocol):
    """Anything able to turn a bearer credential into a verified identity."""

    async def verify_token(self, token: str) -> Identity:
        """Return the identity behind ``token`` or raise ``Unauthenticated``."""
        ...


def _identity_from_claims(claims: dict[str, Any]) -> Identity:
    subject = claims.get("uid") or claims.get("sub") or claims.get("user_id")
    if not subject or not isinstance(subject, str):
        raise Unauthenticated("invalid_credentials")
    email = claims.get("email")
    name = claims.get("name") or claims.get("display_name")
    return Identity(
        id=subject,
        email=email if isinstance(email, str) else None,
        display_name=name if isinstance(name, str) else None,
    )


class JwtIdentityProvider:
    """Verify identity tokens signed with a shared secret."""

    def __init__(
        self,
        secret: str,
        *,
        algorithm: str = "HS256",
        audience: str | None = None,
        issuer: str | None = None,
    ) -> None:
        if not secret:
            raise ValueError("JWT identity provider requires a secret")
        self._secret = secret
        self._algorithm = algorithm
        self._audience = audience
        self._issuer = issuer

    async def verify_token(self, token: str) -> Identity:
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                audience=self._audience,
                issuer=self._issuer,
                options={"verify_aud": self._audience is not None},
            )
        except JOSEError as err:
            raise Unauthenticated("invalid_credentials") from err
        return _identity_from_claims(claims)


class FirebaseIdentityProvider:
    """Verify Firebase ID tokens with firebase-admin."""

    def __init__(
        self,
        project_id: str | None = None,
        credentials_file: str | None = None,
        *,
        check_revoked: bool = False,
    ) -> None:
        self._project_id = project_id
        self._credentials_file = credentials_file
        self._check_revoked = check_revoked

    def _verify_sync(self, token: str) -> dict[str, Any]:
        app = get_firebase_app(self._project_id, self._credentials_file)
        return firebase_auth.verify_id_token(token, app=app, check_revoked=self._check_revoked)

    async def verify_token(self, token: str) -> Identity:
        try:
            claims = await run_in_threadpool(self._verify_sync, token)
        except firebase_auth.CertificateFetchError as err:
            logger.warning("Identity provider certificates unavailable: %s", err)
            raise UpstreamFailure("identity_provider_unavailable") from err
        except (
            firebase_auth.InvalidIdTokenError,
            firebase_auth.UserDisabledError,
            ValueError,
        ) as err:
            raise Unauthenticated("invalid_credentials") from err
        return _identity_from_claims(claims)


class CredentialVerifier:
    """Extract and verify bearer credentials.

    Holds no mutable state, so a single instance serves concurrent requests.
    """

    def __init__(self, provider: IdentityProvider) -> None:
        self._provider = provider

    @staticmethod
    def extract_bearer(authorization: str | None) -> str:
        """Return the token from an ``Authorization: Bearer <token>`` header."""
        if not authorization or not authorization.lower().startswith(BEARER_PREFIX):
            raise Unauthenticated("missing_credentials")
        token = authorization[len(BEARER_PREFIX):].strip()
        if not token:
            raise Unauthenticated("missing_credentials")
        return token

    async def verify(self, bearer_credential: str) -> Identity:
        """Verify a raw bearer credential with the identity provider."""
        if not bearer_credential:
            raise Unauthenticated("missing_credentials")
        return await self._provider.verify_token(bearer_credential)

    async def authenticate(
        self,
        authorization: str | None,
        query_token: str | None = None,
    ) -> Identity:
        """Authenticate a request from its header, or a query token when allowed."""
        if authorization:
            token = self.extract_bearer(authorization)
        elif query_token:
            token = query_token
        else:
            raise Unauthenticated("missing_credentials")
        return await self.verify(token)
