# tests/conftest.py
from __future__ import annotations

import os
import time
from collections.abc import Iterator
from datetime import datetime, timezone
from typing import Any
from unittest.mock import AsyncMock

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from jose import jwt

os.environ.setdefault("CAPABILITY_TOKEN_SECRET", "test-capability-secret")
os.environ.setdefault("PACK_ACCESS_SECRET", "test-pack-access-secret")
os.environ.setdefault("IDENTITY_JWT_SECRET", "test-identity-secret")

from pack_vault.api.v1.dependencies import get_delivery_service
from pack_vault.main import app as fastapi_app
from pack_vault.models import OrderRecord, OrderStatus
from pack_vault.services.delivery import DeliveryService
from pack_vault.services.identity import CredentialVerifier, JwtIdentityProvider
from pack_vault.services.orders import InMemoryOrderLedger, OrderAccessValidator
from pack_vault.services.rate_limit import InMemoryWindowStore, RateLimiter, RateLimits
from pack_vault.services.renderer import WatermarkRendererClient
from pack_vault.services.storage import ObjectStorePresigner
from pack_vault.services.tokens import CapabilityTokenCodec, IntegrityTokenCodec

IDENTITY_SECRET = "test-identity-secret"
CAPABILITY_SECRET = "test-capability-secret"
INTEGRITY_SECRET = "test-pack-access-secret"
RENDERER_URL = "http://renderer.test/render"
FROZEN_NOW = 1_700_000_000.0


class FrozenClock:
    """Manually advanced clock injected into services under test."""

    def __init__(self, now: float = FROZEN_NOW) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RendererStub:
    """Stand-in for the watermark renderer behind ``httpx.MockTransport``."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.status_code = 200
        self.content = b"watermarked-bytes"
        self.headers: dict[str, str] = {"Content-Type": "image/webp"}
        self.error: Exception | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        # An explicit stream keeps the body unread until the relay pulls it
        headers = {"Content-Length": str(len(self.content)), **self.headers}
        return httpx.Response(self.status_code, headers=headers, stream=httpx.ByteStream(self.content))

    @property
    def last_params(self) -> httpx.QueryParams:
        return self.requests[-1].url.params


def make_identity_token(
    user_id: str,
    *,
    email: str | None = None,
    name: str | None = None,
    secret: str = IDENTITY_SECRET,
    expires_in: int = 3600,
) -> str:
    now = int(time.time())
    claims: dict[str, Any] = {"sub": user_id, "iat": now, "exp": now + expires_in}
    if email:
        claims["email"] = email
    if name:
        claims["name"] = name
    return jwt.encode(claims, secret, algorithm="HS256")


def bearer(user_id: str, **kwargs: Any) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_identity_token(user_id, **kwargs)}"}


def make_order(
    order_id: str = "O1",
    *,
    buyer_id: str = "U1",
    pack_id: str = "P1",
    status: str = OrderStatus.CONFIRMED.value,
    created_at: float = FROZEN_NOW - 86_400,
    vendor_id: str = "V1",
    vendor_username: str = "studio",
) -> OrderRecord:
    return OrderRecord(
        order_id=order_id,
        buyer_id=buyer_id,
        pack_id=pack_id,
        status=status,
        created_at=datetime.fromtimestamp(created_at, tz=timezone.utc),
        vendor_id=vendor_id,
        vendor_username=vendor_username,
    )


@pytest.fixture()
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture()
def ledger() -> InMemoryOrderLedger:
    """Ledger holding one confirmed order O1 by U1 for pack P1."""
    return InMemoryOrderLedger([make_order()])


@pytest.fixture()
def capability_codec(clock: FrozenClock) -> CapabilityTokenCodec:
    return CapabilityTokenCodec(CAPABILITY_SECRET, clock=clock)


@pytest.fixture()
def integrity_codec(clock: FrozenClock) -> IntegrityTokenCodec:
    return IntegrityTokenCodec(INTEGRITY_SECRET, clock=clock)


@pytest.fixture()
def rate_limits() -> RateLimits:
    return RateLimits(per_minute=60, per_hour=300)


@pytest.fixture()
def limiter(clock: FrozenClock, rate_limits: RateLimits) -> RateLimiter:
    return RateLimiter(InMemoryWindowStore(), limits=rate_limits, clock=clock)


@pytest.fixture()
def renderer_stub() -> RendererStub:
    return RendererStub()


@pytest.fixture()
def renderer(renderer_stub: RendererStub, clock: FrozenClock) -> WatermarkRendererClient:
    return WatermarkRendererClient(
        RENDERER_URL,
        failure_threshold=3,
        transport=httpx.MockTransport(renderer_stub),
        clock=clock,
    )


@pytest.fixture()
def presigner() -> AsyncMock:
    mock = AsyncMock(spec=ObjectStorePresigner)
    mock.presign_get.return_value = "https://storage.test/pack-content/object?X-Amz-Signature=abc"
    return mock


@pytest.fixture()
def delivery_service(
    ledger: InMemoryOrderLedger,
    clock: FrozenClock,
    limiter: RateLimiter,
    capability_codec: CapabilityTokenCodec,
    integrity_codec: IntegrityTokenCodec,
    renderer: WatermarkRendererClient,
    presigner: AsyncMock,
) -> DeliveryService:
    return DeliveryService(
        verifier=CredentialVerifier(JwtIdentityProvider(IDENTITY_SECRET)),
        validator=OrderAccessValidator(ledger, clock=clock),
        limiter=limiter,
        capability_codec=capability_codec,
        integrity_codec=integrity_codec,
        renderer=renderer,
        presigner=presigner,
    )


@pytest.fixture()
def app(delivery_service: DeliveryService) -> Iterator[FastAPI]:
    fastapi_app.dependency_overrides[get_delivery_service] = lambda: delivery_service
    try:
        yield fastapi_app
    finally:
        fastapi_app.dependency_overrides.pop(get_delivery_service, None)


@pytest.fixture()
def client(app: FastAPI) -> TestClient:
    return TestClient(app, base_url="http://test")


@pytest.fixture()
def auth_headers() -> dict[str, str]:
    """Authorization headers for buyer U1."""
    return bearer("U1", email="buyer@example.com")
