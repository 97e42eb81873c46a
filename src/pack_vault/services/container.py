"""Assemble the service graph from settings."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from pack_vault.core.settings import Settings
from pack_vault.services.delivery import DeliveryService
from pack_vault.services.identity import (
    CredentialVerifier,
    FirebaseIdentityProvider,
    IdentityProvider,
    JwtIdentityProvider,
)
from pack_vault.services.orders import (
    FirestoreOrderLedger,
    InMemoryOrderLedger,
    OrderAccessValidator,
    OrderLedger,
)
from pack_vault.services.rate_limit import (
    InMemoryWindowStore,
    RateLimiter,
    RateLimits,
    RateWindowSweeper,
    RedisWindowStore,
    WindowStore,
)
from pack_vault.services.renderer import WatermarkRendererClient
from pack_vault.services.storage import ObjectStorePresigner
from pack_vault.services.tokens import CapabilityTokenCodec, IntegrityTokenCodec

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Long-lived services shared by all requests."""

    delivery: DeliveryService
    sweeper: RateWindowSweeper

    async def start(self) -> None:
        await self.sweeper.start()

    async def close(self) -> None:
        await self.sweeper.stop()
        await self.delivery.close()
        store = self.delivery.limiter.store
        if isinstance(store, RedisWindowStore):
            await store.close()


def _build_identity_provider(settings: Settings) -> IdentityProvider:
    if settings.identity_provider == "firebase":
        return FirebaseIdentityProvider(
            settings.firebase_project_id,
            settings.firebase_credentials_file,
        )
    if not settings.identity_jwt_secret:
        raise ValueError("IDENTITY_JWT_SECRET is required when IDENTITY_PROVIDER=jwt")
    return JwtIdentityProvider(
        settings.identity_jwt_secret,
        algorithm=settings.identity_jwt_algorithm,
        audience=settings.identity_jwt_audience,
        issuer=settings.identity_jwt_issuer,
    )


def _build_ledger(settings: Settings) -> OrderLedger:
    if settings.order_ledger == "firestore":
        return FirestoreOrderLedger(
            settings.order_collection,
            project_id=settings.firebase_project_id,
            credentials_file=settings.firebase_credentials_file,
        )
    logger.warning("Using the in-memory order ledger; no purchases will be found until seeded")
    return InMemoryOrderLedger()


def _build_window_store(settings: Settings) -> WindowStore:
    if settings.rate_limit_backend == "redis":
        return RedisWindowStore.from_url(settings.redis_url)
    return InMemoryWindowStore()


def build_services(settings: Settings, *, ledger: OrderLedger | None = None) -> ServiceContainer:
    """Build every service from ``settings``; ``ledger`` overrides the configured one."""
    presigner: ObjectStorePresigner | None = None
    if settings.storage_endpoint_url or settings.storage_access_key_id:
        presigner = ObjectStorePresigner(
            settings.storage_bucket,
            endpoint_url=settings.storage_endpoint_url,
            region=settings.storage_region,
            access_key_id=settings.storage_access_key_id,
            secret_access_key=settings.storage_secret_access_key,
        )

    limiter = RateLimiter(
        _build_window_store(settings),
        limits=RateLimits(
            per_minute=settings.rate_limit_per_minute,
            per_hour=settings.rate_limit_per_hour,
        ),
    )
    delivery = DeliveryService(
        verifier=CredentialVerifier(_build_identity_provider(settings)),
        validator=OrderAccessValidator(
            ledger or _build_ledger(settings),
            allowed_statuses=settings.order_allowed_statuses,
            max_access_age_seconds=settings.max_access_age_seconds,
        ),
        limiter=limiter,
        capability_codec=CapabilityTokenCodec(
            settings.capability_secret,
            algorithm=settings.capability_algorithm,
            ttl_seconds=settings.capability_ttl_seconds,
        ),
        integrity_codec=IntegrityTokenCodec(
            settings.integrity_secret,
            ttl_seconds=settings.integrity_ttl_seconds,
        ),
        renderer=WatermarkRendererClient(
            settings.renderer_url,
            connect_timeout=settings.renderer_connect_timeout_seconds,
            read_timeout=settings.renderer_read_timeout_seconds,
            failure_threshold=settings.renderer_failure_threshold,
            recovery_timeout=settings.renderer_recovery_timeout_seconds,
        ),
        presigner=presigner,
        content_prefix=settings.content_key_prefix,
        chunk_size=settings.renderer_chunk_size,
        stream=settings.renderer_stream,
        allow_query_token=settings.allow_query_token,
        presign_default_ttl=settings.presign_default_ttl_seconds,
        presign_min_ttl=settings.presign_min_ttl_seconds,
        presign_max_ttl=settings.presign_max_ttl_seconds,
    )
    return ServiceContainer(
        delivery=delivery,
        sweeper=RateWindowSweeper(limiter, settings.rate_limit_sweep_interval_seconds),
    )
