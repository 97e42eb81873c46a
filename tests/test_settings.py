# tests/test_settings.py
"""Tests for configuration and service assembly."""

import pytest

from pack_vault.core.settings import Settings
from pack_vault.services.container import build_services
from pack_vault.services.identity import JwtIdentityProvider
from pack_vault.services.rate_limit import InMemoryWindowStore, RedisWindowStore


def _settings(**overrides) -> Settings:
    values = {
        "CAPABILITY_TOKEN_SECRET": "cap",
        "PACK_ACCESS_SECRET": "integrity",
        "IDENTITY_JWT_SECRET": "identity",
    }
    values.update(overrides)
    return Settings(**values)


def test_defaults():
    settings = _settings()

    assert settings.capability_ttl_seconds == 120
    assert settings.integrity_ttl_seconds == 3600
    assert settings.rate_limit_per_minute == 60
    assert settings.rate_limit_per_hour == 300
    assert settings.content_key_prefix == "pack-content/"
    assert settings.max_access_age_seconds == 90 * 86_400


def test_access_age_cutoff_can_be_disabled():
    assert _settings(ORDER_MAX_ACCESS_AGE_DAYS=0).max_access_age_seconds is None


@pytest.mark.asyncio
async def test_build_services_with_local_backends():
    services = build_services(_settings(WATERMARK_RENDERER_URL="http://renderer.test/render"))

    delivery = services.delivery
    assert isinstance(delivery.limiter.store, InMemoryWindowStore)
    assert delivery.limiter.limits.per_minute == 60
    assert delivery.renderer.enabled
    assert delivery.presigner is None

    await services.start()
    await services.close()


def test_build_services_with_redis_store():
    services = build_services(_settings(RATE_LIMIT_BACKEND="redis", REDIS_URL="redis://cache.test:6379/1"))

    assert isinstance(services.delivery.limiter.store, RedisWindowStore)


def test_build_services_with_object_store():
    services = build_services(_settings(
        STORAGE_ENDPOINT_URL="https://account.r2.test",
        STORAGE_ACCESS_KEY_ID="AKIDEXAMPLE",
        STORAGE_SECRET_ACCESS_KEY="secret",
    ))

    assert services.delivery.presigner is not None
    assert services.delivery.presigner.bucket == "pack-content-private"


def test_jwt_provider_requires_secret():
    with pytest.raises(ValueError):
        build_services(_settings(IDENTITY_JWT_SECRET=None))


def test_identity_provider_is_configured():
    services = build_services(_settings(IDENTITY_JWT_ISSUER="https://issuer.test"))

    provider = services.delivery.verifier._provider
    assert isinstance(provider, JwtIdentityProvider)
