"""Application settings and configuration.

This module defines all configuration options for the Pack Vault service.
Settings are loaded from environment variables with sensible defaults.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Secrets have no defaults: the service refuses to start without a
    capability signing key and an integrity token key.
    """

    # Application metadata
    app_name: str = Field(default="Pack Vault", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Capability tokens (cross-service calls to the watermark renderer)
    capability_secret: str = Field(alias="CAPABILITY_TOKEN_SECRET")
    capability_algorithm: str = Field(default="HS256", alias="CAPABILITY_TOKEN_ALGORITHM")
    capability_ttl_seconds: int = Field(default=120, alias="CAPABILITY_TOKEN_TTL_SECONDS")

    # Integrity tokens (stateless second-tier verification)
    integrity_secret: str = Field(alias="PACK_ACCESS_SECRET")
    integrity_ttl_seconds: int = Field(default=3600, alias="INTEGRITY_TOKEN_TTL_SECONDS")

    # Identity provider
    identity_provider: Literal["jwt", "firebase"] = Field(default="jwt", alias="IDENTITY_PROVIDER")
    identity_jwt_secret: str | None = Field(default=None, alias="IDENTITY_JWT_SECRET")
    identity_jwt_algorithm: str = Field(default="HS256", alias="IDENTITY_JWT_ALGORITHM")
    identity_jwt_audience: str | None = Field(default=None, alias="IDENTITY_JWT_AUDIENCE")
    identity_jwt_issuer: str | None = Field(default=None, alias="IDENTITY_JWT_ISSUER")
    firebase_project_id: str | None = Field(default=None, alias="FIREBASE_PROJECT_ID")
    firebase_credentials_file: str | None = Field(default=None, alias="FIREBASE_CREDENTIALS_FILE")
    allow_query_token: bool = Field(default=False, alias="ALLOW_QUERY_TOKEN")

    # Order ledger
    order_ledger: Literal["memory", "firestore"] = Field(default="memory", alias="ORDER_LEDGER")
    order_collection: str = Field(default="packOrders", alias="ORDER_COLLECTION")
    order_max_access_age_days: int = Field(default=90, alias="ORDER_MAX_ACCESS_AGE_DAYS")
    order_allowed_statuses: list[str] = Field(
        default=["COMPLETED", "CONFIRMED", "AUTO_RELEASED", "APPROVED"],
        alias="ORDER_ALLOWED_STATUSES",
    )

    # Rate limiting
    rate_limit_backend: Literal["memory", "redis"] = Field(default="memory", alias="RATE_LIMIT_BACKEND")
    rate_limit_per_minute: int = Field(default=60, alias="RATE_LIMIT_PER_MINUTE")
    rate_limit_per_hour: int = Field(default=300, alias="RATE_LIMIT_PER_HOUR")
    rate_limit_sweep_interval_seconds: float = Field(
        default=300.0,
        alias="RATE_LIMIT_SWEEP_INTERVAL_SECONDS",
    )
    redis_url: str = Field(default="redis://localhost:6379", alias="REDIS_URL")

    # Watermark renderer
    renderer_url: str | None = Field(default=None, alias="WATERMARK_RENDERER_URL")
    renderer_connect_timeout_seconds: float = Field(default=5.0, alias="RENDERER_CONNECT_TIMEOUT_SECONDS")
    renderer_read_timeout_seconds: float = Field(default=30.0, alias="RENDERER_READ_TIMEOUT_SECONDS")
    renderer_chunk_size: int = Field(default=64 * 1024, alias="RENDERER_CHUNK_SIZE")
    renderer_stream: bool = Field(default=True, alias="RENDERER_STREAM")
    renderer_failure_threshold: int = Field(default=5, alias="RENDERER_FAILURE_THRESHOLD")
    renderer_recovery_timeout_seconds: float = Field(
        default=60.0,
        alias="RENDERER_RECOVERY_TIMEOUT_SECONDS",
    )

    # Content keys and object storage
    content_key_prefix: str = Field(default="pack-content/", alias="CONTENT_KEY_PREFIX")
    storage_endpoint_url: str | None = Field(default=None, alias="STORAGE_ENDPOINT_URL")
    storage_region: str = Field(default="auto", alias="STORAGE_REGION")
    storage_access_key_id: str | None = Field(default=None, alias="STORAGE_ACCESS_KEY_ID")
    storage_secret_access_key: str | None = Field(default=None, alias="STORAGE_SECRET_ACCESS_KEY")
    storage_bucket: str = Field(default="pack-content-private", alias="STORAGE_BUCKET")
    presign_default_ttl_seconds: int = Field(default=3600, alias="PRESIGN_DEFAULT_TTL_SECONDS")
    presign_min_ttl_seconds: int = Field(default=60, alias="PRESIGN_MIN_TTL_SECONDS")
    presign_max_ttl_seconds: int = Field(default=3600, alias="PRESIGN_MAX_TTL_SECONDS")

    # CORS configuration for web frontend access
    cors_origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def max_access_age_seconds(self) -> float | None:
        """Return the order staleness cutoff in seconds, or None when disabled."""
        if self.order_max_access_age_days <= 0:
            return None
        return float(self.order_max_access_age_days) * 86_400


settings = Settings()  # type: ignore[call-arg]
