# src/pack_vault/services/__init__.py
"""Business logic services for the Pack Vault application."""

from .delivery import DeliveryService
from .identity import CredentialVerifier
from .orders import OrderAccessValidator
from .rate_limit import RateLimiter
from .renderer import WatermarkRendererClient
from .tokens import CapabilityTokenCodec, IntegrityTokenCodec

__all__ = [
    "CapabilityTokenCodec",
    "CredentialVerifier",
    "DeliveryService",
    "IntegrityTokenCodec",
    "OrderAccessValidator",
    "RateLimiter",
    "WatermarkRendererClient",
]
