# src/pack_vault/models/__init__.py
"""Domain value objects for the Pack Vault service."""

from .access import CLAIM_FIELDS, AccessClaim, Identity
from .order import ACCESS_GRANTING_STATUSES, OrderRecord, OrderStatus

__all__ = [
    "AccessClaim", "CLAIM_FIELDS", "Identity",
    "ACCESS_GRANTING_STATUSES", "OrderRecord", "OrderStatus",
]
