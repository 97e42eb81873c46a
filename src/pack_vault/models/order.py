# src/pack_vault/models/order.py
"""Read-only views of purchase records held by the order ledger."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class OrderStatus(str, Enum):
    """Lifecycle states a pack order can be in."""

    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    CONFIRMED = "CONFIRMED"
    AUTO_RELEASED = "AUTO_RELEASED"
    APPROVED = "APPROVED"
    CANCELLED = "CANCELLED"
    DISPUTED = "DISPUTED"


# Statuses that grant access to purchased content
ACCESS_GRANTING_STATUSES: frozenset[str] = frozenset(
    {
        OrderStatus.COMPLETED.value,
        OrderStatus.CONFIRMED.value,
        OrderStatus.AUTO_RELEASED.value,
        OrderStatus.APPROVED.value,
    }
)


@dataclass(frozen=True)
class OrderRecord:
    """A single purchase of a pack by a buyer.

    ``status`` is kept as the raw ledger string so unknown states coming from
    the ledger never grant access by accident.
    """

    order_id: str
    buyer_id: str
    pack_id: str
    status: str
    created_at: datetime | None = None
    vendor_id: str = ""
    vendor_username: str = "vendor"
