"""Order ledger adapters and the order access validator."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from datetime import datetime
from threading import Lock
from typing import Any, Protocol

from firebase_admin import firestore
from google.api_core import exceptions as google_exceptions
from google.cloud.firestore_v1.base_query import FieldFilter
from starlette.concurrency import run_in_threadpool

from pack_vault.core.firebase import get_firebase_app
from pack_vault.models import ACCESS_GRANTING_STATUSES, OrderRecord
from pack_vault.services.errors import UpstreamFailure

logger = logging.getLogger(__name__)

REASON_NO_VALID_ORDER = "no_valid_order"
REASON_ACCESS_EXPIRED = "access_expired"


class OrderLedger(Protocol):
    """Read access to the system of record for purchases."""

    async def find_orders(
        self,
        buyer_id: str,
        pack_id: str,
        order_id: str | None = None,
    ) -> list[OrderRecord]:
        """Return the buyer's orders for a pack, optionally narrowed to one order."""
        ...


class InMemoryOrderLedger:
    """Process-local ledger used for development and tests."""

    def __init__(self, orders: Iterable[OrderRecord] = ()) -> None:
        self._orders: dict[str, OrderRecord] = {}
        self._lock = Lock()
        for order in orders:
            self.add(order)

    def add(self, order: OrderRecord) -> None:
        with self._lock:
            self._orders[order.order_id] = order

    def set_status(self, order_id: str, status: str) -> None:
        """Change an order's status, e.g. to simulate a dispute."""
        with self._lock:
            self._orders[order_id] = replace(self._orders[order_id], status=status)

    async def find_orders(
        self,
        buyer_id: str,
        pack_id: str,
        order_id: str | None = None,
    ) -> list[OrderRecord]:
        with self._lock:
            orders = list(self._orders.values())
        return [
            order
            for order in orders
            if order.buyer_id == buyer_id
            and order.pack_id == pack_id
            and (order_id is None or order.order_id == order_id)
        ]


def _order_from_document(order_id: str, data: dict[str, Any]) -> OrderRecord:
    timestamps = data.get("timestamps") or {}
    created_at = timestamps.get("createdAt") or data.get("createdAt")
    return OrderRecord(
        order_id=order_id,
        buyer_id=str(data.get("buyerId", "")),
        pack_id=str(data.get("packId", "")),
        status=str(data.get("status", "")),
        created_at=created_at if isinstance(created_at, datetime) else None,
        vendor_id=str(data.get("vendorId") or data.get("sellerId") or ""),
        vendor_username=str(data.get("vendorUsername") or data.get("sellerUsername") or "vendor"),
    )


class FirestoreOrderLedger:
    """Query pack orders stored in a Firestore collection."""

    def __init__(
        self,
        collection: str = "packOrders",
        *,
        project_id: str | None = None,
        credentials_file: str | None = None,
    ) -> None:
        self._collection = collection
        self._project_id = project_id
        self._credentials_file = credentials_file

    def _find_sync(self, buyer_id: str, pack_id: str, order_id: str | None) -> list[OrderRecord]:
        app = get_firebase_app(self._project_id, self._credentials_file)
        collection = firestore.client(app).collection(self._collection)

        if order_id:
            snapshot = collection.document(order_id).get()
            if not snapshot.exists:
                return []
            order = _order_from_document(snapshot.id, snapshot.to_dict() or {})
            if order.buyer_id != buyer_id or order.pack_id != pack_id:
                return []
            return [order]

        query = collection.where(filter=FieldFilter("buyerId", "==", buyer_id)).where(
            filter=FieldFilter("packId", "==", pack_id)
        )
        return [_order_from_document(doc.id, doc.to_dict() or {}) for doc in query.stream()]

    async def find_orders(
        self,
        buyer_id: str,
        pack_id: str,
        order_id: str | None = None,
    ) -> list[OrderRecord]:
        try:
            return await run_in_threadpool(self._find_sync, buyer_id, pack_id, order_id)
        except google_exceptions.GoogleAPICallError as err:
            logger.warning("Order ledger query failed for pack %s: %s", pack_id, err)
            raise UpstreamFailure("order_ledger_unavailable") from err


@dataclass(frozen=True)
class AccessDecision:
    """Outcome of an order access check."""

    granted: bool
    order: OrderRecord | None = None
    reason: str | None = None


def _created_sort_key(order: OrderRecord) -> float:
    return order.created_at.timestamp() if order.created_at else float("-inf")


class OrderAccessValidator:
    """Confirm a buyer holds a valid, non-stale purchase of a pack.

    Results are never cached: ledger status can change between requests
    (a dispute or cancellation must revoke access immediately).
    """

    def __init__(
        self,
        ledger: OrderLedger,
        *,
        allowed_statuses: Iterable[str] = ACCESS_GRANTING_STATUSES,
        max_access_age_seconds: float | None = 90 * 86_400,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._ledger = ledger
        self._allowed_statuses = frozenset(allowed_statuses)
        self._max_access_age_seconds = max_access_age_seconds
        self._clock = clock

    async def check_access(
        self,
        user_id: str,
        pack_id: str,
        order_id: str | None = None,
    ) -> AccessDecision:
        """Return whether ``user_id`` may access ``pack_id`` (through ``order_id``)."""
        orders = await self._ledger.find_orders(user_id, pack_id, order_id)
        valid = [
            order
            for order in orders
            if order.buyer_id == user_id
            and order.pack_id == pack_id
            and order.status in self._allowed_statuses
        ]
        if not valid:
            return AccessDecision(granted=False, reason=REASON_NO_VALID_ORDER)

        selected = max(valid, key=_created_sort_key)

        if self._max_access_age_seconds is not None and selected.created_at is not None:
            age = self._clock() - selected.created_at.timestamp()
            if age > self._max_access_age_seconds:
                return AccessDecision(granted=False, order=selected, reason=REASON_ACCESS_EXPIRED)

        return AccessDecision(granted=True, order=selected)
