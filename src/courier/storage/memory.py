"""In-memory subscription and delivery stores.

Suitable for tests and single-process deployments. Records are copied on the
way in and out, so callers never share mutable state with the store.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import TYPE_CHECKING

from courier.exceptions import NotFoundError, StorageError
from courier.models import utc_now

if TYPE_CHECKING:
    from courier.models import DeliveryRecord, DeliveryStatus, Subscription

logger = logging.getLogger(__name__)


class InMemorySubscriptionStore:
    """Subscription CRUD keyed by (business_id, subscription_id)."""

    def __init__(self) -> None:
        self._subscriptions: dict[tuple[str, str], Subscription] = {}
        self._lock = asyncio.Lock()

    async def add(self, subscription: Subscription) -> str:
        """Register a subscription.

        Raises:
            StorageError: If the id is already taken for this business.
        """
        key = (subscription.business_id, subscription.id)
        async with self._lock:
            if key in self._subscriptions:
                raise StorageError(f"Subscription already exists: {subscription.id}")
            self._subscriptions[key] = subscription.model_copy(deep=True)
        return subscription.id

    async def update(self, subscription: Subscription) -> None:
        """Replace an existing subscription.

        Raises:
            NotFoundError: If the subscription does not exist.
        """
        key = (subscription.business_id, subscription.id)
        async with self._lock:
            if key not in self._subscriptions:
                raise NotFoundError("subscription", subscription.id)
            stored = subscription.model_copy(deep=True)
            stored.updated_at = utc_now()
            self._subscriptions[key] = stored

    async def delete(self, subscription_id: str, business_id: str) -> bool:
        async with self._lock:
            return self._subscriptions.pop((business_id, subscription_id), None) is not None

    async def get(self, subscription_id: str, business_id: str) -> Subscription | None:
        stored = self._subscriptions.get((business_id, subscription_id))
        return stored.model_copy(deep=True) if stored is not None else None

    async def list_for_business(self, business_id: str) -> list[Subscription]:
        subscriptions = [
            s.model_copy(deep=True)
            for (owner, _), s in self._subscriptions.items()
            if owner == business_id
        ]
        subscriptions.sort(key=lambda s: s.created_at, reverse=True)
        return subscriptions

    async def list_active_for_event(
        self, business_id: str, event_type: str
    ) -> list[Subscription]:
        return [
            s.model_copy(deep=True)
            for (owner, _), s in self._subscriptions.items()
            if owner == business_id and s.subscribes_to(event_type)
        ]

    async def flag_misconfigured(
        self, subscription_id: str, business_id: str, reason: str
    ) -> None:
        async with self._lock:
            stored = self._subscriptions.get((business_id, subscription_id))
            if stored is None:
                return
            stored.config_error = reason
            stored.updated_at = utc_now()
        logger.warning(
            "Subscription flagged as misconfigured",
            extra={
                "business_id": business_id,
                "subscription_id": subscription_id,
                "reason": reason,
            },
        )


class InMemoryDeliveryStore:
    """Delivery records with version-checked updates.

    A single asyncio.Lock serializes writes, which makes compare_and_update
    atomic within one event loop.
    """

    def __init__(self) -> None:
        self._records: dict[str, DeliveryRecord] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._records)

    async def create(self, record: DeliveryRecord) -> str:
        async with self._lock:
            if record.id in self._records:
                raise StorageError(f"Delivery already exists: {record.id}")
            self._records[record.id] = record.model_copy(deep=True)
        return record.id

    async def get(self, delivery_id: str) -> DeliveryRecord | None:
        stored = self._records.get(delivery_id)
        return stored.model_copy(deep=True) if stored is not None else None

    async def compare_and_update(self, record: DeliveryRecord, expected_version: int) -> bool:
        async with self._lock:
            stored = self._records.get(record.id)
            if stored is None:
                raise NotFoundError("delivery", record.id)
            if stored.version != expected_version:
                return False
            record.version = expected_version + 1
            self._records[record.id] = record.model_copy(deep=True)
        return True

    async def list_due(
        self,
        now: datetime,
        limit: int = 100,
        created_before: datetime | None = None,
    ) -> list[DeliveryRecord]:
        due = [
            r
            for r in self._records.values()
            if r.is_due(now)
            and (created_before is None or r.attempts > 0 or r.created_at <= created_before)
        ]
        due.sort(key=lambda r: r.next_retry_at or r.created_at)
        return [r.model_copy(deep=True) for r in due[:limit]]

    async def list_for_business(
        self,
        business_id: str,
        status: DeliveryStatus | None = None,
        limit: int = 100,
    ) -> list[DeliveryRecord]:
        records = [
            r
            for r in self._records.values()
            if r.business_id == business_id and (status is None or r.status == status)
        ]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return [r.model_copy(deep=True) for r in records[:limit]]
