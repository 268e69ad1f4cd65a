"""Storage protocols consumed by the delivery pipeline.

Courier does not own persistence. Any backend works as long as it offers
these two capabilities; the in-memory implementations in
``courier.storage.memory`` are the reference.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from courier.models import DeliveryRecord, DeliveryStatus, Subscription


@runtime_checkable
class SubscriptionStore(Protocol):
    """Read access to webhook subscriptions, plus misconfiguration flagging."""

    async def list_active_for_event(
        self, business_id: str, event_type: str
    ) -> list[Subscription]:
        """Subscriptions of a business that are active and receive event_type."""
        ...

    async def get(self, subscription_id: str, business_id: str) -> Subscription | None:
        """Fetch one subscription, or None if it does not exist."""
        ...

    async def flag_misconfigured(
        self, subscription_id: str, business_id: str, reason: str
    ) -> None:
        """Record that a subscription cannot be delivered to, for its owner to fix."""
        ...


@runtime_checkable
class DeliveryStore(Protocol):
    """Durable delivery records with optimistic concurrency.

    Implementations must make compare_and_update atomic per record id: the
    write succeeds only if the stored version equals expected_version, and it
    stores the record with version expected_version + 1.
    """

    async def create(self, record: DeliveryRecord) -> str:
        """Persist a new record and return its id."""
        ...

    async def get(self, delivery_id: str) -> DeliveryRecord | None:
        """Fetch a record by id, or None."""
        ...

    async def compare_and_update(self, record: DeliveryRecord, expected_version: int) -> bool:
        """Write the record if nobody else changed it since expected_version.

        On success, record.version is set to the new stored version.

        Returns:
            True if written, False if the stored version differed.
        """
        ...

    async def list_due(
        self,
        now: datetime,
        limit: int = 100,
        created_before: datetime | None = None,
    ) -> list[DeliveryRecord]:
        """Pending records with no next_retry_at or next_retry_at <= now, oldest first.

        When created_before is given, records never attempted are only
        returned if they were created at or before it. The filter applies
        before limit.
        """
        ...

    async def list_for_business(
        self,
        business_id: str,
        status: DeliveryStatus | None = None,
        limit: int = 100,
    ) -> list[DeliveryRecord]:
        """Records of a business, newest first, optionally filtered by status."""
        ...
