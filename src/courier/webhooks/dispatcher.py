"""Webhook dispatch: fan-out, delivery records and the attempt cycle.

Delivery is at-least-once. Every attempt on a record is preceded by a
version-checked claim, so an eager first attempt and a scheduler sweep can
never both drive the same record forward.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from pydantic_core import PydanticSerializationError

from courier.exceptions import (
    ConfigurationError,
    InvalidTransitionError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from courier.logging import get_logger
from courier.models import DeliveryRecord, is_event_type, utc_now
from courier.storage.retry import store_retry

from .backoff import BackoffPolicy
from .sender import WebhookSender, build_headers
from .signing import serialize_payload, sign

if TYPE_CHECKING:
    from structlog.stdlib import BoundLogger

    from courier.config import Settings
    from courier.models import Subscription
    from courier.storage import DeliveryStore, SubscriptionStore

logger = get_logger(__name__)


class WebhookDispatcher:
    """Dispatches events to subscribed webhooks and drives each delivery.

    Handles:
    - Finding active subscriptions for an event
    - Creating one delivery record per subscription
    - Running the first attempt eagerly, one task per subscription
    - Claiming, signing, sending and recording each attempt

    Retries after the first attempt are driven by RetryScheduler, which calls
    process_delivery for records that have come due.

    Example:
        ```python
        dispatcher = WebhookDispatcher(subscriptions, deliveries)

        # Returns as soon as records exist; attempts run in the background
        ids = await dispatcher.trigger("biz_1", "booking.cancelled", {"bookingId": "b1"})

        # On shutdown
        await dispatcher.aclose()
        ```
    """

    def __init__(
        self,
        subscriptions: SubscriptionStore,
        deliveries: DeliveryStore,
        sender: WebhookSender | None = None,
        backoff: BackoffPolicy | None = None,
        *,
        header_prefix: str = "Puncto",
        max_attempts: int = 5,
        max_concurrent: int = 10,
        claim_timeout_seconds: float = 30.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            subscriptions: Store to read subscriptions from.
            deliveries: Store for delivery records.
            sender: HTTP sender. Defaults to a WebhookSender with a 10s timeout.
            backoff: Retry delay policy. Defaults to 1s doubling, capped at 5min.
            header_prefix: Product name used in X-<Product>-* headers.
            max_attempts: Attempt budget stamped on new records.
            max_concurrent: Maximum HTTP attempts in flight.
            claim_timeout_seconds: Lease taken on a record while an attempt runs.
            clock: Source of the current time.
        """
        self._subscriptions = subscriptions
        self._deliveries = deliveries
        self._sender = sender or WebhookSender()
        self._backoff = backoff or BackoffPolicy()
        self._header_prefix = header_prefix
        self._max_attempts = max_attempts
        self._max_concurrent = max_concurrent
        self._claim_timeout = timedelta(seconds=claim_timeout_seconds)
        self._clock = clock
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._tasks: dict[asyncio.Task[DeliveryRecord | None], str] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        subscriptions: SubscriptionStore,
        deliveries: DeliveryStore,
        sender: WebhookSender | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> WebhookDispatcher:
        """Create a dispatcher configured from settings."""
        return cls(
            subscriptions,
            deliveries,
            sender=sender or WebhookSender.from_settings(settings),
            backoff=BackoffPolicy.from_settings(settings),
            header_prefix=settings.header_prefix,
            max_attempts=settings.max_attempts,
            max_concurrent=settings.max_concurrent_deliveries,
            claim_timeout_seconds=settings.claim_timeout_seconds,
            clock=clock,
        )

    @property
    def backoff(self) -> BackoffPolicy:
        return self._backoff

    @property
    def in_flight(self) -> int:
        """Number of eager delivery tasks not yet finished."""
        return len(self._tasks)

    async def trigger(
        self,
        business_id: str,
        event_type: str,
        payload: Mapping[str, Any],
    ) -> list[str]:
        """Fan an event out to every active subscription of a business.

        Creates a pending delivery record per subscription and starts the
        first attempt for each in its own task. Returns without waiting for
        any HTTP call. Delivery and store failures are logged, never raised.

        Args:
            business_id: Business the event belongs to.
            event_type: Event type, e.g. "booking.cancelled".
            payload: JSON-serializable event body.

        Returns:
            Ids of the delivery records created.

        Raises:
            ValidationError: If event_type is unknown or payload cannot be serialized.
        """
        if not is_event_type(event_type):
            raise ValidationError("event_type", f"unknown event type {event_type!r}")
        try:
            serialize_payload(payload)
        except (PydanticSerializationError, TypeError, ValueError) as e:
            raise ValidationError("payload", f"not JSON-serializable: {e}") from e

        log = logger.bind(business_id=business_id, event_type=event_type)

        try:
            subscriptions = await self._subscriptions.list_active_for_event(
                business_id, event_type
            )
        except Exception:
            log.exception("Failed to load subscriptions, event not dispatched")
            return []

        if not subscriptions:
            log.debug("No subscriptions for event")
            return []

        results = await asyncio.gather(
            *(self._enqueue(s, event_type, payload, log) for s in subscriptions)
        )
        delivery_ids = [delivery_id for delivery_id in results if delivery_id is not None]

        log.info(
            "Event dispatched",
            subscriptions=len(subscriptions),
            deliveries=len(delivery_ids),
        )
        return delivery_ids

    async def redeliver(self, delivery_id: str) -> str:
        """Replay a finished delivery as a new record.

        The new record carries the same subscription, event type and payload,
        with a fresh attempt budget. Useful once a receiver has been fixed.

        Args:
            delivery_id: Terminal delivery to replay.

        Returns:
            Id of the new delivery record.

        Raises:
            NotFoundError: If the delivery or its subscription no longer exists.
            InvalidTransitionError: If the delivery is still pending.
            ConfigurationError: If the subscription is inactive or misconfigured.
        """
        original = await self._deliveries.get(delivery_id)
        if original is None:
            raise NotFoundError("delivery", delivery_id)
        if not original.is_terminal:
            raise InvalidTransitionError(
                original.id, original.status, "only finished deliveries can be replayed"
            )

        subscription = await self._subscriptions.get(
            original.subscription_id, original.business_id
        )
        if subscription is None:
            raise NotFoundError("subscription", original.subscription_id)
        if not subscription.active:
            raise ConfigurationError(f"Subscription {subscription.id} is inactive")
        subscription.validate_endpoint()

        record = self._new_record(subscription, original.event_type, original.payload)
        await self._create(record)
        self._spawn(record.id)

        logger.info(
            "Delivery replayed",
            business_id=record.business_id,
            subscription_id=record.subscription_id,
            original_delivery_id=original.id,
            delivery_id=record.id,
        )
        return record.id

    async def process_delivery(
        self,
        delivery_id: str,
        now: datetime | None = None,
    ) -> DeliveryRecord | None:
        """Run one attempt on a record if it is due.

        Claims the record (attempts += 1, lease written with compare-and-update),
        signs and sends the payload, then records the outcome. Safe to call
        concurrently for the same id: only one caller wins the claim.

        Args:
            delivery_id: Record to attempt.
            now: Time used to decide whether the record is due. Defaults to the clock.

        Returns:
            The record after this call, unchanged if it was terminal or not due.
            None if the record is missing, another worker holds it, or the store failed.
        """
        log = logger.bind(delivery_id=delivery_id)
        try:
            # The claim is taken only once a send slot is free, so a lease never
            # runs out while the attempt is still queued
            async with self._semaphore:
                return await self._process(delivery_id, now or self._clock(), log)
        except (StorageError, NotFoundError):
            log.exception("Failed to persist delivery state")
            return None

    async def drain(self) -> None:
        """Wait until every eager delivery task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        """Finish outstanding deliveries before shutdown."""
        if self._tasks:
            logger.info("Waiting for in-flight deliveries", count=len(self._tasks))
        await self.drain()

    async def _enqueue(
        self,
        subscription: Subscription,
        event_type: str,
        payload: Mapping[str, Any],
        log: BoundLogger,
    ) -> str | None:
        """Create the record for one subscription and start its first attempt."""
        log = log.bind(subscription_id=subscription.id)

        if not subscription.subscribes_to(event_type):
            return None

        try:
            subscription.validate_endpoint()
        except ConfigurationError as e:
            log.warning("Skipping misconfigured subscription", reason=e.message)
            await self._flag(subscription, e.message, log)
            return None

        record = self._new_record(subscription, event_type, payload)
        try:
            await self._create(record)
        except Exception:
            # Enough context to replay by hand
            log.exception("Failed to persist delivery record", payload=dict(payload))
            return None

        self._spawn(record.id)
        return record.id

    async def _process(
        self,
        delivery_id: str,
        now: datetime,
        log: BoundLogger,
    ) -> DeliveryRecord | None:
        record = await self._deliveries.get(delivery_id)
        if record is None:
            log.warning("Delivery record not found")
            return None
        if not record.is_due(now):
            return record

        log = log.bind(
            business_id=record.business_id,
            subscription_id=record.subscription_id,
            event_type=record.event_type,
        )

        subscription = await self._subscriptions.get(record.subscription_id, record.business_id)
        if subscription is None:
            return await self._abandon(record, "Subscription not found", now, log)
        if not subscription.active:
            return await self._abandon(record, "Subscription is inactive", now, log)
        try:
            subscription.validate_endpoint()
        except ConfigurationError as e:
            await self._flag(subscription, e.message, log)
            return await self._abandon(record, f"Subscription misconfigured: {e.message}", now, log)

        if record.attempts_remaining == 0:
            # Leased final attempt whose worker never reported back
            return await self._abandon(record, "Final attempt did not complete", now, log)

        claimed_version = record.version
        record.begin_attempt(self._clock(), self._claim_timeout)
        if not await self._save(record, claimed_version):
            log.debug("Delivery claimed by another worker")
            return None

        log = log.bind(attempt=record.attempts, max_attempts=record.max_attempts)

        body = serialize_payload(record.payload)
        headers = build_headers(
            prefix=self._header_prefix,
            event_type=record.event_type,
            signature=sign(subscription.secret.get_secret_value(), body),
            delivery_id=record.id,
            timestamp=self._clock(),
        )

        outcome = await self._sender.send(subscription.url, headers, body)

        attempt_version = record.version
        record.apply_outcome(outcome, self._backoff, self._clock())
        if not await self._save(record, attempt_version):
            log.warning("Delivery outcome discarded, claim expired before completion")
            return None

        if record.status == "success":
            log.info("Webhook delivered", response_code=record.response_code)
        elif record.status == "failed":
            log.warning(
                "Webhook delivery failed permanently",
                response_code=record.response_code,
                error=record.last_error,
            )
        else:
            log.info(
                "Webhook delivery scheduled for retry",
                response_code=record.response_code,
                error=record.last_error,
                next_retry_at=record.next_retry_at.isoformat() if record.next_retry_at else None,
            )
        return record

    async def _abandon(
        self,
        record: DeliveryRecord,
        reason: str,
        now: datetime,
        log: BoundLogger,
    ) -> DeliveryRecord | None:
        expected = record.version
        record.abandon(reason, now)
        if not await self._save(record, expected):
            return None
        log.warning("Delivery abandoned", reason=reason)
        return record

    async def _flag(self, subscription: Subscription, reason: str, log: BoundLogger) -> None:
        try:
            await self._subscriptions.flag_misconfigured(
                subscription.id, subscription.business_id, reason
            )
        except Exception:
            log.exception("Failed to flag misconfigured subscription")

    def _new_record(
        self,
        subscription: Subscription,
        event_type: str,
        payload: Mapping[str, Any],
    ) -> DeliveryRecord:
        now = self._clock()
        return DeliveryRecord(
            subscription_id=subscription.id,
            business_id=subscription.business_id,
            event_type=event_type,
            payload=dict(payload),
            max_attempts=self._max_attempts,
            created_at=now,
            updated_at=now,
        )

    def _spawn(self, delivery_id: str) -> None:
        task = asyncio.create_task(
            self.process_delivery(delivery_id),
            name=f"webhook-delivery-{delivery_id}",
        )
        self._tasks[task] = delivery_id
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task[DeliveryRecord | None]) -> None:
        delivery_id = self._tasks.pop(task, None)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Delivery task crashed", delivery_id=delivery_id, exc_info=exc)

    @store_retry
    async def _create(self, record: DeliveryRecord) -> str:
        return await self._deliveries.create(record)

    @store_retry
    async def _save(self, record: DeliveryRecord, expected_version: int) -> bool:
        return await self._deliveries.compare_and_update(record, expected_version)
