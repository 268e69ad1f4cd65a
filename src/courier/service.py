"""High-level webhook service.

Wires settings, stores, sender, dispatcher and retry scheduler together and
exposes the one operation event producers need: trigger.

Example:
    ```python
    from courier.service import WebhookService
    from courier.storage import InMemoryDeliveryStore, InMemorySubscriptionStore

    async with WebhookService.create(
        InMemorySubscriptionStore(), InMemoryDeliveryStore()
    ) as webhooks:
        await webhooks.trigger("biz_1", "booking.cancelled", {"bookingId": "b1"})
    ```
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

import httpx

from courier.config import Settings
from courier.exceptions import NotFoundError
from courier.logging import configure_logging, get_logger
from courier.webhooks import RetryScheduler, WebhookDispatcher, WebhookSender

if TYPE_CHECKING:
    from courier.models import DeliveryRecord, DeliveryStatus
    from courier.storage import DeliveryStore, SubscriptionStore

logger = get_logger(__name__)


class WebhookService:
    """Outbound webhook delivery with durable retries.

    Owns a shared HTTP client and the retry scheduler's background task.
    Use as an async context manager, or call initialize() and close().
    """

    def __init__(
        self,
        settings: Settings,
        subscriptions: SubscriptionStore,
        deliveries: DeliveryStore,
        dispatcher: WebhookDispatcher,
        scheduler: RetryScheduler,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings
        self.subscriptions = subscriptions
        self.deliveries = deliveries
        self.dispatcher = dispatcher
        self.scheduler = scheduler
        self._http_client = http_client

    @classmethod
    def create(
        cls,
        subscriptions: SubscriptionStore,
        deliveries: DeliveryStore,
        settings: Settings | None = None,
    ) -> WebhookService:
        """Create a WebhookService with default dependencies.

        Args:
            subscriptions: Subscription store to read from.
            deliveries: Delivery record store.
            settings: Optional settings. Loaded from the environment if None.

        Returns:
            Configured, not yet started, WebhookService.
        """
        if settings is None:
            settings = Settings()

        http_client = httpx.AsyncClient(
            timeout=settings.request_timeout_seconds,
            limits=httpx.Limits(max_connections=settings.max_concurrent_deliveries),
        )
        sender = WebhookSender.from_settings(settings, client=http_client)
        dispatcher = WebhookDispatcher.from_settings(
            settings, subscriptions, deliveries, sender=sender
        )
        scheduler = RetryScheduler.from_settings(settings, dispatcher, deliveries)

        return cls(
            settings=settings,
            subscriptions=subscriptions,
            deliveries=deliveries,
            dispatcher=dispatcher,
            scheduler=scheduler,
            http_client=http_client,
        )

    async def initialize(self) -> None:
        """Configure logging and start the retry scheduler."""
        configure_logging(level=self.settings.log_level, format=self.settings.log_format)
        self.scheduler.start()
        logger.info(
            "Webhook service started",
            env=self.settings.env,
            max_attempts=self.settings.max_attempts,
            poll_interval=self.settings.scheduler_poll_interval_seconds,
        )

    async def close(self) -> None:
        """Stop the scheduler, finish in-flight attempts and release the HTTP client."""
        await self.scheduler.stop()
        await self.dispatcher.aclose()
        if self._http_client is not None:
            await self._http_client.aclose()
        logger.info("Webhook service stopped")

    async def __aenter__(self) -> WebhookService:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def trigger(
        self,
        business_id: str,
        event_type: str,
        payload: Mapping[str, Any],
    ) -> list[str]:
        """Publish an event to a business's webhooks. See WebhookDispatcher.trigger."""
        return await self.dispatcher.trigger(business_id, event_type, payload)

    async def redeliver(self, delivery_id: str) -> str:
        """Replay a finished delivery. See WebhookDispatcher.redeliver."""
        return await self.dispatcher.redeliver(delivery_id)

    async def get_delivery(self, delivery_id: str) -> DeliveryRecord:
        """Fetch a delivery record.

        Raises:
            NotFoundError: If no such delivery exists.
        """
        record = await self.deliveries.get(delivery_id)
        if record is None:
            raise NotFoundError("delivery", delivery_id)
        return record

    async def list_deliveries(
        self,
        business_id: str,
        status: DeliveryStatus | None = None,
        limit: int = 100,
    ) -> list[DeliveryRecord]:
        """List a business's deliveries, newest first."""
        return await self.deliveries.list_for_business(business_id, status=status, limit=limit)
