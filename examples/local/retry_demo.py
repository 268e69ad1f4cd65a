#!/usr/bin/env python3
"""Webhook delivery and retry demo.

Demonstrates Courier's delivery pipeline end to end:

- One delivery record per subscription, first attempt sent immediately
- HMAC-SHA256 signature over the exact bytes sent
- Failed attempts retried by the scheduler with exponential backoff
- Permanent failure once the attempt budget is spent

No external dependencies required - the receivers are in-process mock transports.
"""

import asyncio

import httpx

from courier.config import Settings
from courier.models import Subscription
from courier.service import WebhookService
from courier.storage import InMemoryDeliveryStore, InMemorySubscriptionStore
from courier.webhooks import (
    RetryScheduler,
    WebhookDispatcher,
    WebhookSender,
    verify_signature,
)

SECRET = "demo-secret"


def make_receiver(name: str, statuses: list[int]) -> httpx.MockTransport:
    """Receiver answering with the given statuses, repeating the last one."""

    def handle(request: httpx.Request) -> httpx.Response:
        status = statuses.pop(0) if len(statuses) > 1 else statuses[0]
        valid = verify_signature(SECRET, request.content, request.headers["X-Puncto-Signature"])
        event = request.headers["X-Puncto-Event"]
        print(f"  [{name}] {event} -> HTTP {status} (signature ok: {valid})")
        return httpx.Response(status, text="ok" if status < 400 else "unavailable")

    return httpx.MockTransport(handle)


class RoutingTransport(httpx.AsyncBaseTransport):
    """Dispatch requests to a mock receiver by host."""

    def __init__(self, receivers: dict[str, httpx.MockTransport]) -> None:
        self._receivers = receivers

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        return await self._receivers[request.url.host].handle_async_request(request)


async def main() -> None:
    print("=" * 70)
    print("Courier Webhook Delivery Demo")
    print("=" * 70)

    subscriptions = InMemorySubscriptionStore()
    deliveries = InMemoryDeliveryStore()
    for name in ("healthy", "flaky", "down"):
        await subscriptions.add(
            Subscription(
                id=f"whk_{name}",
                business_id="biz_demo",
                url=f"https://{name}.example.com/hooks",
                secret=SECRET,
                events={"booking.cancelled"},
            )
        )

    settings = Settings(
        _env_file=None,
        backoff_initial_seconds=0.1,
        backoff_max_seconds=1,
        scheduler_poll_interval_seconds=0.05,
        max_attempts=4,
        log_level="WARNING",
        log_format="text",
    )
    # In-process receivers instead of the network
    client = httpx.AsyncClient(
        transport=RoutingTransport(
            {
                "healthy.example.com": make_receiver("healthy", [200]),
                "flaky.example.com": make_receiver("flaky", [503, 502, 200]),
                "down.example.com": make_receiver("down", [500]),
            }
        )
    )
    sender = WebhookSender.from_settings(settings, client=client)
    dispatcher = WebhookDispatcher.from_settings(settings, subscriptions, deliveries, sender=sender)
    scheduler = RetryScheduler.from_settings(settings, dispatcher, deliveries)
    service = WebhookService(settings, subscriptions, deliveries, dispatcher, scheduler, client)

    print("\n1. TRIGGER booking.cancelled")
    print("-" * 70)
    async with service:
        ids = await service.trigger("biz_demo", "booking.cancelled", {"bookingId": "bk_42"})
        print(f"  Created {len(ids)} delivery records, attempts run in the background\n")
        # 0.1 + 0.2 + 0.4 seconds of backoff plus polling slack
        await asyncio.sleep(1.5)

    print("\n2. FINAL DELIVERY STATE")
    print("-" * 70)
    for record in await service.list_deliveries("biz_demo"):
        print(
            f"  {record.subscription_id:<12} {record.status:<8} "
            f"attempts={record.attempts} last_error={record.last_error}"
        )


if __name__ == "__main__":
    asyncio.run(main())
