"""Webhook delivery for Courier.

Provides HMAC-signed webhook delivery with exponential backoff and a
durable retry scheduler.

Example:
    ```python
    from courier.webhooks import RetryScheduler, WebhookDispatcher

    dispatcher = WebhookDispatcher(subscriptions, deliveries)
    scheduler = RetryScheduler(dispatcher, deliveries)
    scheduler.start()

    await dispatcher.trigger("biz_1", "payment.succeeded", {"paymentId": "p1"})
    ```
"""

from .backoff import BackoffPolicy
from .dispatcher import WebhookDispatcher
from .scheduler import RetryScheduler
from .sender import WebhookSender, build_headers, format_timestamp
from .signing import serialize_payload, sign, verify_signature

__all__ = [
    "BackoffPolicy",
    "RetryScheduler",
    "WebhookDispatcher",
    "WebhookSender",
    "build_headers",
    "format_timestamp",
    "serialize_payload",
    "sign",
    "verify_signature",
]
