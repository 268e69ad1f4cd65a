"""Courier: signed outbound webhooks with durable retries.

Domain events (a booking cancelled, a payment succeeded) are pushed to the
HTTP endpoints businesses registered for them. Each request is signed with
HMAC-SHA256, failed deliveries are retried with exponential backoff, and
every attempt is tracked in a durable delivery record.

Quick Start:
    from courier import WebhookService
    from courier.storage import InMemoryDeliveryStore, InMemorySubscriptionStore

    async with WebhookService.create(
        InMemorySubscriptionStore(), InMemoryDeliveryStore()
    ) as webhooks:
        await webhooks.trigger(
            business_id="biz_123",
            event_type="booking.cancelled",
            payload={"bookingId": "b1"},
        )

Delivery is at-least-once: receivers must tolerate duplicates (use the
X-<Product>-Delivery-Id header) and verify the X-<Product>-Signature header
against the raw request body.
"""

__version__ = "0.1.0"

# Configuration
from .config import Settings, settings

# Exceptions
from .exceptions import (
    ConfigurationError,
    CourierError,
    InvalidTransitionError,
    NotFoundError,
    SigningError,
    StorageError,
    TransientStorageError,
    ValidationError,
)

# Logging
from .logging import (
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    logger,
    unbind_context,
)

# Models
from .models import (
    ALL_EVENT_TYPES,
    DeliveryOutcome,
    DeliveryRecord,
    DeliveryStatus,
    EventType,
    Subscription,
    generate_secret,
)

# Service
from .service import WebhookService

# Webhooks
from .webhooks import (
    BackoffPolicy,
    RetryScheduler,
    WebhookDispatcher,
    WebhookSender,
    sign,
    verify_signature,
)

__all__ = [
    # Version
    "__version__",
    # Configuration
    "Settings",
    "settings",
    # Exceptions
    "CourierError",
    "ValidationError",
    "NotFoundError",
    "ConfigurationError",
    "SigningError",
    "StorageError",
    "TransientStorageError",
    "InvalidTransitionError",
    # Logging
    "configure_logging",
    "get_logger",
    "logger",
    "bind_context",
    "clear_context",
    "unbind_context",
    # Models
    "ALL_EVENT_TYPES",
    "EventType",
    "Subscription",
    "DeliveryOutcome",
    "DeliveryRecord",
    "DeliveryStatus",
    "generate_secret",
    # Delivery
    "BackoffPolicy",
    "RetryScheduler",
    "WebhookDispatcher",
    "WebhookSender",
    "WebhookService",
    "sign",
    "verify_signature",
]
