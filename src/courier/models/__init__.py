"""Data models for Courier.

Models:
    - Subscription: A business's registered webhook endpoint
    - DeliveryRecord: Durable state of one event delivered to one subscription
    - DeliveryOutcome: Classified result of a single HTTP attempt
"""

from .base import generate_id, utc_now
from .delivery import TERMINAL_STATUSES, DeliveryOutcome, DeliveryRecord, DeliveryStatus
from .subscription import (
    ALL_EVENT_TYPES,
    EventType,
    Subscription,
    generate_secret,
    is_event_type,
)

__all__ = [
    # Helpers
    "generate_id",
    "generate_secret",
    "is_event_type",
    "utc_now",
    # Subscriptions
    "ALL_EVENT_TYPES",
    "EventType",
    "Subscription",
    # Deliveries
    "TERMINAL_STATUSES",
    "DeliveryOutcome",
    "DeliveryRecord",
    "DeliveryStatus",
]
