"""Storage layer for Courier.

Courier reads subscriptions and persists delivery records through two
protocols. In-memory implementations are provided for tests and
single-process use.

Example:
    ```python
    from courier.storage import InMemoryDeliveryStore, InMemorySubscriptionStore

    subscriptions = InMemorySubscriptionStore()
    deliveries = InMemoryDeliveryStore()
    ```
"""

from .base import DeliveryStore, SubscriptionStore
from .memory import InMemoryDeliveryStore, InMemorySubscriptionStore
from .retry import store_retry

__all__ = [
    "DeliveryStore",
    "InMemoryDeliveryStore",
    "InMemorySubscriptionStore",
    "SubscriptionStore",
    "store_retry",
]
