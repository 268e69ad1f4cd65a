"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

# Add tests directory to path so helpers can be imported
tests_dir = Path(__file__).parent
if str(tests_dir) not in sys.path:
    sys.path.insert(0, str(tests_dir))

from helpers import FakeClock  # noqa: E402

from courier.models import Subscription  # noqa: E402
from courier.storage import InMemoryDeliveryStore, InMemorySubscriptionStore  # noqa: E402


@pytest.fixture
def clock() -> FakeClock:
    """A clock frozen at 2026-01-01 12:00 UTC."""
    return FakeClock()


@pytest.fixture
def subscription_store() -> InMemorySubscriptionStore:
    """An empty subscription store."""
    return InMemorySubscriptionStore()


@pytest.fixture
def delivery_store() -> InMemoryDeliveryStore:
    """An empty delivery store."""
    return InMemoryDeliveryStore()


@pytest.fixture
def make_subscription() -> Callable[..., Subscription]:
    """Factory for subscriptions with sensible defaults."""

    def _make(**overrides: Any) -> Subscription:
        fields: dict[str, Any] = {
            "id": "whk_test123",
            "business_id": "biz_1",
            "url": "https://example.com/webhooks",
            "secret": "abc123",
            "events": {"booking.cancelled", "payment.succeeded"},
        }
        fields.update(overrides)
        return Subscription(**fields)

    return _make
