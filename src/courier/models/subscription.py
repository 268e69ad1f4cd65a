"""Webhook subscription model.

A subscription is a business's registration of an HTTP endpoint for a set
of event types. Courier only reads subscriptions; creating and editing them
belongs to the subscription store's owner.
"""

from __future__ import annotations

import secrets
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, SecretStr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from courier.exceptions import ConfigurationError

from .base import generate_id, utc_now

# Event types that can trigger webhooks
EventType = Literal[
    "booking.created",
    "booking.updated",
    "booking.cancelled",
    "booking.completed",
    "payment.succeeded",
    "payment.failed",
    "payment.refunded",
    "order.created",
    "order.updated",
    "order.paid",
    "customer.created",
    "customer.updated",
]

# All available event types for subscription
ALL_EVENT_TYPES: list[EventType] = [
    "booking.created",
    "booking.updated",
    "booking.cancelled",
    "booking.completed",
    "payment.succeeded",
    "payment.failed",
    "payment.refunded",
    "order.created",
    "order.updated",
    "order.paid",
    "customer.created",
    "customer.updated",
]

_http_url = TypeAdapter(HttpUrl)


def generate_secret() -> str:
    """Generate a signing secret for a new subscription.

    Returns:
        64 hex characters (32 random bytes).
    """
    return secrets.token_hex(32)


def is_event_type(value: str) -> bool:
    """Check whether a string names a known event type."""
    return value in ALL_EVENT_TYPES


class Subscription(BaseModel):
    """A registered webhook endpoint.

    The URL is stored as given and validated when the subscription is about
    to be used, so a misconfigured registration can be flagged instead of
    breaking every read of the store.

    Attributes:
        id: Unique identifier for this subscription.
        business_id: Business that owns the subscription.
        url: Absolute HTTP(S) endpoint receiving events.
        secret: Shared HMAC secret. Never serialized by public_dict().
        events: Event types this subscription receives.
        active: Whether deliveries should be attempted.
        description: Optional human-readable description.
        config_error: Reason the subscription was flagged as misconfigured.
        created_at: When the subscription was registered.
        updated_at: When the subscription was last modified.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("whk"))
    business_id: str = Field(description="Business that owns this subscription")
    url: str = Field(description="HTTP(S) endpoint to receive events")
    secret: SecretStr = Field(description="Shared secret for HMAC-SHA256 signatures")
    events: set[EventType] = Field(
        default_factory=lambda: set(ALL_EVENT_TYPES),
        description="Event types to subscribe to",
    )
    active: bool = Field(default=True, description="Whether the subscription is active")
    description: str | None = Field(default=None, description="Human-readable description")
    config_error: str | None = Field(
        default=None,
        description="Why the subscription was flagged as unusable",
    )
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def subscribes_to(self, event_type: str) -> bool:
        """Check if this subscription is active and receives the given event type."""
        return self.active and event_type in self.events

    def validate_endpoint(self) -> None:
        """Fail closed if the subscription cannot be delivered to.

        Raises:
            ConfigurationError: If the secret is empty or the URL is not an
                absolute http(s) URL.
        """
        if not self.secret.get_secret_value():
            raise ConfigurationError(f"Subscription {self.id} has an empty signing secret")
        try:
            _http_url.validate_python(self.url)
        except PydanticValidationError as e:
            raise ConfigurationError(
                f"Subscription {self.id} has an invalid URL: {self.url!r}"
            ) from e

    def public_dict(self) -> dict[str, Any]:
        """Serialize for display, without the secret."""
        data = self.model_dump(mode="json", exclude={"secret"})
        data["events"] = sorted(self.events)
        return data


__all__ = [
    "ALL_EVENT_TYPES",
    "EventType",
    "Subscription",
    "generate_secret",
    "is_event_type",
]
