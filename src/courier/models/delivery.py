"""Delivery record model and its state machine.

One DeliveryRecord exists per (event occurrence, subscription) pair. It
starts pending with zero attempts and ends in exactly one terminal status:

    pending --attempt ok--------------------> success
    pending --attempt failed, attempts < max--> pending (next_retry_at set)
    pending --attempt failed, attempts = max--> failed
    pending --abandon------------------------> failed

A failed record normally has attempts == max_attempts. The exceptions are a
permanent outcome (fail-fast client errors, off by default) and an abandoned
record: its subscription was deleted, deactivated or found misconfigured
before a retry, or a leased final attempt never reported back. last_error
then names the reason. Nothing leaves success or failed.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from courier.exceptions import InvalidTransitionError

from .base import generate_id, utc_now
from .subscription import EventType

if TYPE_CHECKING:
    from courier.webhooks.backoff import BackoffPolicy

DeliveryStatus = Literal["pending", "success", "failed"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"success", "failed"})


class DeliveryOutcome(BaseModel):
    """Classified result of a single HTTP delivery attempt.

    Attributes:
        success: Whether the receiver acknowledged with a 2xx response.
        response_code: HTTP status, None when no response was received.
        response_body: Truncated response body, if any.
        error: Failure description, None on success.
        permanent: Whether retrying cannot help (fail-fast client errors).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    success: bool
    response_code: int | None = None
    response_body: str | None = None
    error: str | None = None
    permanent: bool = False

    @classmethod
    def succeeded(cls, response_code: int, response_body: str | None = None) -> DeliveryOutcome:
        """Create an outcome for an acknowledged delivery."""
        return cls(success=True, response_code=response_code, response_body=response_body)

    @classmethod
    def failed(
        cls,
        error: str,
        response_code: int | None = None,
        response_body: str | None = None,
        permanent: bool = False,
    ) -> DeliveryOutcome:
        """Create an outcome for a rejected or unreachable delivery."""
        return cls(
            success=False,
            response_code=response_code,
            response_body=response_body,
            error=error,
            permanent=permanent,
        )


class DeliveryRecord(BaseModel):
    """Durable state of one event being delivered to one subscription.

    Attributes:
        id: Unique identifier, also sent to receivers for de-duplication.
        subscription_id: Subscription being delivered to.
        business_id: Business that owns the subscription.
        event_type: Event being delivered.
        payload: Event body. Fixed at creation.
        status: pending, success or failed.
        attempts: Attempts started so far.
        max_attempts: Attempt budget, fixed at creation.
        next_retry_at: When the record is next due. While an attempt is in
            flight this holds the claim expiry.
        last_error: Most recent failure description.
        response_code: Most recent HTTP status received.
        response_body: Most recent response body (truncated).
        created_at: When the record was created.
        updated_at: When the record last changed.
        delivered_at: When the receiver acknowledged delivery.
        version: Optimistic concurrency token, bumped by the store on every write.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("dlv"))
    subscription_id: str = Field(description="Subscription being delivered to")
    business_id: str = Field(description="Business that owns the subscription")
    event_type: EventType = Field(description="Event type being delivered")
    payload: dict[str, Any] = Field(
        default_factory=dict,
        frozen=True,
        description="Event payload, immutable once created",
    )
    status: DeliveryStatus = Field(default="pending")
    attempts: int = Field(default=0, ge=0)
    max_attempts: int = Field(default=5, ge=1)
    next_retry_at: datetime | None = Field(default=None)
    last_error: str | None = Field(default=None)
    response_code: int | None = Field(default=None)
    response_body: str | None = Field(default=None)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    delivered_at: datetime | None = Field(default=None)
    version: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _check_invariants(self) -> DeliveryRecord:
        """Reject records that no valid transition sequence could produce.

        A failed record may have attempts < max_attempts. abandon() and
        permanent outcomes (fail-fast client errors) both produce one.
        """
        if self.attempts > self.max_attempts:
            raise ValueError(
                f"attempts ({self.attempts}) cannot exceed max_attempts ({self.max_attempts})"
            )
        if self.status == "success":
            if self.delivered_at is None:
                raise ValueError("successful delivery must have delivered_at")
            if self.next_retry_at is not None:
                raise ValueError("successful delivery cannot have next_retry_at")
        if self.status == "failed" and self.next_retry_at is not None:
            raise ValueError("failed delivery cannot have next_retry_at")
        if self.status == "pending" and self.attempts > 0 and self.next_retry_at is None:
            raise ValueError("attempted pending delivery must have next_retry_at")
        return self

    @property
    def is_terminal(self) -> bool:
        """Whether the record reached success or failed."""
        return self.status in TERMINAL_STATUSES

    @property
    def attempts_remaining(self) -> int:
        return self.max_attempts - self.attempts

    def is_due(self, now: datetime) -> bool:
        """Check if the record may be attempted at the given time."""
        if self.is_terminal:
            return False
        return self.next_retry_at is None or self.next_retry_at <= now

    def begin_attempt(self, now: datetime, claim_timeout: timedelta) -> DeliveryRecord:
        """Start an attempt: count it and lease the record.

        The lease is written to next_retry_at, so a record whose worker
        disappears becomes due again once the lease runs out.

        Raises:
            InvalidTransitionError: If the record is terminal or out of attempts.
        """
        if self.is_terminal:
            raise InvalidTransitionError(self.id, self.status, "record is terminal")
        if self.attempts_remaining <= 0:
            raise InvalidTransitionError(self.id, self.status, "no attempts remaining")
        self.attempts += 1
        self.next_retry_at = now + claim_timeout
        self.updated_at = now
        return self

    def apply_outcome(
        self,
        outcome: DeliveryOutcome,
        backoff: BackoffPolicy,
        now: datetime,
    ) -> bool:
        """Advance the state machine with the result of the current attempt.

        Args:
            outcome: Classified result from the sender.
            backoff: Policy giving the wait before the next attempt.
            now: Time the attempt finished.

        Returns:
            True if the record changed, False if it was already terminal.

        Raises:
            InvalidTransitionError: If no attempt was ever started.
        """
        if self.is_terminal:
            return False
        if self.attempts == 0:
            raise InvalidTransitionError(self.id, self.status, "no attempt in progress")

        self.response_code = outcome.response_code
        self.response_body = outcome.response_body
        self.updated_at = now

        if outcome.success:
            self.status = "success"
            self.delivered_at = now
            self.next_retry_at = None
            return True

        self.last_error = outcome.error
        if outcome.permanent or self.attempts >= self.max_attempts:
            self.status = "failed"
            self.next_retry_at = None
        else:
            self.next_retry_at = now + backoff.next_delay(self.attempts)
        return True

    def abandon(self, reason: str, now: datetime) -> bool:
        """Fail the record without another attempt.

        Used when the subscription disappeared or was disabled, or when a
        final attempt was interrupted before reporting back.

        Returns:
            True if the record changed, False if it was already terminal.
        """
        if self.is_terminal:
            return False
        self.status = "failed"
        self.last_error = reason
        self.next_retry_at = None
        self.updated_at = now
        return True


__all__ = [
    "TERMINAL_STATUSES",
    "DeliveryOutcome",
    "DeliveryRecord",
    "DeliveryStatus",
]
