"""Configuration management for Courier."""

import logging
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Courier configuration loaded from environment variables.

    All settings can be overridden via environment variables with
    the COURIER_ prefix. For example:
        COURIER_HEADER_PREFIX=Acme
        COURIER_REQUEST_TIMEOUT_SECONDS=5

    Timing Notes:
        - The scheduler polls at least once per second so the first retry
          (1s backoff) is not delayed by a coarse sweep.
        - The claim timeout must outlive a full HTTP attempt, otherwise the
          scheduler could reclaim a record that is still in flight.
    """

    # Environment
    env: Literal["development", "production", "test"] = Field(
        default="development",
        description="Environment: development, production, or test",
    )

    # Outbound requests
    header_prefix: str = Field(
        default="Puncto",
        min_length=1,
        pattern=r"^[A-Za-z0-9-]+$",
        description="Product name used in X-<Product>-* request headers",
    )
    request_timeout_seconds: float = Field(
        default=10.0,
        gt=0.0,
        le=60.0,
        description="Hard timeout for a single delivery attempt",
    )
    response_body_max_bytes: int = Field(
        default=2048,
        ge=0,
        le=65536,
        description="Receiver response bodies are truncated to this many bytes before storage",
    )
    max_concurrent_deliveries: int = Field(
        default=10,
        ge=1,
        le=500,
        description="Maximum HTTP deliveries in flight at once",
    )

    # Retry policy
    max_attempts: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Delivery attempts before a record is marked failed",
    )
    backoff_initial_seconds: float = Field(
        default=1.0,
        gt=0.0,
        description="Delay before the first retry (doubles each attempt)",
    )
    backoff_max_seconds: float = Field(
        default=300.0,
        gt=0.0,
        description="Upper bound for the retry delay",
    )
    fail_fast_on_client_error: bool = Field(
        default=False,
        description=(
            "Treat 4xx responses (other than 408 and 429) as permanent and stop "
            "retrying immediately. When False every failure is retried up to max_attempts."
        ),
    )

    # Scheduler
    scheduler_poll_interval_seconds: float = Field(
        default=1.0,
        gt=0.0,
        le=1.0,
        description="Seconds between sweeps for due retries",
    )
    scheduler_batch_size: int = Field(
        default=100,
        ge=1,
        le=10000,
        description="Maximum due records fetched per sweep",
    )
    claim_timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        description=(
            "Lease taken on a record when an attempt starts. If the process dies "
            "mid-attempt the record becomes due again once the lease expires."
        ),
    )
    orphan_grace_seconds: float = Field(
        default=30.0,
        ge=0.0,
        description=(
            "Age after which a never-attempted pending record is picked up by the "
            "scheduler (covers a crash between record creation and the first attempt)"
        ),
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format",
    )

    model_config = {
        "env_prefix": "COURIER_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }

    @model_validator(mode="after")
    def validate_backoff_bounds(self) -> "Settings":
        """Validate that the backoff cap is not below the initial delay."""
        if self.backoff_max_seconds < self.backoff_initial_seconds:
            raise ValueError(
                f"backoff_max_seconds ({self.backoff_max_seconds}) must be at least "
                f"backoff_initial_seconds ({self.backoff_initial_seconds})"
            )
        return self

    @model_validator(mode="after")
    def validate_claim_timeout(self) -> "Settings":
        """Validate that a claim outlives the HTTP attempt it protects."""
        if self.claim_timeout_seconds <= self.request_timeout_seconds:
            raise ValueError(
                f"claim_timeout_seconds ({self.claim_timeout_seconds}) must be greater than "
                f"request_timeout_seconds ({self.request_timeout_seconds})"
            )
        return self


# Global settings instance
settings = Settings()
