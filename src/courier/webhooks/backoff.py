"""Exponential backoff between delivery attempts.

delay(n) = min(initial_delay * 2 ** (n - 1), max_delay), where n is the
number of attempts already made. With the defaults: 1s, 2s, 4s, 8s, 16s, ...
capped at 5 minutes.

No jitter is applied, so retry times are reproducible.
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field, model_validator

if TYPE_CHECKING:
    from courier.config import Settings

# 2 ** 32 seconds is far past any sane cap; bounds the float math below
_MAX_EXPONENT = 32


class BackoffPolicy(BaseModel):
    """Deterministic exponential backoff.

    Attributes:
        initial_delay_seconds: Delay before the first retry.
        max_delay_seconds: Upper bound for any delay.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    initial_delay_seconds: float = Field(default=1.0, gt=0.0)
    max_delay_seconds: float = Field(default=300.0, gt=0.0)

    @model_validator(mode="after")
    def _check_bounds(self) -> BackoffPolicy:
        if self.max_delay_seconds < self.initial_delay_seconds:
            raise ValueError("max_delay_seconds must be at least initial_delay_seconds")
        return self

    @classmethod
    def from_settings(cls, settings: Settings) -> BackoffPolicy:
        """Build the policy configured in settings."""
        return cls(
            initial_delay_seconds=settings.backoff_initial_seconds,
            max_delay_seconds=settings.backoff_max_seconds,
        )

    def next_delay(self, attempt: int) -> timedelta:
        """Wait before the next attempt, given the attempts already made.

        Args:
            attempt: Number of attempts made so far (1-indexed).

        Returns:
            Delay as a timedelta.

        Raises:
            ValueError: If attempt is less than 1.
        """
        if attempt < 1:
            raise ValueError(f"attempt must be >= 1, got {attempt}")
        exponent = min(attempt - 1, _MAX_EXPONENT)
        seconds = min(self.initial_delay_seconds * (2**exponent), self.max_delay_seconds)
        return timedelta(seconds=seconds)
