"""Retry utilities for delivery store operations.

Retries only TransientStorageError. Anything else (including a lost
compare-and-update, which is reported as False rather than raised) is
returned to the caller immediately.
"""

from __future__ import annotations

import logging

from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from courier.exceptions import TransientStorageError

logger = logging.getLogger(__name__)


def _log_retry(retry_state: RetryCallState) -> None:
    """Log retry attempts with context.

    Args:
        retry_state: Current retry state from tenacity.
    """
    logger.warning(
        "Retrying store operation",
        extra={
            "attempt": retry_state.attempt_number,
            "fn_name": retry_state.fn.__name__ if retry_state.fn else "unknown",
            "exception": str(retry_state.outcome.exception()) if retry_state.outcome else None,
        },
    )


# Short waits: store retries happen inside a live dispatch
store_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
    retry=retry_if_exception_type(TransientStorageError),
    before_sleep=_log_retry,
    reraise=True,
)
