"""Single-attempt HTTP delivery.

The sender performs exactly one POST per call and classifies the result into
a DeliveryOutcome. It never raises for network or HTTP failures, and it
bounds both the time spent and the response bytes read.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import httpx

from courier.models import DeliveryOutcome

if TYPE_CHECKING:
    from courier.config import Settings

logger = logging.getLogger(__name__)

# Client errors a receiver may recover from by itself
RETRYABLE_CLIENT_ERRORS = frozenset({408, 429})

_ERROR_SNIPPET_CHARS = 200


def format_timestamp(moment: datetime) -> str:
    """Format a datetime as RFC 3339 in UTC with a Z suffix."""
    return moment.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_headers(
    prefix: str,
    event_type: str,
    signature: str,
    delivery_id: str,
    timestamp: datetime,
) -> dict[str, str]:
    """Build the request headers for a delivery.

    Args:
        prefix: Product name, as in X-<prefix>-Event.
        event_type: Event being delivered.
        signature: Hex HMAC of the body.
        delivery_id: Delivery record id, for receiver-side de-duplication.
        timestamp: When this attempt is made.

    Returns:
        Header mapping.
    """
    return {
        "Content-Type": "application/json",
        f"X-{prefix}-Event": event_type,
        f"X-{prefix}-Signature": signature,
        f"X-{prefix}-Delivery-Timestamp": format_timestamp(timestamp),
        f"X-{prefix}-Delivery-Id": delivery_id,
    }


class WebhookSender:
    """Sends one webhook request and classifies the outcome.

    - 2xx: success
    - any other status: failure with the status code and a truncated body
    - timeout, connection, DNS or TLS error: failure without a status code

    Example:
        ```python
        sender = WebhookSender(timeout_seconds=10.0)
        outcome = await sender.send(url, headers, body)
        if not outcome.success:
            print(outcome.error)
        ```
    """

    def __init__(
        self,
        timeout_seconds: float = 10.0,
        max_body_bytes: int = 2048,
        fail_fast_on_client_error: bool = False,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the sender.

        Args:
            timeout_seconds: Hard limit for the whole attempt, including reading the body.
            max_body_bytes: Response bytes kept for the delivery record.
            fail_fast_on_client_error: Mark 4xx (except 408/429) as permanent.
            client: Shared client to send with. A short-lived client is created
                per attempt when None. A shared client is not closed by the sender.
        """
        self._timeout = timeout_seconds
        self._max_body_bytes = max_body_bytes
        self._fail_fast = fail_fast_on_client_error
        self._client = client

    @classmethod
    def from_settings(
        cls, settings: Settings, client: httpx.AsyncClient | None = None
    ) -> WebhookSender:
        """Create a sender configured from settings."""
        return cls(
            timeout_seconds=settings.request_timeout_seconds,
            max_body_bytes=settings.response_body_max_bytes,
            fail_fast_on_client_error=settings.fail_fast_on_client_error,
            client=client,
        )

    async def send(self, url: str, headers: dict[str, str], body: bytes) -> DeliveryOutcome:
        """POST the body once and classify the result.

        Args:
            url: Receiver endpoint.
            headers: Request headers, including the signature.
            body: Serialized payload; sent byte-for-byte.

        Returns:
            DeliveryOutcome describing the attempt.
        """
        try:
            status_code, response_body = await asyncio.wait_for(
                self._post(url, headers, body), timeout=self._timeout
            )
        except (TimeoutError, httpx.TimeoutException):
            logger.info("Webhook request timed out", extra={"url": url, "timeout": self._timeout})
            return DeliveryOutcome.failed(error=f"Request timed out after {self._timeout:g}s")
        except (httpx.RequestError, httpx.InvalidURL) as e:
            logger.info("Webhook request failed", extra={"url": url, "exception": str(e)})
            return DeliveryOutcome.failed(error=f"{type(e).__name__}: {e}")

        if 200 <= status_code < 300:
            return DeliveryOutcome.succeeded(status_code, response_body or None)

        permanent = (
            self._fail_fast
            and 400 <= status_code < 500
            and status_code not in RETRYABLE_CLIENT_ERRORS
        )
        error = f"HTTP {status_code}"
        if response_body:
            error = f"{error}: {response_body[:_ERROR_SNIPPET_CHARS]}"
        return DeliveryOutcome.failed(
            error=error,
            response_code=status_code,
            response_body=response_body or None,
            permanent=permanent,
        )

    async def _post(self, url: str, headers: dict[str, str], body: bytes) -> tuple[int, str]:
        if self._client is not None:
            return await self._stream(self._client, url, headers, body)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await self._stream(client, url, headers, body)

    async def _stream(
        self,
        client: httpx.AsyncClient,
        url: str,
        headers: dict[str, str],
        body: bytes,
    ) -> tuple[int, str]:
        # Stop reading once max_body_bytes are buffered
        buffer = bytearray()
        async with client.stream("POST", url, headers=headers, content=body) as response:
            async for chunk in response.aiter_bytes():
                buffer.extend(chunk)
                if len(buffer) >= self._max_body_bytes:
                    break
            status_code = response.status_code
        truncated = bytes(buffer[: self._max_body_bytes])
        return status_code, truncated.decode("utf-8", errors="replace")
