"""HMAC-SHA256 signing of webhook bodies.

The body is serialized exactly once. The resulting bytes are both signed and
sent, so the receiver can verify the signature over the raw request body.
"""

from __future__ import annotations

import hashlib
import hmac
from collections.abc import Mapping
from typing import Any

from pydantic_core import to_json

from courier.exceptions import SigningError


def _as_bytes(value: str | bytes) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def serialize_payload(payload: Mapping[str, Any]) -> bytes:
    """Serialize an event payload to the bytes that go on the wire.

    Args:
        payload: JSON-serializable mapping.

    Returns:
        Compact UTF-8 JSON.
    """
    return to_json(dict(payload))


def sign(secret: str | bytes, payload: bytes) -> str:
    """Compute the HMAC-SHA256 signature of a serialized body.

    Args:
        secret: Subscription signing secret.
        payload: Exact bytes that will be sent as the request body.

    Returns:
        Lowercase hex digest.

    Raises:
        SigningError: If the secret is empty.
    """
    key = _as_bytes(secret)
    if not key:
        raise SigningError("Cannot sign webhook payload with an empty secret")
    return hmac.new(key=key, msg=payload, digestmod=hashlib.sha256).hexdigest()


def verify_signature(secret: str | bytes, payload: bytes, signature: str) -> bool:
    """Verify a signature the way a receiver should.

    Recomputes the HMAC over the raw body and compares in constant time.

    Args:
        secret: Shared signing secret.
        payload: Raw request body as received.
        signature: Hex signature from the signature header.

    Returns:
        True if the signature matches, False otherwise (including empty secret).
    """
    try:
        expected = sign(secret, payload)
    except SigningError:
        return False
    return hmac.compare_digest(expected, signature.strip().lower())
