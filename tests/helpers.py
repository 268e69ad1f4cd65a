"""Test doubles shared across the test suite."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import httpx

from courier.models import DeliveryRecord
from courier.storage import InMemoryDeliveryStore


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


class ScriptedReceiver:
    """Webhook receiver answering with a scripted sequence of status codes.

    The last status repeats once the script runs out.
    """

    def __init__(self, *statuses: int, body: bytes = b"ok") -> None:
        self.statuses = list(statuses) or [200]
        self.body = body
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        return httpx.Response(status, content=self.body)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


class SlowReadDeliveryStore(InMemoryDeliveryStore):
    """Delivery store whose reads yield to the event loop, widening race windows."""

    async def get(self, delivery_id: str) -> DeliveryRecord | None:
        record = await super().get(delivery_id)
        await asyncio.sleep(0)
        return record


async def wait_for_status(
    store: InMemoryDeliveryStore,
    delivery_id: str,
    status: str,
    timeout: float = 2.0,
) -> DeliveryRecord:
    """Poll the store until a record reaches the given status."""
    deadline = asyncio.get_running_loop().time() + timeout
    while True:
        record = await store.get(delivery_id)
        if record is not None and record.status == status:
            return record
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError(
                f"{delivery_id} did not reach {status!r}, last seen: {record!r}"
            )
        await asyncio.sleep(0.01)
