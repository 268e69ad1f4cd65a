"""Unit tests for the in-memory stores."""

from __future__ import annotations

from datetime import timedelta

import pytest

from courier.exceptions import NotFoundError, StorageError
from courier.models import DeliveryRecord
from courier.storage import (
    DeliveryStore,
    InMemoryDeliveryStore,
    InMemorySubscriptionStore,
    SubscriptionStore,
)


def _record(**overrides) -> DeliveryRecord:
    fields = {
        "subscription_id": "whk_1",
        "business_id": "biz_1",
        "event_type": "order.paid",
        "payload": {"orderId": "o1"},
    }
    fields.update(overrides)
    return DeliveryRecord(**fields)


class TestProtocols:
    """The in-memory stores satisfy the store protocols."""

    def test_subscription_store(self) -> None:
        assert isinstance(InMemorySubscriptionStore(), SubscriptionStore)

    def test_delivery_store(self) -> None:
        assert isinstance(InMemoryDeliveryStore(), DeliveryStore)


class TestDeliveryStoreCompareAndUpdate:
    """Tests for version-checked writes."""

    @pytest.mark.asyncio
    async def test_update_bumps_version(self, delivery_store, clock) -> None:
        record = _record()
        await delivery_store.create(record)

        record.begin_attempt(clock(), timedelta(seconds=30))
        assert await delivery_store.compare_and_update(record, expected_version=0)

        assert record.version == 1
        stored = await delivery_store.get(record.id)
        assert stored.version == 1
        assert stored.attempts == 1

    @pytest.mark.asyncio
    async def test_stale_version_is_rejected(self, delivery_store, clock) -> None:
        record = _record()
        await delivery_store.create(record)
        first = await delivery_store.get(record.id)
        second = await delivery_store.get(record.id)

        first.begin_attempt(clock(), timedelta(seconds=30))
        second.begin_attempt(clock(), timedelta(seconds=30))
        assert await delivery_store.compare_and_update(first, expected_version=0)
        assert not await delivery_store.compare_and_update(second, expected_version=0)

        stored = await delivery_store.get(record.id)
        assert stored.attempts == 1
        assert stored.version == 1
        assert second.version == 0

    @pytest.mark.asyncio
    async def test_missing_record(self, delivery_store) -> None:
        with pytest.raises(NotFoundError):
            await delivery_store.compare_and_update(_record(), expected_version=0)

    @pytest.mark.asyncio
    async def test_duplicate_create(self, delivery_store) -> None:
        record = _record()
        await delivery_store.create(record)
        with pytest.raises(StorageError, match="already exists"):
            await delivery_store.create(record)


class TestDeliveryStoreIsolation:
    """Callers never share mutable state with the store."""

    @pytest.mark.asyncio
    async def test_mutating_a_read_does_not_change_the_store(self, delivery_store, clock) -> None:
        record = _record()
        await delivery_store.create(record)

        copy = await delivery_store.get(record.id)
        copy.begin_attempt(clock(), timedelta(seconds=30))

        assert (await delivery_store.get(record.id)).attempts == 0

    @pytest.mark.asyncio
    async def test_mutating_after_create_does_not_change_the_store(
        self, delivery_store, clock
    ) -> None:
        record = _record()
        await delivery_store.create(record)
        record.begin_attempt(clock(), timedelta(seconds=30))

        assert (await delivery_store.get(record.id)).attempts == 0

    @pytest.mark.asyncio
    async def test_get_missing(self, delivery_store) -> None:
        assert await delivery_store.get("dlv_missing") is None


class TestDeliveryStoreQueries:
    """Tests for list_due and list_for_business."""

    @pytest.mark.asyncio
    async def test_list_due_is_ordered_and_excludes_terminal(self, delivery_store, clock) -> None:
        now = clock()
        late = _record(attempts=1, next_retry_at=now - timedelta(seconds=1))
        early = _record(attempts=1, next_retry_at=now - timedelta(seconds=60))
        future = _record(attempts=1, next_retry_at=now + timedelta(seconds=60))
        done = _record(status="success", attempts=1, delivered_at=now)
        for record in (late, early, future, done):
            await delivery_store.create(record)

        due = await delivery_store.list_due(now)

        assert [r.id for r in due] == [early.id, late.id]

    @pytest.mark.asyncio
    async def test_list_due_limit(self, delivery_store, clock) -> None:
        for _ in range(3):
            await delivery_store.create(_record())
        assert len(await delivery_store.list_due(clock(), limit=2)) == 2

    @pytest.mark.asyncio
    async def test_list_due_created_before(self, delivery_store, clock) -> None:
        """Never-attempted records newer than created_before are skipped before limit applies."""
        now = clock()
        fresh = _record(created_at=now - timedelta(seconds=5))
        old = _record(created_at=now - timedelta(minutes=5))
        retry = _record(attempts=1, next_retry_at=now, created_at=now)
        for record in (fresh, old, retry):
            await delivery_store.create(record)

        due = await delivery_store.list_due(now, limit=2, created_before=now - timedelta(seconds=30))

        assert [r.id for r in due] == [old.id, retry.id]

    @pytest.mark.asyncio
    async def test_list_for_business(self, delivery_store, clock) -> None:
        older = _record(created_at=clock() - timedelta(minutes=5))
        newer = _record(created_at=clock())
        failed = _record(status="failed", attempts=5, created_at=clock())
        other = _record(business_id="biz_2")
        for record in (older, newer, failed, other):
            await delivery_store.create(record)

        everything = await delivery_store.list_for_business("biz_1")
        assert {r.id for r in everything} == {older.id, newer.id, failed.id}
        assert everything[-1].id == older.id

        only_failed = await delivery_store.list_for_business("biz_1", status="failed")
        assert [r.id for r in only_failed] == [failed.id]

        assert len(await delivery_store.list_for_business("biz_1", limit=1)) == 1
        assert len(delivery_store) == 4


class TestSubscriptionStore:
    """Tests for InMemorySubscriptionStore."""

    @pytest.mark.asyncio
    async def test_add_and_get(self, subscription_store, make_subscription) -> None:
        sub = make_subscription()
        assert await subscription_store.add(sub) == sub.id

        stored = await subscription_store.get(sub.id, "biz_1")
        assert stored.url == sub.url
        assert stored.secret.get_secret_value() == "abc123"

    @pytest.mark.asyncio
    async def test_get_is_scoped_to_business(self, subscription_store, make_subscription) -> None:
        await subscription_store.add(make_subscription())
        assert await subscription_store.get("whk_test123", "biz_2") is None

    @pytest.mark.asyncio
    async def test_duplicate_add(self, subscription_store, make_subscription) -> None:
        await subscription_store.add(make_subscription())
        with pytest.raises(StorageError):
            await subscription_store.add(make_subscription())

    @pytest.mark.asyncio
    async def test_update(self, subscription_store, make_subscription) -> None:
        sub = make_subscription()
        await subscription_store.add(sub)

        sub.url = "https://new.example.com/hook"
        await subscription_store.update(sub)

        assert (await subscription_store.get(sub.id, "biz_1")).url == "https://new.example.com/hook"

    @pytest.mark.asyncio
    async def test_update_missing(self, subscription_store, make_subscription) -> None:
        with pytest.raises(NotFoundError):
            await subscription_store.update(make_subscription())

    @pytest.mark.asyncio
    async def test_delete(self, subscription_store, make_subscription) -> None:
        await subscription_store.add(make_subscription())
        assert await subscription_store.delete("whk_test123", "biz_1")
        assert not await subscription_store.delete("whk_test123", "biz_1")
        assert await subscription_store.get("whk_test123", "biz_1") is None

    @pytest.mark.asyncio
    async def test_list_active_for_event(self, subscription_store, make_subscription) -> None:
        await subscription_store.add(make_subscription(id="whk_a"))
        await subscription_store.add(make_subscription(id="whk_b", active=False))
        await subscription_store.add(make_subscription(id="whk_c", events={"order.paid"}))
        await subscription_store.add(make_subscription(id="whk_d", business_id="biz_2"))

        matches = await subscription_store.list_active_for_event("biz_1", "booking.cancelled")

        assert [s.id for s in matches] == ["whk_a"]

    @pytest.mark.asyncio
    async def test_list_for_business(self, subscription_store, make_subscription) -> None:
        await subscription_store.add(make_subscription(id="whk_a"))
        await subscription_store.add(make_subscription(id="whk_b", active=False))
        await subscription_store.add(make_subscription(id="whk_c", business_id="biz_2"))

        subscriptions = await subscription_store.list_for_business("biz_1")

        assert {s.id for s in subscriptions} == {"whk_a", "whk_b"}

    @pytest.mark.asyncio
    async def test_flag_misconfigured(self, subscription_store, make_subscription) -> None:
        await subscription_store.add(make_subscription())

        await subscription_store.flag_misconfigured("whk_test123", "biz_1", "bad URL")
        await subscription_store.flag_misconfigured("whk_missing", "biz_1", "ignored")

        assert (await subscription_store.get("whk_test123", "biz_1")).config_error == "bad URL"
