"""Background sweep for deliveries awaiting retry.

The scheduler runs independently of whatever request triggered an event.
Each sweep asks the delivery store for pending records whose next_retry_at
has passed and hands them to the dispatcher. State lives in the store, so a
restarted process picks up exactly where the previous one stopped.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from courier.logging import bind_context, get_logger, unbind_context
from courier.models import utc_now

if TYPE_CHECKING:
    from courier.config import Settings
    from courier.models import DeliveryRecord
    from courier.storage import DeliveryStore

    from .dispatcher import WebhookDispatcher

logger = get_logger(__name__)


class RetryScheduler:
    """Polls for due deliveries and re-attempts them.

    Records are picked up when they are pending and either:
    - have been attempted and their next_retry_at has passed, or
    - were never attempted and are older than the orphan grace period
      (the process died between creating the record and the first attempt).

    Example:
        ```python
        scheduler = RetryScheduler(dispatcher, deliveries, poll_interval_seconds=1.0)
        scheduler.start()
        ...
        await scheduler.stop()
        ```
    """

    def __init__(
        self,
        dispatcher: WebhookDispatcher,
        deliveries: DeliveryStore,
        poll_interval_seconds: float = 1.0,
        batch_size: int = 100,
        orphan_grace_seconds: float = 30.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the scheduler.

        Args:
            dispatcher: Dispatcher that performs attempts.
            deliveries: Store to query for due records.
            poll_interval_seconds: Seconds between sweeps, at most 1.
            batch_size: Maximum records fetched per sweep.
            orphan_grace_seconds: Age before a never-attempted record is swept.
            clock: Source of the current time.

        Raises:
            ValueError: If poll_interval_seconds is not in (0, 1].
        """
        if not 0 < poll_interval_seconds <= 1.0:
            raise ValueError(
                f"poll_interval_seconds must be in (0, 1], got {poll_interval_seconds}"
            )
        self._dispatcher = dispatcher
        self._deliveries = deliveries
        self._poll_interval = poll_interval_seconds
        self._batch_size = batch_size
        self._orphan_grace = timedelta(seconds=orphan_grace_seconds)
        self._clock = clock
        self._stop_event = asyncio.Event()
        self._loop_task: asyncio.Task[None] | None = None
        self._in_flight: dict[str, asyncio.Task[DeliveryRecord | None]] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        dispatcher: WebhookDispatcher,
        deliveries: DeliveryStore,
        clock: Callable[[], datetime] = utc_now,
    ) -> RetryScheduler:
        """Create a scheduler configured from settings."""
        return cls(
            dispatcher,
            deliveries,
            poll_interval_seconds=settings.scheduler_poll_interval_seconds,
            batch_size=settings.scheduler_batch_size,
            orphan_grace_seconds=settings.orphan_grace_seconds,
            clock=clock,
        )

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    async def due_records(self, now: datetime | None = None) -> list[DeliveryRecord]:
        """Records the scheduler would attempt at the given time."""
        now = now or self._clock()
        return await self._deliveries.list_due(
            now, limit=self._batch_size, created_before=now - self._orphan_grace
        )

    async def run_once(self, now: datetime | None = None) -> int:
        """Attempt every due record once and wait for the results.

        Args:
            now: Sweep time. Defaults to the clock.

        Returns:
            Number of records whose state changed.
        """
        now = now or self._clock()
        due = await self.due_records(now)
        if not due:
            return 0

        results = await asyncio.gather(
            *(self._dispatcher.process_delivery(r.id, now=now) for r in due),
            return_exceptions=True,
        )

        processed = 0
        for record, result in zip(due, results, strict=True):
            if isinstance(result, BaseException):
                logger.error("Retry attempt crashed", delivery_id=record.id, exc_info=result)
            elif result is not None and result.version != record.version:
                processed += 1

        logger.debug("Retry sweep finished", due=len(due), processed=processed)
        return processed

    async def run_forever(self) -> None:
        """Sweep until stop() is called.

        Unlike run_once, a sweep does not wait for its attempts: each record
        runs in its own task, so a slow receiver cannot hold back the next
        sweep or other retries.
        """
        # Attempts spawned by sweeps inherit this context
        bind_context(component="retry-scheduler")
        logger.info("Retry scheduler started", poll_interval=self._poll_interval)
        while not self._stop_event.is_set():
            try:
                await self._sweep()
            except Exception:
                logger.exception("Retry sweep failed")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._poll_interval)
            except TimeoutError:
                pass
        logger.info("Retry scheduler stopped")
        unbind_context("component")

    def start(self) -> None:
        """Start sweeping in a background task."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._loop_task = asyncio.create_task(self.run_forever(), name="webhook-retry-scheduler")

    async def stop(self) -> None:
        """Stop sweeping and wait for attempts already started."""
        self._stop_event.set()
        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None
        if self._in_flight:
            await asyncio.gather(*self._in_flight.values(), return_exceptions=True)

    async def _sweep(self) -> None:
        now = self._clock()
        for record in await self.due_records(now):
            if record.id in self._in_flight:
                continue
            task = asyncio.create_task(
                self._dispatcher.process_delivery(record.id, now=now),
                name=f"webhook-retry-{record.id}",
            )
            self._in_flight[record.id] = task
            task.add_done_callback(self._make_done_callback(record.id))

    def _make_done_callback(
        self, delivery_id: str
    ) -> Callable[[asyncio.Task[DeliveryRecord | None]], None]:
        def _done(task: asyncio.Task[DeliveryRecord | None]) -> None:
            self._in_flight.pop(delivery_id, None)
            if task.cancelled():
                return
            exc = task.exception()
            if exc is not None:
                logger.error("Retry attempt crashed", delivery_id=delivery_id, exc_info=exc)

        return _done
