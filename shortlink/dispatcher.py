"""Bounded fire-and-forget dispatch of access notifications.

Redirects hand their access notification to a bounded asyncio queue and
return immediately; a small pool of worker tasks drains the queue and runs
the handler (aggregator bookkeeping plus the click log insert). When the
queue is full the configured backpressure policy decides which notification
is lost, so a stalled store shows up as counted drops instead of unbounded
task growth.

Dispatch Flow
=============
::
    resolve() ──► submit(n) ──► queue full?
                                ┌─────┴─────────────┐
                                │ NO                 │ YES
                                ▼                    ▼
                            put_nowait         drop_newest: reject n
                                │              drop_oldest: evict head, put n
                                ▼
                     worker-1 … worker-N
                                │
                                ▼
                         await handler(n)  ── error ──► log, keep going

How to Use
===========
**Step 1 — Build and start**::
    dispatcher = NotificationDispatcher(handler, max_size=10000, workers=4)
    dispatcher.start()

**Step 2 — Submit without awaiting**::
    dispatcher.submit(AccessNotification(short_code="abc123"))

**Step 3 — Drain on shutdown**::
    await dispatcher.stop(grace_seconds=5.0)

Classes:
    NotificationDispatcher:  Bounded queue with a worker pool.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

from prometheus_client import Counter, Gauge

from shortlink.enums import BackpressurePolicy

__all__ = ["NotificationDispatcher"]

logger = logging.getLogger(__name__)

T = TypeVar("T")

DISPATCH_SUBMITTED_TOTAL = Counter(
    "shortlink_dispatch_submitted_total",
    "Notifications accepted by the dispatcher queue",
)
DISPATCH_DROPPED_TOTAL = Counter(
    "shortlink_dispatch_dropped_total",
    "Notifications dropped because the dispatcher queue was full",
    ["policy"],
)
DISPATCH_HANDLER_ERRORS_TOTAL = Counter(
    "shortlink_dispatch_handler_errors_total",
    "Notifications whose handler raised",
)
DISPATCH_QUEUE_DEPTH = Gauge(
    "shortlink_dispatch_queue_depth",
    "Notifications waiting in the dispatcher queue",
)


class NotificationDispatcher(Generic[T]):
    """Worker pool draining a bounded queue of notifications."""

    def __init__(
        self,
        handler: Callable[[T], Awaitable[None]],
        max_size: int,
        workers: int = 1,
        policy: BackpressurePolicy = BackpressurePolicy.DROP_NEWEST,
    ) -> None:
        assert max_size > 0, f"max_size must be positive, got {max_size!r}"
        assert workers > 0, f"workers must be positive, got {workers!r}"
        self._handler = handler
        self._queue: asyncio.Queue[T] = asyncio.Queue(maxsize=max_size)
        self._worker_count = workers
        self._policy = policy
        self._workers: list[asyncio.Task[None]] = []

    @property
    def depth(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return bool(self._workers)

    def start(self) -> None:
        if self._workers:
            return
        loop = asyncio.get_running_loop()
        self._workers = [
            loop.create_task(self._work(), name=f"notification-worker-{index}")
            for index in range(self._worker_count)
        ]
        logger.info(f"Notification dispatcher started with {self._worker_count} workers ({self._policy} on overflow)")

    def submit(self, item: T) -> bool:
        """Enqueue ``item`` without blocking.

        Returns:
            bool: True if ``item`` was queued, False if it was dropped
        """
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            if self._policy is BackpressurePolicy.DROP_NEWEST:
                DISPATCH_DROPPED_TOTAL.labels(policy=self._policy).inc()
                logger.warning("Notification queue full, dropping newest notification")
                return False
            self._evict_oldest()
            self._queue.put_nowait(item)

        DISPATCH_SUBMITTED_TOTAL.inc()
        DISPATCH_QUEUE_DEPTH.set(self._queue.qsize())
        return True

    async def drain(self) -> None:
        """Wait until every queued notification has been handled."""
        await self._queue.join()

    async def stop(self, grace_seconds: float) -> None:
        if self._workers:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=grace_seconds)
            except asyncio.TimeoutError:
                logger.warning(f"Notification queue not drained within {grace_seconds}s, {self._queue.qsize()} abandoned")

        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Notification dispatcher stopped")

    def _evict_oldest(self) -> None:
        self._queue.get_nowait()
        self._queue.task_done()
        DISPATCH_DROPPED_TOTAL.labels(policy=self._policy).inc()
        logger.warning("Notification queue full, dropping oldest notification")

    async def _work(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                await self._handler(item)
            except Exception as exc:
                DISPATCH_HANDLER_ERRORS_TOTAL.inc()
                logger.error(f"Notification handler failed: {exc}", exc_info=True)
            finally:
                self._queue.task_done()
                DISPATCH_QUEUE_DEPTH.set(self._queue.qsize())
