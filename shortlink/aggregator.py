"""In-process click aggregation with batched, transactional counter flushes.

Turns the high-frequency stream of per-redirect accesses into low-frequency
batch writes. Counts accumulate in memory per short code and are committed as
one ``UPDATE links SET clicks = clicks + n`` transaction when either trigger
fires.

Flush Triggers
==============
::
    record_access(code)
           │
           ▼
    buffer[code] += 1
           │
    distinct codes >= threshold? ── YES ──► cancel timer ──► flush now
           │ NO
           ▼
    timer armed? ── NO ──► arm debounce timer (flush interval)
           │ YES                       │
           ▼                           ▼ (fires once per window)
         return                    flush

Flush Procedure
===============
::
    ┌──────────────────┐
    │ swap buffer for  │   records arriving from here on land in the
    │ a fresh {}       │   new buffer and go out with the NEXT flush
    └────────┬─────────┘
             ▼
    ┌──────────────────┐
    │ [ClickDelta...]  │
    └────────┬─────────┘
             ▼
    ┌──────────────────┐  fail  ┌────────────────────┐
    │ batch_increment  │ ─────► │ sleep backoff * 2^n │──┐
    │ (1 transaction)  │ ◄───── │ retry               │  │
    └────────┬─────────┘        └────────────────────┘  │
             │ ok                attempts exhausted ◄────┘
             ▼                           │
           done                 log + drop the batch

How to Use
===========
**Step 1 — Start with the application**::
    aggregator = ClickAggregator(store, settings)
    aggregator.start()

**Step 2 — Record accesses from the event loop**::
    aggregator.record_access("abc123")

**Step 3 — Final flush on shutdown**::
    await aggregator.stop(grace_seconds=5.0)

Key Behaviours
===============
- record_access never awaits and never touches I/O.
- The buffer is only mutated on the event loop thread; the flush drains it
  by swapping the reference, so no lock is held on the hot path.
- Failed batches are retried with exponential backoff and then dropped.
  Counters may undercount during long store outages.
- Oversized single-code deltas are written as one increment, not chunked.
- Timer and threshold flushes only run between start() and stop(); a
  background flush that fails unexpectedly is logged and counted as dropped.

Classes:
    ClickAggregator:  Owner of the pending-access buffer and its flush timer.
"""

import asyncio
import functools
import logging
from collections.abc import Mapping

from prometheus_client import Counter, Histogram

from shortlink.config import Settings
from shortlink.exceptions import BatchFlushFailedError, StoreUnavailableError
from shortlink.schemas import ClickDelta
from shortlink.store import LinkStore

__all__ = ["ClickAggregator"]

logger = logging.getLogger(__name__)

AGGREGATOR_ACCESSES_TOTAL = Counter(
    "shortlink_aggregator_accesses_total",
    "Accesses buffered by the click aggregator",
)
AGGREGATOR_FLUSHES_TOTAL = Counter(
    "shortlink_aggregator_flushes_total",
    "Click batch flushes by outcome",
    ["outcome"],
)
AGGREGATOR_DROPPED_CLICKS_TOTAL = Counter(
    "shortlink_aggregator_dropped_clicks_total",
    "Clicks lost because their batch exhausted all retry attempts",
)
AGGREGATOR_BATCH_SIZE = Histogram(
    "shortlink_aggregator_batch_size",
    "Distinct short codes per flushed batch",
    buckets=[1, 5, 10, 25, 50, 100, 250, 500],
)


class ClickAggregator:
    """Buffers accesses per short code and flushes them as transactional batches.

    Example:
        >>> aggregator = ClickAggregator(store, settings)
        >>> aggregator.start()
        >>> for _ in range(5):
        ...     aggregator.record_access("abc")
        >>> await aggregator.flush()  # one ClickDelta(short_code="abc", count=5)
        True
    """

    def __init__(self, store: LinkStore, settings: Settings) -> None:
        self._store = store
        self._flush_interval = settings.CLICK_FLUSH_INTERVAL_MS / 1000
        self._flush_threshold = settings.CLICK_FLUSH_THRESHOLD
        self._max_attempts = settings.CLICK_FLUSH_MAX_ATTEMPTS
        self._backoff = settings.CLICK_FLUSH_BACKOFF_MS / 1000

        self._buffer: dict[str, int] = {}
        self._timer: asyncio.TimerHandle | None = None
        self._flush_tasks: set[asyncio.Task[bool]] = set()
        self._running = False

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        self._running = True
        logger.info(
            f"Click aggregator started (interval={self._flush_interval:.3f}s, "
            f"threshold={self._flush_threshold}, attempts={self._max_attempts})"
        )

    async def stop(self, grace_seconds: float) -> None:
        """Stop accepting timer flushes and make a bounded final flush attempt.

        Args:
            grace_seconds: Upper bound for waiting on in-flight flushes and
                again for the final flush of whatever is still buffered
        """
        self._running = False
        self._cancel_timer()

        if self._flush_tasks:
            _, pending = await asyncio.wait(set(self._flush_tasks), timeout=grace_seconds)
            for task in pending:
                task.cancel()
            if pending:
                logger.warning(f"Abandoned {len(pending)} in-flight click flushes on shutdown")

        buffered = sum(self._buffer.values())
        if not buffered:
            logger.info("Click aggregator stopped with an empty buffer")
            return

        try:
            flushed = await asyncio.wait_for(self.flush(), timeout=grace_seconds)
        except asyncio.TimeoutError:
            logger.error(f"Final click flush timed out after {grace_seconds}s, {buffered} clicks lost")
            return
        if flushed:
            logger.info(f"Final click flush committed {buffered} clicks")

    # ========================================================================
    # HOT PATH
    # ========================================================================

    def record_access(self, short_code: str) -> None:
        assert isinstance(short_code, str) and short_code, f"short_code must be non-empty str, got {short_code!r}"

        self._buffer[short_code] = self._buffer.get(short_code, 0) + 1
        AGGREGATOR_ACCESSES_TOTAL.inc()

        # Not started, or already stopped: only explicit flush() / stop() write.
        if not self._running:
            return

        if len(self._buffer) >= self._flush_threshold:
            self._cancel_timer()
            self._spawn_flush()
            return

        if self._timer is None:
            loop = asyncio.get_running_loop()
            self._timer = loop.call_later(self._flush_interval, self._on_timer)

    def pending_count(self, short_code: str) -> int:
        return self._buffer.get(short_code, 0)

    @property
    def pending(self) -> Mapping[str, int]:
        return dict(self._buffer)

    # ========================================================================
    # FLUSH
    # ========================================================================

    async def flush(self) -> bool:
        """Drain the buffer and commit it as one batch.

        Returns:
            bool: True when the batch was committed or there was nothing to
            flush, False when it was dropped after exhausting retries
        """
        return await self._commit(self._drain())

    def _drain(self) -> dict[str, int]:
        drained, self._buffer = self._buffer, {}
        self._cancel_timer()
        return drained

    async def _commit(self, drained: dict[str, int]) -> bool:
        if not drained:
            return True

        batch = [ClickDelta(short_code=code, count=count) for code, count in drained.items()]
        AGGREGATOR_BATCH_SIZE.observe(len(batch))

        try:
            attempts = await self._commit_with_retry(batch)
        except BatchFlushFailedError as exc:
            self._record_drop(drained, f"after {exc.attempts} attempts")
            return False

        AGGREGATOR_FLUSHES_TOTAL.labels(outcome="committed").inc()
        logger.debug(f"Flushed {len(batch)} short codes in {attempts} attempt(s)")
        return True

    async def _commit_with_retry(self, batch: list[ClickDelta]) -> int:
        delay = self._backoff
        for attempt in range(1, self._max_attempts + 1):
            try:
                await self._store.batch_increment_counters(batch)
                return attempt
            except StoreUnavailableError as exc:
                if attempt == self._max_attempts:
                    raise BatchFlushFailedError(str(exc), attempts=attempt) from exc
                logger.warning(f"Click flush attempt {attempt}/{self._max_attempts} failed, retrying in {delay:.2f}s: {exc}")
                await asyncio.sleep(delay)
                delay *= 2
        raise BatchFlushFailedError("no flush attempts configured", attempts=0)

    def _record_drop(self, drained: Mapping[str, int], reason: str, exc: BaseException | None = None) -> None:
        dropped = sum(drained.values())
        AGGREGATOR_FLUSHES_TOTAL.labels(outcome="dropped").inc()
        AGGREGATOR_DROPPED_CLICKS_TOTAL.inc(dropped)
        logger.error(
            f"Dropping click batch {reason}: {dropped} clicks lost",
            exc_info=exc,
            extra={"batch": dict(drained)},
        )

    def _on_timer(self) -> None:
        self._timer = None
        if self._running:
            self._spawn_flush()

    def _spawn_flush(self) -> None:
        drained = self._drain()
        if not drained:
            return
        task = asyncio.get_running_loop().create_task(self._commit(drained))
        self._flush_tasks.add(task)
        task.add_done_callback(functools.partial(self._on_flush_done, drained))

    def _on_flush_done(self, drained: dict[str, int], task: asyncio.Task[bool]) -> None:
        self._flush_tasks.discard(task)
        if task.cancelled():
            self._record_drop(drained, "abandoned on shutdown")
            return
        exc = task.exception()
        if exc is not None:
            self._record_drop(drained, f"on unexpected error {exc!r}", exc)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
