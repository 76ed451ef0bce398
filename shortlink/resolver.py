"""Read-through resolution of short codes to target URLs.

Flow Diagram — resolve()
========================
::
    ┌─────────────┐
    │ GET /:code  │
    └──────┬──────┘
           ▼
    ┌─────────────┐  HIT   ┌──────────────┐
    │ CacheCheck  │ ─────► │ Notify       │──► return url
    └──────┬──────┘        └──────────────┘
           │ MISS
           ▼
    ┌─────────────┐ absent ┌──────────────┐
    │StoreFallback│ ─────► │ NotFound     │
    └──────┬──────┘        └──────────────┘
           │ expired ─► delete store + cache ─► NotFound
           ▼
    ┌─────────────┐
    │ Repopulate  │  expiry TTL or popularity TTL,
    │             │  skipped when TTL <= 0
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Notify      │──► return url
    └─────────────┘

Notify is ``dispatcher.submit(...)``: synchronous, non-blocking and never
raises into the caller. The dispatcher's workers run ``AccessRecorder``,
which bumps the in-memory aggregator and writes the click log row.

How to Use
===========
**Step 1 — Wire collaborators**::
    resolver = ResolutionService(cache, store, dispatcher)

**Step 2 — Resolve**::
    try:
        url = await resolver.resolve("abc123", client_ip="203.0.113.7")
    except LinkNotFoundError:
        ...

Classes:
    ResolutionService:  Cache-aside resolution with access notification.
    AccessRecorder:  Dispatcher handler feeding the aggregator and click log.
"""

import datetime
import logging
import time
from collections.abc import Callable

from prometheus_client import Counter, Histogram

from shortlink.aggregator import ClickAggregator
from shortlink.cache import CacheLayer
from shortlink.dispatcher import NotificationDispatcher
from shortlink.enums import CacheStatus, RequestStatus
from shortlink.exceptions import LinkNotFoundError, StoreUnavailableError
from shortlink.models import utcnow
from shortlink.schemas import AccessNotification
from shortlink.store import LinkStore

__all__ = ["ResolutionService", "AccessRecorder"]

logger = logging.getLogger(__name__)

RESOLVE_REQUESTS_TOTAL = Counter(
    "shortlink_resolve_requests_total",
    "Total short code resolutions",
    ["status", "cache_hit"],
)
RESOLVE_DURATION = Histogram(
    "shortlink_resolve_duration_seconds",
    "Time taken to resolve short codes",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25],
)
EXPIRED_LINKS_PURGED_TOTAL = Counter(
    "shortlink_expired_links_purged_total",
    "Expired links deleted lazily on lookup",
)
NOTIFICATIONS_FAILED_TOTAL = Counter(
    "shortlink_notifications_failed_total",
    "Access notifications that could not be dispatched",
)


class ResolutionService:
    """Resolves short codes cache-first and reports every successful access."""

    def __init__(
        self,
        cache: CacheLayer,
        store: LinkStore,
        dispatcher: NotificationDispatcher[AccessNotification],
        clock: Callable[[], datetime.datetime] = utcnow,
    ) -> None:
        self._cache = cache
        self._store = store
        self._dispatcher = dispatcher
        self._clock = clock

    async def resolve(self, short_code: str, client_ip: str | None = None) -> str:
        """Return the target URL for ``short_code``.

        Args:
            short_code: Short code to resolve
            client_ip: Caller address recorded in the click log, if known

        Returns:
            str: Target URL

        Raises:
            LinkNotFoundError: The link is absent or expired
            StoreUnavailableError: Cache miss and the store cannot be read
        """
        start_time = time.perf_counter()
        cache_key = self._cache.cache_key(short_code)

        cached_url = await self._cache.get(cache_key)
        if cached_url is not None:
            self._notify(short_code, client_ip)
            self._observe(start_time, RequestStatus.SUCCESS, CacheStatus.HIT)
            return cached_url

        try:
            link = await self._store.find_by_key(short_code)
        except StoreUnavailableError:
            self._observe(start_time, RequestStatus.ERROR, CacheStatus.MISS)
            raise

        now = self._clock()
        if link is None:
            self._observe(start_time, RequestStatus.NOT_FOUND, CacheStatus.MISS)
            raise LinkNotFoundError(short_code)

        if link.is_expired(now):
            await self._purge_expired(short_code, cache_key)
            self._observe(start_time, RequestStatus.NOT_FOUND, CacheStatus.MISS)
            raise LinkNotFoundError(short_code)

        ttl = await self._cache.cache_link(short_code, link.original_url, link.clicks, link.expires_at, now)
        logger.debug(f"Cache repopulated for {short_code} (ttl={ttl})")

        self._notify(short_code, client_ip)
        self._observe(start_time, RequestStatus.SUCCESS, CacheStatus.MISS)
        return link.original_url

    async def _purge_expired(self, short_code: str, cache_key: str) -> None:
        await self._cache.delete(cache_key)
        try:
            await self._store.delete_mapping(short_code)
        except StoreUnavailableError as exc:
            logger.warning(f"Could not delete expired link {short_code}: {exc}")
            return
        EXPIRED_LINKS_PURGED_TOTAL.inc()
        logger.info(f"Expired link {short_code} deleted on lookup")

    def _notify(self, short_code: str, client_ip: str | None) -> None:
        try:
            accepted = self._dispatcher.submit(AccessNotification(short_code=short_code, client_ip=client_ip))
        except Exception as exc:
            NOTIFICATIONS_FAILED_TOTAL.inc()
            logger.error(f"Access notification failed for {short_code}: {exc}")
            return
        if not accepted:
            NOTIFICATIONS_FAILED_TOTAL.inc()

    @staticmethod
    def _observe(start_time: float, status: RequestStatus, cache_hit: CacheStatus) -> None:
        RESOLVE_DURATION.observe(time.perf_counter() - start_time)
        RESOLVE_REQUESTS_TOTAL.labels(status=status, cache_hit=cache_hit).inc()


class AccessRecorder:
    """Handles one access notification off the response path."""

    def __init__(self, aggregator: ClickAggregator, store: LinkStore) -> None:
        self._aggregator = aggregator
        self._store = store

    async def __call__(self, notification: AccessNotification) -> None:
        self._aggregator.record_access(notification.short_code)
        if notification.client_ip:
            await self._store.record_click(notification.short_code, notification.client_ip, notification.occurred_at)
