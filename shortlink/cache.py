"""Fail-soft read-through cache layer in front of the link store.

Every cache operation absorbs backend failures: a Redis outage degrades the
service to store-only reads, it never turns into an error for the caller.
TTL expiry is the only eviction mechanism; hot links earn a longer TTL
through the popularity bonus instead of an LRU/LFU structure.

TTL Policy
==========
::
    ┌──────────────────┐
    │ cache_link(...)  │
    └────────┬─────────┘
             ▼
      expires_at set?
    ┌────────┴────────┐
    │ YES              │ NO
    ▼                  ▼
┌──────────────┐  ┌───────────────────────────────┐
│ ttl = max(0, │  │ ttl = default                  │
│  expires_at  │  │     + min(clicks * bonus, cap) │
│  - now)      │  └───────────────┬───────────────┘
└──────┬───────┘                  ▼
       ▼                     SET url:{code}
  ttl <= 0 ? ── YES ──► skip (already expired)
       │ NO
       ▼
  SET url:{code} EX ttl

Failure Handling
================
::
    get / exists / mget  ──► RedisError ──► None / False / [None, ...]
    set / delete         ──► RedisError ──► no-op
    ping                 ──► RedisError ──► CacheUnavailableError

How to Use
===========
**Step 1 — Build from a Redis client**::
    cache = CacheLayer(await get_redis(), settings)

**Step 2 — Read and populate**::
    target = await cache.get(cache.cache_key("abc123"))
    if target is None:
        await cache.cache_link("abc123", "https://x.com", clicks=42, expires_at=None, now=utcnow())

Classes:
    CacheLayer:  Fail-soft wrapper around an async Redis client.
"""

import asyncio
import datetime
import logging
import math
from collections.abc import Awaitable, Sequence
from typing import TypeVar

import redis.asyncio as redis
from prometheus_client import Counter
from redis.exceptions import RedisError

from shortlink.config import Settings
from shortlink.exceptions import CacheUnavailableError
from shortlink.models import as_utc

__all__ = ["CacheLayer"]

logger = logging.getLogger(__name__)

T = TypeVar("T")

CACHE_BACKEND_ERRORS = (RedisError, OSError, asyncio.TimeoutError)

CACHE_OPERATIONS_TOTAL = Counter(
    "shortlink_cache_operations_total",
    "Cache operations issued against Redis",
    ["operation"],
)
CACHE_ERRORS_TOTAL = Counter(
    "shortlink_cache_errors_total",
    "Cache operations absorbed because Redis was unavailable",
    ["operation"],
)


class CacheLayer:
    """Key/value cache with per-key expiry and popularity-aware TTLs."""

    def __init__(self, client: redis.Redis, settings: Settings) -> None:
        self._client = client
        self._key_prefix = settings.CACHE_KEY_PREFIX
        self._default_ttl = settings.CACHE_DEFAULT_TTL_SECONDS
        self._bonus_factor = settings.CACHE_POPULARITY_BONUS_SECONDS
        self._max_bonus = settings.CACHE_MAX_BONUS_SECONDS

    @property
    def default_ttl(self) -> int:
        return self._default_ttl

    @property
    def max_ttl(self) -> int:
        return self._default_ttl + self._max_bonus

    def cache_key(self, short_code: str) -> str:
        return f"{self._key_prefix}:{short_code}"

    # ========================================================================
    # BASIC OPERATIONS
    # ========================================================================

    async def get(self, key: str) -> str | None:
        return await self._run("get", self._client.get(key), None)

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        """Store ``value`` under ``key`` for ``ttl`` seconds (default TTL when omitted).

        A non-positive TTL means the value is already stale and is not written.
        """
        ttl = self._default_ttl if ttl is None else ttl
        if ttl <= 0:
            return
        await self._run("set", self._client.set(key, value, ex=ttl), None)

    async def delete(self, key: str) -> None:
        await self._run("delete", self._client.delete(key), None)

    async def exists(self, key: str) -> bool:
        result = await self._run("exists", self._client.exists(key), 0)
        return bool(result)

    async def mget(self, keys: Sequence[str]) -> list[str | None]:
        """Fetch many keys at once, positionally aligned with ``keys``."""
        if not keys:
            return []
        misses: list[str | None] = [None] * len(keys)
        values = await self._run("mget", self._client.mget(list(keys)), misses)
        return list(values)

    async def ping(self) -> None:
        try:
            await self._client.ping()
        except CACHE_BACKEND_ERRORS as exc:
            raise CacheUnavailableError(str(exc)) from exc

    # ========================================================================
    # TTL POLICY
    # ========================================================================

    def popularity_ttl(self, base_access_count: int) -> int:
        bonus = min(max(base_access_count, 0) * self._bonus_factor, self._max_bonus)
        return self._default_ttl + bonus

    @staticmethod
    def expiration_ttl(expires_at: datetime.datetime, now: datetime.datetime) -> int:
        remaining = (as_utc(expires_at) - now).total_seconds()
        return max(0, math.floor(remaining))

    async def set_with_popularity_bonus(self, key: str, value: str, base_access_count: int = 0) -> None:
        await self.set(key, value, self.popularity_ttl(base_access_count))

    async def cache_link(
        self,
        short_code: str,
        original_url: str,
        clicks: int,
        expires_at: datetime.datetime | None,
        now: datetime.datetime,
    ) -> int | None:
        """Populate the cache entry for a link using the matching TTL policy.

        Args:
            short_code: Link identifier
            original_url: Target URL to serve on hits
            clicks: Stored access counter, used for the popularity bonus
            expires_at: Link expiry; the entry never outlives it
            now: Reference time for the expiry computation

        Returns:
            int | None: TTL written, or None when the link has no lifetime left
        """
        key = self.cache_key(short_code)
        if expires_at is not None:
            ttl = self.expiration_ttl(expires_at, now)
            if ttl <= 0:
                logger.debug(f"Link {short_code} has no lifetime left, not caching")
                return None
            await self.set(key, original_url, ttl)
            return ttl

        ttl = self.popularity_ttl(clicks)
        await self.set(key, original_url, ttl)
        return ttl

    # ========================================================================
    # PRIVATE HELPERS
    # ========================================================================

    async def _run(self, operation: str, call: Awaitable[T], fallback: T) -> T:
        CACHE_OPERATIONS_TOTAL.labels(operation=operation).inc()
        try:
            return await call
        except CACHE_BACKEND_ERRORS as exc:
            CACHE_ERRORS_TOTAL.labels(operation=operation).inc()
            logger.warning(f"Cache {operation} failed, treating cache as unavailable: {exc}")
            return fallback
