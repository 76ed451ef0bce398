"""Process-wide Redis client backing the link cache.

The client is built lazily by the ServiceManager and handed to CacheLayer,
which is the only module that issues commands against it.

Client Lifecycle
================
::
    ServiceManager.initialize()
            │
            ▼
      get_redis() ── client already built? ── YES ──► reuse it
            │ NO
            ▼
      redis.from_url(REDIS_URL, socket timeouts)
            │
            ▼
    ServiceManager.cleanup() ──► close_redis() ──► aclose(), forget client

How to Use
===========
**Step 1 — Wrap in the cache layer**::
    cache = CacheLayer(await get_redis(), settings)

**Step 2 — Release on shutdown**::
    await close_redis()

Key Behaviours
===============
- One client (and its connection pool) per process.
- Socket and connect timeouts are short, so a dead Redis surfaces as an
  error within REDIS_SOCKET_TIMEOUT_SECONDS; CacheLayer turns it into a miss.
- Responses are decoded to str.

Functions:
    get_redis():  Shared Redis client.
    close_redis():  Close and drop the shared client.
"""

import redis.asyncio as redis

from shortlink.config import get_settings

__all__ = ["close_redis", "get_redis"]

settings = get_settings()

redis_client: redis.Redis | None = None


async def get_redis() -> redis.Redis:
    global redis_client
    if redis_client is None:
        redis_client = redis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
            socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
        )
    return redis_client


async def close_redis() -> None:
    global redis_client
    if redis_client is not None:
        await redis_client.aclose()
        redis_client = None
