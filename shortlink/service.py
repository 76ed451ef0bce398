"""Link management operations around the resolution core.

Creation, info, analytics, deletion and cache warmup. These share the cache
TTL policy and the lazy-expiry rule with the resolver, so a link that has
expired is reported as not found everywhere.

Flow Diagram — create_link()
============================
::
    ┌─────────────┐
    │ POST /api/  │
    │ shorten     │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ expires_at  │──► in the past ──► InvalidLinkError
    │ check       │
    └──────┬──────┘
           ▼
    alias given? ── YES ──► reserved? ──► InvalidLinkError
           │                   │ no
           │ NO                ▼
           ▼             INSERT (taken ──► LinkAlreadyExistsError)
    nanoid code, retry on
    collision / reserved name
           │
           ▼
    ┌─────────────┐
    │ Cache with  │
    │ TTL policy  │
    └─────────────┘

How to Use
===========
**Step 1 — Build**::
    service = LinkService(cache, store, aggregator, settings)

**Step 2 — Call**::
    created = await service.create_link(LinkCreate(url="https://example.com"))
    info = await service.get_link_info(created.short_code)

Functions:
    generate_short_code():  Random URL-safe short code.

Classes:
    LinkService:  Create / info / analytics / delete / warmup.
"""

import datetime
import logging
from collections.abc import Callable

from nanoid import generate

from shortlink.aggregator import ClickAggregator
from shortlink.cache import CacheLayer
from shortlink.config import Settings
from shortlink.exceptions import InvalidLinkError, LinkAlreadyExistsError, LinkNotFoundError, StoreUnavailableError
from shortlink.models import Link, utcnow
from shortlink.schemas import LinkAnalytics, LinkCreate, LinkInfo, LinkResponse, RecentClick
from shortlink.store import LinkStore

__all__ = ["ALPHABET", "RESERVED_CODES", "LinkService", "generate_short_code"]

logger = logging.getLogger(__name__)

ALPHABET = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"

# First path segments owned by the API; a short code equal to one would be shadowed.
RESERVED_CODES = frozenset({"api", "health", "metrics", "docs", "redoc", "openapi"})


def generate_short_code(length: int = 8) -> str:
    assert isinstance(length, int) and length > 0, f"length must be a positive integer, got {length!r}"
    return generate(ALPHABET, length)


def is_reserved(code: str) -> bool:
    return code.lower() in RESERVED_CODES


class LinkService:
    """Management operations for links."""

    def __init__(
        self,
        cache: CacheLayer,
        store: LinkStore,
        aggregator: ClickAggregator,
        settings: Settings,
        clock: Callable[[], datetime.datetime] = utcnow,
    ) -> None:
        self._cache = cache
        self._store = store
        self._aggregator = aggregator
        self._settings = settings
        self._clock = clock

    async def create_link(self, request: LinkCreate) -> LinkResponse:
        """Create a link from a validated request.

        Raises:
            InvalidLinkError: Expiry not in the future, or alias shadows an API route
            LinkAlreadyExistsError: Alias taken, or no free code after all attempts
        """
        now = self._clock()
        if request.expires_at is not None and request.expires_at <= now:
            raise InvalidLinkError("Expiration date must be in the future")

        if request.alias:
            if is_reserved(request.alias):
                raise InvalidLinkError(f'"{request.alias}" conflicts with existing system routes')
            link = await self._store.create_mapping(
                Link(
                    short_code=request.alias,
                    alias=request.alias,
                    original_url=request.url,
                    expires_at=request.expires_at,
                )
            )
        else:
            link = await self._create_with_generated_code(request)

        await self._cache.cache_link(link.short_code, link.original_url, 0, link.expires_at, now)
        logger.info(f"Link created: {link.short_code} -> {link.original_url}")
        return self._response(link, LinkResponse)

    async def get_link_info(self, short_code: str) -> LinkInfo:
        link = await self._live_link(short_code)
        # Stored counter lags by at most one flush window; add what is still buffered.
        clicks = link.clicks + self._aggregator.pending_count(short_code)
        cached = await self._cache.exists(self._cache.cache_key(short_code))
        return self._response(link, LinkInfo, clicks=clicks, cached=cached)

    async def get_link_analytics(self, short_code: str, recent_limit: int = 5) -> LinkAnalytics:
        link = await self._live_link(short_code)
        clicks = await self._store.click_count(short_code)
        recent = await self._store.recent_clicks(short_code, limit=recent_limit)
        return self._response(
            link,
            LinkAnalytics,
            clicks=clicks,
            recent_clicks=[RecentClick.model_validate(click) for click in recent],
        )

    async def delete_link(self, short_code: str) -> None:
        deleted = await self._store.delete_mapping(short_code)
        await self._cache.delete(self._cache.cache_key(short_code))
        if not deleted:
            raise LinkNotFoundError(short_code)
        logger.info(f"Link deleted: {short_code}")

    async def warmup_cache(self, limit: int) -> int:
        """Pre-populate the cache with the most clicked live links.

        Keys already present in the cache keep their current TTL.

        Returns:
            int: Number of links written to the cache
        """
        now = self._clock()
        try:
            links = await self._store.popular_links(limit, now)
        except StoreUnavailableError as exc:
            logger.error(f"Cache warmup failed: {exc}")
            return 0

        cached = await self._cache.mget([self._cache.cache_key(link.short_code) for link in links])
        warmed = 0
        for link, current in zip(links, cached):
            if current is not None:
                continue
            ttl = await self._cache.cache_link(link.short_code, link.original_url, link.clicks, link.expires_at, now)
            if ttl is not None:
                warmed += 1

        logger.info(f"Cache warmed up with {warmed} of {len(links)} popular links")
        return warmed

    async def _create_with_generated_code(self, request: LinkCreate) -> Link:
        for attempt in range(1, self._settings.SHORT_CODE_MAX_ATTEMPTS + 1):
            short_code = generate_short_code(self._settings.SHORT_CODE_LENGTH)
            if is_reserved(short_code):
                continue
            try:
                return await self._store.create_mapping(
                    Link(short_code=short_code, original_url=request.url, expires_at=request.expires_at)
                )
            except LinkAlreadyExistsError:
                logger.info(f"Short code collision on attempt {attempt}/{self._settings.SHORT_CODE_MAX_ATTEMPTS}")
        raise LinkAlreadyExistsError("Unable to generate a unique short code, please try again")

    async def _live_link(self, short_code: str) -> Link:
        link = await self._store.find_by_key(short_code)
        if link is None:
            raise LinkNotFoundError(short_code)
        if link.is_expired(self._clock()):
            await self._cache.delete(self._cache.cache_key(short_code))
            await self._store.delete_mapping(short_code)
            raise LinkNotFoundError(short_code)
        return link

    def _response(self, link: Link, schema: type, **extra):
        return schema(
            short_code=link.short_code,
            original_url=link.original_url,
            short_url=f"{self._settings.BASE_URL}/{link.short_code}",
            created_at=link.created_at,
            expires_at=link.expires_at,
            **extra,
        )
