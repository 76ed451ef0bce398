"""Dependency injection with a process-wide service manager.

The ServiceManager owns every long-lived collaborator (Redis client, cache
layer, store, click aggregator, notification dispatcher) and their
lifecycle. Routes receive lightweight per-request objects built from it, and
tests swap in a manager wired to fakes through ``app.dependency_overrides``.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

import redis.asyncio as redis
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shortlink.aggregator import ClickAggregator
from shortlink.cache import CacheLayer
from shortlink.config import Settings, get_settings
from shortlink.database import async_session
from shortlink.dispatcher import NotificationDispatcher
from shortlink.redis import close_redis, get_redis
from shortlink.resolver import AccessRecorder, ResolutionService
from shortlink.schemas import AccessNotification
from shortlink.service import LinkService
from shortlink.store import LinkStore


# ============================================================================
# SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Owner of shared resources and of the click pipeline lifecycle.

    Startup order: collaborators are built, the aggregator is started, then the
    dispatcher workers. Shutdown runs in reverse so queued notifications reach
    the aggregator before its final flush.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        cache_client: Optional[redis.Redis] = None,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ) -> None:
        self._settings_override = settings
        self._cache_client_override = cache_client
        self._session_factory_override = session_factory
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Initialize shared resources once at startup."""
        if self._initialized:
            return

        self.settings = self._settings_override or get_settings()
        self.logger = self._setup_logger()
        self.cache_client = self._cache_client_override or await get_redis()
        self.cache = CacheLayer(self.cache_client, self.settings)
        self.store = LinkStore(self._session_factory_override or async_session)
        self.aggregator = ClickAggregator(self.store, self.settings)
        self.dispatcher: NotificationDispatcher[AccessNotification] = NotificationDispatcher(
            AccessRecorder(self.aggregator, self.store),
            max_size=self.settings.NOTIFY_QUEUE_SIZE,
            workers=self.settings.NOTIFY_WORKERS,
            policy=self.settings.NOTIFY_BACKPRESSURE_POLICY,
        )
        self.resolver = ResolutionService(self.cache, self.store, self.dispatcher)
        self.links = LinkService(self.cache, self.store, self.aggregator, self.settings)

        self.aggregator.start()
        self.dispatcher.start()
        self._initialized = True
        self.logger.info("Service manager initialized")

    def _setup_logger(self) -> logging.Logger:
        """Setup the package logger once."""
        logger = logging.getLogger("shortlink")
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)
        logger.setLevel(self.settings.LOG_LEVEL.upper())
        return logger

    async def warmup(self) -> int:
        if not self.settings.CACHE_WARMUP_ENABLED:
            return 0
        return await self.links.warmup_cache(self.settings.CACHE_WARMUP_LIMIT)

    async def cleanup(self) -> None:
        """Drain notifications, flush buffered clicks, release clients."""
        if not self._initialized:
            return
        grace = self.settings.SHUTDOWN_GRACE_SECONDS
        await self.dispatcher.stop(grace)
        await self.aggregator.stop(grace)
        if self._cache_client_override is None:
            await close_redis()
        self._initialized = False
        self.logger.info("Service manager shut down")


# Global instance used by the application
_service_manager = ServiceManager()


# ============================================================================
# LIGHTWEIGHT REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Per-request tracking data plus access to the shared manager.

    Attributes:
        service_manager: Process-wide service manager
        request_id: Unique identifier for this request
        client_ip: Client IP address (first X-Forwarded-For hop when present)
        user_agent: Client user agent string
        start_time: Request start timestamp
    """

    service_manager: ServiceManager
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None
    start_time: float = field(default_factory=lambda: time.time())

    @property
    def settings(self) -> Settings:
        return self.service_manager.settings

    @property
    def logger(self) -> logging.LoggerAdapter:
        """Shared logger with request context attached."""
        return logging.LoggerAdapter(
            self.service_manager.logger,
            {"request_id": self.request_id, "client_ip": self.client_ip, "user_agent": self.user_agent},
        )

    def get_duration(self) -> float:
        """Get request duration in milliseconds."""
        return (time.time() - self.start_time) * 1000


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


async def get_service_manager() -> ServiceManager:
    if not _service_manager.initialized:
        await _service_manager.initialize()
    return _service_manager


def client_ip_from(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    return request.client.host if request.client else None


async def get_request_context(
    request: Request,
    manager: ServiceManager = Depends(get_service_manager),
) -> RequestContext:
    return RequestContext(
        service_manager=manager,
        client_ip=client_ip_from(request),
        user_agent=request.headers.get("user-agent"),
    )


def get_resolution_service(manager: ServiceManager = Depends(get_service_manager)) -> ResolutionService:
    return manager.resolver


def get_link_service(manager: ServiceManager = Depends(get_service_manager)) -> LinkService:
    return manager.links
