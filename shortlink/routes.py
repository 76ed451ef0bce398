"""FastAPI route definitions for the shortlink REST API.

API Endpoint Overview
=====================
::
    GET    /health
        └─ HealthResponse (200)

    POST   /api/shorten
        ├─ LinkCreate (request body)
        └─ LinkResponse (201) or 400/409/422

    GET    /api/info/:short_code
        └─ LinkInfo (200) or 404

    GET    /api/analytics/:short_code
        └─ LinkAnalytics (200) or 404

    DELETE /api/links/:short_code
        └─ DeleteResponse (200) or 404

    GET    /:short_code
        └─ 307 Redirect, 404 or 503

Key Behaviours
===============
- The redirect path only reports "not found" for absent and expired links
  alike; cache outages never surface here.
- A store outage on a cache miss is reported as 503.
- Access recording happens after the response is decided and never delays it.

Endpoints:
    /health:  Health check for monitoring.
    /api/shorten:  Create new short links.
    /api/info/:code:  Link details with live click count.
    /api/analytics/:code:  Click log summary.
    /api/links/:code:  Delete a link.
    /:code:  Redirect to the target URL.
"""

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse

from shortlink.dependencies import (
    RequestContext,
    ServiceManager,
    get_link_service,
    get_request_context,
    get_resolution_service,
    get_service_manager,
)
from shortlink.enums import HealthStatus
from shortlink.exceptions import (
    CacheUnavailableError,
    InvalidLinkError,
    LinkAlreadyExistsError,
    LinkNotFoundError,
    StoreUnavailableError,
)
from shortlink.resolver import ResolutionService
from shortlink.schemas import DeleteResponse, HealthResponse, LinkAnalytics, LinkCreate, LinkInfo, LinkResponse
from shortlink.service import LinkService

__all__ = ["router"]

router = APIRouter()

NOT_FOUND_DETAIL = "Short URL not found"
UNAVAILABLE_DETAIL = "Service temporarily unavailable"


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(
    ctx: RequestContext = Depends(get_request_context),
    manager: ServiceManager = Depends(get_service_manager),
) -> HealthResponse:
    db_status = HealthStatus.HEALTHY
    cache_status = HealthStatus.HEALTHY

    try:
        await manager.store.ping()
    except StoreUnavailableError as e:
        ctx.logger.error(f"Database health check failed: {e}")
        db_status = HealthStatus.UNHEALTHY

    try:
        await manager.cache.ping()
    except CacheUnavailableError as e:
        ctx.logger.error(f"Cache health check failed: {e}")
        cache_status = HealthStatus.UNHEALTHY

    # The redirect path survives a cache outage, so only the database decides overall health.
    return HealthResponse(status=db_status, database=db_status, cache=cache_status)


@router.post("/api/shorten", response_model=LinkResponse, status_code=201, tags=["links"])
async def shorten_url(
    payload: LinkCreate,
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> LinkResponse:
    ctx.logger.info(
        f"Link creation requested: {payload.url}",
        extra={"operation": "create_link", "alias": payload.alias},
    )
    try:
        return await service.create_link(payload)
    except InvalidLinkError as exc:
        ctx.logger.warning(f"Link creation rejected: {exc}")
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except LinkAlreadyExistsError as exc:
        ctx.logger.warning(f"Link creation conflict: {exc}")
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except StoreUnavailableError as exc:
        ctx.logger.error(f"Link creation failed: {exc}")
        raise HTTPException(status_code=503, detail=UNAVAILABLE_DETAIL) from exc


@router.get("/api/info/{short_code}", response_model=LinkInfo, tags=["links"])
async def get_info(
    short_code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> LinkInfo:
    try:
        return await service.get_link_info(short_code)
    except LinkNotFoundError as exc:
        raise HTTPException(status_code=404, detail=NOT_FOUND_DETAIL) from exc
    except StoreUnavailableError as exc:
        ctx.logger.error(f"Info lookup failed for {short_code}: {exc}")
        raise HTTPException(status_code=503, detail=UNAVAILABLE_DETAIL) from exc


@router.get("/api/analytics/{short_code}", response_model=LinkAnalytics, tags=["links"])
async def get_analytics(
    short_code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> LinkAnalytics:
    try:
        return await service.get_link_analytics(short_code)
    except LinkNotFoundError as exc:
        raise HTTPException(status_code=404, detail=NOT_FOUND_DETAIL) from exc
    except StoreUnavailableError as exc:
        ctx.logger.error(f"Analytics lookup failed for {short_code}: {exc}")
        raise HTTPException(status_code=503, detail=UNAVAILABLE_DETAIL) from exc


@router.delete("/api/links/{short_code}", response_model=DeleteResponse, tags=["links"])
async def delete_link(
    short_code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> DeleteResponse:
    try:
        await service.delete_link(short_code)
    except LinkNotFoundError as exc:
        raise HTTPException(status_code=404, detail=NOT_FOUND_DETAIL) from exc
    except StoreUnavailableError as exc:
        ctx.logger.error(f"Delete failed for {short_code}: {exc}")
        raise HTTPException(status_code=503, detail=UNAVAILABLE_DETAIL) from exc
    return DeleteResponse(message="Short URL deleted successfully")


@router.get("/{short_code}", tags=["redirect"])
async def redirect_to_url(
    short_code: str,
    ctx: RequestContext = Depends(get_request_context),
    resolver: ResolutionService = Depends(get_resolution_service),
) -> RedirectResponse:
    try:
        target_url = await resolver.resolve(short_code, client_ip=ctx.client_ip)
    except LinkNotFoundError as exc:
        ctx.logger.info(
            f"Redirect failed - short code not found: {short_code}",
            extra={"operation": "redirect", "short_code": short_code, "duration_ms": ctx.get_duration()},
        )
        raise HTTPException(status_code=404, detail=NOT_FOUND_DETAIL) from exc
    except StoreUnavailableError as exc:
        ctx.logger.error(f"Redirect failed - store unavailable for {short_code}: {exc}")
        raise HTTPException(status_code=503, detail=UNAVAILABLE_DETAIL) from exc

    ctx.logger.debug(
        f"Redirect: {short_code} -> {target_url}",
        extra={"operation": "redirect", "short_code": short_code, "duration_ms": ctx.get_duration()},
    )
    return RedirectResponse(url=target_url, status_code=307)
