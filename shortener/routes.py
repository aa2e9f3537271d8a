"""FastAPI route definitions for the URL shortener REST API.

API Endpoint Overview
=====================
::
    GET  /health
        └─ HealthResponse (200)

    POST /shorten
        ├─ ShortenRequest (request body)
        └─ ShortenResponse (201 new, 200 existing) or 400/500/503/504

    GET  /:short_key
        └─ 301 Redirect or 404

Request Flow Diagram
====================
::
    ┌─────────────┐
    │  HTTP       │
    │  Request    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Validate &  │
    │ Parse       │
    │ (Pydantic)  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Inject      │
    │ Context and │
    │ Controller  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Allocation  │
    │ Controller  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Response or │
    │ ShortenerErr│
    │ → handler   │
    └─────────────┘

Key Behaviours
===============
- Controller errors are not caught here; the exception handlers registered in
  shortener.main render them as ``{"error": ...}`` with their status code.
- Every call runs under the deadline configured for its operation.
- 301 redirects: a short key never changes its target.

Endpoints:
    /health:  Health check for monitoring.
    /shorten:  Create (or return the existing) short URL.
    /:short_key:  Redirect to the original URL.
"""

from fastapi import APIRouter, Depends, Response, status
from fastapi.responses import RedirectResponse

from shortener.allocation import AllocationController
from shortener.dependencies import RequestContext, get_allocation_controller, get_request_context
from shortener.enums import HealthStatus
from shortener.errors import StorageUnavailable
from shortener.schemas import ErrorResponse, HealthResponse, ShortenRequest, ShortenResponse, build_short_url

__all__ = ["router"]

router = APIRouter()


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(ctx: RequestContext = Depends(get_request_context)) -> HealthResponse:
    db_status = HealthStatus.HEALTHY
    lock_status = HealthStatus.HEALTHY

    try:
        await ctx.service_manager.store.ping()
    except StorageUnavailable as e:
        ctx.logger.error(f"Database health check failed: {e}")
        db_status = HealthStatus.UNHEALTHY

    try:
        await ctx.service_manager.url_lock.ping()
    except StorageUnavailable as e:
        ctx.logger.error(f"Lock backend health check failed: {e}")
        lock_status = HealthStatus.UNHEALTHY

    overall = (
        HealthStatus.HEALTHY
        if db_status is HealthStatus.HEALTHY and lock_status is HealthStatus.HEALTHY
        else HealthStatus.UNHEALTHY
    )
    return HealthResponse(status=overall, database=db_status, lock=lock_status)


@router.post(
    "/shorten",
    response_model=ShortenResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        200: {"model": ShortenResponse, "description": "URL was already shortened"},
        400: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
        504: {"model": ErrorResponse},
    },
    tags=["urls"],
)
async def shorten_url(
    payload: ShortenRequest,
    response: Response,
    ctx: RequestContext = Depends(get_request_context),
    controller: AllocationController = Depends(get_allocation_controller),
) -> ShortenResponse:
    ctx.logger.info(f"URL shortening requested: {payload.url}")

    result = await controller.shorten(payload.url, timeout=ctx.settings.SHORTEN_TIMEOUT_SECONDS)
    if not result.created:
        # 200 rather than 201: nothing new was created.
        response.status_code = status.HTTP_200_OK

    ctx.logger.info(
        f"URL shortened: {result.key} (created={result.created}, attempts={result.attempts})"
        f" in {ctx.get_duration():.1f}ms"
    )
    return ShortenResponse(short_url=build_short_url(ctx.settings.BASE_URL, result.key))


@router.get(
    "/{short_key}",
    status_code=status.HTTP_301_MOVED_PERMANENTLY,
    responses={404: {"model": ErrorResponse}},
    tags=["redirect"],
)
async def redirect_to_url(
    short_key: str,
    ctx: RequestContext = Depends(get_request_context),
    controller: AllocationController = Depends(get_allocation_controller),
) -> RedirectResponse:
    original_url = await controller.resolve(short_key, timeout=ctx.settings.RESOLVE_TIMEOUT_SECONDS)
    ctx.logger.info(f"Redirect: {short_key} -> {original_url}")
    return RedirectResponse(url=original_url, status_code=status.HTTP_301_MOVED_PERMANENTLY)
