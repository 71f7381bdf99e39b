"""FastAPI route definitions for the URL shortener REST API.

API Endpoint Overview
=====================
::
    GET    /ping
        └─ 200 or 500

    GET    /health
        └─ HealthResponse (200)

    POST   /
        ├─ text/plain long URL
        └─ 201 short URL, 409 existing short URL, 400 invalid

    POST   /api/shorten
        ├─ URLCreate (request body)
        └─ ShortenResult (201) or 409 with the existing short URL

    POST   /api/shorten/batch
        ├─ list[BatchShortenItem]
        └─ list[BatchShortenResult] (201)

    GET    /api/user/urls
        └─ list[UserURLResponse] (200), 204 if empty, 401 for a forged cookie

    DELETE /api/user/urls
        ├─ list[str] short codes
        └─ 202 Accepted

    GET    /:short_code
        └─ 307 Redirect, 404, 410 or 504

Key Behaviours
===============
- The owner of every created, listed or deleted URL is the signed cookie
  token resolved by ``OwnerCookieMiddleware``.
- Deletion only queues work; 202 means the batch was handed to a worker.
- A soft-deleted short code answers 410 Gone instead of 404.
"""

import validators
from fastapi import APIRouter, Body, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse

from shortener.dependencies import RequestContext, get_request_context, get_url_service
from shortener.enums import HealthStatus
from shortener.exceptions import (
    AlreadyExistsError,
    DeadlineExceededError,
    DeletionPipelineError,
    GoneError,
    NotFoundError,
    StorageError,
)
from shortener.schemas import (
    BatchShortenItem,
    BatchShortenResult,
    HealthResponse,
    ShortenResult,
    URLCreate,
    UserURLResponse,
)
from shortener.service import URLShorteningService

__all__ = ["router"]

router = APIRouter()

_STATUS_BY_ERROR = {
    NotFoundError: 404,
    GoneError: 410,
    DeadlineExceededError: 504,
}


def _http_error(exc: StorageError) -> HTTPException:
    status_code = _STATUS_BY_ERROR.get(type(exc), 500)
    return HTTPException(status_code=status_code, detail=str(exc))


@router.get("/ping", tags=["health"])
async def ping(service: URLShorteningService = Depends(get_url_service)) -> Response:
    try:
        await service.ping()
    except StorageError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return PlainTextResponse("OK")


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(ctx: RequestContext = Depends(get_request_context)) -> HealthResponse:
    storage_status = HealthStatus.HEALTHY
    try:
        await ctx.storage.health_check()
    except StorageError as exc:
        ctx.logger.error(f"Storage health check failed: {exc}")
        storage_status = HealthStatus.UNHEALTHY

    pipeline_status = HealthStatus.HEALTHY if ctx.lifecycle.pipeline.accepting else HealthStatus.UNHEALTHY
    status = (
        HealthStatus.HEALTHY
        if storage_status is HealthStatus.HEALTHY and pipeline_status is HealthStatus.HEALTHY
        else HealthStatus.UNHEALTHY
    )
    return HealthResponse(status=status, storage=storage_status, pipeline=pipeline_status)


@router.post("/api/shorten/batch", response_model=list[BatchShortenResult], status_code=201, tags=["urls"])
async def shorten_batch(
    items: list[BatchShortenItem],
    service: URLShorteningService = Depends(get_url_service),
) -> list[BatchShortenResult]:
    try:
        return await service.shorten_batch(items)
    except StorageError as exc:
        raise _http_error(exc) from exc


@router.post("/api/shorten", response_model=ShortenResult, status_code=201, tags=["urls"])
async def shorten_url(
    payload: URLCreate,
    service: URLShorteningService = Depends(get_url_service),
) -> Response:
    try:
        short_code = await service.shorten(payload.url)
    except AlreadyExistsError as exc:
        return JSONResponse(
            status_code=409,
            content=ShortenResult(result=service.short_url_for(exc.short_code)).model_dump(),
        )
    except StorageError as exc:
        raise _http_error(exc) from exc
    return JSONResponse(status_code=201, content=ShortenResult(result=service.short_url_for(short_code)).model_dump())


@router.get("/api/user/urls", response_model=list[UserURLResponse], tags=["urls"])
async def list_user_urls(
    request: Request,
    service: URLShorteningService = Depends(get_url_service),
) -> Response:
    if request.state.owner_rejected:
        raise HTTPException(status_code=401, detail="owner cookie failed verification")
    try:
        urls = await service.list_user_urls()
    except StorageError as exc:
        raise _http_error(exc) from exc
    if not urls:
        return Response(status_code=204)
    return JSONResponse(status_code=200, content=[url.model_dump() for url in urls])


@router.delete("/api/user/urls", status_code=202, tags=["urls"])
async def delete_user_urls(
    short_codes: list[str] = Body(...),
    service: URLShorteningService = Depends(get_url_service),
) -> Response:
    try:
        await service.delete_user_urls(short_codes)
    except DeletionPipelineError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return Response(status_code=202)


@router.post("/", tags=["urls"])
async def shorten_text(
    request: Request,
    service: URLShorteningService = Depends(get_url_service),
) -> Response:
    url = (await request.body()).decode("utf-8", errors="replace").strip()
    if not validators.url(url):
        return PlainTextResponse("Invalid URL provided", status_code=400)

    try:
        short_code = await service.shorten(url)
    except AlreadyExistsError as exc:
        return PlainTextResponse(service.short_url_for(exc.short_code), status_code=409)
    except StorageError as exc:
        raise _http_error(exc) from exc
    return PlainTextResponse(service.short_url_for(short_code), status_code=201)


@router.get("/{short_code}", tags=["redirect"])
async def redirect_to_url(
    short_code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: URLShorteningService = Depends(get_url_service),
) -> RedirectResponse:
    try:
        url = await service.resolve(short_code)
    except StorageError as exc:
        ctx.logger.warning(
            f"Redirect failed for {short_code}: {exc}",
            extra={"operation": "redirect", "short_code": short_code, "duration_ms": ctx.get_duration()},
        )
        raise _http_error(exc) from exc

    return RedirectResponse(url=url, status_code=307)
