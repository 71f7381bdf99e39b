"""URL Shortener Service Layer - Core Business Logic

This module binds the mapping store and the deletion pipeline to one request:
the owner token from the request context scopes creation, listing and deletion.

Request Flow Diagrams
=====================

URL Creation Flow
-----------------
::
    ┌─────────────┐
    │  POST /api  │
    │  /shorten    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Generate     │
    │ short code   │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ storage.     │
    │ insert()     │
    └──────┬──────┘
    UNIQUE?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ 409 +   │  │ 201 +   │
│ existing│  │ new     │
│ code    │  │ code    │
└─────────┘  └─────────┘

Deletion Flow
-------------
::
    ┌─────────────┐
    │ DELETE /api │
    │ /user/urls  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ pipeline.    │
    │ submit()     │──► worker applies later
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ 202 Accepted │
    └─────────────┘

Usage Examples
=============
```python
@router.post("/api/shorten")
async def shorten(
    payload: URLCreate,
    service: URLShorteningService = Depends(get_url_service),
) -> ShortenResult:
    code = await service.shorten(payload.url)
    return ShortenResult(result=service.short_url_for(code))
```
"""

import time
from collections.abc import Sequence
from typing import TYPE_CHECKING

from prometheus_client import Counter, Histogram

from shortener.enums import RequestStatus
from shortener.exceptions import (
    AlreadyExistsError,
    DeadlineExceededError,
    GoneError,
    NotFoundError,
    StorageError,
)
from shortener.schemas import BatchShortenItem, BatchShortenResult, UserURLResponse
from shortener.shortcode import generate_short_code
from shortener.storage.pipeline import DeletionBatch

if TYPE_CHECKING:
    from shortener.dependencies import RequestContext

__all__ = ["URLShorteningService"]


# ============================================================================
# PROMETHEUS METRICS
# ============================================================================

URL_CREATION_REQUESTS_TOTAL = Counter(
    "url_shortener_creation_requests_total",
    "Total URL creation requests",
    ["status"],
)
URL_LOOKUP_REQUESTS_TOTAL = Counter(
    "url_shortener_lookup_requests_total",
    "Total URL lookup requests",
    ["status"],
)
URL_LOOKUP_DURATION = Histogram(
    "url_shortener_lookup_duration_seconds",
    "Time taken to lookup URLs",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25],
)
DELETION_REQUESTS_TOTAL = Counter(
    "url_shortener_deletion_requests_total",
    "Total deletion batches accepted from users",
)

_LOOKUP_STATUS = {
    NotFoundError: RequestStatus.NOT_FOUND,
    GoneError: RequestStatus.GONE,
    DeadlineExceededError: RequestStatus.TIMEOUT,
}


class URLShorteningService:
    """Per-request facade over the mapping store and the deletion pipeline.

    Storage errors are logged, counted and re-raised unchanged; translating
    them into responses is the caller's job. Nothing is retried here.

    Example:
        >>> service = URLShorteningService.from_context(ctx)
        >>> code = await service.shorten("https://example.com")
        >>> await service.resolve(code)
        'https://example.com'
    """

    def __init__(self, ctx: "RequestContext"):
        self._storage = ctx.storage
        self._lifecycle = ctx.lifecycle
        self._logger = ctx.logger
        self._settings = ctx.settings
        self._owner = ctx.owner_token
        self._ctx = ctx

    @classmethod
    def from_context(cls, ctx: "RequestContext") -> "URLShorteningService":
        return cls(ctx)

    @property
    def settings(self):
        return self._settings

    def short_url_for(self, short_code: str) -> str:
        return f"{self._settings.BASE_URL.rstrip('/')}/{short_code}"

    async def shorten(self, url: str) -> str:
        """Store ``url`` under a fresh short code owned by the current user.

        Raises:
            AlreadyExistsError: the URL is stored already; ``exc.short_code``
                holds the existing code, whoever owns it.
        """
        short_code = generate_short_code(self._settings.SHORT_CODE_LENGTH)
        try:
            await self._storage.insert(url, self._owner, short_code)
        except AlreadyExistsError as exc:
            URL_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.CONFLICT).inc()
            self._logger.info(f"URL already shortened: {url} as {exc.short_code}")
            raise
        except StorageError as exc:
            URL_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.ERROR).inc()
            self._logger.error(f"URL creation error: {exc}")
            raise

        URL_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
        self._logger.info(f"URL created: {short_code} -> {url}")
        return short_code

    async def shorten_batch(self, items: Sequence[BatchShortenItem]) -> list[BatchShortenResult]:
        """Shorten every item; already stored URLs resolve to their existing code."""
        results = []
        for item in items:
            try:
                short_code = await self.shorten(item.original_url)
            except AlreadyExistsError as exc:
                short_code = exc.short_code
            results.append(
                BatchShortenResult(
                    correlation_id=item.correlation_id,
                    short_url=self.short_url_for(short_code),
                )
            )
        return results

    async def resolve(self, short_code: str) -> str:
        start_time = time.perf_counter()
        try:
            url = await self._storage.lookup(short_code)
        except StorageError as exc:
            status = _LOOKUP_STATUS.get(type(exc), RequestStatus.ERROR)
            URL_LOOKUP_REQUESTS_TOTAL.labels(status=status).inc()
            if status is RequestStatus.ERROR:
                self._logger.error(f"URL lookup error for {short_code}: {exc}")
            else:
                self._logger.info(f"URL lookup for {short_code}: {status}")
            raise
        finally:
            URL_LOOKUP_DURATION.observe(time.perf_counter() - start_time)

        URL_LOOKUP_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
        return url

    async def list_user_urls(self) -> list[UserURLResponse]:
        owned = await self._storage.scan_by_owner(self._owner)
        self._logger.debug(f"Listed {len(owned)} live URLs")
        return [
            UserURLResponse(short_url=self.short_url_for(item.short_code), original_url=item.original_url)
            for item in owned
        ]

    async def delete_user_urls(self, short_codes: Sequence[str]) -> DeletionBatch:
        """Queue the current user's codes for soft deletion; does not wait for it to apply."""
        batch = await self._lifecycle.submit(self._owner, short_codes)
        DELETION_REQUESTS_TOTAL.inc()
        self._logger.info(f"Deletion batch {batch.batch_id} accepted for {len(batch.short_codes)} codes")
        return batch

    async def ping(self) -> None:
        await self._storage.health_check()
