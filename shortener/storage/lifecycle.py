"""Lifecycle coordination for the mapping store and its deletion pipeline.

``StorageLifecycle`` is the explicitly constructed object that owns the store
handle, the deletion worker pool and the stop signal. Request-handling code
receives it at construction time instead of reaching for module globals.

Shutdown Sequence
=================
::
    stop signal set
          │
          ▼
    close hand-off queue ──► no new batches, queued ones still drain
          │
          ▼
    wait for every worker
          │
          ▼
    close store handle
          │
          ▼
    closed (wait_closed() returns)

How to Use
===========
**Step 1 — Start**::
    lifecycle = await init_storage(settings)

**Step 2 — Serve**::
    url = await lifecycle.storage.lookup("abc123")
    await lifecycle.submit("owner-token", ["abc123"])

**Step 3 — Stop**::
    await lifecycle.shutdown()

Key Behaviours
===============
- No worker ever runs against a closed store handle.
- Every batch handed off before the stop signal is applied before the store
  is released.
- If the worker pool dies early, producers are released at once and the store
  keeps serving reads and inserts; ``shutdown()`` re-raises the pool failure
  after the store has been released.
"""

import asyncio
import logging
from collections.abc import Sequence
from typing import Optional

from shortener.config import Settings
from shortener.enums import StorageBackend
from shortener.exceptions import DeletionPipelineError, StorageInitError
from shortener.storage.base import URLStorage
from shortener.storage.file import FileURLStorage
from shortener.storage.pipeline import DeletionBatch, DeletionPipeline
from shortener.storage.sql import SQLURLStorage

__all__ = ["StorageLifecycle", "build_storage", "init_storage"]

logger = logging.getLogger(__name__)


class StorageLifecycle:
    def __init__(
        self,
        storage: URLStorage,
        pipeline: DeletionPipeline,
        stop_event: Optional[asyncio.Event] = None,
    ):
        self.storage = storage
        self.pipeline = pipeline
        self._stop = stop_event if stop_event is not None else asyncio.Event()
        self._closed = asyncio.Event()
        self._coordinator: Optional[asyncio.Task] = None
        self._failure: Optional[DeletionPipelineError] = None

    @property
    def stop_event(self) -> asyncio.Event:
        return self._stop

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def start(self) -> None:
        if self._coordinator is not None:
            raise RuntimeError("storage lifecycle already started")
        self.pipeline.start()
        self._coordinator = asyncio.create_task(self._coordinate(), name="storage-lifecycle")

    async def submit(self, owner: str, short_codes: Sequence[str]) -> DeletionBatch:
        return await self.pipeline.submit(owner, short_codes)

    async def wait_closed(self) -> None:
        """Block until the store is released; re-raises a pool failure."""
        await self._closed.wait()
        if self._failure is not None:
            raise self._failure

    async def shutdown(self) -> None:
        self._stop.set()
        if self._coordinator is None:
            # never started, so there are no workers to drain
            if not self._closed.is_set():
                await self.storage.close()
                self._closed.set()
            return
        await self.wait_closed()

    async def _coordinate(self) -> None:
        pool = asyncio.ensure_future(self.pipeline.join())
        stop = asyncio.ensure_future(self._stop.wait())
        try:
            await asyncio.wait({pool, stop}, return_when=asyncio.FIRST_COMPLETED)
            if not stop.done():
                logger.error("Deletion pipeline ended before shutdown; deletions are unavailable")
                await stop

            logger.info("Stop signal received, draining deletion pipeline")
            self.pipeline.close()
            try:
                await pool
            except DeletionPipelineError as exc:
                self._failure = exc
        finally:
            stop.cancel()
            await self.storage.close()
            self._closed.set()
            logger.info("%s storage released", self.storage.backend)

    async def __aenter__(self) -> "StorageLifecycle":
        if self._coordinator is None:
            self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()


def build_storage(settings: Settings) -> URLStorage:
    if settings.storage_backend is StorageBackend.SQL:
        return SQLURLStorage.from_settings(settings)
    return FileURLStorage.from_settings(settings)


async def init_storage(settings: Settings, stop_event: Optional[asyncio.Event] = None) -> StorageLifecycle:
    """Build the configured store, prepare its schema or file and start the deletion workers.

    Raises:
        StorageInitError: schema creation or file loading failed.
    """
    storage = build_storage(settings)
    try:
        await storage.initialize()
    except StorageInitError:
        await storage.close()
        raise

    lifecycle = StorageLifecycle(
        storage,
        DeletionPipeline(storage, workers=settings.DELETE_WORKERS),
        stop_event=stop_event,
    )
    lifecycle.start()
    return lifecycle
