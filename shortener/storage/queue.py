"""Zero-capacity hand-off queue between deletion producers and workers.

A ``put`` completes only once a consumer has taken the item, so a producer
waits exactly as long as no worker is free. Items are handed out FIFO and each
item reaches exactly one consumer.

Closing
=======
::
    close()             abandon(exc)
      │                   │
      ▼                   ▼
    no new puts         no new puts
    consumers drain     pending puts fail with exc
    queued items,       consumers stop at once
    then stop

How to Use
===========
::
    queue: HandoffQueue[DeletionBatch] = HandoffQueue()

    # producer
    await queue.put(batch)

    # consumer
    async for batch in queue:
        ...

    # shutdown
    queue.close()
"""

import asyncio
from collections.abc import AsyncIterator
from typing import Generic, TypeVar

from shortener.exceptions import QueueClosedError

__all__ = ["HandoffQueue"]

T = TypeVar("T")

_CLOSED = object()


class HandoffQueue(Generic[T]):
    def __init__(self) -> None:
        self._entries: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def put(self, item: T) -> None:
        """Hand ``item`` to a consumer, waiting until one receives it."""
        if self._closed:
            raise QueueClosedError("hand-off queue is closed")

        receipt = asyncio.get_running_loop().create_future()
        self._entries.put_nowait((item, receipt))
        try:
            await receipt
        except asyncio.CancelledError:
            # withdraw the item unless a consumer already took it
            receipt.cancel()
            raise

    async def get(self) -> T:
        """Receive the next item; raises ``QueueClosedError`` once drained after closing."""
        while True:
            entry = await self._entries.get()
            if entry is _CLOSED:
                # leave the marker for the other consumers
                self._entries.put_nowait(_CLOSED)
                raise QueueClosedError("hand-off queue is closed")

            item, receipt = entry
            if receipt.done():
                continue
            receipt.set_result(None)
            return item

    def close(self) -> None:
        """Stop accepting items; consumers still receive everything already put."""
        if self._closed:
            return
        self._closed = True
        self._entries.put_nowait(_CLOSED)

    def abandon(self, exc: BaseException) -> None:
        """Close and fail every put that no consumer has received yet."""
        self._closed = True
        while not self._entries.empty():
            entry = self._entries.get_nowait()
            if entry is _CLOSED:
                continue
            _, receipt = entry
            if not receipt.done():
                receipt.set_exception(exc)
        self._entries.put_nowait(_CLOSED)

    def __aiter__(self) -> AsyncIterator[T]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[T]:
        while True:
            try:
                item = await self.get()
            except QueueClosedError:
                return
            yield item
