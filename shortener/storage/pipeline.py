"""Asynchronous batched soft-deletion pipeline.

Delete requests are decoupled from the data store: a request submits a batch of
short codes and returns as soon as a worker has accepted it; the worker applies
the tombstone mutation later in its own transaction.

Batch State Machine
===================
::
    submitted ──► queued ──► applying ──► applied
                    │            │
                    └────────────┴──────► failed

Worker Pool
===========
::
    submit() ──► HandoffQueue ──┬──► worker 0 ──┐
                                ├──► worker 1 ──┤
                                ├──►   ...    ──┼──► storage.apply_deletion()
                                └──► worker 7 ──┘

Key Behaviours
===============
- The pool size is fixed when the pipeline starts; there is no lock shared by
  the workers, each batch runs in its own storage transaction.
- A failing worker is fatal to the whole pool. The pool runs in an
  ``asyncio.TaskGroup``, so the first failure cancels every sibling, producers
  still waiting are released with ``DeletionPipelineClosedError`` and the
  pipeline finishes with ``DeletionPipelineError``. Failed batches are logged,
  never retried.
- Closing the pipeline lets the workers drain every batch already handed off
  before they exit.
"""

import asyncio
import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Optional

from prometheus_client import Counter

from shortener.enums import BatchState
from shortener.exceptions import (
    DeletionPipelineClosedError,
    DeletionPipelineError,
    QueueClosedError,
)
from shortener.storage.base import URLStorage
from shortener.storage.queue import HandoffQueue

__all__ = ["DeletionBatch", "DeletionWorker", "DeletionPipeline", "DEFAULT_WORKERS"]

logger = logging.getLogger(__name__)

DEFAULT_WORKERS = 8

DELETION_BATCHES_TOTAL = Counter(
    "shortener_deletion_batches_total",
    "Deletion batches by final pipeline outcome",
    ["status"],
)
DELETED_RECORDS_TOTAL = Counter(
    "shortener_deleted_records_total",
    "Records matched by applied deletion batches",
)

_TRANSITIONS = {
    BatchState.SUBMITTED: {BatchState.QUEUED, BatchState.FAILED},
    BatchState.QUEUED: {BatchState.APPLYING, BatchState.FAILED},
    BatchState.APPLYING: {BatchState.APPLIED, BatchState.FAILED},
    BatchState.APPLIED: set(),
    BatchState.FAILED: set(),
}


@dataclass
class DeletionBatch:
    """Short codes of one owner to tombstone together."""

    owner: str
    short_codes: list[str]
    batch_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    state: BatchState = BatchState.SUBMITTED
    deleted: int = 0
    error: Optional[BaseException] = None
    _finished: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    def transition(self, state: BatchState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"batch {self.batch_id}: illegal transition {self.state} -> {state}")
        self.state = state
        if state.is_terminal:
            self._finished.set()

    def complete(self, deleted: int) -> None:
        self.deleted = deleted
        self.transition(BatchState.APPLIED)

    def fail(self, error: BaseException) -> None:
        self.error = error
        self.transition(BatchState.FAILED)

    async def wait(self) -> BatchState:
        """Block until the batch is applied or has failed."""
        await self._finished.wait()
        return self.state


class DeletionWorker:
    def __init__(self, worker_id: int, storage: URLStorage, queue: HandoffQueue[DeletionBatch]):
        self.worker_id = worker_id
        self._storage = storage
        self._queue = queue

    async def run(self) -> None:
        async for batch in self._queue:
            batch.transition(BatchState.APPLYING)
            try:
                deleted = await self._storage.apply_deletion(batch.owner, batch.short_codes)
            except asyncio.CancelledError as exc:
                batch.fail(exc)
                raise
            except Exception as exc:
                batch.fail(exc)
                DELETION_BATCHES_TOTAL.labels(status=BatchState.FAILED).inc()
                logger.exception(
                    "worker %d: batch %s of %d codes failed: %s",
                    self.worker_id,
                    batch.batch_id,
                    len(batch.short_codes),
                    exc,
                )
                raise DeletionPipelineError(f"deletion worker {self.worker_id} failed: {exc}") from exc

            batch.complete(deleted)
            DELETION_BATCHES_TOTAL.labels(status=BatchState.APPLIED).inc()
            DELETED_RECORDS_TOTAL.inc(deleted)
            logger.info("worker %d: deleted %s (%d matched)", self.worker_id, batch.short_codes, deleted)
        logger.debug("worker %d: queue closed, exiting", self.worker_id)


class DeletionPipeline:
    """Fixed-size pool of deletion workers fed through a hand-off queue."""

    def __init__(self, storage: URLStorage, workers: int = DEFAULT_WORKERS):
        if workers < 1:
            raise ValueError(f"workers must be positive, got {workers!r}")
        self._queue: HandoffQueue[DeletionBatch] = HandoffQueue()
        self._workers = [DeletionWorker(i, storage, self._queue) for i in range(workers)]
        self._task: Optional[asyncio.Task] = None
        self._failure: Optional[DeletionPipelineError] = None

    @property
    def size(self) -> int:
        return len(self._workers)

    @property
    def failure(self) -> Optional[DeletionPipelineError]:
        return self._failure

    @property
    def accepting(self) -> bool:
        return self._task is not None and not self._queue.closed

    def start(self) -> None:
        if self._task is not None:
            raise RuntimeError("deletion pipeline already started")
        self._task = asyncio.create_task(self._run(), name="deletion-pipeline")
        logger.info("Deletion pipeline started with %d workers", self.size)

    async def submit(self, owner: str, short_codes: Sequence[str]) -> DeletionBatch:
        """Hand a batch to the next free worker and return without waiting for it to apply."""
        batch = DeletionBatch(owner=owner, short_codes=list(short_codes))
        if not batch.short_codes:
            batch.transition(BatchState.QUEUED)
            batch.transition(BatchState.APPLYING)
            batch.complete(0)
            return batch

        if self._task is None or self._failure is not None:
            exc = DeletionPipelineClosedError("deletion pipeline is not running")
            batch.fail(exc)
            raise exc from self._failure

        batch.transition(BatchState.QUEUED)
        DELETION_BATCHES_TOTAL.labels(status=BatchState.SUBMITTED).inc()
        try:
            await self._queue.put(batch)
        except (QueueClosedError, DeletionPipelineError) as exc:
            batch.fail(exc)
            raise DeletionPipelineClosedError("deletion pipeline is not accepting batches") from exc
        except asyncio.CancelledError as exc:
            if batch.state is BatchState.QUEUED:
                batch.fail(exc)
            raise
        return batch

    def close(self) -> None:
        """Stop accepting batches; workers exit after draining what was handed off."""
        self._queue.close()

    async def join(self) -> None:
        """Wait for every worker to return; raises ``DeletionPipelineError`` if the pool died."""
        if self._task is None:
            return
        await self._task

    async def _run(self) -> None:
        try:
            async with asyncio.TaskGroup() as group:
                for worker in self._workers:
                    group.create_task(worker.run(), name=f"deletion-worker-{worker.worker_id}")
        except ExceptionGroup as failures:
            cause = failures.exceptions[0]
            self._failure = DeletionPipelineError(f"deletion pipeline stopped: {cause}")
            self._queue.abandon(DeletionPipelineClosedError("deletion pipeline has failed"))
            logger.critical("Deletion pipeline stopped after a worker failure: %s", cause)
            raise self._failure from cause
        logger.info("Deletion pipeline drained, all %d workers exited", self.size)
