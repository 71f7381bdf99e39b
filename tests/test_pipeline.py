"""Deletion pipeline tests: batch states, back-pressure, draining and fail-loud."""

import asyncio

import pytest

from shortener.enums import BatchState
from shortener.exceptions import (
    DeletionPipelineClosedError,
    DeletionPipelineError,
    ExecutionError,
    GoneError,
)
from shortener.storage.file import FileURLStorage
from shortener.storage.pipeline import DEFAULT_WORKERS, DeletionBatch, DeletionPipeline

OWNER = "owner.sig"


def _gate(monkeypatch, storage) -> asyncio.Event:
    """Hold every deletion until the returned event is set."""
    gate = asyncio.Event()
    apply = storage._apply_deletion

    async def gated(owner, short_codes):
        await gate.wait()
        return await apply(owner, short_codes)

    monkeypatch.setattr(storage, "_apply_deletion", gated)
    return gate


# ============================================================================
# BATCH STATE MACHINE
# ============================================================================


class TestDeletionBatch:
    def test_legal_path(self):
        batch = DeletionBatch(owner=OWNER, short_codes=["a"])
        batch.transition(BatchState.QUEUED)
        batch.transition(BatchState.APPLYING)
        batch.complete(1)

        assert batch.state is BatchState.APPLIED
        assert batch.deleted == 1

    def test_illegal_transition_rejected(self):
        batch = DeletionBatch(owner=OWNER, short_codes=["a"])
        with pytest.raises(RuntimeError):
            batch.transition(BatchState.APPLIED)

    def test_terminal_states_are_final(self):
        batch = DeletionBatch(owner=OWNER, short_codes=["a"])
        batch.fail(ExecutionError("boom"))
        with pytest.raises(RuntimeError):
            batch.transition(BatchState.QUEUED)

    @pytest.mark.asyncio
    async def test_wait_returns_terminal_state(self):
        batch = DeletionBatch(owner=OWNER, short_codes=["a"])
        batch.fail(ExecutionError("boom"))
        assert await batch.wait() is BatchState.FAILED


# ============================================================================
# PIPELINE
# ============================================================================


class TestDeletionPipeline:
    def test_default_pool_size(self, tmp_path):
        assert DeletionPipeline(FileURLStorage(tmp_path / "urls.json")).size == DEFAULT_WORKERS == 8

    def test_pool_size_must_be_positive(self, tmp_path):
        with pytest.raises(ValueError):
            DeletionPipeline(FileURLStorage(tmp_path / "urls.json"), workers=0)

    @pytest.mark.asyncio
    async def test_batch_is_applied(self, file_storage):
        await file_storage.insert("https://a.example", OWNER, "abc123")
        pipeline = DeletionPipeline(file_storage, workers=2)
        pipeline.start()

        batch = await pipeline.submit(OWNER, ["abc123"])

        assert await asyncio.wait_for(batch.wait(), 2) is BatchState.APPLIED
        assert batch.deleted == 1
        with pytest.raises(GoneError):
            await file_storage.lookup("abc123")

        pipeline.close()
        await asyncio.wait_for(pipeline.join(), 2)

    @pytest.mark.asyncio
    async def test_empty_batch_completes_without_a_worker(self, file_storage):
        pipeline = DeletionPipeline(file_storage)

        batch = await pipeline.submit(OWNER, [])

        assert batch.state is BatchState.APPLIED
        assert batch.deleted == 0

    @pytest.mark.asyncio
    async def test_submit_before_start_fails(self, file_storage):
        pipeline = DeletionPipeline(file_storage)
        assert not pipeline.accepting

        with pytest.raises(DeletionPipelineClosedError):
            await pipeline.submit(OWNER, ["abc123"])

    @pytest.mark.asyncio
    async def test_submit_waits_while_every_worker_is_busy(self, file_storage, monkeypatch):
        gate = _gate(monkeypatch, file_storage)
        pipeline = DeletionPipeline(file_storage, workers=1)
        pipeline.start()

        first = await asyncio.wait_for(pipeline.submit(OWNER, ["a"]), 1)
        second = asyncio.create_task(pipeline.submit(OWNER, ["b"]))
        await asyncio.sleep(0.05)

        assert first.state is BatchState.APPLYING
        assert not second.done()

        gate.set()
        second_batch = await asyncio.wait_for(second, 1)
        assert await asyncio.wait_for(second_batch.wait(), 1) is BatchState.APPLIED

        pipeline.close()
        await asyncio.wait_for(pipeline.join(), 2)

    @pytest.mark.asyncio
    async def test_close_drains_handed_off_batches(self, file_storage, monkeypatch):
        for code in ("a", "b"):
            await file_storage.insert(f"https://{code}.example", OWNER, code)
        gate = _gate(monkeypatch, file_storage)
        pipeline = DeletionPipeline(file_storage, workers=1)
        pipeline.start()

        first = await pipeline.submit(OWNER, ["a"])
        second = asyncio.create_task(pipeline.submit(OWNER, ["b"]))
        await asyncio.sleep(0.01)

        pipeline.close()
        assert not pipeline.accepting
        gate.set()
        await asyncio.wait_for(pipeline.join(), 2)

        assert first.state is BatchState.APPLIED
        assert (await second).state is BatchState.APPLIED
        assert await file_storage.scan_by_owner(OWNER) == []

    @pytest.mark.asyncio
    async def test_submit_after_close_fails(self, file_storage):
        pipeline = DeletionPipeline(file_storage, workers=1)
        pipeline.start()
        pipeline.close()

        with pytest.raises(DeletionPipelineClosedError):
            await pipeline.submit(OWNER, ["abc123"])
        await asyncio.wait_for(pipeline.join(), 2)


class TestFailLoud:
    @pytest.mark.asyncio
    async def test_worker_failure_stops_the_pool(self, file_storage, monkeypatch):
        async def failing(owner, short_codes):
            raise ExecutionError("disk on fire")

        monkeypatch.setattr(file_storage, "_apply_deletion", failing)
        pipeline = DeletionPipeline(file_storage, workers=4)
        pipeline.start()

        batch = await pipeline.submit(OWNER, ["abc123"])

        assert await asyncio.wait_for(batch.wait(), 2) is BatchState.FAILED
        assert isinstance(batch.error, ExecutionError)
        with pytest.raises(DeletionPipelineError):
            await asyncio.wait_for(pipeline.join(), 2)
        assert pipeline.failure is not None
        assert not pipeline.accepting

    @pytest.mark.asyncio
    async def test_submit_after_failure_is_rejected(self, file_storage, monkeypatch):
        async def failing(owner, short_codes):
            raise ExecutionError("disk on fire")

        monkeypatch.setattr(file_storage, "_apply_deletion", failing)
        pipeline = DeletionPipeline(file_storage, workers=2)
        pipeline.start()
        await pipeline.submit(OWNER, ["abc123"])
        with pytest.raises(DeletionPipelineError):
            await asyncio.wait_for(pipeline.join(), 2)

        with pytest.raises(DeletionPipelineClosedError) as exc_info:
            await pipeline.submit(OWNER, ["def456"])
        assert exc_info.value.__cause__ is pipeline.failure

    @pytest.mark.asyncio
    async def test_waiting_producer_is_released_on_failure(self, file_storage, monkeypatch):
        release = asyncio.Event()

        async def failing(owner, short_codes):
            await release.wait()
            raise ExecutionError("disk on fire")

        monkeypatch.setattr(file_storage, "_apply_deletion", failing)
        pipeline = DeletionPipeline(file_storage, workers=1)
        pipeline.start()
        await pipeline.submit(OWNER, ["a"])
        waiting = asyncio.create_task(pipeline.submit(OWNER, ["b"]))
        await asyncio.sleep(0.01)

        release.set()

        with pytest.raises(DeletionPipelineClosedError):
            await asyncio.wait_for(waiting, 2)
        with pytest.raises(DeletionPipelineError):
            await asyncio.wait_for(pipeline.join(), 2)
