"""File-backed implementation of the URL mapping store.

Records live in memory as an immutable snapshot and are persisted to a
JSON-lines file, one ``URLRecordPayload`` per line. This backend needs no
database server and suits single-process deployments.

Concurrency
===========
::
    lookup / scan_by_owner ──► read current snapshot (no lock)

    insert / apply_deletion ──► asyncio.Lock
                                 ├─ check against snapshot
                                 ├─ write file (thread)
                                 └─ swap in new snapshot

Key Behaviours
===============
- The write lock guards only the read-modify-write cycle; readers never wait
  on it and never see a half-applied batch because snapshots are swapped whole.
- Inserts append one line; deletions rewrite the file through a temporary file
  and ``os.replace`` so a batch lands on disk entirely or not at all.
- Once a file write has started it is allowed to finish even if the caller is
  cancelled, keeping memory and disk in step.
- Long URL uniqueness covers deleted records too, mirroring the SQL UNIQUE
  constraint.
"""

import asyncio
import logging
import os
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from shortener.config import Settings
from shortener.enums import StorageBackend
from shortener.exceptions import (
    AlreadyExistsError,
    ExecutionError,
    GoneError,
    NotFoundError,
    ScanError,
    StorageInitError,
    UnreachableError,
)
from shortener.schemas import OwnedURL, URLRecordPayload
from shortener.storage.base import URLStorage

__all__ = ["FileURLStorage"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Snapshot:
    records: tuple[URLRecordPayload, ...] = ()
    by_code: dict[str, URLRecordPayload] = field(default_factory=dict)
    by_url: dict[str, URLRecordPayload] = field(default_factory=dict)
    next_id: int = 1

    @classmethod
    def build(cls, records: Iterable[URLRecordPayload]) -> "_Snapshot":
        records = tuple(records)
        by_code: dict[str, URLRecordPayload] = {}
        by_url: dict[str, URLRecordPayload] = {}
        for record in records:
            by_url.setdefault(record.url, record)
            current = by_code.get(record.short_url)
            if current is None or (current.is_deleted and not record.is_deleted):
                by_code[record.short_url] = record
        next_id = max((record.id for record in records), default=0) + 1
        return cls(records, by_code, by_url, next_id)

    def with_record(self, record: URLRecordPayload) -> "_Snapshot":
        """Return a copy extended by one new record without re-indexing the others."""
        by_code = self.by_code
        current = by_code.get(record.short_url)
        if current is None or (current.is_deleted and not record.is_deleted):
            by_code = {**by_code, record.short_url: record}
        by_url = self.by_url if record.url in self.by_url else {**self.by_url, record.url: record}
        return _Snapshot(self.records + (record,), by_code, by_url, max(self.next_id, record.id + 1))


class FileURLStorage(URLStorage):
    """Mapping store persisted to a JSON-lines file."""

    backend = StorageBackend.FILE

    def __init__(self, path: str | os.PathLike, default_timeout: Optional[float] = None):
        super().__init__(default_timeout)
        self._path = Path(path)
        self._snapshot = _Snapshot()
        self._write_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "FileURLStorage":
        return cls(settings.FILE_STORAGE_PATH, default_timeout=settings.STORAGE_TIMEOUT_SECONDS)

    @property
    def path(self) -> Path:
        return self._path

    async def initialize(self) -> None:
        try:
            records = await asyncio.to_thread(self._load)
        except OSError as exc:
            raise StorageInitError(f"opening {self._path} failed: {exc}") from exc
        self._snapshot = _Snapshot.build(records)
        logger.info("File storage ready at %s with %d records", self._path, len(records))

    async def close(self) -> None:
        # every write is flushed and fsynced as it happens
        logger.info("File storage at %s closed", self._path)

    # ------------------------------------------------------------------
    # reads

    async def _lookup(self, short_code: str) -> str:
        record = self._snapshot.by_code.get(short_code)
        if record is None:
            raise NotFoundError(short_code)
        if record.is_deleted:
            raise GoneError(short_code)
        return record.url

    async def _scan_by_owner(self, owner: str) -> list[OwnedURL]:
        try:
            return [
                OwnedURL(original_url=record.url, short_code=record.short_url)
                for record in self._snapshot.records
                if record.user_id == owner and not record.is_deleted
            ]
        except ValidationError as exc:
            raise ScanError(f"decoding owner scan records failed: {exc}") from exc

    async def _health_check(self) -> None:
        readable = await asyncio.to_thread(os.access, self._path, os.R_OK | os.W_OK)
        if not readable:
            raise UnreachableError(f"{self._path} is not readable and writable")

    # ------------------------------------------------------------------
    # writes

    async def _insert(self, url: str, owner: str, short_code: str) -> None:
        async with self._write_lock:
            snapshot = self._snapshot
            existing = snapshot.by_url.get(url)
            if existing is not None:
                raise AlreadyExistsError(url, existing.short_url)

            record = URLRecordPayload(
                id=snapshot.next_id,
                user_id=owner,
                url=url,
                short_url=short_code,
            )
            updated = snapshot.with_record(record)
            await self._commit(updated, self._append_line, record)

    async def _apply_deletion(self, owner: str, short_codes: list[str]) -> int:
        wanted = set(short_codes)
        async with self._write_lock:
            snapshot = self._snapshot
            matched = 0
            changed = False
            records = []
            for record in snapshot.records:
                if record.user_id == owner and record.short_url in wanted:
                    matched += 1
                    if not record.is_deleted:
                        record = record.model_copy(update={"is_deleted": True})
                        changed = True
                records.append(record)

            if changed:
                updated = _Snapshot.build(records)
                await self._commit(updated, self._rewrite, updated.records)
        return matched

    async def _commit(self, snapshot: _Snapshot, write: Callable[..., None], *args: Any) -> None:
        """Persist with ``write`` in a thread, then publish ``snapshot``.

        Must be called with the write lock held.
        """
        commit = asyncio.ensure_future(self._write_then_swap(snapshot, write, *args))
        try:
            await asyncio.shield(commit)
        except asyncio.CancelledError:
            # the thread cannot be interrupted; hold the lock until it lands
            await asyncio.wait([commit])
            if not commit.cancelled() and commit.exception() is not None:
                logger.error("File write abandoned by caller failed: %s", commit.exception())
            raise

    async def _write_then_swap(self, snapshot: _Snapshot, write: Callable[..., None], *args: Any) -> None:
        try:
            await asyncio.to_thread(write, *args)
        except OSError as exc:
            raise ExecutionError(f"writing {self._path} failed: {exc}") from exc
        self._snapshot = snapshot

    # ------------------------------------------------------------------
    # blocking file I/O, run in worker threads

    def _load(self) -> list[URLRecordPayload]:
        if not self._path.exists():
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.touch()
            return []

        records = []
        with self._path.open(encoding="utf-8") as fh:
            for lineno, line in enumerate(fh, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    records.append(URLRecordPayload.model_validate_json(line))
                except ValidationError as exc:
                    raise StorageInitError(f"{self._path}:{lineno}: malformed record: {exc}") from exc
        return records

    def _append_line(self, record: URLRecordPayload) -> None:
        with self._path.open("a", encoding="utf-8") as fh:
            fh.write(record.model_dump_json() + "\n")
            fh.flush()
            os.fsync(fh.fileno())

    def _rewrite(self, records: Iterable[URLRecordPayload]) -> None:
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as fh:
            for record in records:
                fh.write(record.model_dump_json() + "\n")
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_path, self._path)
