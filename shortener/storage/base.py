"""Abstract base class for URL mapping store implementations.

Every public operation runs under a deadline. A caller may pass ``timeout``
explicitly; otherwise the store's ``default_timeout`` applies (``None`` means no
deadline). When the deadline expires the operation raises
``DeadlineExceededError``; it never degrades into a misleading ``NotFoundError``.
Cancellation of the calling task propagates unchanged.

Backends implement the underscored hooks; the public methods add the deadline
and logging around them.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Optional

from shortener.enums import StorageBackend
from shortener.exceptions import DeadlineExceededError
from shortener.schemas import OwnedURL

__all__ = ["URLStorage"]

logger = logging.getLogger(__name__)


class URLStorage(ABC):
    """Mapping store contract shared by the relational and file backends."""

    backend: StorageBackend

    def __init__(self, default_timeout: Optional[float] = None):
        self.default_timeout = default_timeout

    @asynccontextmanager
    async def _deadline(self, timeout: Optional[float], operation: str) -> AsyncIterator[None]:
        seconds = self.default_timeout if timeout is None else timeout
        try:
            async with asyncio.timeout(seconds):
                yield
        except TimeoutError as exc:
            logger.warning("%s: deadline of %ss exceeded", operation, seconds)
            raise DeadlineExceededError(f"{operation} exceeded its {seconds}s deadline") from exc

    async def lookup(self, short_code: str, timeout: Optional[float] = None) -> str:
        """Return the long URL stored under ``short_code``.

        Raises:
            NotFoundError: no record has this short code.
            GoneError: the record exists but was soft-deleted.
            DeadlineExceededError: the deadline expired first.
        """
        async with self._deadline(timeout, "lookup"):
            url = await self._lookup(short_code)
        logger.debug("lookup: %s as %s", short_code, url)
        return url

    async def insert(self, url: str, owner: str, short_code: str, timeout: Optional[float] = None) -> None:
        """Store a new mapping.

        Raises:
            AlreadyExistsError: ``url`` is already stored, live or deleted. The
                error carries the existing record's short code.
            DeadlineExceededError: the deadline expired first.
        """
        async with self._deadline(timeout, "insert"):
            await self._insert(url, owner, short_code)
        logger.debug("insert: %s as %s", short_code, url)

    async def scan_by_owner(self, owner: str, timeout: Optional[float] = None) -> list[OwnedURL]:
        """Return the live mappings created under ``owner``.

        An owner without records yields an empty list; owners are not validated.
        """
        async with self._deadline(timeout, "scan_by_owner"):
            urls = await self._scan_by_owner(owner)
        logger.debug("scan_by_owner: %d live records", len(urls))
        return urls

    async def health_check(self, timeout: Optional[float] = None) -> None:
        """Raise ``UnreachableError`` if the backend cannot serve requests."""
        async with self._deadline(timeout, "health_check"):
            await self._health_check()

    async def apply_deletion(self, owner: str, short_codes: Sequence[str]) -> int:
        """Tombstone every record of ``owner`` whose short code is listed.

        The whole batch is applied in one transaction. Codes belonging to other
        owners, unknown codes and already deleted records are left untouched.
        Returns the number of records matched.
        """
        if not short_codes:
            return 0
        return await self._apply_deletion(owner, list(short_codes))

    @abstractmethod
    async def initialize(self) -> None:
        """Create the schema or load the backing file."""

    @abstractmethod
    async def close(self) -> None:
        """Release the underlying engine or file handle."""

    @abstractmethod
    async def _lookup(self, short_code: str) -> str: ...

    @abstractmethod
    async def _insert(self, url: str, owner: str, short_code: str) -> None: ...

    @abstractmethod
    async def _scan_by_owner(self, owner: str) -> list[OwnedURL]: ...

    @abstractmethod
    async def _health_check(self) -> None: ...

    @abstractmethod
    async def _apply_deletion(self, owner: str, short_codes: list[str]) -> int: ...
