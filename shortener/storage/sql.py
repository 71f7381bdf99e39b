"""Relational implementation of the URL mapping store.

Runs on any SQLAlchemy dialect with an async driver; production uses
PostgreSQL through asyncpg. Every operation checks a connection out of the
engine's pool for its own short transaction, so concurrent lookups, inserts and
deletion batches are serialised only by the database's own concurrency control.

Key Behaviours
===============
- Lookups read ``url`` and ``is_deleted`` in a single statement, so a
  concurrently committing deletion is either fully visible or not at all.
- Inserts rely on the UNIQUE constraint on ``url``. The loser of a race gets an
  ``IntegrityError`` that is turned into ``AlreadyExistsError`` carrying the
  winner's short code.
- Deletions run as one ``UPDATE ... WHERE user_id = :owner AND short_url IN (...)``
  inside one transaction per batch.
"""

import logging
from typing import Optional

from pydantic import ValidationError
from sqlalchemy import false, insert, select, text, true, update
from sqlalchemy.exc import (
    CompileError,
    DBAPIError,
    IntegrityError,
    SQLAlchemyError,
    StatementError,
)
from sqlalchemy.ext.asyncio import AsyncEngine

from shortener.config import Settings
from shortener.database import build_engine, init_schema
from shortener.enums import StorageBackend
from shortener.exceptions import (
    AlreadyExistsError,
    ExecutionError,
    GoneError,
    NotFoundError,
    ScanError,
    StatementPreparationError,
    StorageInitError,
    UnreachableError,
)
from shortener.models import URLRecord
from shortener.schemas import OwnedURL
from shortener.storage.base import URLStorage

__all__ = ["SQLURLStorage"]

logger = logging.getLogger(__name__)


class SQLURLStorage(URLStorage):
    """Mapping store backed by a transactional SQL database."""

    backend = StorageBackend.SQL

    def __init__(self, engine: AsyncEngine, default_timeout: Optional[float] = None):
        super().__init__(default_timeout)
        self._engine = engine

    @classmethod
    def from_settings(cls, settings: Settings) -> "SQLURLStorage":
        return cls(build_engine(settings), default_timeout=settings.STORAGE_TIMEOUT_SECONDS)

    async def initialize(self) -> None:
        try:
            await init_schema(self._engine)
        except (SQLAlchemyError, OSError) as exc:
            raise StorageInitError(f"creating urls table failed: {exc}") from exc
        logger.info("SQL storage ready on %s", self._engine.url.render_as_string(hide_password=True))

    async def close(self) -> None:
        await self._engine.dispose()
        logger.info("SQL storage connection pool closed")

    async def _lookup(self, short_code: str) -> str:
        # a live row wins over a tombstone that happens to share its code
        stmt = (
            select(URLRecord.url, URLRecord.is_deleted)
            .where(URLRecord.short_url == short_code)
            .order_by(URLRecord.is_deleted, URLRecord.id)
            .limit(1)
        )
        try:
            async with self._engine.connect() as conn:
                row = (await conn.execute(stmt)).first()
        except SQLAlchemyError as exc:
            raise ExecutionError(f"lookup of {short_code} failed: {exc}") from exc

        if row is None:
            raise NotFoundError(short_code)
        if row.is_deleted:
            raise GoneError(short_code)
        return row.url

    async def _insert(self, url: str, owner: str, short_code: str) -> None:
        stmt = insert(URLRecord).values(user_id=owner, url=url, short_url=short_code)
        try:
            async with self._engine.begin() as conn:
                await conn.execute(stmt)
        except IntegrityError as exc:
            existing = await self._short_code_for(url)
            if existing is None:
                raise ExecutionError(f"insert of {url} violated a constraint: {exc}") from exc
            raise AlreadyExistsError(url, existing) from exc
        except SQLAlchemyError as exc:
            raise ExecutionError(f"insert of {url} failed: {exc}") from exc

    async def _short_code_for(self, url: str) -> Optional[str]:
        stmt = select(URLRecord.short_url).where(URLRecord.url == url)
        try:
            async with self._engine.connect() as conn:
                return (await conn.execute(stmt)).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise ExecutionError(f"reading existing short code for {url} failed: {exc}") from exc

    async def _scan_by_owner(self, owner: str) -> list[OwnedURL]:
        stmt = (
            select(URLRecord.url, URLRecord.short_url)
            .where(URLRecord.user_id == owner, URLRecord.is_deleted == false())
            .order_by(URLRecord.id)
        )
        try:
            async with self._engine.connect() as conn:
                rows = (await conn.execute(stmt)).all()
        except SQLAlchemyError as exc:
            raise ExecutionError(f"owner scan failed: {exc}") from exc

        try:
            return [OwnedURL(original_url=row.url, short_code=row.short_url) for row in rows]
        except ValidationError as exc:
            raise ScanError(f"decoding owner scan rows failed: {exc}") from exc

    async def _health_check(self) -> None:
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as exc:
            raise UnreachableError(f"database ping failed: {exc}") from exc

    async def _apply_deletion(self, owner: str, short_codes: list[str]) -> int:
        stmt = (
            update(URLRecord)
            .where(URLRecord.user_id == owner, URLRecord.short_url.in_(short_codes))
            .values(is_deleted=true())
        )

        try:
            async with self._engine.begin() as conn:
                result = await conn.execute(stmt)
        except DBAPIError as exc:
            raise ExecutionError(f"deletion transaction failed: {exc}") from exc
        except (StatementError, CompileError) as exc:
            raise StatementPreparationError(f"preparing deletion statement failed: {exc}") from exc
        except SQLAlchemyError as exc:
            raise ExecutionError(f"deletion transaction failed: {exc}") from exc
        return result.rowcount
