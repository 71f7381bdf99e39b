"""Database engine construction for the relational storage backend.

This module provides SQLAlchemy async engine setup and schema creation. Unlike a
module-level engine, the engine is built explicitly and owned by the storage
object that uses it, so several stores (e.g. in tests) can coexist in one process.

Flow Diagram — Engine Lifecycle
===============================
::
    ┌─────────────┐
    │ DATABASE_DSN │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ normalize_  │
    │ dsn()       │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ build_      │
    │ engine()    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ init_schema()│
    │ (idempotent) │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ dispose()    │
    │ on shutdown  │
    └─────────────┘

Key Behaviours
===============
- ``postgres://`` and ``postgresql://`` DSNs are routed to the asyncpg driver.
- Connection pooling is configured for PostgreSQL only; other dialects keep
  their default pool class.
- Tables are created with ``CREATE TABLE IF NOT EXISTS`` semantics.

Classes:
    Base:  SQLAlchemy declarative base for all models.

Functions:
    normalize_dsn():  Maps plain PostgreSQL DSNs to the async driver.
    build_engine():  Creates the async engine for a DSN.
    init_schema():  Creates all tables.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from shortener.config import Settings

__all__ = ["Base", "build_engine", "init_schema", "normalize_dsn"]

_ASYNC_DRIVERS = {
    "postgres": "postgresql+asyncpg",
    "postgresql": "postgresql+asyncpg",
}


class Base(DeclarativeBase):
    pass


def normalize_dsn(dsn: str) -> str:
    scheme, sep, rest = dsn.partition("://")
    if not sep:
        raise ValueError(f"malformed database DSN: {dsn!r}")
    return f"{_ASYNC_DRIVERS.get(scheme, scheme)}://{rest}"


def build_engine(settings: Settings) -> AsyncEngine:
    dsn = normalize_dsn(settings.DATABASE_DSN)
    options: dict = {"echo": False, "pool_pre_ping": True}
    if dsn.startswith("postgresql"):
        options.update(
            pool_size=settings.DATABASE_POOL_SIZE,
            max_overflow=settings.DATABASE_MAX_OVERFLOW,
        )
    return create_async_engine(dsn, **options)


async def init_schema(engine: AsyncEngine) -> None:
    # models must be imported so their tables are registered on Base.metadata
    from shortener import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
