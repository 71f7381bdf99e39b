"""SQLAlchemy ORM models for the URL shortener application.

Data Model Layout
=================
::
    urls table
    ├─ id (BIGINT PRIMARY KEY, autoincrement)
    ├─ user_id (TEXT NOT NULL, INDEXED)
    ├─ url (TEXT NOT NULL UNIQUE)
    ├─ short_url (TEXT NOT NULL, INDEXED)
    └─ is_deleted (BOOLEAN NOT NULL DEFAULT false)

Key Behaviours
===============
- url is unique across live and deleted rows; the constraint, not the
  application, arbitrates concurrent inserts of the same long URL.
- user_id stores the signed owner token as issued, never decoded.
- is_deleted is a tombstone: rows are never physically removed and the flag
  never goes back to false.

Classes:
    URLRecord:  One long URL to short code mapping owned by a user token.
"""

from sqlalchemy import BigInteger, Boolean, Integer, Text, false
from sqlalchemy.orm import Mapped, mapped_column

from shortener.database import Base

__all__ = ["URLRecord"]


class URLRecord(Base):
    __tablename__ = "urls"

    # BIGINT on PostgreSQL, INTEGER elsewhere so SQLite keeps rowid autoincrement
    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    user_id: Mapped[str] = mapped_column(Text, index=True, nullable=False)
    url: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    short_url: Mapped[str] = mapped_column(Text, index=True, nullable=False)
    is_deleted: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=false(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<URLRecord(id={self.id}, short_url='{self.short_url}', is_deleted={self.is_deleted})>"
