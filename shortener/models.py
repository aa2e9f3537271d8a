"""SQLAlchemy ORM model for persisted URL mappings.

Data Model Layout
=================
::
    urls table
    ├─ id (INTEGER PRIMARY KEY, autoincrement)
    ├─ short_key (VARCHAR(16) UNIQUE, INDEXED)
    ├─ original_url (TEXT NOT NULL, non-unique index)
    └─ created_at (TIMESTAMPTZ, DEFAULT NOW())

Key Behaviours
===============
- The unique constraint on short_key is what makes ``save`` atomic: a
  concurrent insert of the same key fails with IntegrityError.
- original_url carries a plain index for idempotency lookups. One key per
  URL is enforced by the per-URL lock in the allocation controller.
- Rows are never updated or deleted.

Classes:
    UrlMapping:  One short key bound to one original URL.
"""

import datetime

from sqlalchemy import DateTime, Index, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from shortener.database import Base

__all__ = ["UrlMapping"]


class UrlMapping(Base):
    __tablename__ = "urls"
    __table_args__ = (Index("ix_urls_original_url", "original_url"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    short_key: Mapped[str] = mapped_column(String(16), unique=True, index=True, nullable=False)
    original_url: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<UrlMapping(id={self.id}, short_key='{self.short_key}')>"
