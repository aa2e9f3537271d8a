"""SQLAlchemy-backed implementation of ``MappingStore``.

Flow Diagram — save()
=====================
::
    ┌─────────────┐
    │ save(key,   │
    │      url)   │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ INSERT INTO │
    │ urls        │
    └──────┬──────┘
    UNIQUE │ VIOLATION?
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────────┐
│ COMMIT  │  │ ROLLBACK    │
│         │  │ DuplicateKey│
└─────────┘  └─────────────┘

Key Behaviours
===============
- Each call runs in its own short-lived session; nothing is cached.
- The unique constraint on ``short_key`` makes ``save`` atomic per key.
- ``get_key_by_url`` returns the lowest id when legacy data holds several
  rows for one URL.
- Driver and connection faults surface as ``StorageUnavailable``.
"""

from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shortener.errors import DuplicateKey, NotFound, StorageUnavailable
from shortener.models import UrlMapping
from shortener.storage.base import MappingStore

__all__ = ["SQLMappingStore"]


class SQLMappingStore(MappingStore):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def save(self, key: str, url: str) -> None:
        try:
            async with self._session_factory() as session:
                session.add(UrlMapping(short_key=key, original_url=url))
                try:
                    await session.commit()
                except IntegrityError as exc:
                    await session.rollback()
                    raise DuplicateKey(key) from exc
        except (SQLAlchemyError, OSError) as exc:
            raise StorageUnavailable(f"Failed to save short key '{key}': {exc}") from exc

    async def get_url_by_key(self, key: str) -> str:
        original_url = await self._scalar(
            select(UrlMapping.original_url).where(UrlMapping.short_key == key)
        )
        if original_url is None:
            raise NotFound(f"Short key '{key}' not found")
        return original_url

    async def get_key_by_url(self, url: str) -> str:
        short_key = await self._scalar(
            select(UrlMapping.short_key)
            .where(UrlMapping.original_url == url)
            .order_by(UrlMapping.id)
            .limit(1)
        )
        if short_key is None:
            raise NotFound(f"URL '{url}' has not been shortened")
        return short_key

    async def exists(self, key: str) -> bool:
        found = await self._scalar(select(UrlMapping.id).where(UrlMapping.short_key == key).limit(1))
        return found is not None

    async def ping(self) -> None:
        await self._scalar(text("SELECT 1"))

    async def _scalar(self, statement):
        try:
            async with self._session_factory() as session:
                result = await session.execute(statement)
                return result.scalar_one_or_none()
        except (SQLAlchemyError, OSError) as exc:
            raise StorageUnavailable(f"Database query failed: {exc}") from exc
