"""In-memory reference implementation of ``MappingStore``.

Used by the test-suite and for local experiments. All state lives in two
dictionaries guarded by one ``asyncio.Lock``, so ``save`` is atomic with
respect to the key exactly like a unique constraint would be.
"""

import asyncio
import itertools

from shortener.errors import DuplicateKey, NotFound
from shortener.storage.base import MappingStore, UrlMappingRecord

__all__ = ["InMemoryMappingStore"]


class InMemoryMappingStore(MappingStore):
    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._by_key: dict[str, UrlMappingRecord] = {}
        # First mapping wins for a URL, mirroring ORDER BY id on the SQL store.
        self._key_by_url: dict[str, str] = {}
        self._ids = itertools.count(1)

    async def save(self, key: str, url: str) -> None:
        async with self._lock:
            if key in self._by_key:
                raise DuplicateKey(key)
            record = UrlMappingRecord(id=next(self._ids), short_key=key, original_url=url)
            self._by_key[key] = record
            self._key_by_url.setdefault(url, key)

    async def get_url_by_key(self, key: str) -> str:
        record = self._by_key.get(key)
        if record is None:
            raise NotFound(f"Short key '{key}' not found")
        return record.original_url

    async def get_key_by_url(self, url: str) -> str:
        key = self._key_by_url.get(url)
        if key is None:
            raise NotFound(f"URL '{url}' has not been shortened")
        return key

    async def exists(self, key: str) -> bool:
        return key in self._by_key

    def mappings(self) -> list[UrlMappingRecord]:
        """Snapshot of every stored mapping, in insertion order."""
        return sorted(self._by_key.values(), key=lambda record: record.id)

    def __len__(self) -> int:
        return len(self._by_key)
