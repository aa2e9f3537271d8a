"""Contract tests run against every MappingStore implementation."""

import asyncio
from typing import AsyncGenerator

import pytest
import pytest_asyncio

from shortener.database import close_db, create_engine, create_session_factory, init_db
from shortener.errors import DuplicateKey, NotFound, StorageUnavailable
from shortener.storage.base import MappingStore
from shortener.storage.memory import InMemoryMappingStore
from shortener.storage.sql import SQLMappingStore


@pytest_asyncio.fixture(params=["memory", "sql"])
async def mapping_store(request, tmp_path) -> AsyncGenerator[MappingStore, None]:
    if request.param == "memory":
        yield InMemoryMappingStore()
        return

    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path}/data/urls.db")
    await init_db(engine)
    store = SQLMappingStore(create_session_factory(engine))
    yield store
    await store.close()
    await close_db(engine)


@pytest.mark.asyncio
async def test_save_then_lookup_both_ways(mapping_store: MappingStore) -> None:
    await mapping_store.save("abcdefg", "https://example.com/a")

    assert await mapping_store.get_url_by_key("abcdefg") == "https://example.com/a"
    assert await mapping_store.get_key_by_url("https://example.com/a") == "abcdefg"


@pytest.mark.asyncio
async def test_exists(mapping_store: MappingStore) -> None:
    assert await mapping_store.exists("abcdefg") is False
    await mapping_store.save("abcdefg", "https://example.com/a")
    assert await mapping_store.exists("abcdefg") is True


@pytest.mark.asyncio
async def test_missing_key_and_url_raise_not_found(mapping_store: MappingStore) -> None:
    with pytest.raises(NotFound):
        await mapping_store.get_url_by_key("missing")
    with pytest.raises(NotFound):
        await mapping_store.get_key_by_url("https://example.com/missing")


@pytest.mark.asyncio
async def test_duplicate_key_is_rejected_without_overwrite(mapping_store: MappingStore) -> None:
    await mapping_store.save("abcdefg", "https://example.com/a")

    with pytest.raises(DuplicateKey) as exc_info:
        await mapping_store.save("abcdefg", "https://example.com/b")

    assert exc_info.value.key == "abcdefg"
    assert await mapping_store.get_url_by_key("abcdefg") == "https://example.com/a"
    with pytest.raises(NotFound):
        await mapping_store.get_key_by_url("https://example.com/b")


@pytest.mark.asyncio
async def test_store_still_usable_after_duplicate(mapping_store: MappingStore) -> None:
    await mapping_store.save("abcdefg", "https://example.com/a")
    with pytest.raises(DuplicateKey):
        await mapping_store.save("abcdefg", "https://example.com/b")

    await mapping_store.save("hijklmn", "https://example.com/b")
    assert await mapping_store.get_key_by_url("https://example.com/b") == "hijklmn"


@pytest.mark.asyncio
async def test_first_mapping_wins_for_a_repeated_url(mapping_store: MappingStore) -> None:
    await mapping_store.save("first01", "https://example.com/a")
    await mapping_store.save("second1", "https://example.com/a")

    assert await mapping_store.get_key_by_url("https://example.com/a") == "first01"


@pytest.mark.asyncio
async def test_ping_healthy(mapping_store: MappingStore) -> None:
    await mapping_store.ping()


@pytest.mark.asyncio
async def test_concurrent_saves_of_one_key_leave_one_row() -> None:
    store = InMemoryMappingStore()
    results = await asyncio.gather(
        *(store.save("abcdefg", f"https://example.com/{i}") for i in range(20)),
        return_exceptions=True,
    )

    assert sum(1 for r in results if r is None) == 1
    assert all(isinstance(r, DuplicateKey) for r in results if r is not None)
    assert len(store.mappings()) == 1


@pytest.mark.asyncio
async def test_memory_store_assigns_increasing_ids() -> None:
    store = InMemoryMappingStore()
    for i in range(5):
        await store.save(f"key{i:04d}", f"https://example.com/{i}")

    ids = [record.id for record in store.mappings()]
    assert ids == sorted(ids)
    assert len(set(ids)) == 5


@pytest.mark.asyncio
async def test_sql_store_unreachable_database_is_storage_unavailable(tmp_path) -> None:
    # A directory cannot be opened as a SQLite database file.
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path}")
    store = SQLMappingStore(create_session_factory(engine))

    with pytest.raises(StorageUnavailable):
        await store.exists("abcdefg")
    with pytest.raises(StorageUnavailable):
        await store.ping()

    await close_db(engine)
