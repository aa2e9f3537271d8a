"""Shared pytest fixtures for controller, store and API tests."""

import asyncio
from collections.abc import Iterable
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from shortener.allocation import AllocationController
from shortener.config import Settings
from shortener.dependencies import ServiceManager, get_service_manager
from shortener.errors import StorageUnavailable
from shortener.keygen import KeyGenerator
from shortener.locks import LocalUrlLock
from shortener.main import app
from shortener.storage.memory import InMemoryMappingStore

TEST_BASE_URL = "http://sho.rt"


class ScriptedKeyGenerator(KeyGenerator):
    """Hands out a fixed sequence of keys, then falls back to random ones."""

    def __init__(self, keys: Iterable[str]) -> None:
        super().__init__()
        self._keys = list(keys)
        self.drawn: list[str] = []

    def generate(self) -> str:
        key = self._keys.pop(0) if self._keys else super().generate()
        self.drawn.append(key)
        return key


class CountingStore(InMemoryMappingStore):
    """In-memory store that counts calls per operation."""

    def __init__(self) -> None:
        super().__init__()
        self.calls: dict[str, int] = {"save": 0, "get_url_by_key": 0, "get_key_by_url": 0, "exists": 0}

    async def save(self, key: str, url: str) -> None:
        self.calls["save"] += 1
        await super().save(key, url)

    async def get_url_by_key(self, key: str) -> str:
        self.calls["get_url_by_key"] += 1
        return await super().get_url_by_key(key)

    async def get_key_by_url(self, url: str) -> str:
        self.calls["get_key_by_url"] += 1
        # Yield so concurrent shortens interleave between lookup and save.
        await asyncio.sleep(0)
        return await super().get_key_by_url(url)

    async def exists(self, key: str) -> bool:
        self.calls["exists"] += 1
        await asyncio.sleep(0)
        return await super().exists(key)


class BrokenStore(InMemoryMappingStore):
    """Store whose backend is down."""

    async def save(self, key: str, url: str) -> None:
        raise StorageUnavailable("database is down")

    async def get_url_by_key(self, key: str) -> str:
        raise StorageUnavailable("database is down")

    async def get_key_by_url(self, url: str) -> str:
        raise StorageUnavailable("database is down")

    async def exists(self, key: str) -> bool:
        raise StorageUnavailable("database is down")

    async def ping(self) -> None:
        raise StorageUnavailable("database is down")


class SlowStore(InMemoryMappingStore):
    def __init__(self, delay: float) -> None:
        super().__init__()
        self.delay = delay

    async def get_key_by_url(self, url: str) -> str:
        await asyncio.sleep(self.delay)
        return await super().get_key_by_url(url)

    async def get_url_by_key(self, key: str) -> str:
        await asyncio.sleep(self.delay)
        return await super().get_url_by_key(key)


@pytest.fixture
def store() -> CountingStore:
    return CountingStore()


@pytest.fixture
def controller(store: CountingStore) -> AllocationController:
    return AllocationController(store=store, key_generator=KeyGenerator(), url_lock=LocalUrlLock())


@pytest.fixture
def settings() -> Settings:
    return Settings(BASE_URL=TEST_BASE_URL, LOG_LEVEL="DEBUG")


@pytest_asyncio.fixture(scope="function")
async def manager(settings: Settings) -> AsyncGenerator[ServiceManager, None]:
    service_manager = ServiceManager(settings)
    await service_manager.initialize(store=InMemoryMappingStore(), url_lock=LocalUrlLock())
    yield service_manager
    await service_manager.cleanup()


@pytest_asyncio.fixture(scope="function")
async def client(manager: ServiceManager) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_service_manager() -> ServiceManager:
        return manager

    app.dependency_overrides[get_service_manager] = override_get_service_manager

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
