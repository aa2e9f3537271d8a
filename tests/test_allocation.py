"""Unit tests for the allocation controller's state machine."""

import asyncio
from unittest.mock import AsyncMock

import pytest
import redis.asyncio as redis

from shortener.allocation import AllocationController
from shortener.enums import AllocationState
from shortener.errors import (
    AllocationExhausted,
    DeadlineExceeded,
    DuplicateKey,
    InvalidInput,
    NotFound,
    StorageUnavailable,
)
from shortener.keygen import ALPHABET, RESERVED_KEYS, KeyGenerator
from shortener.locks import LocalUrlLock, RedisUrlLock
from shortener.storage.memory import InMemoryMappingStore

from conftest import BrokenStore, CountingStore, ScriptedKeyGenerator, SlowStore


def _controller(store, keys=(), max_attempts: int = 10) -> AllocationController:
    return AllocationController(
        store=store,
        key_generator=ScriptedKeyGenerator(keys),
        url_lock=LocalUrlLock(),
        max_attempts=max_attempts,
    )


@pytest.mark.asyncio
async def test_shorten_new_url_on_empty_store(controller: AllocationController, store: CountingStore) -> None:
    result = await controller.shorten("https://example.com/a")

    assert result.created is True
    assert len(result.key) == 7
    assert all(c in ALPHABET for c in result.key)
    assert result.attempts == 1
    assert result.collisions == 0
    assert await store.get_key_by_url("https://example.com/a") == result.key


@pytest.mark.asyncio
async def test_shorten_is_idempotent(controller: AllocationController, store: CountingStore) -> None:
    first = await controller.shorten("https://example.com/a")
    second = await controller.shorten("https://example.com/a")

    assert second.key == first.key
    assert second.created is False
    assert second.attempts == 0
    assert second.states == (
        AllocationState.START,
        AllocationState.LOOKUP_EXISTING,
        AllocationState.DONE_EXISTING,
    )
    assert store.calls["save"] == 1
    assert len(store) == 1


@pytest.mark.asyncio
async def test_round_trip(controller: AllocationController) -> None:
    result = await controller.shorten("https://example.com/some/long/path?q=1")
    assert await controller.resolve(result.key) == "https://example.com/some/long/path?q=1"


@pytest.mark.asyncio
async def test_new_allocation_walks_expected_states(store: CountingStore) -> None:
    result = await _controller(store, keys=["aaaaaaa"]).shorten("https://example.com/a")

    assert result.key == "aaaaaaa"
    assert result.states == (
        AllocationState.START,
        AllocationState.LOOKUP_EXISTING,
        AllocationState.GENERATE,
        AllocationState.CHECK,
        AllocationState.SAVE,
        AllocationState.DONE_NEW,
    )


@pytest.mark.asyncio
async def test_collision_is_retried_with_a_new_candidate(store: CountingStore) -> None:
    await store.save("taken01", "https://example.com/other")
    controller = _controller(store, keys=["taken01", "free001"])

    result = await controller.shorten("https://example.com/a")

    assert result.key == "free001"
    assert result.created is True
    assert result.attempts == 2
    assert result.collisions == 1
    assert result.states.count(AllocationState.GENERATE) == 2
    assert await store.get_url_by_key("taken01") == "https://example.com/other"


@pytest.mark.asyncio
async def test_reserved_route_key_counts_as_collision(store: CountingStore) -> None:
    assert "metrics" in RESERVED_KEYS
    controller = _controller(store, keys=["metrics", "free001"])

    result = await controller.shorten("https://example.com/a")

    assert result.key == "free001"
    assert result.attempts == 2
    assert result.collisions == 1
    assert store.calls["exists"] == 1
    assert not await store.exists("metrics")


@pytest.mark.asyncio
async def test_exhausted_when_every_candidate_collides(store: CountingStore) -> None:
    await store.save("taken01", "https://example.com/other")
    save_calls_before = store.calls["save"]
    controller = _controller(store, keys=["taken01"] * 10)

    with pytest.raises(AllocationExhausted) as exc_info:
        await controller.shorten("https://example.com/a")

    assert exc_info.value.attempts == 10
    assert store.calls["exists"] == 10
    assert store.calls["save"] == save_calls_before
    with pytest.raises(NotFound):
        await store.get_key_by_url("https://example.com/a")


@pytest.mark.asyncio
async def test_exhausted_with_store_reporting_every_key_taken() -> None:
    store = AsyncMock()
    store.get_key_by_url.side_effect = NotFound()
    store.exists.return_value = True
    controller = AllocationController(store=store, url_lock=LocalUrlLock(), max_attempts=4)

    with pytest.raises(AllocationExhausted):
        await controller.shorten("https://example.com/a")

    assert store.exists.await_count == 4
    store.save.assert_not_awaited()


@pytest.mark.asyncio
async def test_duplicate_key_on_save_counts_as_collision() -> None:
    store = AsyncMock()
    store.get_key_by_url.side_effect = NotFound()
    store.exists.return_value = False
    store.save.side_effect = [DuplicateKey("raced01"), None]
    controller = AllocationController(
        store=store,
        key_generator=ScriptedKeyGenerator(["raced01", "fresh01"]),
        url_lock=LocalUrlLock(),
    )

    result = await controller.shorten("https://example.com/a")

    assert result.key == "fresh01"
    assert result.attempts == 2
    assert result.collisions == 1
    store.save.assert_awaited_with("fresh01", "https://example.com/a")


@pytest.mark.asyncio
async def test_respects_max_attempts(store: CountingStore) -> None:
    await store.save("taken01", "https://example.com/other")
    controller = _controller(store, keys=["taken01"] * 3, max_attempts=3)

    with pytest.raises(AllocationExhausted) as exc_info:
        await controller.shorten("https://example.com/a")
    assert exc_info.value.attempts == 3


@pytest.mark.asyncio
@pytest.mark.parametrize("bad_url", ["", None, 42])
async def test_invalid_input_fails_fast(store: CountingStore, bad_url) -> None:
    controller = _controller(store)
    with pytest.raises(InvalidInput):
        await controller.shorten(bad_url)
    assert sum(store.calls.values()) == 0


@pytest.mark.asyncio
async def test_storage_fault_surfaces_as_storage_unavailable() -> None:
    controller = _controller(BrokenStore())
    with pytest.raises(StorageUnavailable):
        await controller.shorten("https://example.com/a")


@pytest.mark.asyncio
async def test_unexpected_store_exception_is_wrapped() -> None:
    store = AsyncMock()
    store.get_key_by_url.side_effect = NotFound()
    store.exists.side_effect = ConnectionResetError("connection reset by peer")
    controller = AllocationController(store=store, url_lock=LocalUrlLock())

    with pytest.raises(StorageUnavailable):
        await controller.shorten("https://example.com/a")
    store.save.assert_not_awaited()


@pytest.mark.asyncio
async def test_save_fault_is_not_retried() -> None:
    store = AsyncMock()
    store.get_key_by_url.side_effect = NotFound()
    store.exists.return_value = False
    store.save.side_effect = StorageUnavailable("disk full")
    controller = AllocationController(store=store, url_lock=LocalUrlLock())

    with pytest.raises(StorageUnavailable):
        await controller.shorten("https://example.com/a")
    assert store.save.await_count == 1


@pytest.mark.asyncio
async def test_shorten_deadline_exceeded() -> None:
    controller = _controller(SlowStore(delay=0.5))
    with pytest.raises(DeadlineExceeded):
        await controller.shorten("https://example.com/a", timeout=0.05)


class _SlowFullStore(InMemoryMappingStore):
    """Every candidate is taken, and each check takes a while."""

    def __init__(self, delay: float) -> None:
        super().__init__()
        self.delay = delay
        self.exists_calls = 0

    async def exists(self, key: str) -> bool:
        self.exists_calls += 1
        await asyncio.sleep(self.delay)
        return True


@pytest.mark.asyncio
async def test_deadline_stops_the_retry_loop() -> None:
    store = _SlowFullStore(delay=0.03)
    controller = _controller(store, max_attempts=10)

    with pytest.raises(DeadlineExceeded):
        await controller.shorten("https://example.com/a", timeout=0.1)

    assert 1 <= store.exists_calls < controller.max_attempts


@pytest.mark.asyncio
async def test_redis_lock_without_deadline_is_refused(store: CountingStore) -> None:
    client = AsyncMock(spec=redis.Redis)
    client.set = AsyncMock(return_value=True)
    controller = AllocationController(store=store, url_lock=RedisUrlLock(client))

    with pytest.raises(ValueError):
        await controller.shorten("https://example.com/a")

    client.set.assert_not_awaited()
    assert sum(store.calls.values()) == 0


@pytest.mark.asyncio
async def test_redis_lock_ttl_follows_call_deadline(store: CountingStore) -> None:
    client = AsyncMock(spec=redis.Redis)
    client.set = AsyncMock(return_value=True)
    client.eval = AsyncMock(return_value=1)
    controller = AllocationController(store=store, url_lock=RedisUrlLock(client, ttl_seconds=10))

    result = await controller.shorten("https://example.com/a", timeout=45.0)

    assert result.created is True
    assert client.set.call_args.kwargs["ex"] == 46


@pytest.mark.asyncio
async def test_deadline_exceeded_while_waiting_for_the_url_lock(store: CountingStore) -> None:
    lock = LocalUrlLock(stripes=1)
    controller = AllocationController(store=store, url_lock=lock)

    async with lock.hold("https://example.com/a"):
        with pytest.raises(DeadlineExceeded):
            await controller.shorten("https://example.com/a", timeout=0.05)

    # The lock is free again and the URL was never mapped.
    result = await controller.shorten("https://example.com/a", timeout=1.0)
    assert result.created is True


@pytest.mark.asyncio
async def test_resolve_unknown_key_raises_not_found(controller: AllocationController) -> None:
    with pytest.raises(NotFound):
        await controller.resolve("zzzzzzz")


@pytest.mark.asyncio
async def test_resolve_malformed_key_skips_the_store(controller: AllocationController, store: CountingStore) -> None:
    with pytest.raises(NotFound):
        await controller.resolve("not-a-valid-key")
    assert store.calls["get_url_by_key"] == 0


@pytest.mark.asyncio
async def test_resolve_deadline_exceeded() -> None:
    store = SlowStore(delay=0.5)
    await store.save("abcdefg", "https://example.com/a")
    controller = _controller(store)

    with pytest.raises(DeadlineExceeded):
        await controller.resolve("abcdefg", timeout=0.05)


@pytest.mark.asyncio
async def test_resolve_storage_fault() -> None:
    controller = _controller(BrokenStore())
    with pytest.raises(StorageUnavailable):
        await controller.resolve("abcdefg")


def test_rejects_non_positive_max_attempts(store: CountingStore) -> None:
    with pytest.raises(ValueError):
        AllocationController(store=store, key_generator=KeyGenerator(), max_attempts=0)
