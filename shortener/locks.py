"""Per-URL mutual exclusion for the shorten path.

The idempotency lookup and the final save are two separate store calls, and
the store does not make ``original_url`` unique. Without a serialisation
point, two concurrent shortens of the same new URL would both miss the lookup
and allocate two keys. The allocation controller therefore holds a lock keyed
by the URL for the whole lookup → allocate sequence.

Lock Backends
=============
::
    LocalUrlLock                         RedisUrlLock
    ┌──────────────────────────┐         ┌──────────────────────────────┐
    │ sha256(url) % stripes    │         │ SET lock:shorten:<sha256>    │
    │        │                 │         │     <token> NX EX ttl        │
    │        ▼                 │         │        │ taken? sleep, retry │
    │ asyncio.Lock[stripe]     │         │        ▼                     │
    │ (one process)            │         │ DEL only if token matches    │
    └──────────────────────────┘         │ (every process on one Redis) │
                                         └──────────────────────────────┘

How to Use
===========
::
    lock = LocalUrlLock(stripes=256)
    async with lock.hold("https://example.com/a", timeout=5.0):
        ...  # lookup, then allocate

Key Behaviours
===============
- Unrelated URLs only contend when they hash to the same stripe.
- Redis locks expire after their TTL, so a crashed holder cannot wedge a URL.
- A Redis lock lives at least as long as the holder's deadline, so it cannot
  expire while the holder is still inside the critical section. Holding one
  without a deadline is refused.
- Waiting is unbounded here; callers bound it with their own deadline.
- Redis faults surface as StorageUnavailable.
"""

import asyncio
import hashlib
import math
import secrets
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager

import redis.asyncio as redis
from redis.exceptions import RedisError

from shortener.errors import StorageUnavailable

__all__ = ["UrlLock", "LocalUrlLock", "RedisUrlLock", "url_digest"]

# Compare-and-delete so a holder whose lock expired never frees a successor's lock.
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


def url_digest(url: str) -> str:
    return hashlib.sha256(url.encode("utf-8")).hexdigest()


class UrlLock(ABC):
    """Exclusion point scoped to one original URL."""

    #: True if ``hold`` must be given the caller's deadline.
    requires_deadline = False

    @abstractmethod
    def hold(self, url: str, timeout: float | None = None) -> AbstractAsyncContextManager[None]:
        """Async context manager that holds the lock for ``url``.

        ``timeout`` is the most the holder will spend inside the lock.
        """
        raise NotImplementedError

    async def ping(self) -> None:
        """Raise ``StorageUnavailable`` if the lock backend is unreachable."""


class LocalUrlLock(UrlLock):
    def __init__(self, stripes: int = 256) -> None:
        if stripes < 1:
            raise ValueError(f"stripes must be a positive integer, got {stripes!r}")
        self._locks = [asyncio.Lock() for _ in range(stripes)]

    def stripe_for(self, url: str) -> int:
        return int(url_digest(url), 16) % len(self._locks)

    @asynccontextmanager
    async def hold(self, url: str, timeout: float | None = None) -> AsyncIterator[None]:
        async with self._locks[self.stripe_for(url)]:
            yield


class RedisUrlLock(UrlLock):
    requires_deadline = True

    def __init__(
        self,
        client: redis.Redis,
        ttl_seconds: int = 10,
        retry_delay_seconds: float = 0.02,
        prefix: str = "lock:shorten",
    ) -> None:
        self._client = client
        self._ttl_seconds = ttl_seconds
        self._retry_delay_seconds = retry_delay_seconds
        self._prefix = prefix

    def key_for(self, url: str) -> str:
        return f"{self._prefix}:{url_digest(url)}"

    def ttl_for(self, timeout: float) -> int:
        """Whole seconds the lock key lives; never shorter than ``timeout``."""
        return max(self._ttl_seconds, math.ceil(timeout) + 1)

    @asynccontextmanager
    async def hold(self, url: str, timeout: float | None = None) -> AsyncIterator[None]:
        if timeout is None:
            raise ValueError("RedisUrlLock.hold needs a timeout; the lock TTL is derived from it")
        lock_key = self.key_for(url)
        token = secrets.token_hex(16)
        await self._acquire(lock_key, token, self.ttl_for(timeout))
        try:
            yield
        finally:
            await self._release(lock_key, token)

    async def ping(self) -> None:
        try:
            await self._client.ping()
        except RedisError as exc:
            raise StorageUnavailable(f"Redis unavailable: {exc}") from exc

    async def _acquire(self, lock_key: str, token: str, ttl_seconds: int) -> None:
        while True:
            try:
                acquired = await self._client.set(lock_key, token, ex=ttl_seconds, nx=True)
            except RedisError as exc:
                raise StorageUnavailable(f"Failed to acquire lock {lock_key}: {exc}") from exc
            if acquired:
                return
            await asyncio.sleep(self._retry_delay_seconds)

    async def _release(self, lock_key: str, token: str) -> None:
        try:
            await self._client.eval(_RELEASE_SCRIPT, 1, lock_key, token)
        except RedisError as exc:
            raise StorageUnavailable(f"Failed to release lock {lock_key}: {exc}") from exc
