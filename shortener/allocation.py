"""Short key allocation and resolution for the URL shortener.

``AllocationController`` turns a long URL into a short key exactly once and
resolves keys back to URLs. It owns no state between calls: every request
re-queries the ``MappingStore``.

State Machine — shorten()
=========================
::
    START
      │  acquire per-URL lock
      ▼
    LOOKUP_EXISTING ──── found ────────────────────────▶ DONE_EXISTING
      │ not found
      ▼
    GENERATE ◀──────────────┐
      │                     │ collision (occupied, or
      ▼                     │ DuplicateKey on save)
    CHECK ── occupied ──────┤
      │       or reserved   │
      │ free                │
      ▼                     │
    SAVE ── DuplicateKey ───┘
      │ saved
      ▼
    DONE_NEW

    attempts == max_attempts without a save ─────────▶ EXHAUSTED

How to Use
===========
**Step 1 — Build a controller**::
    controller = AllocationController(
        store=InMemoryMappingStore(),
        key_generator=KeyGenerator(),
        url_lock=LocalUrlLock(),
    )

**Step 2 — Shorten**::
    result = await controller.shorten("https://example.com/a", timeout=5.0)
    result.key, result.created      # ('aZ3kQ9x', True)

**Step 3 — Resolve**::
    await controller.resolve(result.key)   # 'https://example.com/a'

Key Behaviours
===============
- The per-URL lock is held from the idempotency lookup until the save, so
  concurrent shortens of one new URL produce a single mapping.
- Collisions are recovered locally; only exhaustion of the attempt budget is
  reported, as AllocationExhausted.
- Candidates equal to a route path (see RESERVED_KEYS) count as collisions.
- Storage faults are never retried and surface as StorageUnavailable.
- The deadline covers the lock wait and every store call, and bounds how long
  a Redis lock may outlive its holder. On expiry the call stops retrying and
  raises DeadlineExceeded.
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from prometheus_client import Counter, Histogram

from shortener.enums import AllocationState, Outcome
from shortener.errors import (
    AllocationExhausted,
    DeadlineExceeded,
    DuplicateKey,
    InvalidInput,
    NotFound,
    ShortenerError,
    StorageUnavailable,
)
from shortener.keygen import RESERVED_KEYS, KeyGenerator
from shortener.locks import LocalUrlLock, UrlLock
from shortener.logging_config import LOGGER_NAME
from shortener.storage.base import MappingStore

if TYPE_CHECKING:
    from shortener.dependencies import RequestContext

__all__ = [
    "DEFAULT_MAX_ATTEMPTS",
    "AllocationController",
    "AllocationResult",
    "AllocationTrace",
]

DEFAULT_MAX_ATTEMPTS = 10


# ============================================================================
# PROMETHEUS METRICS
# ============================================================================

SHORTEN_REQUESTS_TOTAL = Counter(
    "shortener_shorten_requests_total",
    "Shorten calls by how they ended",
    ["outcome"],
)
RESOLVE_REQUESTS_TOTAL = Counter(
    "shortener_resolve_requests_total",
    "Resolve calls by how they ended",
    ["outcome"],
)
KEY_COLLISIONS_TOTAL = Counter(
    "shortener_key_collisions_total",
    "Candidate keys that were already taken",
)
ALLOCATION_ATTEMPTS = Histogram(
    "shortener_allocation_attempts",
    "Candidate keys drawn per allocation",
    buckets=[1, 2, 3, 5, 10],
)

_ERROR_OUTCOMES: dict[type[ShortenerError], Outcome] = {
    InvalidInput: Outcome.INVALID_INPUT,
    NotFound: Outcome.NOT_FOUND,
    AllocationExhausted: Outcome.EXHAUSTED,
    StorageUnavailable: Outcome.STORAGE_UNAVAILABLE,
    DeadlineExceeded: Outcome.DEADLINE_EXCEEDED,
}


# ============================================================================
# DATA STRUCTURES
# ============================================================================


@dataclass(frozen=True)
class AllocationResult:
    key: str
    created: bool
    attempts: int
    collisions: int
    states: tuple[AllocationState, ...]


@dataclass
class AllocationTrace:
    """Mutable record of one shorten call's walk through the state machine."""

    states: list[AllocationState] = field(default_factory=lambda: [AllocationState.START])
    attempts: int = 0
    collisions: int = 0

    @property
    def current(self) -> AllocationState:
        return self.states[-1]

    def advance(self, state: AllocationState) -> None:
        assert not self.current.is_terminal, f"cannot leave terminal state {self.current}"
        self.states.append(state)

    def finish(self, key: str, created: bool) -> AllocationResult:
        return AllocationResult(
            key=key,
            created=created,
            attempts=self.attempts,
            collisions=self.collisions,
            states=tuple(self.states),
        )


@asynccontextmanager
async def _deadline(timeout: float | None, operation: str) -> AsyncIterator[None]:
    scope = asyncio.timeout(timeout)
    try:
        async with scope:
            yield
    except TimeoutError as exc:
        if scope.expired():
            raise DeadlineExceeded(f"{operation} did not finish within {timeout}s") from exc
        raise


# ============================================================================
# CORE CONTROLLER
# ============================================================================


class AllocationController:
    """Idempotent lookup-then-allocate over a ``MappingStore``.

    Example:
        >>> controller = AllocationController(store=InMemoryMappingStore())
        >>> result = await controller.shorten("https://example.com")
        >>> result.created
        True
    """

    def __init__(
        self,
        store: MappingStore,
        key_generator: KeyGenerator | None = None,
        url_lock: UrlLock | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
        reserved_keys: frozenset[str] = RESERVED_KEYS,
    ) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be a positive integer, got {max_attempts!r}")
        self._store = store
        self._key_generator = key_generator or KeyGenerator()
        self._url_lock = url_lock or LocalUrlLock()
        self._max_attempts = max_attempts
        self._logger = logger or logging.getLogger(LOGGER_NAME)
        self._reserved_keys = reserved_keys

    @classmethod
    def from_context(cls, ctx: "RequestContext") -> "AllocationController":
        """Build a controller from the shared resources of a request context.

        Args:
            ctx: Request context carrying the service manager and request logger

        Returns:
            AllocationController: Controller logging with the request's context
        """
        manager = ctx.service_manager
        return cls(
            store=manager.store,
            key_generator=manager.key_generator,
            url_lock=manager.url_lock,
            max_attempts=ctx.settings.MAX_ALLOCATION_ATTEMPTS,
            logger=ctx.logger,
        )

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    # ========================================================================
    # PUBLIC API METHODS
    # ========================================================================

    async def shorten(self, url: str, timeout: float | None = None) -> AllocationResult:
        """Return the short key for ``url``, allocating one if needed.

        Args:
            url: Original URL, must be a non-empty string
            timeout: Seconds the whole call may take, lock wait included;
                ``None`` waits indefinitely, which a lock that
                ``requires_deadline`` refuses

        Returns:
            AllocationResult: ``created`` is False when ``url`` was already mapped

        Raises:
            ValueError: If ``timeout`` is None and the lock requires a deadline
            InvalidInput: If ``url`` is empty
            AllocationExhausted: If every candidate key was already taken
            StorageUnavailable: On store or lock backend faults
            DeadlineExceeded: If ``timeout`` elapsed first
        """
        if not isinstance(url, str) or not url:
            SHORTEN_REQUESTS_TOTAL.labels(outcome=Outcome.INVALID_INPUT).inc()
            raise InvalidInput()
        if timeout is None and self._url_lock.requires_deadline:
            raise ValueError(f"{type(self._url_lock).__name__} needs a timeout to bound its lock lifetime")

        start_time = time.perf_counter()
        trace = AllocationTrace()
        try:
            async with _deadline(timeout, "shorten"):
                async with self._url_lock.hold(url, timeout):
                    result = await self._lookup_or_allocate(url, trace)
        except ShortenerError as exc:
            self._record_failure(SHORTEN_REQUESTS_TOTAL, exc, "shorten", trace, start_time)
            raise
        except Exception as exc:
            error = StorageUnavailable(f"Storage failure during shorten: {exc}")
            self._record_failure(SHORTEN_REQUESTS_TOTAL, error, "shorten", trace, start_time)
            raise error from exc

        outcome = Outcome.CREATED if result.created else Outcome.EXISTING
        SHORTEN_REQUESTS_TOTAL.labels(outcome=outcome).inc()
        self._logger.info(
            f"Shorten finished ({outcome}): {result.key}",
            extra={
                "operation": "shorten",
                "short_key": result.key,
                "attempts": result.attempts,
                "collisions": result.collisions,
                "duration_ms": (time.perf_counter() - start_time) * 1000,
            },
        )
        return result

    async def resolve(self, key: str, timeout: float | None = None) -> str:
        """Return the original URL mapped to ``key``.

        Keys this generator could never have produced are rejected without a
        store round trip.

        Raises:
            NotFound: If ``key`` is not mapped
            StorageUnavailable: On store faults
            DeadlineExceeded: If ``timeout`` elapsed first
        """
        start_time = time.perf_counter()
        try:
            if not isinstance(key, str) or not self._key_generator.is_well_formed(key):
                raise NotFound(f"Short key '{key}' not found")
            async with _deadline(timeout, "resolve"):
                original_url = await self._store.get_url_by_key(key)
        except NotFound:
            RESOLVE_REQUESTS_TOTAL.labels(outcome=Outcome.NOT_FOUND).inc()
            self._logger.warning(f"Short key not found: {key}", extra={"operation": "resolve", "short_key": key})
            raise
        except ShortenerError as exc:
            self._record_failure(RESOLVE_REQUESTS_TOTAL, exc, "resolve", None, start_time)
            raise
        except Exception as exc:
            error = StorageUnavailable(f"Storage failure during resolve: {exc}")
            self._record_failure(RESOLVE_REQUESTS_TOTAL, error, "resolve", None, start_time)
            raise error from exc

        RESOLVE_REQUESTS_TOTAL.labels(outcome=Outcome.FOUND).inc()
        return original_url

    # ========================================================================
    # STATE MACHINE
    # ========================================================================

    async def _lookup_or_allocate(self, url: str, trace: AllocationTrace) -> AllocationResult:
        trace.advance(AllocationState.LOOKUP_EXISTING)
        try:
            existing_key = await self._store.get_key_by_url(url)
        except NotFound:
            pass
        else:
            trace.advance(AllocationState.DONE_EXISTING)
            return trace.finish(existing_key, created=False)

        while trace.attempts < self._max_attempts:
            trace.advance(AllocationState.GENERATE)
            trace.attempts += 1
            candidate = self._key_generator.generate()

            trace.advance(AllocationState.CHECK)
            if candidate in self._reserved_keys:
                self._record_collision(trace, candidate, "key reserved by a route")
                continue
            if await self._store.exists(candidate):
                self._record_collision(trace, candidate, "key already in use")
                continue

            trace.advance(AllocationState.SAVE)
            try:
                await self._store.save(candidate, url)
            except DuplicateKey:
                self._record_collision(trace, candidate, "key taken by a concurrent save")
                continue

            trace.advance(AllocationState.DONE_NEW)
            ALLOCATION_ATTEMPTS.observe(trace.attempts)
            return trace.finish(candidate, created=True)

        trace.advance(AllocationState.EXHAUSTED)
        ALLOCATION_ATTEMPTS.observe(trace.attempts)
        raise AllocationExhausted(
            trace.attempts,
            f"No free short key after {trace.attempts} attempts",
        )

    # ========================================================================
    # PRIVATE HELPER METHODS
    # ========================================================================

    def _record_collision(self, trace: AllocationTrace, candidate: str, reason: str) -> None:
        trace.collisions += 1
        KEY_COLLISIONS_TOTAL.inc()
        self._logger.warning(
            f"Key collision detected ({reason}), generating new key",
            extra={"operation": "shorten", "short_key": candidate, "attempt": trace.attempts},
        )

    def _record_failure(
        self,
        counter: Counter,
        exc: ShortenerError,
        operation: str,
        trace: AllocationTrace | None,
        start_time: float,
    ) -> None:
        outcome = _ERROR_OUTCOMES.get(type(exc), Outcome.STORAGE_UNAVAILABLE)
        counter.labels(outcome=outcome).inc()
        extra = {
            "operation": operation,
            "error": str(exc),
            "duration_ms": (time.perf_counter() - start_time) * 1000,
        }
        if trace is not None:
            extra["attempts"] = trace.attempts
            extra["state"] = trace.current
        if isinstance(exc, (StorageUnavailable, AllocationExhausted)):
            self._logger.error(f"{operation} failed: {exc}", extra=extra)
        else:
            self._logger.warning(f"{operation} failed: {exc}", extra=extra)
