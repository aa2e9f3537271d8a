"""Dependency injection with a shared service manager.

This module wires the shared resources (settings, logger, mapping store, key
generator, per-URL lock) once at startup and hands each request a lightweight
context carrying a request-scoped logger.

Dependency Chain
================
::
    get_service_manager()
            │
            ▼
    get_request_context(request)
            │  request_id, client_ip, user_agent
            ▼
    get_allocation_controller(ctx)
            │
            ▼
    AllocationController.from_context(ctx)
"""

import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

import redis.asyncio as redis
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncEngine

from shortener.allocation import AllocationController
from shortener.config import LockBackend, Settings, get_settings
from shortener.database import close_db, create_engine, create_session_factory, init_db
from shortener.keygen import KeyGenerator
from shortener.locks import LocalUrlLock, RedisUrlLock, UrlLock
from shortener.logging_config import RequestLoggerAdapter, setup_logging
from shortener.storage.base import MappingStore
from shortener.storage.sql import SQLMappingStore

__all__ = [
    "ServiceManager",
    "RequestContext",
    "get_service_manager",
    "get_request_context",
    "get_allocation_controller",
]


# ============================================================================
# SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Owner of the resources shared by every request.

    Resources are created once in ``initialize()`` and released in
    ``cleanup()``. A store or lock passed to ``initialize()`` is used as-is,
    which is how tests run the API on the in-memory store.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self._initialized = False
        self._engine: AsyncEngine | None = None
        self._redis: redis.Redis | None = None

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self, store: MappingStore | None = None, url_lock: UrlLock | None = None) -> None:
        """Initialize shared resources once at startup."""
        if self._initialized:
            return
        self.logger = setup_logging(self.settings.LOG_LEVEL)
        self.key_generator = KeyGenerator(
            alphabet=self.settings.SHORT_KEY_ALPHABET,
            length=self.settings.SHORT_KEY_LENGTH,
        )
        # An empty in-memory store is falsy, so compare against None.
        self.store = store if store is not None else await self._setup_sql_store()
        self.url_lock = url_lock if url_lock is not None else self._setup_url_lock()
        self._initialized = True
        self.logger.info(
            f"Service initialized (store={type(self.store).__name__}, lock={type(self.url_lock).__name__})"
        )

    async def _setup_sql_store(self) -> MappingStore:
        self._engine = create_engine(self.settings.DATABASE_URL, echo=self.settings.DATABASE_ECHO)
        await init_db(self._engine)
        return SQLMappingStore(create_session_factory(self._engine))

    def _setup_url_lock(self) -> UrlLock:
        if self.settings.URL_LOCK_BACKEND is LockBackend.REDIS:
            self._redis = redis.from_url(self.settings.REDIS_URL, encoding="utf-8", decode_responses=True)
            return RedisUrlLock(
                self._redis,
                ttl_seconds=self.settings.URL_LOCK_TTL_SECONDS,
                retry_delay_seconds=self.settings.URL_LOCK_RETRY_DELAY_SECONDS,
            )
        return LocalUrlLock(stripes=self.settings.URL_LOCK_STRIPES)

    async def cleanup(self) -> None:
        """Cleanup shared resources at shutdown."""
        if not self._initialized:
            return
        await self.store.close()
        if self._engine is not None:
            await close_db(self._engine)
            self._engine = None
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
        self._initialized = False


# Global instance, initialized by the application lifespan
_service_manager = ServiceManager()


# ============================================================================
# LIGHTWEIGHT REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Per-request tracking data plus access to the shared resources.

    Attributes:
        service_manager: Service manager with shared resources
        request_id: Unique identifier for this request (X-Request-ID if sent)
        user_agent: Client user agent string
        client_ip: Client IP address
        start_time: Request start timestamp
    """

    service_manager: ServiceManager
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    user_agent: Optional[str] = None
    client_ip: Optional[str] = None
    start_time: float = field(default_factory=lambda: time.time())

    @property
    def settings(self) -> Settings:
        return self.service_manager.settings

    @property
    def logger(self) -> RequestLoggerAdapter:
        """Shared logger tagged with this request's context."""
        return RequestLoggerAdapter(
            self.service_manager.logger,
            {
                "request_id": self.request_id,
                "client_ip": self.client_ip,
                "user_agent": self.user_agent,
            },
        )

    def get_duration(self) -> float:
        """Get request duration in milliseconds."""
        return (time.time() - self.start_time) * 1000


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


async def get_service_manager() -> ServiceManager:
    if not _service_manager.initialized:
        await _service_manager.initialize()
    return _service_manager


async def get_request_context(
    request: Request,
    manager: ServiceManager = Depends(get_service_manager),
) -> RequestContext:
    client_ip = request.client.host if request.client else None
    # Set by the request logging middleware; absent when routes run without it.
    request_id = getattr(request.state, "request_id", None) or request.headers.get("x-request-id") or str(uuid.uuid4())
    return RequestContext(
        service_manager=manager,
        request_id=request_id,
        user_agent=request.headers.get("user-agent"),
        client_ip=client_ip,
    )


def get_allocation_controller(ctx: RequestContext = Depends(get_request_context)) -> AllocationController:
    return AllocationController.from_context(ctx)
