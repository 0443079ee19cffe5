"""FastAPI dependency wiring for the shortener.

Resources fall into two lifetimes:

::
    process-wide (ServiceManager)         per request (RequestContext)
    ├─ Settings                           ├─ AsyncSession from get_db()
    ├─ "urlshortener" logger              ├─ LoggerAdapter with request id/tags
    └─ link store (redis / memory)        └─ SQLLinkStore bound to the session

Routes ask for ``LinkService``, ``AuthService`` and the caller's ``Principal``;
they never build stores or parse tokens themselves.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from shortener.auth import AuthService, Principal, principal_from_authorization
from shortener.config import Settings, get_settings
from shortener.database import get_db
from shortener.enums import LinkStoreBackend
from shortener.errors import UnauthenticatedError
from shortener.link_service import LinkService
from shortener.redis import get_redis
from shortener.redis_store import RedisLinkStore
from shortener.sql_store import SQLLinkStore
from shortener.store import InMemoryLinkStore, LinkStore

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


# ============================================================================
# SINGLETON SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Process-wide settings, logger and (for redis/memory) the link store.

    The SQL store is not held here: it wraps the request's session.
    """

    _instance: Optional["ServiceManager"] = None
    _initialized: bool = False

    def __new__(cls) -> "ServiceManager":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    async def initialize(self) -> None:
        if self._initialized:
            return
        self.settings = get_settings()
        self.logger = self._build_logger(self.settings.LOG_LEVEL)
        self.link_store = await self._build_link_store(self.settings.LINK_STORE_BACKEND)
        self._initialized = True
        self.logger.info(f"Link store backend: {self.settings.LINK_STORE_BACKEND.value}")

    @staticmethod
    def _build_logger(level: str) -> logging.Logger:
        logger = logging.getLogger("urlshortener")
        if not logger.handlers:
            stream = logging.StreamHandler()
            stream.setFormatter(logging.Formatter(LOG_FORMAT))
            logger.addHandler(stream)
            logger.setLevel(level)
        return logger

    async def _build_link_store(self, backend: LinkStoreBackend) -> LinkStore | None:
        """Shared store for redis and memory; ``None`` means per-request SQL."""
        if backend is LinkStoreBackend.REDIS:
            return RedisLinkStore(await get_redis(), prefix=self.settings.REDIS_KEY_PREFIX)
        if backend is LinkStoreBackend.MEMORY:
            return InMemoryLinkStore()
        return None

    async def cleanup(self) -> None:
        self.link_store = None
        self._initialized = False


_service_manager = ServiceManager()


# ============================================================================
# REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Everything a route needs for one request.

    ``trace_id`` comes from the ``X-Trace-Id`` header and falls back to the
    generated ``request_id`` in log records.
    """

    database: AsyncSession
    service_manager: ServiceManager
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    trace_id: Optional[str] = None
    user_agent: Optional[str] = None
    client_ip: Optional[str] = None
    start_time: float = field(default_factory=time.time)
    tags: list[str] = field(default_factory=list)

    @property
    def link_store(self) -> LinkStore:
        return self.service_manager.link_store or SQLLinkStore(self.database)

    @property
    def settings(self) -> Settings:
        return self.service_manager.settings

    @property
    def logger(self) -> logging.LoggerAdapter:
        extra = {
            "request_id": self.request_id,
            "trace_id": self.trace_id or self.request_id,
            "client_ip": self.client_ip,
            "user_agent": self.user_agent,
            "tags": ",".join(self.tags),
        }
        return logging.LoggerAdapter(self.service_manager.logger, extra)

    def add_tag(self, tag: str) -> None:
        if tag not in self.tags:
            self.tags.append(tag)

    def get_duration(self) -> float:
        """Milliseconds since the context was created."""
        return (time.time() - self.start_time) * 1000


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


async def get_service_manager() -> ServiceManager:
    # Lifespan normally initializes it; test clients may skip lifespan.
    await _service_manager.initialize()
    return _service_manager


async def get_request_context(
    request: Request,
    db: AsyncSession = Depends(get_db),
    manager: ServiceManager = Depends(get_service_manager),
) -> RequestContext:
    return RequestContext(
        database=db,
        service_manager=manager,
        trace_id=request.headers.get("x-trace-id"),
        user_agent=request.headers.get("user-agent"),
        client_ip=request.client.host if request.client else None,
    )


def get_link_service(ctx: RequestContext = Depends(get_request_context)) -> LinkService:
    return LinkService.from_context(ctx)


def get_auth_service(ctx: RequestContext = Depends(get_request_context)) -> AuthService:
    return AuthService(ctx.database, ctx.settings, ctx.logger)


async def get_current_principal(
    request: Request,
    manager: ServiceManager = Depends(get_service_manager),
) -> Principal:
    """Resolve the caller from the Authorization header or answer 401."""
    try:
        return principal_from_authorization(request.headers.get("authorization"), manager.settings)
    except UnauthenticatedError as exc:
        manager.logger.info(f"Unauthenticated request to {request.url.path}: {exc}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc
