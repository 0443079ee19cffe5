"""Link Service Layer - Core Business Logic

This module owns every business rule of the shortener: short code allocation
with bounded retries, duplicate detection, visit counting and ownership checks
on delete. Storage is reached only through a ``LinkStore``.

Architecture Overview
=====================
::
    ┌──────────────────────────────────────────────────────┐
    │                    LinkService                       │
    │  ┌───────────────┐  ┌───────────────┐  ┌───────────┐ │
    │  │ create_link   │  │ resolve       │  │ delete_by │ │
    │  │ • validate    │  │ • lookup      │  │ _id       │ │
    │  │ • dedupe URL  │  │ • atomic +1   │  │ • owner / │ │
    │  │ • retry codes │  │ • degrade on  │  │   admin   │ │
    │  │               │  │   +1 failure  │  │   check   │ │
    │  └───────────────┘  └───────────────┘  └───────────┘ │
    └──────────────────────────┬───────────────────────────┘
                               ▼
                ┌──────────────────────────────┐
                │ LinkStore (sql/redis/memory) │
                └──────────────────────────────┘

Link Creation Flow
------------------
::
    ┌─────────────┐
    │ POST        │
    │ /api/urls   │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Validate    │──── invalid ───▶ ValidationError
    │ http(s) URL │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Lookup by   │──── found ─────▶ DuplicateError
    │ original URL│
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Generate    │◀─── code taken (attempt < max)
    │ short code  │                      │
    └──────┬──────┘                      │
           ▼                             │
    ┌─────────────┐                      │
    │ Store insert│──────────────────────┘
    └──────┬──────┘──── URL taken ─────▶ DuplicateError
           │       ──── max attempts ──▶ AllocationExhaustedError
           ▼
    ┌─────────────┐
    │ LinkRecord  │
    └─────────────┘

Redirect Flow
-------------
::
    ┌─────────────┐
    │ GET         │
    │ /api/urls/  │
    │ {code}      │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Lookup by   │──── miss ──────▶ NotFoundError
    │ short code  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Atomic +1   │──── store down ─▶ log, return found record
    │ in store    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ 302 to      │
    │ original URL│
    └─────────────┘

Every store call is bounded by ``STORAGE_TIMEOUT_SECONDS``; a timeout becomes
``StorageUnavailableError`` so callers can answer 503 and let clients retry.

Usage Examples
==============
```python
@router.post("/api/urls")
async def create_url(
    payload: LinkCreate,
    principal: Principal = Depends(get_current_principal),
    service: LinkService = Depends(get_link_service),
) -> LinkResponse:
    record = await service.create_link(payload.original_url, principal.user_id)
    return LinkResponse.from_record(record, service.settings.BASE_URL)
```
"""

import asyncio
import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, TypeVar

from prometheus_client import Counter, Histogram

from shortener.codegen import generate_short_code
from shortener.config import Settings
from shortener.enums import RequestStatus
from shortener.errors import (
    AllocationExhaustedError,
    DuplicateError,
    ForbiddenError,
    NotFoundError,
    StorageUnavailableError,
    UniqueConflictError,
    UnknownOwnerError,
    ValidationError,
)
from shortener.models import utcnow
from shortener.schemas import LinkRecord, is_absolute_http_url
from shortener.store import LinkStore

if TYPE_CHECKING:
    from shortener.dependencies import RequestContext

__all__ = ["LinkService"]

T = TypeVar("T")


# ============================================================================
# PROMETHEUS METRICS
# ============================================================================

LINK_CREATION_REQUESTS_TOTAL = Counter(
    "url_shortener_link_creation_requests_total",
    "Total link creation requests",
    ["status"],
)
LINK_RESOLUTION_REQUESTS_TOTAL = Counter(
    "url_shortener_link_resolution_requests_total",
    "Total short code resolutions",
    ["status"],
)
LINK_DELETION_REQUESTS_TOTAL = Counter(
    "url_shortener_link_deletion_requests_total",
    "Total link deletion requests",
    ["status"],
)
SHORT_CODE_COLLISIONS_TOTAL = Counter(
    "url_shortener_short_code_collisions_total",
    "Generated short codes rejected by the store as already taken",
)
VISIT_INCREMENT_FAILURES_TOTAL = Counter(
    "url_shortener_visit_increment_failures_total",
    "Redirects served without persisting the visit",
)
LINK_CREATION_DURATION = Histogram(
    "url_shortener_link_creation_duration_seconds",
    "Time taken to create short links",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)
LINK_RESOLUTION_DURATION = Histogram(
    "url_shortener_link_resolution_duration_seconds",
    "Time taken to resolve short codes",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25],
)


# ============================================================================
# CORE SERVICE CLASS
# ============================================================================


class LinkService:
    """Business operations over short links.

    The service is stateless per call; everything it needs is injected, so a
    new instance per request is cheap.

    Example:
        >>> service = LinkService(InMemoryLinkStore(), get_settings(), logger)
        >>> record = await service.create_link("https://example.com", "user-1")
        >>> (await service.resolve(record.short_code)).visit_count
        1
    """

    def __init__(
        self,
        store: LinkStore,
        settings: Settings,
        logger: logging.Logger | logging.LoggerAdapter,
        code_generator: Callable[[], str] | None = None,
    ) -> None:
        self._store = store
        self._settings = settings
        self._logger = logger
        self._generate_code = code_generator or (lambda: generate_short_code(settings.SHORT_CODE_LENGTH))

    @classmethod
    def from_context(cls, ctx: "RequestContext") -> "LinkService":
        """Build a service from the request context's store, settings and logger."""
        return cls(ctx.link_store, ctx.settings, ctx.logger)

    @property
    def settings(self) -> Settings:
        return self._settings

    # ========================================================================
    # PUBLIC API METHODS
    # ========================================================================

    async def create_link(self, original_url: str, owner_id: str) -> LinkRecord:
        """Shorten ``original_url`` on behalf of ``owner_id``.

        Raises:
            ValidationError: not an absolute http/https URL.
            DuplicateError: the URL is already shortened, including when a
                concurrent request won the insert race.
            AllocationExhaustedError: every generated code was already taken.
            UnknownOwnerError: ``owner_id`` has no user row.
            StorageUnavailableError: the store failed or timed out.
        """
        start_time = time.perf_counter()
        status = RequestStatus.ERROR
        try:
            if not is_absolute_http_url(original_url):
                status = RequestStatus.VALIDATION_ERROR
                raise ValidationError(f"'{original_url}' is not an absolute http or https URL")

            existing = await self._call(self._store.get_by_original_url(original_url))
            if existing is not None:
                status = RequestStatus.DUPLICATE
                raise DuplicateError(original_url)

            record = await self._insert_with_fresh_code(original_url, owner_id)
            status = RequestStatus.SUCCESS
            self._logger.info(f"Link created: {record.short_code} -> {original_url} (owner={owner_id})")
            return record

        except DuplicateError:
            status = RequestStatus.DUPLICATE
            self._logger.info(f"Link creation rejected, URL already shortened: {original_url}")
            raise
        except UnknownOwnerError:
            self._logger.warning(f"Link creation rejected, unknown owner: {owner_id}")
            raise
        except StorageUnavailableError as exc:
            status = RequestStatus.UNAVAILABLE
            self._logger.error(f"Link creation failed, store unavailable: {exc}")
            raise
        finally:
            LINK_CREATION_DURATION.observe(time.perf_counter() - start_time)
            LINK_CREATION_REQUESTS_TOTAL.labels(status=status).inc()

    async def resolve(self, short_code: str) -> LinkRecord:
        """Look up ``short_code`` and count one visit.

        The returned record reflects the increment when it succeeded. A failed
        increment is logged and the record found by the lookup is returned.

        Raises:
            NotFoundError: unknown short code.
            StorageUnavailableError: the lookup itself failed or timed out.
        """
        start_time = time.perf_counter()
        status = RequestStatus.ERROR
        try:
            record = await self._call(self._store.get_by_code(short_code))
            if record is None:
                status = RequestStatus.NOT_FOUND
                raise NotFoundError(f"Short code '{short_code}' not found")

            try:
                updated = await self._call(self._store.increment_visits(short_code))
            except StorageUnavailableError as exc:
                VISIT_INCREMENT_FAILURES_TOTAL.inc()
                self._logger.warning(f"Visit not counted for {short_code}: {exc}")
                updated = None

            status = RequestStatus.SUCCESS
            # None here means a concurrent delete won; the lookup already succeeded.
            return updated or record

        except StorageUnavailableError:
            status = RequestStatus.UNAVAILABLE
            raise
        finally:
            LINK_RESOLUTION_DURATION.observe(time.perf_counter() - start_time)
            LINK_RESOLUTION_REQUESTS_TOTAL.labels(status=status).inc()

    async def get_by_id(self, link_id: uuid.UUID) -> LinkRecord:
        record = await self._call(self._store.get_by_id(link_id))
        if record is None:
            raise NotFoundError(f"Link '{link_id}' not found")
        return record

    async def list_all(self) -> list[LinkRecord]:
        return await self._call(self._store.list_all())

    async def list_by_owner(self, owner_id: str) -> list[LinkRecord]:
        return await self._call(self._store.list_by_owner(owner_id))

    async def list_visible(self, requester_id: str, requester_is_admin: bool) -> list[LinkRecord]:
        """Everything for admins, the requester's own links otherwise."""
        if requester_is_admin:
            return await self.list_all()
        return await self.list_by_owner(requester_id)

    async def delete_by_id(self, link_id: uuid.UUID, requester_id: str, requester_is_admin: bool) -> None:
        """Delete a link if the requester owns it or is an admin.

        Raises:
            NotFoundError: no such link.
            ForbiddenError: requester is neither the owner nor an admin.
        """
        status = RequestStatus.ERROR
        try:
            record = await self.get_by_id(link_id)
            if not requester_is_admin and record.owner_id != requester_id:
                status = RequestStatus.FORBIDDEN
                self._logger.warning(f"Delete of {link_id} refused for {requester_id}: not owner or admin")
                raise ForbiddenError("You can't delete this URL")

            if not await self._call(self._store.delete(link_id)):
                raise NotFoundError(f"Link '{link_id}' not found")

            status = RequestStatus.SUCCESS
            self._logger.info(f"Link deleted: {record.short_code} by {requester_id} (admin={requester_is_admin})")

        except NotFoundError:
            status = RequestStatus.NOT_FOUND
            raise
        except StorageUnavailableError:
            status = RequestStatus.UNAVAILABLE
            raise
        finally:
            LINK_DELETION_REQUESTS_TOTAL.labels(status=status).inc()

    # ========================================================================
    # PRIVATE HELPER METHODS
    # ========================================================================

    async def _insert_with_fresh_code(self, original_url: str, owner_id: str) -> LinkRecord:
        max_attempts = self._settings.CODE_ALLOCATION_MAX_ATTEMPTS
        for attempt in range(1, max_attempts + 1):
            record = LinkRecord(
                id=uuid.uuid4(),
                original_url=original_url,
                short_code=self._generate_code(),
                owner_id=owner_id,
                created_at=utcnow(),
                visit_count=0,
            )
            try:
                return await self._call(self._store.insert(record))
            except UniqueConflictError as exc:
                if exc.field == "original_url":
                    raise DuplicateError(original_url) from exc
                SHORT_CODE_COLLISIONS_TOTAL.inc()
                self._logger.warning(
                    f"Short code collision on {record.short_code} (attempt {attempt}/{max_attempts})"
                )

        self._logger.error(f"Short code allocation exhausted for {original_url}")
        raise AllocationExhaustedError(max_attempts)

    async def _call(self, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._settings.STORAGE_TIMEOUT_SECONDS)
        except TimeoutError as exc:
            raise StorageUnavailableError(
                f"Link store did not answer within {self._settings.STORAGE_TIMEOUT_SECONDS}s"
            ) from exc
