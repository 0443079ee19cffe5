"""FastAPI route definitions for the URL shortener REST API.

This module provides all HTTP endpoints with dependency injection, error
mapping and response serialization. Business rules live in LinkService and
AuthService; routes only translate their typed errors into status codes.

API Endpoint Overview
=====================
::
    GET    /health
        └─ HealthResponse (200)

    POST   /api/auth/register
        ├─ Credentials (request body)
        └─ TokenResponse (200) or 400

    POST   /api/auth/login
        ├─ Credentials (request body)
        └─ TokenResponse (200) or 400

    GET    /api/urls                       [bearer]
        └─ list[LinkResponse] (200): all for admins, own otherwise

    POST   /api/urls                       [bearer]
        ├─ LinkCreate (request body)
        └─ LinkResponse (201) or 400/401/422

    GET    /api/urls/{id:uuid}             [bearer]
        └─ LinkResponse (200) or 404

    DELETE /api/urls/{id:uuid}             [bearer]
        └─ 204 or 403/404

    GET    /api/urls/{short_code}
        └─ 302 Redirect or 404

Every route answers 503 with ``Retry-After`` when storage is unavailable.

Error Mapping
=============
::
    ValidationError           → 422
    DuplicateError            → 400
    CredentialsError          → 400
    NotFoundError             → 404
    ForbiddenError            → 403
    AllocationExhaustedError  → 503
    StorageUnavailableError   → 503 + Retry-After
    UnknownOwnerError         → 401
    (missing/invalid token)   → 401 (get_current_principal)

Key Behaviours
===============
- UUID routes are registered before the short code route, so
  ``/api/urls/{id}`` and ``/api/urls/{short_code}`` never shadow each other.
- Redirects use 302 and carry the original URL in ``Location``.
- Each request logs through a LoggerAdapter carrying request id and tags.
"""

import uuid

from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.responses import RedirectResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from shortener.auth import AuthService, Principal
from shortener.dependencies import (
    RequestContext,
    get_auth_service,
    get_current_principal,
    get_link_service,
    get_request_context,
)
from shortener.enums import HealthStatus
from shortener.errors import (
    AllocationExhaustedError,
    CredentialsError,
    DuplicateError,
    ForbiddenError,
    NotFoundError,
    StorageUnavailableError,
    UnknownOwnerError,
    ValidationError,
)
from shortener.link_service import LinkService
from shortener.schemas import Credentials, HealthResponse, LinkCreate, LinkResponse, TokenResponse

__all__ = ["router"]

router = APIRouter()

RETRY_AFTER_SECONDS = "1"


def _service_unavailable(exc: Exception) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=str(exc),
        headers={"Retry-After": RETRY_AFTER_SECONDS},
    )


# ============================================================================
# HEALTH
# ============================================================================


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(ctx: RequestContext = Depends(get_request_context)) -> HealthResponse:
    ctx.logger.info("Health check requested")
    db_status = HealthStatus.HEALTHY
    store_status = HealthStatus.HEALTHY

    try:
        await ctx.database.execute(text("SELECT 1"))
        ctx.logger.debug("Database health check passed")
    except SQLAlchemyError as e:
        ctx.logger.error(f"Database health check failed: {e}")
        db_status = HealthStatus.UNHEALTHY

    try:
        await ctx.link_store.ping()
    except StorageUnavailableError as e:
        ctx.logger.error(f"Link store health check failed: {e}")
        store_status = HealthStatus.UNHEALTHY

    overall = (
        HealthStatus.HEALTHY
        if db_status is HealthStatus.HEALTHY and store_status is HealthStatus.HEALTHY
        else HealthStatus.UNHEALTHY
    )
    ctx.logger.info(f"Health check completed: {overall.value}")
    return HealthResponse(status=overall, database=db_status, link_store=store_status)


# ============================================================================
# AUTH
# ============================================================================


@router.post("/api/auth/register", response_model=TokenResponse, tags=["auth"])
async def register(
    payload: Credentials,
    ctx: RequestContext = Depends(get_request_context),
    auth: AuthService = Depends(get_auth_service),
) -> TokenResponse:
    ctx.add_tag("register")
    try:
        token = await auth.register(payload)
    except CredentialsError as exc:
        ctx.logger.warning(f"Registration rejected for {payload.email}: {exc}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.errors) from exc
    except StorageUnavailableError as exc:
        raise _service_unavailable(exc) from exc
    return TokenResponse(token=token)


@router.post("/api/auth/login", response_model=TokenResponse, tags=["auth"])
async def login(
    payload: Credentials,
    ctx: RequestContext = Depends(get_request_context),
    auth: AuthService = Depends(get_auth_service),
) -> TokenResponse:
    ctx.add_tag("login")
    try:
        token = await auth.login(payload)
    except CredentialsError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.errors) from exc
    except StorageUnavailableError as exc:
        raise _service_unavailable(exc) from exc
    return TokenResponse(token=token)


# ============================================================================
# URLS
# ============================================================================


@router.get("/api/urls", response_model=list[LinkResponse], tags=["urls"])
async def list_urls(
    ctx: RequestContext = Depends(get_request_context),
    principal: Principal = Depends(get_current_principal),
    service: LinkService = Depends(get_link_service),
) -> list[LinkResponse]:
    ctx.logger.info(f"Listing links for {principal.user_id} (admin={principal.is_admin})")
    try:
        records = await service.list_visible(principal.user_id, principal.is_admin)
    except StorageUnavailableError as exc:
        raise _service_unavailable(exc) from exc
    return [LinkResponse.from_record(record, ctx.settings.BASE_URL) for record in records]


@router.post("/api/urls", response_model=LinkResponse, status_code=201, tags=["urls"])
async def create_url(
    payload: LinkCreate,
    response: Response,
    ctx: RequestContext = Depends(get_request_context),
    principal: Principal = Depends(get_current_principal),
    service: LinkService = Depends(get_link_service),
) -> LinkResponse:
    ctx.add_tag("link_creation")
    ctx.logger.info(
        f"Link creation requested: {payload.original_url}",
        extra={"operation": "create_link", "target_url": payload.original_url, "owner_id": principal.user_id},
    )

    try:
        record = await service.create_link(payload.original_url, principal.user_id)
    except DuplicateError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="URL already exists") from exc
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except UnknownOwnerError as exc:
        ctx.logger.warning(f"Link creation by unknown owner {principal.user_id}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc
    except (AllocationExhaustedError, StorageUnavailableError) as exc:
        raise _service_unavailable(exc) from exc

    ctx.logger.info(
        f"Link created: {record.short_code}",
        extra={"operation": "create_link", "short_code": record.short_code, "duration_ms": ctx.get_duration()},
    )
    response.headers["Location"] = f"/api/urls/{record.id}"
    return LinkResponse.from_record(record, ctx.settings.BASE_URL)


@router.get("/api/urls/{link_id:uuid}", response_model=LinkResponse, tags=["urls"])
async def get_url(
    link_id: uuid.UUID,
    ctx: RequestContext = Depends(get_request_context),
    principal: Principal = Depends(get_current_principal),
    service: LinkService = Depends(get_link_service),
) -> LinkResponse:
    try:
        record = await service.get_by_id(link_id)
    except NotFoundError as exc:
        ctx.logger.warning(f"Link not found: {link_id}")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Short URL not found") from exc
    except StorageUnavailableError as exc:
        raise _service_unavailable(exc) from exc
    return LinkResponse.from_record(record, ctx.settings.BASE_URL)


@router.delete("/api/urls/{link_id:uuid}", status_code=204, tags=["urls"])
async def delete_url(
    link_id: uuid.UUID,
    ctx: RequestContext = Depends(get_request_context),
    principal: Principal = Depends(get_current_principal),
    service: LinkService = Depends(get_link_service),
) -> Response:
    ctx.add_tag("link_deletion")
    try:
        await service.delete_by_id(link_id, principal.user_id, principal.is_admin)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Short URL not found") from exc
    except ForbiddenError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except StorageUnavailableError as exc:
        raise _service_unavailable(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/api/urls/{short_code}", tags=["redirect"])
async def redirect_to_url(
    short_code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> RedirectResponse:
    ctx.add_tag("redirect")
    ctx.logger.info(
        f"Redirect requested for short code: {short_code}",
        extra={"operation": "redirect", "short_code": short_code, "client_ip": ctx.client_ip},
    )

    try:
        record = await service.resolve(short_code)
    except NotFoundError as exc:
        ctx.logger.warning(
            f"Redirect failed - short code not found: {short_code}",
            extra={"operation": "redirect", "short_code": short_code, "duration_ms": ctx.get_duration()},
        )
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Short URL not found") from exc
    except StorageUnavailableError as exc:
        raise _service_unavailable(exc) from exc

    ctx.logger.info(
        f"Redirect successful: {short_code} -> {record.original_url}",
        extra={"operation": "redirect", "visit_count": record.visit_count, "duration_ms": ctx.get_duration()},
    )
    return RedirectResponse(url=record.original_url, status_code=status.HTTP_302_FOUND)
