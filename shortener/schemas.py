"""Pydantic schemas for request/response validation in the URL shortener.

This module defines Pydantic models for API input validation and output serialization,
plus ``LinkRecord``, the backend-neutral record every link store returns.

Schema Hierarchy
=================
::
    LinkCreate (Input)
    └─ original_url: str (absolute http/https URL)

    Credentials (Input)
    ├─ email: str (lower-cased)
    └─ password: str

    LinkRecord (Store record)
    ├─ id: UUID
    ├─ original_url: str
    ├─ short_code: str
    ├─ owner_id: str
    ├─ created_at: datetime
    └─ visit_count: int

    LinkResponse (Output)
    └─ LinkRecord fields + short_url (computed)

    TokenResponse (Output)
    └─ token: str

    HealthResponse (Output)
    ├─ status: HealthStatus
    ├─ database: HealthStatus
    └─ link_store: HealthStatus

How to Use
===========
**Step 1 — Input validation**::
    @router.post("/api/urls")
    async def create_url(payload: LinkCreate):
        # payload.original_url is already an absolute http(s) URL
        ...

**Step 2 — Response serialization**::
    record = await service.get_by_id(link_id)
    return LinkResponse.from_record(record, settings.BASE_URL)

Key Behaviours
===============
- URL validation uses the validators library and additionally requires an
  http or https scheme.
- Email addresses are lower-cased here; their syntax is checked by the
  registration policy in auth.py.
- LinkRecord reads ORM attributes directly (``from_attributes``) and treats
  naive timestamps as UTC.
- FastAPI generates OpenAPI docs from these schemas.
"""

import datetime
import uuid
from urllib.parse import urlsplit

import validators
from pydantic import BaseModel, Field, field_validator

from shortener.enums import HealthStatus

__all__ = [
    "Credentials",
    "HealthResponse",
    "LinkCreate",
    "LinkRecord",
    "LinkResponse",
    "TokenResponse",
    "is_absolute_http_url",
]

ALLOWED_SCHEMES = frozenset({"http", "https"})


def is_absolute_http_url(value: str) -> bool:
    if not isinstance(value, str) or not value:
        return False
    if urlsplit(value).scheme.lower() not in ALLOWED_SCHEMES:
        return False
    # Bare query flags (?q) and single-label hosts (localhost) are valid targets.
    return bool(validators.url(value, strict_query=False, simple_host=True))


class LinkCreate(BaseModel):
    original_url: str = Field(..., description="Absolute http(s) URL to shorten")

    @field_validator("original_url")
    @classmethod
    def validate_original_url(cls, v: str) -> str:
        v = v.strip()
        if not is_absolute_http_url(v):
            raise ValueError("Invalid URL provided; an absolute http or https URL is required")
        return v


class Credentials(BaseModel):
    email: str
    password: str

    # Address syntax is part of the registration policy (400, not 422).
    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


class LinkRecord(BaseModel):
    id: uuid.UUID
    original_url: str
    short_code: str
    owner_id: str
    created_at: datetime.datetime
    visit_count: int = 0

    model_config = {"from_attributes": True}

    # SQLite drops the offset; every stored timestamp is UTC.
    @field_validator("created_at")
    @classmethod
    def ensure_utc(cls, v: datetime.datetime) -> datetime.datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=datetime.timezone.utc)
        return v


class LinkResponse(BaseModel):
    id: uuid.UUID
    original_url: str
    short_code: str
    short_url: str
    owner_id: str
    created_at: datetime.datetime
    visit_count: int

    @classmethod
    def from_record(cls, record: LinkRecord, base_url: str) -> "LinkResponse":
        return cls(
            **record.model_dump(),
            short_url=f"{base_url.rstrip('/')}/api/urls/{record.short_code}",
        )


class TokenResponse(BaseModel):
    token: str


class HealthResponse(BaseModel):
    status: HealthStatus
    database: HealthStatus
    link_store: HealthStatus
