"""PostgreSQL/SQLite link store built on an async SQLAlchemy session.

Flow Diagram — increment_visits()
=================================
::
    ┌──────────────────────────────┐
    │ UPDATE short_links           │
    │ SET visit_count =            │
    │     visit_count + 1          │
    │ WHERE short_code = :code     │
    │ RETURNING <all columns>      │
    └──────────────┬───────────────┘
            ROW?   │
            ┌──────┴─────┐
            │ NO         │ YES
            ▼            ▼
       ┌─────────┐  ┌──────────┐
       │ None    │  │ COMMIT → │
       │ (gone)  │  │ record   │
       └─────────┘  └──────────┘

The database serialises concurrent increments on the row, so no visit is
lost no matter how many requests resolve the same code at once.

Key Behaviours
===============
- One store instance per request, bound to the request's session.
- Unique-constraint violations are mapped back to the offending column; an
  owner missing from ``users`` is ``UnknownOwnerError``, never a collision.
- Connectivity failures surface as ``StorageUnavailableError``.
"""

import uuid
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import delete, select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shortener.errors import StorageUnavailableError, UniqueConflictError, UnknownOwnerError
from shortener.models import ShortLink, User
from shortener.schemas import LinkRecord
from shortener.store import LinkStore

__all__ = ["SQLLinkStore"]

_RECORD_COLUMNS = (
    ShortLink.id,
    ShortLink.original_url,
    ShortLink.short_code,
    ShortLink.owner_id,
    ShortLink.created_at,
    ShortLink.visit_count,
)


@contextmanager
def _translate_errors() -> Iterator[None]:
    try:
        yield
    except (SQLAlchemyError, OSError) as exc:
        raise StorageUnavailableError(f"Database unavailable: {exc}") from exc


class SQLLinkStore(LinkStore):
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def _fetch_one(self, *criteria) -> LinkRecord | None:
        with _translate_errors():
            result = await self._session.execute(select(*_RECORD_COLUMNS).where(*criteria))
            row = result.mappings().one_or_none()
        return LinkRecord.model_validate(dict(row)) if row else None

    async def _fetch_many(self, *criteria) -> list[LinkRecord]:
        stmt = select(*_RECORD_COLUMNS).where(*criteria).order_by(ShortLink.created_at.desc())
        with _translate_errors():
            result = await self._session.execute(stmt)
            rows = result.mappings().all()
        return [LinkRecord.model_validate(dict(row)) for row in rows]

    async def get_by_id(self, link_id: uuid.UUID) -> LinkRecord | None:
        return await self._fetch_one(ShortLink.id == link_id)

    async def get_by_code(self, short_code: str) -> LinkRecord | None:
        return await self._fetch_one(ShortLink.short_code == short_code)

    async def get_by_original_url(self, original_url: str) -> LinkRecord | None:
        return await self._fetch_one(ShortLink.original_url == original_url)

    async def insert(self, record: LinkRecord) -> LinkRecord:
        with _translate_errors():
            self._session.add(ShortLink(**record.model_dump()))
            try:
                await self._session.commit()
            except IntegrityError as exc:
                await self._session.rollback()
                raise await self._explain_integrity_error(record, exc) from exc
        return record.model_copy()

    async def _explain_integrity_error(self, record: LinkRecord, exc: IntegrityError) -> Exception:
        # Only a taken short code is worth retrying with a fresh one.
        if await self.get_by_original_url(record.original_url):
            return UniqueConflictError("original_url")
        if await self.get_by_code(record.short_code):
            return UniqueConflictError("short_code")
        with _translate_errors():
            owner = await self._session.scalar(select(User.id).where(User.id == record.owner_id))
        if owner is None:
            return UnknownOwnerError(record.owner_id)
        return StorageUnavailableError(f"Insert of '{record.short_code}' rejected: {exc.orig}")

    async def increment_visits(self, short_code: str) -> LinkRecord | None:
        stmt = (
            update(ShortLink)
            .where(ShortLink.short_code == short_code)
            .values(visit_count=ShortLink.visit_count + 1)
            .returning(*_RECORD_COLUMNS)
            .execution_options(synchronize_session=False)
        )
        with _translate_errors():
            result = await self._session.execute(stmt)
            row = result.mappings().one_or_none()
            await self._session.commit()
        return LinkRecord.model_validate(dict(row)) if row else None

    async def delete(self, link_id: uuid.UUID) -> bool:
        stmt = delete(ShortLink).where(ShortLink.id == link_id).execution_options(synchronize_session=False)
        with _translate_errors():
            result = await self._session.execute(stmt)
            await self._session.commit()
        return result.rowcount > 0

    async def list_all(self) -> list[LinkRecord]:
        return await self._fetch_many()

    async def list_by_owner(self, owner_id: str) -> list[LinkRecord]:
        return await self._fetch_many(ShortLink.owner_id == owner_id)

    async def ping(self) -> None:
        with _translate_errors():
            await self._session.execute(text("SELECT 1"))
