"""Async SQLAlchemy engine and per-request sessions.

The ``users`` table always lives here. ``short_links`` does too unless a
non-SQL link store backend is configured.

Session Lifetime
================
::
    request ──▶ get_db() ──▶ AsyncSession ──▶ SQLLinkStore / AuthService
                                  │
                    response sent │
                                  ▼
                            session.close()

Stores commit their own writes; ``get_db`` only guarantees the session is
returned to the pool, even when a route raises.

Engine Options
==============
- ``postgresql+asyncpg://…``: pooled (``DATABASE_POOL_SIZE`` +
  ``DATABASE_MAX_OVERFLOW``) with pre-ping.
- ``sqlite+aiosqlite://…``: dialect defaults plus ``PRAGMA foreign_keys=ON``;
  used for local runs and tests.
- SQL echo is on only when ``APP_ENV=development``.

Lifecycle: ``init_db()`` creates missing tables at startup and ``close_db()``
disposes the engine at shutdown.
"""

from collections.abc import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from shortener.config import get_settings

__all__ = ["Base", "async_session", "close_db", "enforce_sqlite_foreign_keys", "engine", "get_db", "init_db"]

settings = get_settings()

_engine_options: dict = {"echo": settings.APP_ENV == "development"}
if not settings.DATABASE_URL.startswith("sqlite"):
    _engine_options.update(
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        pool_pre_ping=True,
    )


def enforce_sqlite_foreign_keys(target: AsyncEngine) -> None:
    @event.listens_for(target.sync_engine, "connect")
    def _set_pragma(dbapi_connection, connection_record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


engine = create_async_engine(settings.DATABASE_URL, **_engine_options)
if settings.DATABASE_URL.startswith("sqlite"):
    enforce_sqlite_foreign_keys(engine)

# expire_on_commit=False: stores read attributes back after their own commit.
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session() as session:
        yield session


async def init_db() -> None:
    # Registers the tables on Base.metadata before create_all.
    import shortener.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()
