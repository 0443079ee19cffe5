"""Shared pytest fixtures for service, store and API tests."""

import logging
import os
from collections.abc import AsyncGenerator, Awaitable, Callable
from pathlib import Path

# Settings are cached on first import, so the environment is fixed up front.
os.environ["APP_ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["LINK_STORE_BACKEND"] = "sql"
os.environ["ADMIN_EMAILS"] = '["admin@example.com"]'
os.environ["FIRST_USER_IS_ADMIN"] = "false"
os.environ["BASE_URL"] = "http://short.test"

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

import shortener.models  # noqa: E402, F401
from shortener.config import Settings, get_settings  # noqa: E402
from shortener.database import Base, enforce_sqlite_foreign_keys, get_db  # noqa: E402
from shortener.link_service import LinkService  # noqa: E402
from shortener.main import app  # noqa: E402
from shortener.store import InMemoryLinkStore  # noqa: E402

ADMIN_EMAIL = "admin@example.com"
PASSWORD = "Secret1!"


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest.fixture
def logger() -> logging.Logger:
    return logging.getLogger("urlshortener.tests")


# ============================================================================
# DATABASE
# ============================================================================


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """A file-backed SQLite database per test, so separate sessions share it."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'shortener.db'}", echo=False)
    enforce_sqlite_foreign_keys(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ============================================================================
# SERVICES
# ============================================================================


@pytest.fixture
def memory_store() -> InMemoryLinkStore:
    return InMemoryLinkStore()


@pytest.fixture
def link_service(memory_store: InMemoryLinkStore, settings: Settings, logger: logging.Logger) -> LinkService:
    return LinkService(memory_store, settings, logger)


# ============================================================================
# HTTP CLIENT
# ============================================================================


@pytest_asyncio.fixture(scope="function")
async def client(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def register(client: AsyncClient) -> Callable[..., Awaitable[str]]:
    """Register a user through the API and return its bearer token."""

    async def _register(email: str, password: str = PASSWORD) -> str:
        response = await client.post("/api/auth/register", json={"email": email, "password": password})
        assert response.status_code == 200, response.text
        return response.json()["token"]

    return _register


def auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def bearer() -> Callable[[str], dict[str, str]]:
    return auth_header
