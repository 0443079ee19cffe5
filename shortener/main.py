"""ASGI application for the URL shortener.

Startup and Shutdown
====================
::
    lifespan startup                      lifespan shutdown
    ├─ init_db()       create tables      ├─ ServiceManager.cleanup()
    └─ ServiceManager  settings, logger,  ├─ close_db()      dispose engine
       .initialize()   link store         └─ close_redis()   only if opened

Request Pipeline
================
::
    CORSMiddleware (CORS_ORIGINS)
        └─ Prometheus instrumentation (latency/status per route)
            └─ routes.router
                ├─ /health
                ├─ /api/auth/*
                └─ /api/urls/*
    /metrics is served by the instrumentator.

Running
=======
::
    uvicorn shortener.main:app --host 0.0.0.0 --port 8080

    TOKEN=$(curl -s -X POST localhost:8080/api/auth/register \\
        -H "Content-Type: application/json" \\
        -d '{"email": "me@example.com", "password": "Secret1!"}' | jq -r .token)

    curl -X POST localhost:8080/api/urls -H "Authorization: Bearer $TOKEN" \\
        -H "Content-Type: application/json" \\
        -d '{"original_url": "https://example.com"}'

    curl -i localhost:8080/api/urls/<short_code>     # 302
"""

__all__ = ["app"]

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from shortener.config import get_settings
from shortener.database import close_db, init_db
from shortener.dependencies import _service_manager
from shortener.redis import close_redis
from shortener.routes import router

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    await init_db()
    await _service_manager.initialize()
    yield
    # Shutdown
    await _service_manager.cleanup()
    await close_db()
    await close_redis()


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="URL shortener with per-user links and visit counting",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=False,
    should_respect_env_var=False,
).instrument(app).expose(app)

app.include_router(router)
