"""Shared Redis connection for the Redis link store backend.

Only ``LINK_STORE_BACKEND=redis`` opens a connection; the SQL and memory
backends never call ``get_redis()``.

::
    ServiceManager.initialize()
            │
            ▼
    get_redis() ── client exists? ── yes ──▶ reuse
            │ no
            ▼
    redis.from_url(REDIS_URL, decode_responses=True)
            │
            ▼
    RedisLinkStore(client, prefix=REDIS_KEY_PREFIX)

Responses are decoded to ``str`` so link hashes validate straight into
``LinkRecord``. ``close_redis()`` runs from the application lifespan.
"""

import redis.asyncio as redis

from shortener.config import get_settings

__all__ = ["close_redis", "get_redis"]

settings = get_settings()

_client: redis.Redis | None = None


async def get_redis() -> redis.Redis:
    global _client
    if _client is None:
        _client = redis.from_url(settings.REDIS_URL, encoding="utf-8", decode_responses=True)
    return _client


async def close_redis() -> None:
    global _client
    if _client is None:
        return
    await _client.aclose()
    _client = None
