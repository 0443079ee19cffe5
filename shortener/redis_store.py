"""Redis-backed link store.

Key Layout
==========
::
    {prefix}:link:{id}          HASH  id, original_url, short_code,
                                      owner_id, created_at, visit_count
    {prefix}:code:{short_code}  STRING → id
    {prefix}:url:{sha256(url)}  STRING → id
    {prefix}:links              SET   every id
    {prefix}:owner:{owner_id}   SET   ids owned by owner_id

Insert and increment run as Lua scripts so uniqueness checks, index writes and
the visit counter update are atomic on the server. Original URLs are hashed
for their index key; the full URL stays in the record hash.
"""

import hashlib
import uuid
from collections.abc import Iterator
from contextlib import contextmanager

import redis.asyncio as redis
from redis.exceptions import RedisError

from shortener.errors import StorageUnavailableError, UniqueConflictError
from shortener.schemas import LinkRecord
from shortener.store import LinkStore

__all__ = ["RedisLinkStore"]

_INSERT_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 1 then return 'original_url' end
if redis.call('EXISTS', KEYS[2]) == 1 then return 'short_code' end
redis.call('SET', KEYS[1], ARGV[1])
redis.call('SET', KEYS[2], ARGV[1])
redis.call('HSET', KEYS[3],
    'id', ARGV[1], 'original_url', ARGV[2], 'short_code', ARGV[3],
    'owner_id', ARGV[4], 'created_at', ARGV[5], 'visit_count', ARGV[6])
redis.call('SADD', KEYS[4], ARGV[1])
redis.call('SADD', KEYS[5], ARGV[1])
return false
"""

_INCREMENT_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 0 then return false end
redis.call('HINCRBY', KEYS[1], 'visit_count', 1)
return redis.call('HGETALL', KEYS[1])
"""


@contextmanager
def _translate_errors() -> Iterator[None]:
    try:
        yield
    except RedisError as exc:
        raise StorageUnavailableError(f"Redis unavailable: {exc}") from exc


def _pairs_to_dict(values: list[str]) -> dict[str, str]:
    return dict(zip(values[::2], values[1::2]))


class RedisLinkStore(LinkStore):
    def __init__(self, client: redis.Redis, prefix: str = "shortener") -> None:
        self._redis = client
        self._prefix = prefix
        self._insert_script = client.register_script(_INSERT_SCRIPT)
        self._increment_script = client.register_script(_INCREMENT_SCRIPT)

    def _link_key(self, link_id: uuid.UUID | str) -> str:
        return f"{self._prefix}:link:{link_id}"

    def _code_key(self, short_code: str) -> str:
        return f"{self._prefix}:code:{short_code}"

    def _url_key(self, original_url: str) -> str:
        digest = hashlib.sha256(original_url.encode("utf-8")).hexdigest()
        return f"{self._prefix}:url:{digest}"

    def _owner_key(self, owner_id: str) -> str:
        return f"{self._prefix}:owner:{owner_id}"

    @property
    def _all_key(self) -> str:
        return f"{self._prefix}:links"

    async def get_by_id(self, link_id: uuid.UUID | str) -> LinkRecord | None:
        with _translate_errors():
            data = await self._redis.hgetall(self._link_key(link_id))
        return LinkRecord.model_validate(data) if data else None

    async def _get_by_index(self, index_key: str) -> LinkRecord | None:
        with _translate_errors():
            link_id = await self._redis.get(index_key)
        return await self.get_by_id(link_id) if link_id else None

    async def get_by_code(self, short_code: str) -> LinkRecord | None:
        return await self._get_by_index(self._code_key(short_code))

    async def get_by_original_url(self, original_url: str) -> LinkRecord | None:
        record = await self._get_by_index(self._url_key(original_url))
        # sha256 collisions are not expected, but the index only stores a digest.
        if record and record.original_url != original_url:
            return None
        return record

    async def insert(self, record: LinkRecord) -> LinkRecord:
        keys = [
            self._url_key(record.original_url),
            self._code_key(record.short_code),
            self._link_key(record.id),
            self._all_key,
            self._owner_key(record.owner_id),
        ]
        args = [
            str(record.id),
            record.original_url,
            record.short_code,
            record.owner_id,
            record.created_at.isoformat(),
            record.visit_count,
        ]
        with _translate_errors():
            conflict = await self._insert_script(keys=keys, args=args)
        if conflict:
            raise UniqueConflictError(conflict)
        return record.model_copy()

    async def increment_visits(self, short_code: str) -> LinkRecord | None:
        with _translate_errors():
            link_id = await self._redis.get(self._code_key(short_code))
            if not link_id:
                return None
            values = await self._increment_script(keys=[self._link_key(link_id)])
        return LinkRecord.model_validate(_pairs_to_dict(values)) if values else None

    async def delete(self, link_id: uuid.UUID) -> bool:
        record = await self.get_by_id(link_id)
        if record is None:
            return False
        with _translate_errors():
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.delete(self._link_key(record.id))
                pipe.delete(self._code_key(record.short_code))
                pipe.delete(self._url_key(record.original_url))
                pipe.srem(self._all_key, str(record.id))
                pipe.srem(self._owner_key(record.owner_id), str(record.id))
                results = await pipe.execute()
        return bool(results[0])

    async def _load_many(self, set_key: str) -> list[LinkRecord]:
        with _translate_errors():
            link_ids = await self._redis.smembers(set_key)
            async with self._redis.pipeline(transaction=False) as pipe:
                for link_id in link_ids:
                    pipe.hgetall(self._link_key(link_id))
                rows = await pipe.execute()
        records = [LinkRecord.model_validate(row) for row in rows if row]
        return sorted(records, key=lambda r: r.created_at, reverse=True)

    async def list_all(self) -> list[LinkRecord]:
        return await self._load_many(self._all_key)

    async def list_by_owner(self, owner_id: str) -> list[LinkRecord]:
        return await self._load_many(self._owner_key(owner_id))

    async def ping(self) -> None:
        with _translate_errors():
            await self._redis.ping()
