"""Link storage contract and the in-memory backend.

The link service only talks to ``LinkStore``. Backends live next to the
infrastructure they wrap:

::
    LinkStore (ABC)
    ├─ InMemoryLinkStore   this module, asyncio.Lock around dict indexes
    ├─ SQLLinkStore        sql_store.py, one AsyncSession per request
    └─ RedisLinkStore      redis_store.py, Lua insert (EXISTS/SET) + Lua increment

Every backend must:

- return ``LinkRecord`` copies, never live mutable state;
- raise ``UniqueConflictError(field)`` when an insert collides on
  ``short_code`` or ``original_url``;
- increment ``visit_count`` atomically, without a read-modify-write in Python;
- raise ``StorageUnavailableError`` for transient infrastructure failures.
"""

import asyncio
import uuid
from abc import ABC, abstractmethod

from shortener.errors import UniqueConflictError
from shortener.schemas import LinkRecord

__all__ = ["InMemoryLinkStore", "LinkStore"]


class LinkStore(ABC):
    """Storage port for short link records."""

    @abstractmethod
    async def get_by_id(self, link_id: uuid.UUID) -> LinkRecord | None:
        raise NotImplementedError

    @abstractmethod
    async def get_by_code(self, short_code: str) -> LinkRecord | None:
        raise NotImplementedError

    @abstractmethod
    async def get_by_original_url(self, original_url: str) -> LinkRecord | None:
        raise NotImplementedError

    @abstractmethod
    async def insert(self, record: LinkRecord) -> LinkRecord:
        """Persist a new record.

        Raises:
            UniqueConflictError: ``short_code`` or ``original_url`` is taken.
        """
        raise NotImplementedError

    @abstractmethod
    async def increment_visits(self, short_code: str) -> LinkRecord | None:
        """Atomically add one visit; ``None`` if the code no longer exists."""
        raise NotImplementedError

    @abstractmethod
    async def delete(self, link_id: uuid.UUID) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def list_all(self) -> list[LinkRecord]:
        raise NotImplementedError

    @abstractmethod
    async def list_by_owner(self, owner_id: str) -> list[LinkRecord]:
        raise NotImplementedError

    @abstractmethod
    async def ping(self) -> None:
        """Raise if the backend cannot serve requests."""
        raise NotImplementedError


def _newest_first(records: list[LinkRecord]) -> list[LinkRecord]:
    return sorted(records, key=lambda r: r.created_at, reverse=True)


class InMemoryLinkStore(LinkStore):
    """Process-local store; used for tests and single-process local runs."""

    def __init__(self) -> None:
        self._records: dict[uuid.UUID, LinkRecord] = {}
        self._by_code: dict[str, uuid.UUID] = {}
        self._by_url: dict[str, uuid.UUID] = {}
        self._lock = asyncio.Lock()

    async def get_by_id(self, link_id: uuid.UUID) -> LinkRecord | None:
        record = self._records.get(link_id)
        return record.model_copy() if record else None

    async def get_by_code(self, short_code: str) -> LinkRecord | None:
        link_id = self._by_code.get(short_code)
        return await self.get_by_id(link_id) if link_id else None

    async def get_by_original_url(self, original_url: str) -> LinkRecord | None:
        link_id = self._by_url.get(original_url)
        return await self.get_by_id(link_id) if link_id else None

    async def insert(self, record: LinkRecord) -> LinkRecord:
        async with self._lock:
            if record.original_url in self._by_url:
                raise UniqueConflictError("original_url")
            if record.short_code in self._by_code:
                raise UniqueConflictError("short_code")
            stored = record.model_copy()
            self._records[stored.id] = stored
            self._by_code[stored.short_code] = stored.id
            self._by_url[stored.original_url] = stored.id
            return stored.model_copy()

    async def increment_visits(self, short_code: str) -> LinkRecord | None:
        async with self._lock:
            link_id = self._by_code.get(short_code)
            if link_id is None:
                return None
            updated = self._records[link_id].model_copy(
                update={"visit_count": self._records[link_id].visit_count + 1}
            )
            self._records[link_id] = updated
            return updated.model_copy()

    async def delete(self, link_id: uuid.UUID) -> bool:
        async with self._lock:
            record = self._records.pop(link_id, None)
            if record is None:
                return False
            del self._by_code[record.short_code]
            del self._by_url[record.original_url]
            return True

    async def list_all(self) -> list[LinkRecord]:
        return _newest_first([r.model_copy() for r in self._records.values()])

    async def list_by_owner(self, owner_id: str) -> list[LinkRecord]:
        return _newest_first([r.model_copy() for r in self._records.values() if r.owner_id == owner_id])

    async def ping(self) -> None:
        return None
