"""In-memory link store tests."""

import asyncio
import datetime
import uuid

import pytest

from shortener.errors import UniqueConflictError
from shortener.schemas import LinkRecord
from shortener.store import InMemoryLinkStore


def make_record(url: str, code: str, owner: str = "owner-1", minutes_ago: int = 0) -> LinkRecord:
    return LinkRecord(
        id=uuid.uuid4(),
        original_url=url,
        short_code=code,
        owner_id=owner,
        created_at=datetime.datetime.now(datetime.timezone.utc) - datetime.timedelta(minutes=minutes_ago),
    )


@pytest.mark.asyncio
async def test_insert_and_lookups(memory_store: InMemoryLinkStore) -> None:
    record = await memory_store.insert(make_record("https://example.com", "abc123"))

    assert (await memory_store.get_by_id(record.id)).short_code == "abc123"
    assert (await memory_store.get_by_code("abc123")).id == record.id
    assert (await memory_store.get_by_original_url("https://example.com")).id == record.id
    assert await memory_store.get_by_code("missing") is None


@pytest.mark.asyncio
async def test_insert_conflicts_name_the_field(memory_store: InMemoryLinkStore) -> None:
    await memory_store.insert(make_record("https://example.com", "abc123"))

    with pytest.raises(UniqueConflictError) as url_conflict:
        await memory_store.insert(make_record("https://example.com", "zzz999"))
    assert url_conflict.value.field == "original_url"

    with pytest.raises(UniqueConflictError) as code_conflict:
        await memory_store.insert(make_record("https://other.example.com", "abc123"))
    assert code_conflict.value.field == "short_code"


@pytest.mark.asyncio
async def test_returned_records_are_copies(memory_store: InMemoryLinkStore) -> None:
    record = await memory_store.insert(make_record("https://example.com", "abc123"))
    fetched = await memory_store.get_by_id(record.id)
    fetched.visit_count = 99

    assert (await memory_store.get_by_id(record.id)).visit_count == 0


@pytest.mark.asyncio
async def test_concurrent_increments_are_not_lost(memory_store: InMemoryLinkStore) -> None:
    await memory_store.insert(make_record("https://example.com", "abc123"))

    await asyncio.gather(*(memory_store.increment_visits("abc123") for _ in range(100)))

    assert (await memory_store.get_by_code("abc123")).visit_count == 100


@pytest.mark.asyncio
async def test_increment_unknown_code_returns_none(memory_store: InMemoryLinkStore) -> None:
    assert await memory_store.increment_visits("nope") is None


@pytest.mark.asyncio
async def test_delete_frees_code_and_url(memory_store: InMemoryLinkStore) -> None:
    record = await memory_store.insert(make_record("https://example.com", "abc123"))

    assert await memory_store.delete(record.id) is True
    assert await memory_store.delete(record.id) is False
    assert await memory_store.get_by_code("abc123") is None
    # Both unique keys are reusable once the record is gone.
    await memory_store.insert(make_record("https://example.com", "abc123"))


@pytest.mark.asyncio
async def test_listing_is_newest_first_and_filtered(memory_store: InMemoryLinkStore) -> None:
    old = await memory_store.insert(make_record("https://a.example.com", "aaaaaa", owner="u1", minutes_ago=10))
    new = await memory_store.insert(make_record("https://b.example.com", "bbbbbb", owner="u1"))
    other = await memory_store.insert(make_record("https://c.example.com", "cccccc", owner="u2", minutes_ago=5))

    assert [r.id for r in await memory_store.list_all()] == [new.id, other.id, old.id]
    assert [r.id for r in await memory_store.list_by_owner("u1")] == [new.id, old.id]
    assert await memory_store.list_by_owner("nobody") == []
