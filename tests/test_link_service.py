"""Link service business rule tests, run against the in-memory store."""

import asyncio
import uuid
from unittest.mock import AsyncMock

import pytest

from shortener.errors import (
    AllocationExhaustedError,
    DuplicateError,
    ForbiddenError,
    NotFoundError,
    StorageUnavailableError,
    ValidationError,
)
from shortener.link_service import LinkService
from shortener.store import InMemoryLinkStore

ALICE = "user-alice"
BOB = "user-bob"
ADMIN = "user-admin"


# ============================================================================
# CREATE / RESOLVE
# ============================================================================


@pytest.mark.asyncio
async def test_create_then_resolve_counts_one_visit(link_service: LinkService) -> None:
    record = await link_service.create_link("https://example.com", ALICE)
    assert record.visit_count == 0
    assert record.owner_id == ALICE

    resolved = await link_service.resolve(record.short_code)

    assert resolved.original_url == "https://example.com"
    assert resolved.visit_count == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("url", ["", "example.com", "ftp://example.com/file", "not a url", "/relative/path"])
async def test_create_rejects_invalid_urls(link_service: LinkService, memory_store: InMemoryLinkStore, url) -> None:
    with pytest.raises(ValidationError):
        await link_service.create_link(url, ALICE)
    assert await memory_store.list_all() == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "url",
    [
        "https://example.com/search?q",
        "https://example.com/?a=1&b",
        "http://localhost:8000/x",
        "http://127.0.0.1:8080/",
        "https://example.com/docs#section-2",
    ],
)
async def test_create_accepts_valid_absolute_urls(link_service: LinkService, url: str) -> None:
    record = await link_service.create_link(url, ALICE)

    resolved = await link_service.resolve(record.short_code)

    assert resolved.original_url == url
    assert resolved.visit_count == 1


@pytest.mark.asyncio
async def test_duplicate_url_is_rejected_for_any_owner(
    link_service: LinkService, memory_store: InMemoryLinkStore
) -> None:
    await link_service.create_link("https://example.com", ALICE)

    with pytest.raises(DuplicateError):
        await link_service.create_link("https://example.com", ALICE)
    with pytest.raises(DuplicateError):
        await link_service.create_link("https://example.com", BOB)

    assert len(await memory_store.list_all()) == 1


@pytest.mark.asyncio
async def test_concurrent_creates_of_same_url_store_one_record(
    link_service: LinkService, memory_store: InMemoryLinkStore
) -> None:
    results = await asyncio.gather(
        *(link_service.create_link("https://race.example.com", ALICE) for _ in range(20)),
        return_exceptions=True,
    )

    assert sum(1 for r in results if not isinstance(r, Exception)) == 1
    assert all(isinstance(r, DuplicateError) for r in results if isinstance(r, Exception))
    assert len(await memory_store.list_all()) == 1


@pytest.mark.asyncio
async def test_ten_thousand_links_get_distinct_codes(link_service: LinkService) -> None:
    codes = set()
    for i in range(10_000):
        record = await link_service.create_link(f"https://example.com/page/{i}", ALICE)
        codes.add(record.short_code)
    assert len(codes) == 10_000


@pytest.mark.asyncio
async def test_resolve_unknown_code(link_service: LinkService) -> None:
    with pytest.raises(NotFoundError):
        await link_service.resolve("nope12")


@pytest.mark.asyncio
async def test_concurrent_resolves_count_every_visit(link_service: LinkService) -> None:
    record = await link_service.create_link("https://example.com", ALICE)

    await asyncio.gather(*(link_service.resolve(record.short_code) for _ in range(100)))

    assert (await link_service.get_by_id(record.id)).visit_count == 100


# ============================================================================
# CODE ALLOCATION
# ============================================================================


@pytest.mark.asyncio
async def test_allocation_retries_past_taken_codes(memory_store, settings, logger) -> None:
    codes = iter(["AAAAAA", "AAAAAA", "AAAAAA", "BBBBBB"])
    service = LinkService(memory_store, settings, logger, code_generator=lambda: next(codes))

    first = await service.create_link("https://one.example.com", ALICE)
    second = await service.create_link("https://two.example.com", ALICE)

    assert first.short_code == "AAAAAA"
    assert second.short_code == "BBBBBB"


@pytest.mark.asyncio
async def test_allocation_gives_up_after_configured_attempts(memory_store, settings, logger) -> None:
    generated = []

    def always_taken() -> str:
        generated.append("AAAAAA")
        return "AAAAAA"

    service = LinkService(memory_store, settings, logger, code_generator=always_taken)
    await service.create_link("https://one.example.com", ALICE)
    generated.clear()

    with pytest.raises(AllocationExhaustedError) as exc_info:
        await service.create_link("https://two.example.com", ALICE)

    assert exc_info.value.attempts == settings.CODE_ALLOCATION_MAX_ATTEMPTS
    assert len(generated) == settings.CODE_ALLOCATION_MAX_ATTEMPTS
    assert await memory_store.get_by_original_url("https://two.example.com") is None


# ============================================================================
# LISTING
# ============================================================================


@pytest.mark.asyncio
async def test_listing_by_owner_and_for_admin(link_service: LinkService) -> None:
    a1 = await link_service.create_link("https://a1.example.com", ALICE)
    a2 = await link_service.create_link("https://a2.example.com", ALICE)
    b1 = await link_service.create_link("https://b1.example.com", BOB)

    assert {r.id for r in await link_service.list_by_owner(ALICE)} == {a1.id, a2.id}
    assert {r.id for r in await link_service.list_all()} == {a1.id, a2.id, b1.id}
    assert {r.id for r in await link_service.list_visible(BOB, False)} == {b1.id}
    assert {r.id for r in await link_service.list_visible(BOB, True)} == {a1.id, a2.id, b1.id}


@pytest.mark.asyncio
async def test_get_by_id_unknown(link_service: LinkService) -> None:
    with pytest.raises(NotFoundError):
        await link_service.get_by_id(uuid.uuid4())


# ============================================================================
# DELETE
# ============================================================================


@pytest.mark.asyncio
async def test_non_owner_cannot_delete(link_service: LinkService) -> None:
    record = await link_service.create_link("https://example.com", ALICE)

    with pytest.raises(ForbiddenError):
        await link_service.delete_by_id(record.id, BOB, False)

    assert (await link_service.get_by_id(record.id)) == record


@pytest.mark.asyncio
async def test_owner_delete_removes_record(link_service: LinkService) -> None:
    record = await link_service.create_link("https://example.com", ALICE)

    await link_service.delete_by_id(record.id, ALICE, False)

    with pytest.raises(NotFoundError):
        await link_service.resolve(record.short_code)


@pytest.mark.asyncio
async def test_delete_unknown_id(link_service: LinkService) -> None:
    with pytest.raises(NotFoundError):
        await link_service.delete_by_id(uuid.uuid4(), ADMIN, True)


@pytest.mark.asyncio
async def test_create_resolve_forbid_then_admin_delete(link_service: LinkService) -> None:
    record = await link_service.create_link("https://example.com", ALICE)
    k1 = record.short_code

    resolved = await link_service.resolve(k1)
    assert resolved.original_url == "https://example.com"
    assert resolved.visit_count == 1

    with pytest.raises(ForbiddenError):
        await link_service.delete_by_id(record.id, BOB, False)

    await link_service.delete_by_id(record.id, ADMIN, True)

    with pytest.raises(NotFoundError):
        await link_service.resolve(k1)


# ============================================================================
# STORAGE FAILURES
# ============================================================================


@pytest.mark.asyncio
async def test_store_timeout_is_storage_unavailable(memory_store, settings, logger) -> None:
    async def hang(*args, **kwargs):
        await asyncio.sleep(10)

    memory_store.get_by_code = hang
    fast_settings = settings.model_copy(update={"STORAGE_TIMEOUT_SECONDS": 0.05})
    service = LinkService(memory_store, fast_settings, logger)

    with pytest.raises(StorageUnavailableError):
        await service.resolve("abc123")


@pytest.mark.asyncio
async def test_increment_failure_still_resolves(link_service: LinkService, memory_store) -> None:
    record = await link_service.create_link("https://example.com", ALICE)
    memory_store.increment_visits = AsyncMock(side_effect=StorageUnavailableError("down"))

    resolved = await link_service.resolve(record.short_code)

    assert resolved.original_url == "https://example.com"
    assert resolved.visit_count == 0


@pytest.mark.asyncio
async def test_insert_failure_propagates(link_service: LinkService, memory_store) -> None:
    memory_store.insert = AsyncMock(side_effect=StorageUnavailableError("down"))

    with pytest.raises(StorageUnavailableError):
        await link_service.create_link("https://example.com", ALICE)
