"""LinkStore against a real SQLite database through aiosqlite."""

import datetime

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from shortlink.exceptions import LinkAlreadyExistsError, StoreUnavailableError
from shortlink.models import Link, as_utc, utcnow
from shortlink.schemas import ClickDelta
from shortlink.store import LinkStore


async def _create(store: LinkStore, short_code: str, **kwargs) -> Link:
    return await store.create_mapping(Link(short_code=short_code, original_url=f"https://{short_code}.example", **kwargs))


@pytest.mark.asyncio
async def test_create_and_find(store: LinkStore) -> None:
    created = await _create(store, "abc123")

    found = await store.find_by_key("abc123")

    assert found is not None
    assert found.id == created.id
    assert found.original_url == "https://abc123.example"
    assert found.clicks == 0
    assert found.expires_at is None


@pytest.mark.asyncio
async def test_find_unknown_returns_none(store: LinkStore) -> None:
    assert await store.find_by_key("missing") is None


@pytest.mark.asyncio
async def test_duplicate_short_code_rejected(store: LinkStore) -> None:
    await _create(store, "taken")

    with pytest.raises(LinkAlreadyExistsError):
        await _create(store, "taken")


@pytest.mark.asyncio
async def test_delete_removes_link_and_clicks(store: LinkStore) -> None:
    await _create(store, "gone")
    await store.record_click("gone", "198.51.100.1", utcnow())
    await store.record_click("gone", "198.51.100.2", utcnow())

    assert await store.delete_mapping("gone") is True

    assert await store.find_by_key("gone") is None
    assert await store.click_count("gone") == 0


@pytest.mark.asyncio
async def test_delete_unknown_reports_false(store: LinkStore) -> None:
    assert await store.delete_mapping("never-existed") is False


@pytest.mark.asyncio
async def test_batch_increment_counters(store: LinkStore) -> None:
    await _create(store, "one")
    await _create(store, "two")

    await store.batch_increment_counters([ClickDelta(short_code="one", count=5), ClickDelta(short_code="two", count=1)])
    await store.batch_increment_counters([ClickDelta(short_code="one", count=2)])

    assert (await store.find_by_key("one")).clicks == 7
    assert (await store.find_by_key("two")).clicks == 1


@pytest.mark.asyncio
async def test_batch_increment_ignores_unknown_codes(store: LinkStore) -> None:
    await _create(store, "known")

    await store.batch_increment_counters(
        [ClickDelta(short_code="known", count=3), ClickDelta(short_code="deleted-meanwhile", count=4)]
    )

    assert (await store.find_by_key("known")).clicks == 3


@pytest.mark.asyncio
async def test_batch_increment_empty_batch(store: LinkStore) -> None:
    await store.batch_increment_counters([])


@pytest.mark.asyncio
async def test_click_log_count_and_recent_order(store: LinkStore) -> None:
    await _create(store, "logged")
    base = utcnow()
    for offset in range(7):
        await store.record_click("logged", f"192.0.2.{offset}", base + datetime.timedelta(seconds=offset))

    assert await store.click_count("logged") == 7

    recent = await store.recent_clicks("logged", limit=5)
    assert [click.ip_address for click in recent] == [f"192.0.2.{offset}" for offset in (6, 5, 4, 3, 2)]


@pytest.mark.asyncio
async def test_popular_links_orders_by_clicks_and_skips_expired(store: LinkStore) -> None:
    now = utcnow()
    await _create(store, "cold")
    await _create(store, "warm")
    await _create(store, "hot")
    await _create(store, "stale", expires_at=now - datetime.timedelta(minutes=1))
    await _create(store, "soon", expires_at=now + datetime.timedelta(hours=1))
    await store.batch_increment_counters(
        [
            ClickDelta(short_code="hot", count=100),
            ClickDelta(short_code="warm", count=10),
            ClickDelta(short_code="stale", count=1000),
            ClickDelta(short_code="soon", count=50),
        ]
    )

    popular = await store.popular_links(limit=3, now=now)

    assert [link.short_code for link in popular] == ["hot", "soon", "warm"]


@pytest.mark.asyncio
async def test_expires_at_round_trips_as_utc(store: LinkStore) -> None:
    expires_at = datetime.datetime(2030, 1, 1, 12, 0, tzinfo=datetime.UTC)
    await _create(store, "dated", expires_at=expires_at)

    found = await store.find_by_key("dated")

    assert as_utc(found.expires_at) == expires_at
    assert found.is_expired(expires_at) is True
    assert found.is_expired(expires_at - datetime.timedelta(seconds=1)) is False


@pytest.mark.asyncio
async def test_ping(store: LinkStore) -> None:
    await store.ping()


@pytest.mark.asyncio
async def test_unreachable_database_raises_store_unavailable() -> None:
    engine = create_async_engine("sqlite+aiosqlite:////nonexistent-dir/shortlink.db")
    store = LinkStore(async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False))

    try:
        with pytest.raises(StoreUnavailableError):
            await store.find_by_key("abc")
        with pytest.raises(StoreUnavailableError):
            await store.batch_increment_counters([ClickDelta(short_code="abc", count=1)])
        with pytest.raises(StoreUnavailableError):
            await store.ping()
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_refused_postgres_connection_raises_store_unavailable(refused_session_factory) -> None:
    store = LinkStore(refused_session_factory)

    with pytest.raises(StoreUnavailableError):
        await store.find_by_key("abc")
    with pytest.raises(StoreUnavailableError):
        await _create(store, "abc")
    with pytest.raises(StoreUnavailableError):
        await store.batch_increment_counters([ClickDelta(short_code="abc", count=1)])
    with pytest.raises(StoreUnavailableError):
        await store.popular_links(10, utcnow())
    with pytest.raises(StoreUnavailableError):
        await store.ping()
