import asyncio

import pytest

from conftest import FakeFetcher, make_index, source_stanza, sources_url
from madison.cache import IndexCache
from madison.errors import FetchError
from madison.models import ArchiveCoordinate

JAMMY = ArchiveCoordinate(suite="jammy", component="main", architecture="source", url=sources_url("jammy"))
FOCAL = ArchiveCoordinate(suite="focal", component="main", architecture="source", url=sources_url("focal"))


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher(
        {
            JAMMY.url: make_index([source_stanza("hello", "2.10-2")]),
            FOCAL.url: make_index([source_stanza("hello", "2.10-1")]),
        }
    )


@pytest.mark.asyncio
async def test_fresh_entry_is_served_without_fetching(fetcher, clock):
    cache = IndexCache(fetcher, ttl=300, clock=clock)

    first = await cache.get_or_fetch(JAMMY)
    clock.advance(299)
    second = await cache.get_or_fetch(JAMMY)

    assert [r.version for r in first] == ["2.10-2"]
    assert second == first
    assert fetcher.calls[JAMMY.url] == 1
    assert JAMMY in cache
    assert len(cache) == 1


@pytest.mark.asyncio
async def test_expired_entry_is_refetched(fetcher, clock):
    cache = IndexCache(fetcher, ttl=300, clock=clock)

    await cache.get_or_fetch(JAMMY)
    clock.advance(301)
    assert not cache.is_fresh(cache.peek(JAMMY))

    fetcher.responses[JAMMY.url] = make_index([source_stanza("hello", "2.10-3")])
    records = await cache.get_or_fetch(JAMMY)

    assert [r.version for r in records] == ["2.10-3"]
    assert fetcher.calls[JAMMY.url] == 2


@pytest.mark.asyncio
async def test_concurrent_lookups_share_one_fetch(fetcher, clock):
    cache = IndexCache(fetcher, clock=clock)
    fetcher.gate = asyncio.Event()

    waiters = [asyncio.create_task(cache.get_or_fetch(JAMMY)) for _ in range(10)]
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    assert fetcher.calls[JAMMY.url] == 1

    fetcher.gate.set()
    results = await asyncio.gather(*waiters)

    assert fetcher.calls[JAMMY.url] == 1
    assert all(result == results[0] for result in results)


@pytest.mark.asyncio
async def test_different_coordinates_fetch_independently(fetcher, clock):
    cache = IndexCache(fetcher, clock=clock)
    jammy, focal = await asyncio.gather(cache.get_or_fetch(JAMMY), cache.get_or_fetch(FOCAL))

    assert jammy[0].version == "2.10-2"
    assert focal[0].version == "2.10-1"
    assert fetcher.total_calls == 2


@pytest.mark.asyncio
async def test_failed_refresh_serves_stale_entry(fetcher, clock, fetch_error):
    cache = IndexCache(fetcher, ttl=60, clock=clock)
    fresh, stale = await cache.lookup(JAMMY)
    assert not stale

    clock.advance(61)
    fetcher.responses[JAMMY.url] = fetch_error
    entry, stale = await cache.lookup(JAMMY)

    assert stale
    assert entry == fresh
    assert [r.version for r in entry.records] == ["2.10-2"]

    fetcher.responses[JAMMY.url] = make_index([source_stanza("hello", "2.10-4")])
    entry, stale = await cache.lookup(JAMMY)
    assert not stale
    assert entry.records[0].version == "2.10-4"


@pytest.mark.asyncio
async def test_failure_without_previous_entry_propagates(clock, fetch_error):
    fetcher = FakeFetcher({JAMMY.url: fetch_error})
    cache = IndexCache(fetcher, clock=clock)

    with pytest.raises(FetchError) as excinfo:
        await cache.lookup(JAMMY)
    assert excinfo.value.status_code == 500
    assert JAMMY not in cache

    # the failure is not cached; the next lookup tries again
    with pytest.raises(FetchError):
        await cache.lookup(JAMMY)
    assert fetcher.calls[JAMMY.url] == 2


@pytest.mark.asyncio
async def test_missing_index_is_cached_as_empty(clock):
    fetcher = FakeFetcher({JAMMY.url: None})
    cache = IndexCache(fetcher, clock=clock)

    entry = await cache.get_entry(JAMMY)
    assert entry.missing
    assert entry.records == ()

    await cache.get_entry(JAMMY)
    assert fetcher.calls[JAMMY.url] == 1


@pytest.mark.asyncio
async def test_cancelled_waiter_does_not_abort_refresh(fetcher, clock):
    cache = IndexCache(fetcher, clock=clock)
    fetcher.gate = asyncio.Event()

    waiter = asyncio.create_task(cache.lookup(JAMMY))
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter

    fetcher.gate.set()
    entry, stale = await cache.lookup(JAMMY)

    assert not stale
    assert entry.records[0].name == "hello"
    assert fetcher.calls[JAMMY.url] == 1


@pytest.mark.asyncio
async def test_zero_ttl_always_refetches(fetcher, clock):
    cache = IndexCache(fetcher, ttl=0, clock=clock)
    await cache.get_or_fetch(JAMMY)
    await cache.get_or_fetch(JAMMY)
    assert fetcher.calls[JAMMY.url] == 2


@pytest.mark.asyncio
async def test_invalidate(fetcher, clock):
    cache = IndexCache(fetcher, clock=clock)
    await asyncio.gather(cache.get_or_fetch(JAMMY), cache.get_or_fetch(FOCAL))

    cache.invalidate(JAMMY)
    assert JAMMY not in cache
    assert FOCAL in cache

    cache.invalidate()
    assert len(cache) == 0
    assert cache.peek(FOCAL) is None


def test_negative_ttl_is_rejected(fetcher):
    with pytest.raises(ValueError):
        IndexCache(fetcher, ttl=-1)


@pytest.mark.asyncio
async def test_finished_refresh_is_not_reused(fetcher, clock, fetch_error):
    cache = IndexCache(fetcher, clock=clock)

    async def failed_refresh():
        raise fetch_error

    # a failed refresh whose done callback has not run yet
    finished = asyncio.create_task(failed_refresh())
    with pytest.raises(FetchError):
        await finished
    cache._inflight[JAMMY] = finished

    entry, stale = await cache.lookup(JAMMY)

    assert not stale
    assert entry.records[0].version == "2.10-2"
    assert fetcher.calls[JAMMY.url] == 1
    assert JAMMY not in cache._inflight
