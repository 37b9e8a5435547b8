import asyncio

import pytest

from ghstats.domain.models.common import CacheKey, ResourceKind
from ghstats.infrastructure.cache.caching_service import CachingServiceImpl

PROFILE = CacheKey(ResourceKind.PROFILE, "octocat")
REPOS = CacheKey(ResourceKind.REPOSITORIES, "octocat")


@pytest.fixture
def cache(clock):
    return CachingServiceImpl(clock=clock)


@pytest.mark.asyncio
async def test_get_returns_value_while_fresh(cache, clock):
    await cache.set(PROFILE, "value", ttl=60)
    clock.advance(59.9)
    assert await cache.get(PROFILE) == "value"
    assert await cache.is_fresh(PROFILE)


@pytest.mark.asyncio
async def test_expired_entry_reads_as_absent_but_is_kept(cache, clock):
    await cache.set(PROFILE, "value", ttl=60, etag='"abc"')
    clock.advance(60)

    assert await cache.get(PROFILE) is None
    assert not await cache.is_fresh(PROFILE)
    # Lazy expiry: still stored, so the ETag stays usable
    entry = await cache.get_entry(PROFILE)
    assert entry is not None
    assert entry.etag == '"abc"'
    assert len(cache) == 1


@pytest.mark.asyncio
async def test_sweep_removes_only_expired_entries(cache, clock):
    await cache.set(PROFILE, "short", ttl=10)
    await cache.set(REPOS, "long", ttl=100)
    clock.advance(50)

    assert await cache.sweep() == 1
    assert await cache.get_entry(PROFILE) is None
    assert await cache.get(REPOS) == "long"


@pytest.mark.asyncio
async def test_keys_with_different_resource_ids_do_not_collide(cache):
    a = CacheKey(ResourceKind.LANGUAGES, "octocat/a")
    b = CacheKey(ResourceKind.LANGUAGES, "octocat/b")
    await cache.set(a, {"Python": 1}, ttl=60)
    assert await cache.get(b) is None


@pytest.mark.asyncio
async def test_invalidate_bumps_generation_and_drops_older_writes(cache):
    generation = await cache.generation(PROFILE)
    assert generation == 0

    await cache.invalidate(PROFILE)
    assert await cache.generation(PROFILE) == 1

    # A response that started before the invalidation must not land.
    assert await cache.set(PROFILE, "stale", ttl=60, generation=generation) is False
    assert await cache.get(PROFILE) is None

    assert await cache.set(PROFILE, "fresh", ttl=60, generation=1) is True
    assert await cache.get(PROFILE) == "fresh"


@pytest.mark.asyncio
async def test_invalidate_all_covers_keys_still_being_fetched(cache):
    # Asking for the generation is what a fetcher does before its first request.
    in_flight = await cache.generation(REPOS)
    await cache.set(PROFILE, "cached", ttl=60)

    await cache.invalidate_all()

    assert await cache.get(PROFILE) is None
    assert await cache.set(REPOS, "late", ttl=60, generation=in_flight) is False
    assert await cache.generation(PROFILE) == 1


@pytest.mark.asyncio
async def test_oldest_entries_are_evicted_over_the_size_limit(clock):
    cache = CachingServiceImpl(max_entries=2, clock=clock)
    keys = [CacheKey(ResourceKind.LANGUAGES, f"o/r{i}") for i in range(3)]
    for key in keys:
        await cache.set(key, key.resource_id, ttl=60)
        clock.advance(1)

    assert len(cache) == 2
    assert await cache.get(keys[0]) is None
    assert await cache.get(keys[2]) == "o/r2"


@pytest.mark.asyncio
async def test_concurrent_writers_do_not_corrupt_state(cache):
    keys = [CacheKey(ResourceKind.LANGUAGES, f"o/r{i}") for i in range(50)]
    await asyncio.gather(*(cache.set(k, i, ttl=60) for i, k in enumerate(keys)))
    values = await asyncio.gather(*(cache.get(k) for k in keys))
    assert values == list(range(50))


@pytest.mark.asyncio
async def test_occupancy_counts_expired_entries(cache, clock):
    await cache.set(PROFILE, "old", ttl=10)
    await cache.set(REPOS, "new", ttl=100)
    clock.advance(50)
    assert await cache.occupancy() == (2, 1)
