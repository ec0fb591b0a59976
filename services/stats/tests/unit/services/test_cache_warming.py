import pytest
from src.domain.models import StatsQuery
from src.infrastructure.redis.health import ConnectionHealth
from src.infrastructure.redis.mutation_target import RedisHashTarget
from src.infrastructure.redis.repository import ResponseCacheRepository
from src.infrastructure.redis.snapshots import SnapshotRepository
from src.services.aggregate_store import AggregateStore
from src.services.batch_mutator import BatchMutator
from src.services.cache_warming import CacheWarmingService
from src.services.fallback_chain import FallbackChain
from src.services.refresh_scheduler import RefreshScheduler
from src.services.request_cache import RequestCache
from stats_fakes import FakeSource, make_rows, no_sleep


def build_warmer(redis, source, clock, enabled=True):
    health = ConnectionHealth(redis.ping, max_attempts=1, sleep=no_sleep)
    cache = RequestCache(
        ResponseCacheRepository(redis), health, op_timeout=0.5, clock=lambda: 0.0
    )
    store = AggregateStore(
        SnapshotRepository(redis),
        source,
        BatchMutator(RedisHashTarget(redis, ttl_seconds=900), sleep=no_sleep),
        min_games=10,
        clock=clock,
    )
    chain = FallbackChain(cache, store, source, min_games=10, clock=clock)
    warmer = CacheWarmingService(cache, chain, store, enabled=enabled)
    return warmer, cache, store


def rows_for(*partitions):
    return {
        p: make_rows({"Franks": (30, 18), "Goths": (20, 8)}) for p in partitions
    }


async def cached_value(cache, query):
    return await cache.get(cache.key_for(query.identity()))


@pytest.mark.asyncio
async def test_latest_patch_warms_explicit_and_patchless_views(redis, clock):
    source = FakeSource(rows_for("45", "44"))
    warmer, cache, store = build_warmer(redis, source, clock)
    await store.rebuild("44")
    await store.rebuild("45")
    source.calls.clear()

    assert await warmer.on_rebuilt(["45"]) == 2

    body = await cached_value(cache, StatsQuery())
    assert body["partition"] == "45"
    assert body["source"] == "materialized"
    assert await cached_value(cache, StatsQuery(partition="45")) is not None
    assert source.calls == []


@pytest.mark.asyncio
async def test_older_patch_warms_only_its_own_view(redis, clock):
    source = FakeSource(rows_for("45", "44"))
    warmer, cache, store = build_warmer(redis, source, clock)
    await store.rebuild("44")
    await store.rebuild("45")

    assert await warmer.on_rebuilt(["44"]) == 1

    assert await cached_value(cache, StatsQuery(partition="44")) is not None
    assert await cached_value(cache, StatsQuery()) is None


@pytest.mark.asyncio
async def test_rebuild_drops_previously_cached_responses(redis, clock):
    source = FakeSource(rows_for("45"))
    warmer, cache, store = build_warmer(redis, source, clock)
    await store.rebuild("45")
    sorted_view = StatsQuery(partition="45", sort="games")
    await cache.set(cache.key_for(sorted_view.identity()), {"old": True}, 60)

    await warmer.on_rebuilt(["45"])

    assert await cached_value(cache, sorted_view) is None


@pytest.mark.asyncio
async def test_disabled_warming_only_invalidates(redis, clock):
    source = FakeSource(rows_for("45"))
    warmer, cache, store = build_warmer(redis, source, clock, enabled=False)
    await store.rebuild("45")
    view = StatsQuery(partition="45")
    await cache.set(cache.key_for(view.identity()), {"old": True}, 60)

    assert await warmer.on_rebuilt(["45"]) == 0

    assert await cached_value(cache, view) is None
    assert await cached_value(cache, StatsQuery()) is None


@pytest.mark.asyncio
async def test_leaderboard_partition_warms_leaderboard_views(redis, clock):
    source = FakeSource(rows_for("45", "45:rm_1v1"), partitions=["45"])
    warmer, cache, store = build_warmer(redis, source, clock)
    await store.rebuild("45")
    await store.rebuild("45:rm_1v1")

    assert await warmer.on_rebuilt(["45:rm_1v1"]) == 2

    body = await cached_value(cache, StatsQuery(leaderboard="rm_1v1"))
    assert (body["partition"], body["leaderboard"]) == ("45", "rm_1v1")
    assert await cached_value(cache, StatsQuery(partition="45")) is None


def test_views_for_partition():
    views = CacheWarmingService.views_for("45:rm_1v1", latest="46")
    assert [(v.partition, v.leaderboard) for v in views] == [("45", "rm_1v1")]


@pytest.mark.asyncio
async def test_scheduler_tick_leaves_cache_warm(redis, clock):
    source = FakeSource(rows_for("45", "44"), partitions=["45", "44"])
    warmer, cache, store = build_warmer(redis, source, clock)
    scheduler = RefreshScheduler(
        store, source, on_rebuilt=warmer.on_rebuilt, clock=clock, max_parallel=1
    )

    await scheduler.tick()

    body = await cached_value(cache, StatsQuery())
    assert body["partition"] == "45"
    assert body["source"] == "materialized"


@pytest.mark.asyncio
async def test_batch_keeps_every_rebuilt_partition_warm(redis, clock):
    source = FakeSource(rows_for("45", "44"))
    warmer, cache, store = build_warmer(redis, source, clock)
    await store.rebuild("44")
    await store.rebuild("45")

    assert await warmer.on_rebuilt(["45", "44"]) == 3

    for view in (StatsQuery(), StatsQuery(partition="45"), StatsQuery(partition="44")):
        assert await cached_value(cache, view) is not None
