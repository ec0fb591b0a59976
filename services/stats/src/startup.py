from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict

import redis.asyncio as redis
from src.core.config import Settings, settings
from src.core.logger import get_logger
from src.domain.errors import StatsError
from src.domain.keys import split_partition
from src.infrastructure.clickhouse.client import ClickHouseStatsSource
from src.infrastructure.redis.health import ConnectionHealth
from src.infrastructure.redis.repository import ResponseCacheRepository
from src.services.aggregate_store import AggregateStore
from src.services.cache_warming import CacheWarmingService
from src.services.fallback_chain import FallbackChain
from src.services.refresh_scheduler import RefreshScheduler
from src.services.request_cache import RequestCache, cached

from shared.constants import CacheTTL

logger = get_logger("stats.startup")


@dataclass
class StatsServices:
    health: ConnectionHealth
    cache: RequestCache
    store: AggregateStore
    chain: FallbackChain
    scheduler: RefreshScheduler
    warmer: CacheWarmingService
    partitions: Callable[[str], Awaitable[Dict[str, Any]]]


def build_services(
    r: redis.Redis,
    source: ClickHouseStatsSource,
    redis_available: bool = True,
    config: Settings = settings,
) -> StatsServices:
    """Wire the read path and refresh loop around shared Redis/ClickHouse clients."""
    health = ConnectionHealth(
        r.ping,
        max_attempts=config.redis_reconnect_max_attempts,
        base_delay=config.redis_reconnect_base_delay_seconds,
        max_delay=config.redis_reconnect_max_delay_seconds,
        available=redis_available,
    )
    cache = RequestCache(
        ResponseCacheRepository(r), health, op_timeout=config.redis_op_timeout_seconds
    )
    store = AggregateStore.from_settings(r, source, config)
    chain = FallbackChain.from_settings(cache, store, source, config)
    warmer = CacheWarmingService(
        cache, chain, store, enabled=config.enable_cache_warming
    )
    scheduler = RefreshScheduler.from_settings(
        store, source, on_rebuilt=warmer.on_rebuilt, config=config
    )
    logger.info(
        "stats_services_built",
        extra={"redis_available": redis_available, "min_games": config.min_games},
    )
    return StatsServices(
        health=health,
        cache=cache,
        store=store,
        chain=chain,
        scheduler=scheduler,
        warmer=warmer,
        partitions=_partitions_view(cache, store, config),
    )


def _partitions_view(
    cache: RequestCache, store: AggregateStore, config: Settings
) -> Callable[[str], Awaitable[Dict[str, Any]]]:
    @cached(
        cache,
        config.ttl_for(CacheTTL.SHORT),
        identity=lambda path: path,
        should_cache=lambda body: not body["degraded"],
    )
    async def list_partitions(path: str) -> Dict[str, Any]:
        try:
            entries = await store.partitions()
        except StatsError as exc:
            logger.warning("partition_index_unavailable", extra={"error": str(exc)})
            return {"partitions": [], "degraded": True}
        return {
            "partitions": [_partition_entry(p, built_at) for p, built_at in entries],
            "degraded": False,
        }

    return list_partitions


def _partition_entry(partition: str, built_at) -> Dict[str, Any]:
    patch, leaderboard = split_partition(partition)
    return {
        "partition": partition,
        "patch": patch,
        "leaderboard": leaderboard,
        "built_at": built_at.isoformat(),
    }
