from typing import List

from shared.config import BaseServiceConfig
from shared.constants import CacheTTL


class Settings(BaseServiceConfig):
    # Redis reconnect policy (capped exponential backoff, bounded attempts)
    redis_reconnect_max_attempts: int = 5
    redis_reconnect_base_delay_seconds: float = 1.0
    redis_reconnect_max_delay_seconds: float = 3.0

    # Response cache TTL classes
    cache_ttl_short_seconds: int = CacheTTL.defaults()[CacheTTL.SHORT.value]
    cache_ttl_medium_seconds: int = CacheTTL.defaults()[CacheTTL.MEDIUM.value]
    cache_ttl_long_seconds: int = CacheTTL.defaults()[CacheTTL.LONG.value]

    # Aggregation
    min_games: int = 50  # games-played floor per dimension and partition
    rebuild_query_timeout_seconds: float = 30.0
    live_query_timeout_seconds: float = 8.0
    clickhouse_spill_bytes: int = 2_000_000_000  # external GROUP BY threshold
    snapshot_max_age_seconds: int = 4 * 3600  # older snapshots count as stale
    snapshot_build_ttl_seconds: int = 900  # safety TTL on half-built keys
    store_read_timeout_seconds: float = 1.0

    # Refresh scheduling
    enable_background_jobs: bool = False
    refresh_interval_seconds: int = 2 * 3600
    refresh_initial_delay_seconds: int = 300
    refresh_partition_window: int = 3  # most recent patches kept ranked
    refresh_staleness_seconds: int = 2 * 3600
    refresh_max_parallel: int = 2
    refresh_leaderboards: List[str] = []  # extra patch:leaderboard partitions

    # Response cache warming after a rebuild
    enable_cache_warming: bool = True

    # Batch writes
    batch_chunk_size: int = 1000
    batch_max_attempts: int = 5
    batch_backoff_base_seconds: float = 0.3

    otel_service_name: str = "stats"

    def ttl_for(self, ttl_class: CacheTTL | str) -> int:
        return {
            CacheTTL.SHORT.value: self.cache_ttl_short_seconds,
            CacheTTL.MEDIUM.value: self.cache_ttl_medium_seconds,
            CacheTTL.LONG.value: self.cache_ttl_long_seconds,
        }[CacheTTL(ttl_class).value]


settings = Settings()
