from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from redis.asyncio import Redis
from redis.exceptions import RedisError
from src.core.config import Settings, settings
from src.core.logger import get_logger
from src.core.metrics import REBUILD_LATENCY
from src.domain.aggregation import compute_snapshot
from src.domain.errors import (
    CacheUnavailableError,
    FatalWriteError,
    UnknownPartitionError,
)
from src.domain.keys import split_partition
from src.domain.models import AggregateSnapshot
from src.infrastructure.clickhouse.client import ClickHouseStatsSource
from src.infrastructure.redis.mutation_target import RedisHashTarget
from src.infrastructure.redis.snapshots import SnapshotRepository

from .batch_mutator import BatchMutator

logger = get_logger("stats.aggregate_store")

_REDIS_FAILURES = (RedisError, OSError, asyncio.TimeoutError)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AggregateStore:
    """Materialized per-partition snapshots, rebuilt out of band.

    Notes:
        - A rebuild is a full recomputation; nothing is patched in place.
        - Rebuilds of one partition are serialized; different partitions can
          rebuild concurrently.
        - Readers keep seeing the previous snapshot until the swap.
    """

    def __init__(
        self,
        snapshots: SnapshotRepository,
        source: ClickHouseStatsSource,
        mutator: BatchMutator,
        min_games: int = 50,
        rebuild_timeout: float = 30.0,
        read_timeout: float = 1.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.snapshots = snapshots
        self.source = source
        self.mutator = mutator
        self.min_games = min_games
        self.rebuild_timeout = rebuild_timeout
        self.read_timeout = read_timeout
        self.clock = clock
        self._locks: Dict[str, asyncio.Lock] = {}

    @classmethod
    def from_settings(
        cls, redis: Redis, source: ClickHouseStatsSource, config: Settings = settings
    ) -> "AggregateStore":
        target = RedisHashTarget(redis, ttl_seconds=config.snapshot_build_ttl_seconds)
        return cls(
            SnapshotRepository(redis),
            source,
            BatchMutator.from_settings(target, config),
            min_games=config.min_games,
            rebuild_timeout=config.rebuild_query_timeout_seconds,
            read_timeout=config.store_read_timeout_seconds,
        )

    def _lock(self, partition: str) -> asyncio.Lock:
        lock = self._locks.get(partition)
        if lock is None:
            lock = self._locks[partition] = asyncio.Lock()
        return lock

    async def _read_call(self, op: str, coro):
        try:
            return await asyncio.wait_for(coro, self.read_timeout)
        except _REDIS_FAILURES as exc:
            raise CacheUnavailableError(f"snapshot {op}: {exc!r}") from exc

    async def read(self, partition: str) -> Optional[AggregateSnapshot]:
        return await self._read_call("read", self.snapshots.load(partition))

    async def partitions(self) -> List[Tuple[str, datetime]]:
        return await self._read_call("partitions", self.snapshots.partitions())

    async def latest_partition(self) -> Optional[str]:
        """Newest built patch, without any leaderboard suffix."""
        entries = await self.partitions()
        return split_partition(entries[0][0])[0] if entries else None

    async def built_at(self, partition: str) -> Optional[datetime]:
        return await self._read_call("built_at", self.snapshots.built_at(partition))

    async def rebuild(self, partition: str) -> AggregateSnapshot:
        """Recompute ``partition`` from the raw store and swap it in.

        Raises the source error (timeout, unavailable, rejected query,
        unknown partition) or FatalWriteError; the live snapshot is untouched
        in either case. A partition with matches but no dimension above the
        floor still swaps in an empty snapshot.
        """
        async with self._lock(partition):
            started = time.perf_counter()
            rows = await self.source.aggregate_partition(
                partition, self.min_games, self.rebuild_timeout
            )
            if not rows and not await self.source.partition_exists(
                partition, timeout=self.rebuild_timeout
            ):
                raise UnknownPartitionError(f"no matches for partition {partition}")
            snapshot = compute_snapshot(partition, rows, self.min_games, self.clock())
            build_key = self.snapshots.new_build_key(partition)
            try:
                result = await self.mutator.apply(
                    self.snapshots.build_operations(snapshot, build_key)
                )
                try:
                    await self.snapshots.swap(partition, build_key, snapshot.built_at)
                except _REDIS_FAILURES as exc:
                    raise FatalWriteError(f"snapshot swap failed: {exc}") from exc
            except Exception:
                await self._discard(build_key)
                raise
            elapsed = time.perf_counter() - started
            REBUILD_LATENCY.observe(elapsed)
            logger.info(
                "snapshot_swapped",
                extra={
                    "partition": partition,
                    "records": len(snapshot.records),
                    "total_games": snapshot.total_games,
                    "chunks": result.chunks,
                    "retries": result.retries,
                    "elapsed_seconds": round(elapsed, 3),
                },
            )
            return snapshot

    async def _discard(self, build_key: str) -> None:
        try:
            await self.snapshots.discard(build_key)
        except _REDIS_FAILURES as exc:
            # The build TTL removes it eventually.
            logger.warning(
                "build_key_discard_failed",
                extra={"build_key": build_key, "error": str(exc)},
            )
