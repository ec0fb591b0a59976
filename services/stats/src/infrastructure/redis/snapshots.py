import uuid
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from pydantic import ValidationError
from redis.asyncio import Redis
from src.core.logger import get_logger
from src.domain.errors import FatalWriteError
from src.domain.keys import split_partition
from src.domain.models import (
    AggregateRecord,
    AggregateSnapshot,
    BatchOperation,
    SnapshotMeta,
)

from shared.constants import RedisKeys

logger = get_logger("stats.snapshots")


def partition_sort_key(partition: str):
    """Ascending order: named patches, then numeric patch ids by value.

    Sorted in reverse this puts the highest numeric patch first. Leaderboard
    partitions sort after their patch when ascending.
    """
    patch, leaderboard = split_partition(partition)
    if patch.isdigit():
        return (1, int(patch), "", leaderboard or "")
    return (0, 0, patch, leaderboard or "")


class SnapshotRepository:
    """Redis layout for materialized snapshots.

    Notes:
        - One hash per partition: a field per dimension plus a meta field.
        - Rebuilds write into a uniquely named build hash, then RENAME it onto
          the live key inside MULTI, so readers see the old or the new hash,
          never a mix.
        - Build hashes carry a safety TTL until they are promoted.
    """

    def __init__(self, redis: Redis):
        self.r = redis

    # Build / swap
    def new_build_key(self, partition: str) -> str:
        return RedisKeys.snapshot_build_key(partition, uuid.uuid4().hex)

    def build_operations(
        self, snapshot: AggregateSnapshot, build_key: str
    ) -> List[BatchOperation]:
        meta = SnapshotMeta(
            partition=snapshot.partition,
            built_at=snapshot.built_at,
            total_games=snapshot.total_games,
            min_games=snapshot.min_games,
            record_count=len(snapshot.records),
        )
        ops = [
            BatchOperation(
                filter={"key": build_key},
                payload={record.dimension: record.model_dump_json()},
                idempotency_key=f"{build_key}:{record.dimension}",
            )
            for record in snapshot.records
        ]
        ops.append(
            BatchOperation(
                filter={"key": build_key},
                payload={RedisKeys.SNAPSHOT_META_FIELD: meta.model_dump_json()},
                idempotency_key=f"{build_key}:{RedisKeys.SNAPSHOT_META_FIELD}",
            )
        )
        return ops

    async def swap(self, partition: str, build_key: str, built_at: datetime) -> None:
        """Promote a build hash to the live key and index it.

        The build key is watched, so the swap aborts with WatchError if it
        expires or changes between the existence check and EXEC. A missing
        build key raises FatalWriteError and leaves the index untouched.
        """
        live_key = RedisKeys.snapshot_key(partition)
        async with self.r.pipeline(transaction=True) as pipe:
            await pipe.watch(build_key)
            if not await pipe.exists(build_key):
                await pipe.unwatch()
                raise FatalWriteError(
                    f"build key {build_key} is gone; snapshot {partition} not swapped"
                )
            pipe.multi()
            pipe.persist(build_key)
            pipe.rename(build_key, live_key)
            pipe.zadd(RedisKeys.PARTITION_INDEX, {partition: built_at.timestamp()})
            await pipe.execute()

    async def discard(self, build_key: str) -> None:
        await self.r.delete(build_key)

    # Retrieval
    async def load(self, partition: str) -> Optional[AggregateSnapshot]:
        data = await self.r.hgetall(RedisKeys.snapshot_key(partition))
        if not data:
            return None
        meta_raw = data.pop(RedisKeys.SNAPSHOT_META_FIELD, None)
        if meta_raw is None:
            logger.warning("snapshot_meta_missing", extra={"partition": partition})
            return None
        try:
            meta = SnapshotMeta.model_validate_json(meta_raw)
            records = [AggregateRecord.model_validate_json(v) for v in data.values()]
        except ValidationError as exc:
            logger.warning(
                "snapshot_invalid", extra={"partition": partition, "error": str(exc)}
            )
            return None
        records.sort(key=lambda r: (r.rank if r.rank is not None else 0, r.dimension))
        return AggregateSnapshot(
            partition=meta.partition,
            records=records,
            built_at=meta.built_at,
            total_games=meta.total_games,
            min_games=meta.min_games,
        )

    async def built_at(self, partition: str) -> Optional[datetime]:
        score = await self.r.zscore(RedisKeys.PARTITION_INDEX, partition)
        if score is None:
            return None
        return datetime.fromtimestamp(float(score), tz=timezone.utc)

    async def partitions(self) -> List[Tuple[str, datetime]]:
        """Built partitions, newest partition first."""
        entries = await self.r.zrange(RedisKeys.PARTITION_INDEX, 0, -1, withscores=True)
        out = [
            (member, datetime.fromtimestamp(float(score), tz=timezone.utc))
            for member, score in entries
        ]
        out.sort(key=lambda e: partition_sort_key(e[0]), reverse=True)
        return out
