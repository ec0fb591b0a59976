from enum import Enum


class RedisKeys:
    """Centralised Redis key pattern definitions"""

    # Response cache
    RESPONSE_PREFIX = "cache:"

    # Materialized snapshots
    SNAPSHOT_HASH = "stats:snapshot:{partition}"
    SNAPSHOT_BUILD_HASH = "stats:snapshot:{partition}:build:{token}"
    SNAPSHOT_META_FIELD = "__meta__"

    # Index of built partitions (score = built_at epoch seconds)
    PARTITION_INDEX = "stats:partitions"

    @classmethod
    def response_key(cls, identity: str) -> str:
        """Generate response cache key for a canonical request identity."""
        return f"{cls.RESPONSE_PREFIX}{identity}"

    @classmethod
    def snapshot_key(cls, partition: str) -> str:
        return cls.SNAPSHOT_HASH.format(partition=partition)

    @classmethod
    def snapshot_build_key(cls, partition: str, token: str) -> str:
        return cls.SNAPSHOT_BUILD_HASH.format(partition=partition, token=token)


class CacheTTL(str, Enum):
    """Endpoint classes for response cache lifetimes."""

    SHORT = "short"  # lists / search
    MEDIUM = "medium"
    LONG = "long"  # heavy cross-cutting aggregates

    @classmethod
    def defaults(cls) -> dict[str, int]:
        return {cls.SHORT.value: 300, cls.MEDIUM.value: 1800, cls.LONG.value: 7200}
