import json
from typing import Any, Optional, Sequence

from redis.asyncio import Redis
from redis.exceptions import (
    BusyLoadingError,
    ConnectionError,
    ReadOnlyError,
    TimeoutError,
    TryAgainError,
    WatchError,
)
from src.domain.models import BatchOperation

# ReadOnlyError: the node was demoted mid-write (failover), state changed
# under us. WatchError: optimistic transaction invalidated.
TRANSIENT_ERRORS = (
    ConnectionError,
    TimeoutError,
    BusyLoadingError,
    ReadOnlyError,
    TryAgainError,
    WatchError,
    OSError,
)


def _encode(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, sort_keys=True, default=str)


class RedisHashTarget:
    """Applies operations as HSET overwrites.

    Operation shape: ``filter={"key": <hash key>}``, ``payload={field: value}``.
    Non-string values are stored as JSON.
    """

    name = "redis"

    def __init__(self, redis: Redis, ttl_seconds: Optional[int] = None):
        self.r = redis
        self.ttl_seconds = ttl_seconds

    async def execute(self, operations: Sequence[BatchOperation]) -> None:
        pipe = self.r.pipeline(transaction=False)
        for op in operations:
            key = op.filter["key"]
            if not op.payload:
                raise ValueError(f"empty payload for {op.idempotency_key}")
            pipe.hset(key, mapping={f: _encode(v) for f, v in op.payload.items()})
            if self.ttl_seconds:
                pipe.expire(key, self.ttl_seconds)
        await pipe.execute()

    def is_transient(self, exc: BaseException) -> bool:
        return isinstance(exc, TRANSIENT_ERRORS)
