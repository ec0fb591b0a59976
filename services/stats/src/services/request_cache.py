"""Fail-open response cache in front of the statistics read path.

Every Redis call is bounded by ``op_timeout``. Any failure is a miss (or a
False from ``set``) and is reported to the shared ConnectionHealth, which
keeps further calls away from Redis until a reconnect succeeds.
"""

from __future__ import annotations

import asyncio
import functools
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

from pydantic import ValidationError
from redis.exceptions import RedisError
from src.core.logger import get_logger
from src.core.metrics import CACHE_ERRORS, CACHE_HITS, CACHE_MISSES
from src.domain.errors import CacheUnavailableError
from src.domain.models import CacheEntry
from src.infrastructure.redis.health import ConnectionHealth
from src.infrastructure.redis.repository import ResponseCacheRepository

from shared.constants import RedisKeys

logger = get_logger("stats.request_cache")

Q = TypeVar("Q")

_REDIS_FAILURES = (RedisError, OSError, asyncio.TimeoutError)


class RequestCache:
    def __init__(
        self,
        repository: ResponseCacheRepository,
        health: ConnectionHealth,
        op_timeout: float = 0.5,
        clock: Callable[[], float] = time.time,
    ):
        self.repo = repository
        self.health = health
        self.op_timeout = op_timeout
        self.clock = clock

    @staticmethod
    def key_for(identity: str) -> str:
        return RedisKeys.response_key(identity)

    async def _call(self, op: str, coro: Awaitable[Any]) -> Any:
        try:
            return await asyncio.wait_for(coro, self.op_timeout)
        except _REDIS_FAILURES as exc:
            CACHE_ERRORS.inc()
            self.health.mark_failed(exc)
            raise CacheUnavailableError(f"{op}: {exc!r}") from exc

    async def get(self, key: str) -> Optional[Any]:
        if not self.health.available:
            CACHE_MISSES.inc()
            return None
        try:
            raw = await self._call("get", self.repo.get(key))
        except CacheUnavailableError as exc:
            logger.debug("cache_unavailable", extra={"op": "get", "error": str(exc)})
            CACHE_MISSES.inc()
            return None
        if raw is None:
            CACHE_MISSES.inc()
            return None
        try:
            entry = CacheEntry.model_validate_json(raw)
        except ValidationError:
            logger.warning("cache_entry_invalid", extra={"key": key})
            CACHE_MISSES.inc()
            return None
        if entry.expired(self.clock()):
            CACHE_MISSES.inc()
            return None
        CACHE_HITS.inc()
        return entry.value

    async def set(self, key: str, value: Any, ttl_seconds: int) -> bool:
        if not self.health.available:
            return False
        entry = CacheEntry(
            key=key, value=value, ttl_seconds=ttl_seconds, written_at=self.clock()
        )
        try:
            await self._call(
                "set", self.repo.set(key, entry.model_dump_json(), ttl_seconds)
            )
        except CacheUnavailableError as exc:
            logger.debug("cache_unavailable", extra={"op": "set", "error": str(exc)})
            return False
        return True

    async def invalidate(self, prefix: str) -> int:
        """Best-effort removal of cached responses whose identity starts with
        ``prefix``; returns the number of keys deleted."""
        if not self.health.available:
            return 0
        pattern = f"{self.key_for(prefix)}*"
        try:
            # SCAN over the keyspace is not bounded by the per-call budget.
            deleted = await self.repo.delete_matching(pattern)
        except _REDIS_FAILURES as exc:
            CACHE_ERRORS.inc()
            self.health.mark_failed(exc)
            logger.warning(
                "cache_invalidate_failed", extra={"pattern": pattern, "error": str(exc)}
            )
            return 0
        logger.info("cache_invalidated", extra={"pattern": pattern, "deleted": deleted})
        return deleted


def cached(
    cache: RequestCache,
    ttl_seconds: int,
    identity: Callable[[Q], str] = lambda q: q.identity(),  # type: ignore[attr-defined]
    should_cache: Callable[[Any], bool] = lambda value: True,
) -> Callable[[Callable[[Q], Awaitable[Any]]], Callable[[Q], Awaitable[Any]]]:
    """Wrap an async handler so it is served from ``cache`` when possible.

    The handler is called only on a miss and its result is written back with
    ``ttl_seconds`` when ``should_cache`` accepts it.
    """

    def decorator(handler: Callable[[Q], Awaitable[Any]]):
        @functools.wraps(handler)
        async def wrapper(query: Q) -> Any:
            key = cache.key_for(identity(query))
            hit = await cache.get(key)
            if hit is not None:
                return hit
            value = await handler(query)
            if should_cache(value):
                await cache.set(key, value, ttl_seconds)
            return value

        return wrapper

    return decorator
