from typing import Optional

from redis.asyncio import Redis


class ResponseCacheRepository:
    """Raw Redis access for serialized response bodies.

    Errors are not handled here; the RequestCache service decides what a
    failure means.
    """

    def __init__(self, redis: Redis, delete_batch_size: int = 500):
        self.r = redis
        self.delete_batch_size = delete_batch_size

    async def get(self, key: str) -> Optional[str]:
        return await self.r.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self.r.set(key, value, ex=ttl_seconds)

    async def delete_matching(self, pattern: str) -> int:
        deleted = 0
        batch: list[str] = []
        async for key in self.r.scan_iter(match=pattern, count=self.delete_batch_size):
            batch.append(key)
            if len(batch) >= self.delete_batch_size:
                deleted += await self.r.delete(*batch)
                batch.clear()
        if batch:
            deleted += await self.r.delete(*batch)
        return deleted

    async def ping(self) -> bool:
        return await self.r.ping()
