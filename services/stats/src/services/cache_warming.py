from typing import List, Optional, Sequence

from src.core.logger import get_logger
from src.core.metrics import CACHE_WARMED
from src.domain.errors import StatsError
from src.domain.keys import split_partition
from src.domain.models import StatsQuery

from .aggregate_store import AggregateStore
from .fallback_chain import FallbackChain
from .request_cache import RequestCache

logger = get_logger("stats.cache_warming")

STATS_PREFIX = "/stats/"


class CacheWarmingService:
    """Refreshes cached responses once a rebuilt snapshot is live.

    Cached ``/stats/`` responses are dropped, then the default civilization
    views of the rebuilt partition are resolved again so the next reader hits
    the cache instead of the miss path.
    """

    def __init__(
        self,
        cache: RequestCache,
        chain: FallbackChain,
        store: AggregateStore,
        enabled: bool = True,
    ):
        self.cache = cache
        self.chain = chain
        self.store = store
        self.enabled = enabled

    async def on_rebuilt(self, partitions: Sequence[str]) -> int:
        # Responses without an explicit patch may resolve to these partitions.
        await self.cache.invalidate(STATS_PREFIX)
        if not self.enabled:
            logger.debug("cache_warming_disabled", extra={"partitions": partitions})
            return 0
        return await self.warm(partitions)

    @staticmethod
    def views_for(partition: str, latest: Optional[str]) -> List[StatsQuery]:
        """Default view of the partition, plus the patchless view when the
        partition belongs to the newest patch."""
        patch, leaderboard = split_partition(partition)
        views = [StatsQuery(partition=patch, leaderboard=leaderboard)]
        if patch == latest:
            views.append(StatsQuery(leaderboard=leaderboard))
        return views

    async def warm(self, partitions: Sequence[str]) -> int:
        """Returns the number of views served from a fresh snapshot or live."""
        try:
            latest = await self.store.latest_partition()
        except StatsError as exc:
            logger.warning(
                "cache_warming_index_unavailable",
                extra={"partitions": partitions, "error": str(exc)},
            )
            latest = None

        views: List[StatsQuery] = []
        for partition in partitions:
            for view in self.views_for(partition, latest):
                if view not in views:
                    views.append(view)

        warmed = 0
        for view in views:
            payload = await self.chain.resolve(view)
            if not payload["degraded"]:
                warmed += 1
        CACHE_WARMED.inc(warmed)
        logger.info("cache_warmed", extra={"partitions": partitions, "views": warmed})
        return warmed
