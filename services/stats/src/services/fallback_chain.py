"""Read path: cache -> materialized snapshot -> live aggregation -> default.

``resolve`` never raises for data-layer failures; the worst case is the
static default payload flagged as degraded.
"""

from __future__ import annotations

import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

from src.core.config import Settings, settings
from src.core.logger import get_logger
from src.core.metrics import LIVE_QUERY_LATENCY, RESOLUTIONS
from src.domain.aggregation import compute_snapshot, render_payload
from src.domain.defaults import default_payload
from src.domain.errors import SourceError, SourceUnavailableError, StatsError
from src.domain.models import AggregateSnapshot, StatsQuery
from src.infrastructure.clickhouse.client import ClickHouseStatsSource

from shared.constants import CacheTTL

from .aggregate_store import AggregateStore, utcnow
from .request_cache import RequestCache

logger = get_logger("stats.fallback_chain")


class FallbackChain:
    def __init__(
        self,
        cache: RequestCache,
        store: AggregateStore,
        source: ClickHouseStatsSource,
        ttl_seconds: int = 7200,
        min_games: int = 50,
        max_age_seconds: float = 4 * 3600,
        live_timeout: float = 8.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.cache = cache
        self.store = store
        self.source = source
        self.ttl_seconds = ttl_seconds
        self.min_games = min_games
        self.max_age_seconds = max_age_seconds
        self.live_timeout = live_timeout
        self.clock = clock

    @classmethod
    def from_settings(
        cls,
        cache: RequestCache,
        store: AggregateStore,
        source: ClickHouseStatsSource,
        config: Settings = settings,
    ) -> "FallbackChain":
        return cls(
            cache,
            store,
            source,
            ttl_seconds=config.ttl_for(CacheTTL.LONG),
            min_games=config.min_games,
            max_age_seconds=config.snapshot_max_age_seconds,
            live_timeout=config.live_query_timeout_seconds,
        )

    async def resolve(self, query: StatsQuery) -> Dict[str, Any]:
        key = self.cache.key_for(query.identity())
        hit = await self.cache.get(key)
        if hit is not None:
            RESOLUTIONS.labels(source="cache").inc()
            return hit

        patch, source_down = await self._resolve_partition(query)
        if patch is None:
            return self._default(query, reason="no_partition")
        view = query.for_partition(patch)
        partition = query.snapshot_partition(patch)

        stale: Optional[AggregateSnapshot] = None
        snapshot = await self._read_materialized(partition)
        if snapshot is not None:
            age = snapshot.age_seconds(self.clock())
            if age <= self.max_age_seconds:
                return await self._serve(key, snapshot, view, "materialized")
            logger.info(
                "snapshot_stale",
                extra={"partition": partition, "age_seconds": round(age, 1)},
            )
            stale = snapshot

        if not source_down:
            snapshot = await self._live(partition)
            if snapshot is not None:
                return await self._serve(key, snapshot, view, "live")

        if stale is not None:
            RESOLUTIONS.labels(source="stale").inc()
            return render_payload(
                stale, view, "materialized", degraded=True, stale=True
            )
        return self._default(view, reason="all_stages_failed")

    async def _resolve_partition(
        self, query: StatsQuery
    ) -> Tuple[Optional[str], bool]:
        """Requested patch, else the newest built one, else the newest in the
        raw store. The flag is True once the raw store proved unreachable."""
        if query.partition:
            return query.partition, False
        try:
            latest = await self.store.latest_partition()
        except StatsError as exc:
            logger.warning("partition_index_unavailable", extra={"error": str(exc)})
            latest = None
        if latest is not None:
            return latest, False
        try:
            recent = await self.source.recent_partitions(1, timeout=self.live_timeout)
        except SourceUnavailableError as exc:
            logger.warning("source_unavailable", extra={"error": str(exc)})
            return None, True
        except SourceError as exc:
            logger.warning("partition_lookup_failed", extra={"error": str(exc)})
            return None, False
        return (recent[0] if recent else None), False

    async def _read_materialized(self, partition: str) -> Optional[AggregateSnapshot]:
        try:
            return await self.store.read(partition)
        except StatsError as exc:
            logger.warning(
                "snapshot_read_failed",
                extra={"partition": partition, "error": str(exc)},
            )
            return None

    async def _live(self, partition: str) -> Optional[AggregateSnapshot]:
        started = time.perf_counter()
        try:
            rows = await self.source.aggregate_partition(
                partition, self.min_games, self.live_timeout
            )
        except SourceError as exc:
            logger.warning(
                "live_aggregation_failed",
                extra={
                    "partition": partition,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )
            return None
        finally:
            LIVE_QUERY_LATENCY.observe(time.perf_counter() - started)
        return compute_snapshot(partition, rows, self.min_games, self.clock())

    async def _serve(
        self, key: str, snapshot: AggregateSnapshot, view: StatsQuery, source: str
    ) -> Dict[str, Any]:
        payload = render_payload(snapshot, view, source)
        await self.cache.set(key, payload, self.ttl_seconds)
        RESOLUTIONS.labels(source=source).inc()
        return payload

    def _default(self, query: StatsQuery, reason: str) -> Dict[str, Any]:
        logger.error(
            "serving_default_payload",
            extra={"partition": query.partition, "reason": reason},
        )
        RESOLUTIONS.labels(source="default").inc()
        return default_payload(query)
