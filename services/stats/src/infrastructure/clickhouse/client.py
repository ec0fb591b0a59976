import asyncio
import re
import threading
from typing import Any, Callable, Dict, List, Optional

import clickhouse_connect
from clickhouse_connect.driver.exceptions import DatabaseError, OperationalError
from src.core.config import Settings, settings
from src.core.logger import get_logger
from src.domain.errors import (
    AggregationTimeoutError,
    SourceQueryError,
    SourceUnavailableError,
)
from src.domain.keys import split_partition
from src.domain.models import SourceRow

from shared.utils.concurrency import run_blocking_with_timeout

from . import queries

logger = get_logger("stats.clickhouse")

TIMEOUT_EXCEEDED = 159
_CODE_RE = re.compile(r"Code:\s*(\d+)")


def server_code(exc: BaseException) -> Optional[int]:
    """ClickHouse server error code embedded in a driver exception message."""
    code = getattr(exc, "code", None)
    if isinstance(code, int):
        return code
    match = _CODE_RE.search(str(exc))
    return int(match.group(1)) if match else None


class ClickHouseStatsSource:
    """Grouped aggregations against the raw match tables.

    The driver is synchronous, so every query runs in a worker thread and is
    bounded with ``asyncio.wait_for``. The client is created on first use so
    the service can start while ClickHouse is down.
    """

    def __init__(
        self,
        config: Settings = settings,
        client_factory: Optional[Callable[[], Any]] = None,
    ):
        self.config = config
        self._client_factory = client_factory or self._connect
        self._client = None
        self._lock = threading.Lock()

    def _connect(self):
        return clickhouse_connect.get_client(
            host=self.config.clickhouse_host,
            port=self.config.clickhouse_port,
            database=self.config.clickhouse_db,
            username=self.config.clickhouse_user,
            password=self.config.clickhouse_password,
            interface="http",
        )

    def get_client(self):
        with self._lock:
            if self._client is None:
                self._client = self._client_factory()
                logger.info(
                    "clickhouse_connected",
                    extra={"host": self.config.clickhouse_host},
                )
            return self._client

    def _query_settings(self, timeout: float) -> Dict[str, Any]:
        return {
            "max_execution_time": max(int(timeout), 1),
            "max_bytes_before_external_group_by": self.config.clickhouse_spill_bytes,
        }

    @staticmethod
    def _partition_params(partition: str) -> Dict[str, Any]:
        patch, leaderboard = split_partition(partition)
        return {"patch": patch, "leaderboard": leaderboard or ""}

    def _aggregate_sync(
        self, partition: str, min_games: int, timeout: float
    ) -> List[SourceRow]:
        result = self.get_client().query(
            queries.PARTITION_AGGREGATE,
            parameters={**self._partition_params(partition), "min_games": min_games},
            settings=self._query_settings(timeout),
        )
        return [
            SourceRow(
                dimension=str(civ),
                games=int(games),
                wins=int(wins),
                rating_sum=float(rating_sum or 0),
                rating_count=int(rating_count or 0),
            )
            for civ, games, wins, rating_sum, rating_count in result.result_rows
        ]

    def _recent_sync(self, limit: int, timeout: float) -> List[str]:
        result = self.get_client().query(
            queries.RECENT_PARTITIONS,
            parameters={"limit": limit},
            settings={"max_execution_time": max(int(timeout), 1)},
        )
        return [str(row[0]) for row in result.result_rows]

    def _exists_sync(self, partition: str, timeout: float) -> bool:
        result = self.get_client().query(
            queries.PARTITION_EXISTS,
            parameters=self._partition_params(partition),
            settings={"max_execution_time": max(int(timeout), 1)},
        )
        return bool(result.result_rows and result.result_rows[0][0])

    def _ping_sync(self) -> bool:
        self.get_client().query(queries.PING)
        return True

    async def _run(self, op: str, func: Callable[..., Any], timeout: float, *args):
        try:
            return await run_blocking_with_timeout(func, timeout, *args)
        except asyncio.TimeoutError as e:
            raise AggregationTimeoutError(
                f"{op} exceeded {timeout}s", timeout=timeout
            ) from e
        except OperationalError as e:
            raise SourceUnavailableError(f"{op}: {e}") from e
        except DatabaseError as e:
            if server_code(e) == TIMEOUT_EXCEEDED:
                raise AggregationTimeoutError(
                    f"{op} exceeded {timeout}s", timeout=timeout
                ) from e
            raise SourceQueryError(f"{op}: {e}") from e
        except OSError as e:
            raise SourceUnavailableError(f"{op}: {e}") from e

    async def aggregate_partition(
        self, partition: str, min_games: int, timeout: float
    ) -> List[SourceRow]:
        """Per-dimension totals for one partition within ``timeout`` seconds."""
        rows = await self._run(
            "aggregate_partition",
            self._aggregate_sync,
            timeout,
            partition,
            min_games,
            timeout,
        )
        logger.debug(
            "partition_aggregated",
            extra={"partition": partition, "rows": len(rows)},
        )
        return rows

    async def recent_partitions(self, limit: int, timeout: float = 5.0) -> List[str]:
        """Most recent partitions, newest first."""
        return await self._run(
            "recent_partitions", self._recent_sync, timeout, limit, timeout
        )

    async def partition_exists(self, partition: str, timeout: float = 5.0) -> bool:
        """Whether any match belongs to the partition."""
        return await self._run(
            "partition_exists", self._exists_sync, timeout, partition, timeout
        )

    async def ping(self, timeout: float = 2.0) -> bool:
        await self._run("ping", self._ping_sync, timeout)
        return True

    def close(self):
        """Close the ClickHouse client connection"""
        if self._client is None:
            return
        try:
            self._client.close()
        except Exception as e:
            logger.warning("clickhouse_close_failed", extra={"error": str(e)})
        self._client = None
