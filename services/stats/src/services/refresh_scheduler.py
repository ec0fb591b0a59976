"""Periodic rebuild of materialized snapshots for the most recent partitions.

Single active instance per deployment. ``tick`` is deterministic and can be
driven directly (tests, on-demand refresh); ``start`` runs it on a timer.

Per-partition state::

    idle -> scheduled -> running -> succeeded | failed

Terminal states stay visible through ``state`` until the next tick (or
trigger) picks the partition up again, which resets it to idle first.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from src.core.config import Settings, settings
from src.core.logger import get_logger
from src.core.metrics import REFRESH_JOBS
from src.domain.errors import SourceError, StatsError
from src.domain.keys import partition_key, split_partition
from src.domain.models import PartitionState, RefreshJob, RefreshStatus
from src.infrastructure.clickhouse.client import ClickHouseStatsSource

from .aggregate_store import AggregateStore, utcnow

logger = get_logger("stats.refresh_scheduler")

_TERMINAL = (PartitionState.SUCCEEDED, PartitionState.FAILED)


class RefreshScheduler:
    def __init__(
        self,
        store: AggregateStore,
        source: ClickHouseStatsSource,
        on_rebuilt: Optional[Callable[[List[str]], Awaitable[object]]] = None,
        interval_seconds: float = 7200,
        initial_delay_seconds: float = 300,
        partition_window: int = 3,
        leaderboards: Sequence[str] = (),
        staleness_seconds: float = 7200,
        max_parallel: int = 2,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.source = source
        self.on_rebuilt = on_rebuilt
        self.interval_seconds = interval_seconds
        self.initial_delay_seconds = initial_delay_seconds
        self.partition_window = partition_window
        self.leaderboards = list(leaderboards)
        self.staleness_seconds = staleness_seconds
        self.clock = clock
        self._sleep = sleep
        self._semaphore = asyncio.Semaphore(max_parallel)
        self._states: Dict[str, PartitionState] = {}
        self._jobs: Dict[str, RefreshJob] = {}
        self._history: Dict[str, RefreshJob] = {}
        self._failures: Dict[str, int] = {}
        self._task: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(
        cls,
        store: AggregateStore,
        source: ClickHouseStatsSource,
        on_rebuilt: Optional[Callable[[List[str]], Awaitable[object]]] = None,
        config: Settings = settings,
    ) -> "RefreshScheduler":
        return cls(
            store,
            source,
            on_rebuilt=on_rebuilt,
            interval_seconds=config.refresh_interval_seconds,
            initial_delay_seconds=config.refresh_initial_delay_seconds,
            partition_window=config.refresh_partition_window,
            leaderboards=config.refresh_leaderboards,
            staleness_seconds=config.refresh_staleness_seconds,
            max_parallel=config.refresh_max_parallel,
        )

    # Introspection
    def state(self, partition: str) -> PartitionState:
        return self._states.get(partition, PartitionState.IDLE)

    def last_job(self, partition: str) -> Optional[RefreshJob]:
        return self._history.get(partition)

    def in_flight(self) -> List[RefreshJob]:
        return list(self._jobs.values())

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # Lifecycle
    def start(self) -> asyncio.Task:
        if self.running:
            return self._task  # type: ignore[return-value]
        self._task = asyncio.get_running_loop().create_task(self._loop())
        logger.info(
            "refresh_scheduler_started",
            extra={
                "initial_delay_seconds": self.initial_delay_seconds,
                "interval_seconds": self.interval_seconds,
                "partition_window": self.partition_window,
                "leaderboards": self.leaderboards,
            },
        )
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            logger.info("refresh_scheduler_stopped")

    async def _loop(self) -> None:
        await self._sleep(self.initial_delay_seconds)
        while True:
            try:
                await self.tick()
            except Exception:
                logger.exception("refresh_tick_failed")
            await self._sleep(self.interval_seconds)

    # Scheduling
    async def tick(self) -> List[RefreshJob]:
        """Rebuild due partitions once; returns the terminal jobs of this tick."""
        for partition, state in list(self._states.items()):
            if state in _TERMINAL:
                self._states[partition] = PartitionState.IDLE
        due = await self.due_partitions()
        if not due:
            logger.debug("refresh_nothing_due")
            return []
        results = await asyncio.gather(*(self._run_job(p) for p in due))
        jobs = [job for job in results if job is not None]
        await self._notify(
            [j.partition for j in jobs if j.status is RefreshStatus.SUCCEEDED]
        )
        logger.info(
            "refresh_tick_completed",
            extra={
                "partitions": due,
                "succeeded": sum(j.status is RefreshStatus.SUCCEEDED for j in jobs),
                "failed": sum(j.status is RefreshStatus.FAILED for j in jobs),
            },
        )
        return jobs

    async def trigger(self, partition: str) -> Optional[RefreshJob]:
        """Rebuild one partition now; None if it is already being rebuilt."""
        if self.state(partition) in _TERMINAL:
            self._states[partition] = PartitionState.IDLE
        job = await self._run_job(partition)
        if job is not None and job.status is RefreshStatus.SUCCEEDED:
            await self._notify([partition])
        return job

    async def _window(self) -> List[str]:
        """Most recent patches, newest first."""
        try:
            return await self.source.recent_partitions(self.partition_window)
        except SourceError as exc:
            logger.warning(
                "refresh_partitions_from_index",
                extra={"error": str(exc), "error_type": type(exc).__name__},
            )
        try:
            entries = await self.store.partitions()
        except StatsError as exc:
            logger.warning("refresh_partitions_unavailable", extra={"error": str(exc)})
            return []
        patches: List[str] = []
        for partition, _ in entries:
            patch, _ = split_partition(partition)
            if patch not in patches:
                patches.append(patch)
        return patches[: self.partition_window]

    def expand(self, patch: str) -> List[str]:
        """The patch partition followed by one partition per leaderboard."""
        return [patch] + [partition_key(patch, lb) for lb in self.leaderboards]

    async def due_partitions(self) -> List[str]:
        """Partitions of the newest patch always; others when missing or older
        than the staleness threshold."""
        patches = await self._window()
        now = self.clock()
        due = []
        for i, patch in enumerate(patches):
            for partition in self.expand(patch):
                if i == 0 or await self._is_stale(partition, now):
                    due.append(partition)
        return due

    async def _is_stale(self, partition: str, now: datetime) -> bool:
        try:
            built_at = await self.store.built_at(partition)
        except StatsError:
            return True
        return (
            built_at is None
            or (now - built_at).total_seconds() > self.staleness_seconds
        )

    async def _run_job(self, partition: str) -> Optional[RefreshJob]:
        if partition in self._jobs:
            logger.debug("refresh_already_in_flight", extra={"partition": partition})
            return None
        job = RefreshJob(
            partition=partition,
            scheduled_at=self.clock(),
            attempt=self._failures.get(partition, 0) + 1,
        )
        self._jobs[partition] = job
        self._states[partition] = PartitionState.SCHEDULED
        try:
            async with self._semaphore:
                job.status = RefreshStatus.RUNNING
                self._states[partition] = PartitionState.RUNNING
                try:
                    snapshot = await self.store.rebuild(partition)
                except Exception as exc:
                    job.status = RefreshStatus.FAILED
                    job.error = f"{type(exc).__name__}: {exc}"
                    self._failures[partition] = job.attempt
                    logger.error(
                        "refresh_failed",
                        extra={
                            "partition": partition,
                            "attempt": job.attempt,
                            "error": job.error,
                        },
                    )
                else:
                    job.status = RefreshStatus.SUCCEEDED
                    job.record_count = len(snapshot.records)
                    self._failures.pop(partition, None)
        finally:
            job.finished_at = self.clock()
            self._jobs.pop(partition, None)
            self._history[partition] = job
            self._states[partition] = (
                PartitionState.SUCCEEDED
                if job.status is RefreshStatus.SUCCEEDED
                else PartitionState.FAILED
            )
        REFRESH_JOBS.labels(status=job.status.value).inc()
        return job

    async def _notify(self, partitions: List[str]) -> None:
        """One post-rebuild callback per tick or trigger, with every partition
        that was swapped in."""
        if self.on_rebuilt is None or not partitions:
            return
        try:
            await self.on_rebuilt(partitions)
        except Exception as exc:
            logger.warning(
                "refresh_callback_failed",
                extra={"partitions": partitions, "error": str(exc)},
            )
