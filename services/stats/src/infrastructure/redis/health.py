"""Availability tracking for the key-value store.

One ConnectionHealth instance is owned by the response cache and shared with
anything else that wants to skip Redis while it is known to be down. State
machine::

    available --failure--> reconnecting --ping ok--> available
    reconnecting --attempts used up--> gave_up

``gave_up`` is final for the life of the process.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable

from redis.exceptions import RedisError
from src.core.logger import get_logger
from src.core.metrics import CACHE_AVAILABLE

from shared.utils.retry import retry_async

logger = get_logger("stats.redis_health")


class HealthState(str, Enum):
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    RECONNECTING = "reconnecting"
    GAVE_UP = "gave_up"


class ConnectionHealth:
    def __init__(
        self,
        ping: Callable[[], Awaitable[Any]],
        max_attempts: int = 5,
        base_delay: float = 1.0,
        max_delay: float = 3.0,
        available: bool = True,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._ping = ping
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep
        self._state = HealthState.AVAILABLE if available else HealthState.UNAVAILABLE
        self._reconnect_task: asyncio.Task | None = None
        CACHE_AVAILABLE.set(1 if available else 0)

    @property
    def state(self) -> HealthState:
        return self._state

    @property
    def available(self) -> bool:
        return self._state is HealthState.AVAILABLE

    @property
    def reconnect_task(self) -> asyncio.Task | None:
        return self._reconnect_task

    def mark_healthy(self) -> None:
        if self._state is not HealthState.AVAILABLE:
            logger.info("redis_available", extra={"previous": self._state.value})
        self._state = HealthState.AVAILABLE
        CACHE_AVAILABLE.set(1)

    def mark_failed(self, exc: BaseException) -> None:
        """Record a failed call and start reconnecting in the background."""
        if self._state in (HealthState.RECONNECTING, HealthState.GAVE_UP):
            return
        logger.warning(
            "redis_unavailable",
            extra={"error": str(exc), "error_type": type(exc).__name__},
        )
        self._state = HealthState.UNAVAILABLE
        CACHE_AVAILABLE.set(0)
        self.start_reconnect()

    def start_reconnect(self) -> asyncio.Task | None:
        if self._state in (HealthState.AVAILABLE, HealthState.GAVE_UP):
            return None
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return self._reconnect_task
        self._state = HealthState.RECONNECTING
        self._reconnect_task = asyncio.get_running_loop().create_task(
            self.reconnect()
        )
        return self._reconnect_task

    async def reconnect(self) -> bool:
        """Ping with capped exponential backoff; True once the store answers."""

        async def _on_retry(attempt: int, exc: BaseException, sleep_for: float):
            logger.info(
                "redis_reconnect_retry",
                extra={
                    "attempt": attempt,
                    "max_attempts": self.max_attempts,
                    "error": str(exc),
                    "sleep_for": round(sleep_for, 2),
                },
            )

        self._state = HealthState.RECONNECTING
        try:
            await retry_async(
                self._ping,
                retries=self.max_attempts,
                base_delay=self.base_delay,
                max_delay=self.max_delay,
                jitter=0.0,
                retry_on=(RedisError, OSError, asyncio.TimeoutError),
                on_retry=_on_retry,
                sleep=self._sleep,
            )
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            self._state = HealthState.GAVE_UP
            CACHE_AVAILABLE.set(0)
            logger.error(
                "redis_reconnect_gave_up",
                extra={"attempts": self.max_attempts, "error": str(exc)},
            )
            return False
        self.mark_healthy()
        return True

    async def close(self) -> None:
        task = self._reconnect_task
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            logger.debug("redis_reconnect_cancelled")
