"""Chunked, retrying application of idempotent overwrite operations."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Dict, List, Protocol, Sequence

from src.core.config import Settings, settings
from src.core.logger import get_logger
from src.core.metrics import BATCH_OPERATIONS, BATCH_RETRIES
from src.domain.errors import FatalWriteError, TransientWriteError
from src.domain.models import BatchOperation, BatchResult

logger = get_logger("stats.batch_mutator")


class MutationTarget(Protocol):
    name: str

    async def execute(self, operations: Sequence[BatchOperation]) -> None: ...

    def is_transient(self, exc: BaseException) -> bool: ...


def dedupe(operations: Sequence[BatchOperation]) -> List[BatchOperation]:
    """Collapse duplicate idempotency keys; the last occurrence wins and takes
    the position of the first."""
    latest: Dict[str, BatchOperation] = {}
    for op in operations:
        latest[op.idempotency_key] = op
    return list(latest.values())


class BatchMutator:
    def __init__(
        self,
        target: MutationTarget,
        chunk_size: int = 1000,
        max_attempts: int = 5,
        backoff_base: float = 0.3,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.target = target
        self.chunk_size = chunk_size
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls, target: MutationTarget, config: Settings = settings
    ) -> "BatchMutator":
        return cls(
            target,
            chunk_size=config.batch_chunk_size,
            max_attempts=config.batch_max_attempts,
            backoff_base=config.batch_backoff_base_seconds,
        )

    def _is_transient(self, exc: BaseException) -> bool:
        return isinstance(exc, TransientWriteError) or self.target.is_transient(exc)

    async def apply(self, operations: Sequence[BatchOperation]) -> BatchResult:
        """Apply ``operations`` chunk by chunk.

        A chunk that fails transiently is retried whole after
        ``backoff_base * attempt`` seconds. Re-applying operations that had
        already landed is harmless because every operation is an overwrite.
        """
        ops = dedupe(operations)
        result = BatchResult()
        for start in range(0, len(ops), self.chunk_size):
            chunk = ops[start : start + self.chunk_size]
            result.retries += await self._apply_chunk(chunk, result.applied)
            result.applied += len(chunk)
            result.chunks += 1
            BATCH_OPERATIONS.inc(len(chunk))
        logger.debug(
            "batch_applied",
            extra={
                "target": getattr(self.target, "name", type(self.target).__name__),
                "applied": result.applied,
                "chunks": result.chunks,
                "retries": result.retries,
            },
        )
        return result

    async def _apply_chunk(self, chunk: List[BatchOperation], applied: int) -> int:
        attempt = 1
        while True:
            try:
                await self.target.execute(chunk)
                return attempt - 1
            except Exception as exc:
                if not self._is_transient(exc):
                    raise FatalWriteError(
                        f"non-retryable write error: {exc}",
                        attempts=attempt,
                        applied=applied,
                    ) from exc
                if attempt >= self.max_attempts:
                    raise FatalWriteError(
                        f"write failed after {attempt} attempts: {exc}",
                        attempts=attempt,
                        applied=applied,
                    ) from exc
                delay = self.backoff_base * attempt
                BATCH_RETRIES.inc()
                logger.warning(
                    "batch_chunk_retry",
                    extra={
                        "attempt": attempt,
                        "max_attempts": self.max_attempts,
                        "chunk_size": len(chunk),
                        "delay": delay,
                        "error": str(exc),
                    },
                )
                await self._sleep(delay)
                attempt += 1
