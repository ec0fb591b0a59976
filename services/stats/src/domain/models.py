from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from .keys import canonical_identity, partition_key


class SourceRow(BaseModel):
    """One grouped row from the raw store, before derived metrics."""

    dimension: str
    games: int
    wins: int
    rating_sum: float = 0.0
    rating_count: int = 0


class AggregateMetrics(BaseModel):
    games: int
    wins: int
    losses: int
    win_rate: float  # fraction in [0, 1], never rounded
    pick_rate: float  # share of the partition's eligible games, never rounded
    avg_rating: Optional[float] = None


class AggregateRecord(BaseModel):
    dimension: str
    partition: str
    metrics: AggregateMetrics
    rank: Optional[int] = None
    last_updated: datetime


class AggregateSnapshot(BaseModel):
    """Complete, internally consistent set of records for one partition."""

    partition: str
    records: List[AggregateRecord]
    built_at: datetime
    total_games: int
    min_games: int

    def age_seconds(self, now: datetime | None = None) -> float:
        now = now or datetime.now(timezone.utc)
        return (now - self.built_at).total_seconds()

    def by_dimension(self) -> Dict[str, AggregateRecord]:
        return {r.dimension: r for r in self.records}


class SnapshotMeta(BaseModel):
    """Header stored next to the records of a materialized snapshot."""

    partition: str
    built_at: datetime
    total_games: int
    min_games: int
    record_count: int


class PartitionState(str, Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class RefreshStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (RefreshStatus.SUCCEEDED, RefreshStatus.FAILED)


class RefreshJob(BaseModel):
    partition: str
    scheduled_at: datetime
    status: RefreshStatus = RefreshStatus.PENDING
    attempt: int = 1
    error: Optional[str] = None
    finished_at: Optional[datetime] = None
    record_count: Optional[int] = None


class BatchOperation(BaseModel):
    """Idempotent overwrite: selecting ``filter``, set ``payload``.

    Applying the same operation twice must leave the target in the same state
    as applying it once.
    """

    filter: Dict[str, Any]
    payload: Dict[str, Any]
    idempotency_key: str


class BatchResult(BaseModel):
    applied: int = 0
    chunks: int = 0
    retries: int = 0


class CacheEntry(BaseModel):
    key: str
    value: Any
    ttl_seconds: int
    written_at: float  # epoch seconds

    def expired(self, now: float) -> bool:
        return now >= self.written_at + self.ttl_seconds


# Patch and leaderboard ids; neither may contain the partition separator.
SEGMENT_PATTERN = r"^[A-Za-z0-9_.-]+$"

SortField = Literal["rank", "win_rate", "pick_rate", "games", "name"]


class StatsQuery(BaseModel):
    """Request identity for the statistics read path."""

    path: str = "/stats/civilizations"
    partition: Optional[str] = None
    leaderboard: Optional[str] = Field(default=None, pattern=SEGMENT_PATTERN)
    limit: Optional[int] = Field(default=None, ge=1)
    offset: int = Field(default=0, ge=0)
    sort: SortField = "rank"
    min_games: Optional[int] = Field(default=None, ge=0)

    def params(self) -> Dict[str, Any]:
        return {
            "patch": self.partition,
            "leaderboard": self.leaderboard,
            "limit": self.limit,
            "offset": self.offset,
            "sort": self.sort,
            "min_games": self.min_games,
        }

    def identity(self) -> str:
        return canonical_identity(self.path, self.params())

    def for_partition(self, partition: str) -> "StatsQuery":
        return self.model_copy(update={"partition": partition})

    def snapshot_partition(self, patch: str) -> str:
        """Snapshot partition serving this query once the patch is known."""
        return partition_key(patch, self.leaderboard)
