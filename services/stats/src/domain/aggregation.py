"""Pure snapshot computation shared by rebuilds and live queries.

Rates are kept as unrounded fractions; percentages are derived only in
``render_payload``.
"""

from __future__ import annotations

from datetime import datetime
from fractions import Fraction
from typing import Any, Dict, Iterable, List

from .keys import split_partition
from .models import (
    AggregateMetrics,
    AggregateRecord,
    AggregateSnapshot,
    SourceRow,
    StatsQuery,
)

PERCENT_PRECISION = 2


def _merge_rows(rows: Iterable[SourceRow]) -> Dict[str, SourceRow]:
    merged: Dict[str, SourceRow] = {}
    for row in rows:
        if not row.dimension:
            continue
        prev = merged.get(row.dimension)
        if prev is None:
            merged[row.dimension] = row
            continue
        merged[row.dimension] = SourceRow(
            dimension=row.dimension,
            games=prev.games + row.games,
            wins=prev.wins + row.wins,
            rating_sum=prev.rating_sum + row.rating_sum,
            rating_count=prev.rating_count + row.rating_count,
        )
    return merged


def rank_key(row: SourceRow):
    # Exact ratio so equal win rates always tie, then dimension name.
    return (-Fraction(row.wins, row.games), row.dimension)


def compute_snapshot(
    partition: str,
    rows: Iterable[SourceRow],
    min_games: int,
    now: datetime,
) -> AggregateSnapshot:
    """Turn grouped source rows into a ranked snapshot.

    Rows below ``min_games`` are dropped before the pick-rate denominator is
    taken, so unreliable dimensions influence neither their own rank nor the
    shares of the others.
    """
    eligible = [
        r for r in _merge_rows(rows).values() if r.games > 0 and r.games >= min_games
    ]
    total_games = sum(r.games for r in eligible)
    records: List[AggregateRecord] = []
    for rank, row in enumerate(sorted(eligible, key=rank_key), start=1):
        records.append(
            AggregateRecord(
                dimension=row.dimension,
                partition=partition,
                rank=rank,
                last_updated=now,
                metrics=AggregateMetrics(
                    games=row.games,
                    wins=row.wins,
                    losses=row.games - row.wins,
                    win_rate=row.wins / row.games,
                    pick_rate=row.games / total_games,
                    avg_rating=(
                        row.rating_sum / row.rating_count if row.rating_count else None
                    ),
                ),
            )
        )
    return AggregateSnapshot(
        partition=partition,
        records=records,
        built_at=now,
        total_games=total_games,
        min_games=min_games,
    )


_SORT_KEYS = {
    "rank": lambda r: (r.rank if r.rank is not None else 0, r.dimension),
    "win_rate": lambda r: (-r.metrics.win_rate, r.dimension),
    "pick_rate": lambda r: (-r.metrics.pick_rate, r.dimension),
    "games": lambda r: (-r.metrics.games, r.dimension),
    "name": lambda r: r.dimension,
}


def apply_view(
    snapshot: AggregateSnapshot, query: StatsQuery
) -> List[AggregateRecord]:
    """In-memory filter/sort/offset/limit over a complete snapshot."""
    records = snapshot.records
    if query.min_games is not None:
        records = [r for r in records if r.metrics.games >= query.min_games]
    records = sorted(records, key=_SORT_KEYS[query.sort])
    end = None if query.limit is None else query.offset + query.limit
    return records[query.offset : end]


def to_percent(rate: float) -> float:
    return round(rate * 100, PERCENT_PRECISION)


def render_record(record: AggregateRecord) -> Dict[str, Any]:
    m = record.metrics
    return {
        "name": record.dimension,
        "rank": record.rank,
        "games": m.games,
        "wins": m.wins,
        "losses": m.losses,
        "win_rate": m.win_rate,
        "win_rate_pct": to_percent(m.win_rate),
        "pick_rate": m.pick_rate,
        "pick_rate_pct": to_percent(m.pick_rate),
        "avg_rating": round(m.avg_rating) if m.avg_rating is not None else None,
    }


def render_payload(
    snapshot: AggregateSnapshot,
    query: StatsQuery,
    source: str,
    degraded: bool = False,
    stale: bool = False,
) -> Dict[str, Any]:
    """Presentation boundary: JSON-ready payload with rounded percentages."""
    view = apply_view(snapshot, query)
    patch, leaderboard = split_partition(snapshot.partition)
    return {
        "partition": patch,
        "leaderboard": leaderboard,
        "civilizations": [render_record(r) for r in view],
        "meta": {
            "total_civilizations": len(snapshot.records),
            "returned": len(view),
            "total_games": snapshot.total_games,
            "min_games": snapshot.min_games,
            "built_at": snapshot.built_at.isoformat(),
            "sort": query.sort,
            "offset": query.offset,
            "limit": query.limit,
        },
        "source": source,
        "degraded": degraded,
        "stale": stale,
    }
