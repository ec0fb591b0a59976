import re
from typing import Any, Dict, Sequence, Tuple

from clickhouse_connect.driver.exceptions import DatabaseError, OperationalError
from src.domain.models import BatchOperation

from shared.utils.concurrency import run_blocking

from .client import ClickHouseStatsSource, server_code

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# TOO_MANY_SIMULTANEOUS_QUERIES, SOCKET_TIMEOUT, NETWORK_ERROR, TABLE_IS_READ_ONLY
TRANSIENT_CODES = frozenset({202, 209, 210, 242})


def _identifier(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise ValueError(f"invalid identifier: {name!r}")
    return name


def build_mutation(
    table: str, op: BatchOperation
) -> Tuple[str, Dict[str, Any]]:
    """``ALTER TABLE .. UPDATE`` statement with literal assignments.

    Every assignment and filter value is bound as a parameter; column and
    table names must be plain identifiers.
    """
    if not op.payload:
        raise ValueError(f"empty payload for {op.idempotency_key}")
    if not op.filter:
        raise ValueError(f"unfiltered mutation for {op.idempotency_key}")
    params: Dict[str, Any] = {}
    assignments = []
    for i, (col, value) in enumerate(sorted(op.payload.items())):
        params[f"set_{i}"] = value
        assignments.append(f"{_identifier(col)} = %(set_{i})s")
    conditions = []
    for i, (col, value) in enumerate(sorted(op.filter.items())):
        params[f"where_{i}"] = value
        conditions.append(f"{_identifier(col)} = %(where_{i})s")
    sql = (
        f"ALTER TABLE {_identifier(table)} UPDATE {', '.join(assignments)} "
        f"WHERE {' AND '.join(conditions)}"
    )
    return sql, params


class ClickHouseMutationTarget:
    """Backfill writes into a raw table, applied synchronously per chunk."""

    name = "clickhouse"

    def __init__(self, source: ClickHouseStatsSource, table: str):
        self.source = source
        self.table = _identifier(table)

    def _execute_sync(self, operations: Sequence[BatchOperation]) -> None:
        client = self.source.get_client()
        for op in operations:
            sql, params = build_mutation(self.table, op)
            client.command(sql, parameters=params, settings={"mutations_sync": 1})

    async def execute(self, operations: Sequence[BatchOperation]) -> None:
        await run_blocking(self._execute_sync, operations)

    def is_transient(self, exc: BaseException) -> bool:
        if isinstance(exc, (OperationalError, OSError)):
            return True
        if isinstance(exc, DatabaseError):
            return server_code(exc) in TRANSIENT_CODES
        return False
