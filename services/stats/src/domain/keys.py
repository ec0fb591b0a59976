from typing import Any, Iterable, Mapping, Optional, Tuple
from urllib.parse import urlencode

QUERY_SEPARATOR = "?"


def _flatten(params: Mapping[str, Any]) -> Iterable[Tuple[str, str]]:
    for name, value in params.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple, set, frozenset)):
            for item in value:
                if item is not None:
                    yield str(name), str(item)
        else:
            yield str(name), str(value)


def stable_params_tuple(params: Mapping[str, Any]) -> Tuple[Tuple[str, str], ...]:
    """Query parameters as sorted (name, value) pairs; None values dropped."""
    return tuple(sorted(_flatten(params)))


def canonical_identity(path: str, params: Mapping[str, Any] | None = None) -> str:
    """Deterministic string for a request: path plus canonically ordered query.

    Distinct filter combinations never collide and parameter order in the
    inbound URL does not matter.
    """
    path = "/" + path.strip("/") if path.strip("/") else "/"
    stable = stable_params_tuple(params or {})
    if not stable:
        return path
    return f"{path}{QUERY_SEPARATOR}{urlencode(stable)}"


PARTITION_SEPARATOR = ":"


def partition_key(patch: str, leaderboard: Optional[str] = None) -> str:
    """Partition id of a snapshot: the patch, or ``patch:leaderboard``."""
    return f"{patch}{PARTITION_SEPARATOR}{leaderboard}" if leaderboard else patch


def split_partition(partition: str) -> Tuple[str, Optional[str]]:
    patch, _, leaderboard = partition.partition(PARTITION_SEPARATOR)
    return patch, leaderboard or None
