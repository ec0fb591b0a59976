"""Static placeholder payloads served when every data stage has failed.

The shape mirrors ``render_payload`` so clients need no special casing; the
``degraded`` flag and ``source`` tell them the numbers are not real.
"""

from typing import Any, Dict

from .models import StatsQuery

DEFAULTS_VERSION = "2024.10.1"


def default_payload(query: StatsQuery) -> Dict[str, Any]:
    return {
        "partition": query.partition,
        "leaderboard": query.leaderboard,
        "civilizations": [],
        "meta": {
            "total_civilizations": 0,
            "returned": 0,
            "total_games": 0,
            "min_games": query.min_games,
            "built_at": None,
            "sort": query.sort,
            "offset": query.offset,
            "limit": query.limit,
            "message": "Statistics are temporarily unavailable",
            "defaults_version": DEFAULTS_VERSION,
        },
        "source": "default",
        "degraded": True,
        "stale": False,
    }
