"""SQL for the raw analytical store.

``players`` holds one row per player per match; ``matches`` holds one row per
match and carries the patch and leaderboard the match was played on. An empty
``leaderboard`` parameter means every leaderboard.
"""

_MATCHES_IN_PARTITION = """
    SELECT game_id FROM matches
    WHERE patch = %(patch)s
      AND (%(leaderboard)s = '' OR toString(leaderboard) = %(leaderboard)s)
"""

# Per-civ totals for one partition. The floor is repeated here only to keep
# sparse civs out of the result set; compute_snapshot applies it again.
PARTITION_AGGREGATE = f"""
SELECT
    p.civ AS civ,
    count() AS games,
    countIf(p.winner = 1) AS wins,
    sum(p.old_rating) AS rating_sum,
    count(p.old_rating) AS rating_count
FROM players AS p
WHERE p.game_id IN ({_MATCHES_IN_PARTITION})
GROUP BY p.civ
HAVING games >= %(min_games)s
"""

PARTITION_EXISTS = f"""
SELECT count() > 0 FROM ({_MATCHES_IN_PARTITION} LIMIT 1)
"""

RECENT_PARTITIONS = """
SELECT toString(patch) AS patch
FROM matches
GROUP BY patch
ORDER BY patch DESC
LIMIT %(limit)s
"""

PING = "SELECT 1"
