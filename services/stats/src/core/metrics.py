"""Prometheus metrics for the stats service."""

from shared.metrics import get_counter, get_gauge, get_histogram

SERVICE = "stats"

# Response cache
CACHE_HITS = get_counter("cache_hits_total", "Response cache hits.", SERVICE)
CACHE_MISSES = get_counter("cache_misses_total", "Response cache misses.", SERVICE)
CACHE_ERRORS = get_counter(
    "cache_errors_total", "Key-value store errors absorbed as misses.", SERVICE
)
CACHE_AVAILABLE = get_gauge(
    "cache_available", "1 while the key-value store is considered reachable.", SERVICE
)

# Fallback chain
RESOLUTIONS = get_counter(
    "resolutions_total",
    "Read resolutions by the stage that produced the payload.",
    SERVICE,
    labelnames=("source",),
)
LIVE_QUERY_LATENCY = get_histogram(
    "live_query_latency_seconds", "Latency of live aggregation queries.", SERVICE
)

CACHE_WARMED = get_counter(
    "cache_warmed_total", "Views written to the cache after a rebuild.", SERVICE
)

# Materialized snapshots
REBUILD_LATENCY = get_histogram(
    "rebuild_latency_seconds",
    "Wall time of a partition rebuild (query, write and swap).",
    SERVICE,
    buckets=[0.5, 1, 2.5, 5, 10, 30, 60, 120],
)
REFRESH_JOBS = get_counter(
    "refresh_jobs_total",
    "Terminal refresh jobs by status.",
    SERVICE,
    labelnames=("status",),
)

# Batch writes
BATCH_RETRIES = get_counter(
    "batch_retries_total", "Chunk retries after transient write errors.", SERVICE
)
BATCH_OPERATIONS = get_counter(
    "batch_operations_total", "Idempotent operations applied.", SERVICE
)
