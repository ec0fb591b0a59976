"""Error taxonomy for the stats service.

Recoverable errors are absorbed at the component boundary that owns them;
only FatalWriteError is meant to reach callers of write paths.
"""


class StatsError(Exception):
    """Base class for all service errors."""


class CacheUnavailableError(StatsError):
    """The key-value store could not be reached or answered with an error."""


class SourceError(StatsError):
    """The raw analytical store failed to produce rows."""


class SourceUnavailableError(SourceError):
    """The raw analytical store is unreachable."""


class SourceQueryError(SourceError):
    """The raw analytical store rejected the query."""


class AggregationTimeoutError(SourceError):
    """An aggregation exceeded its time budget; its result is discarded."""

    def __init__(self, message: str, timeout: float | None = None):
        super().__init__(message)
        self.timeout = timeout


class TransientWriteError(StatsError):
    """A write failed in a way that is safe and sensible to retry."""


class FatalWriteError(StatsError):
    """A write failed permanently or ran out of retry budget."""

    def __init__(self, message: str, attempts: int = 1, applied: int = 0):
        super().__init__(message)
        self.attempts = attempts
        self.applied = applied


class UnknownPartitionError(SourceError):
    """The raw analytical store holds no matches for the partition."""
