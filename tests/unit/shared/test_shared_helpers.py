import asyncio
import time

import pytest

from shared.constants import CacheTTL, Environment, RedisKeys
from shared.metrics import get_counter
from shared.utils.concurrency import run_blocking, run_blocking_with_timeout


def test_redis_key_layout():
    assert RedisKeys.response_key("/stats/x?a=1") == "cache:/stats/x?a=1"
    assert RedisKeys.snapshot_key("42") == "stats:snapshot:42"
    assert RedisKeys.snapshot_build_key("42", "t") == "stats:snapshot:42:build:t"
    assert CacheTTL.defaults() == {"short": 300, "medium": 1800, "long": 7200}


def test_background_jobs_enablement():
    assert Environment.runs_background_jobs("production", False)
    assert Environment.runs_background_jobs("development", True)
    assert not Environment.runs_background_jobs("testing", False)


def test_metric_names_prefixed_and_validated():
    counter = get_counter("helper_sample_total", "sample", "shared")
    assert counter._name == "shared_helper_sample"
    with pytest.raises(ValueError):
        get_counter("Bad-Name", "bad")


@pytest.mark.asyncio
async def test_run_blocking_and_timeout():
    assert await run_blocking(sum, [1, 2, 3]) == 6
    with pytest.raises(asyncio.TimeoutError):
        await run_blocking_with_timeout(time.sleep, 0.01, 0.2)
