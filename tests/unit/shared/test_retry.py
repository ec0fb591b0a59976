import pytest

from shared.utils.retry import backoff_schedule, retry_async


class Recorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


def test_backoff_schedule_is_capped():
    assert backoff_schedule(5, 1.0, 3.0) == [1.0, 2.0, 3.0, 3.0]
    assert backoff_schedule(1, 1.0, 3.0) == []


@pytest.mark.asyncio
async def test_retry_async_succeeds_after_failures():
    calls = []
    retries_seen = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise ConnectionError("nope")
        return "ok"

    sleeps = Recorder()
    result = await retry_async(
        flaky,
        retries=5,
        base_delay=0.5,
        jitter=0.0,
        on_retry=lambda attempt, exc, delay: retries_seen.append(attempt),
        sleep=sleeps,
    )
    assert result == "ok"
    assert sleeps.delays == [0.5, 1.0]
    assert retries_seen == [1, 2]


@pytest.mark.asyncio
async def test_retry_async_reraises_last_error():
    async def always_fails():
        raise ConnectionError("down")

    sleeps = Recorder()
    with pytest.raises(ConnectionError):
        await retry_async(always_fails, retries=3, jitter=0.0, sleep=sleeps)
    assert len(sleeps.delays) == 2


@pytest.mark.asyncio
async def test_retry_async_does_not_retry_other_errors():
    calls = []

    async def bad():
        calls.append(1)
        raise ValueError("bug")

    with pytest.raises(ValueError):
        await retry_async(bad, retry_on=(ConnectionError,), sleep=Recorder())
    assert calls == [1]
