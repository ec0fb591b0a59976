import pytest
from redis.exceptions import ConnectionError, ResponseError
from src.domain.errors import FatalWriteError, TransientWriteError
from src.domain.models import BatchOperation
from src.infrastructure.redis.mutation_target import RedisHashTarget
from src.services.batch_mutator import BatchMutator, dedupe


class ScriptedTarget:
    """Applies to an in-memory dict; fails according to a script of errors.

    Failing calls apply the first half of the chunk first, like a connection
    dropped mid-pipeline.
    """

    name = "scripted"

    def __init__(self, errors=()):
        self.errors = list(errors)
        self.state = {}
        self.calls = []

    async def execute(self, operations):
        self.calls.append([op.idempotency_key for op in operations])
        if self.errors:
            err = self.errors.pop(0)
            if err is not None:
                for op in operations[: len(operations) // 2]:
                    self.state[op.idempotency_key] = op.payload
                raise err
        for op in operations:
            self.state[op.idempotency_key] = op.payload

    def is_transient(self, exc):
        return isinstance(exc, ConnectionError)


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


def ops(n, prefix="k"):
    return [
        BatchOperation(
            filter={"id": i}, payload={"v": i}, idempotency_key=f"{prefix}{i}"
        )
        for i in range(n)
    ]


@pytest.mark.asyncio
async def test_chunks_and_counts():
    target = ScriptedTarget()
    mutator = BatchMutator(target, chunk_size=3, sleep=SleepRecorder())
    result = await mutator.apply(ops(7))
    assert (result.applied, result.chunks, result.retries) == (7, 3, 0)
    assert [len(c) for c in target.calls] == [3, 3, 1]


@pytest.mark.asyncio
async def test_transient_retries_reach_same_state_as_clean_run():
    clean = ScriptedTarget()
    await BatchMutator(clean, chunk_size=4).apply(ops(10))

    sleeps = SleepRecorder()
    flaky = ScriptedTarget(
        errors=[ConnectionError("reset"), None, ConnectionError("reset")]
    )
    result = await BatchMutator(
        flaky, chunk_size=4, max_attempts=5, backoff_base=0.3, sleep=sleeps
    ).apply(ops(10))

    assert flaky.state == clean.state
    assert result.retries == 2
    assert result.applied == 10
    assert sleeps.delays == [0.3, 0.3]


@pytest.mark.asyncio
async def test_backoff_is_linear_in_attempt():
    sleeps = SleepRecorder()
    target = ScriptedTarget(errors=[ConnectionError("x")] * 3)
    await BatchMutator(
        target, chunk_size=10, max_attempts=5, backoff_base=0.3, sleep=sleeps
    ).apply(ops(2))
    assert sleeps.delays == pytest.approx([0.3, 0.6, 0.9])


@pytest.mark.asyncio
async def test_exhaustion_raises_fatal_with_attempt_count():
    sleeps = SleepRecorder()
    target = ScriptedTarget(errors=[ConnectionError("down")] * 10)
    mutator = BatchMutator(target, chunk_size=2, max_attempts=5, sleep=sleeps)
    with pytest.raises(FatalWriteError) as info:
        await mutator.apply(ops(4))
    assert info.value.attempts == 5
    assert info.value.applied == 0
    assert isinstance(info.value.__cause__, ConnectionError)
    assert len(target.calls) == 5
    assert len(sleeps.delays) == 4
    assert all(a < b for a, b in zip(sleeps.delays, sleeps.delays[1:]))


@pytest.mark.asyncio
async def test_non_transient_error_is_fatal_immediately():
    target = ScriptedTarget(errors=[None, ResponseError("WRONGTYPE")])
    sleeps = SleepRecorder()
    mutator = BatchMutator(target, chunk_size=2, sleep=sleeps)
    with pytest.raises(FatalWriteError) as info:
        await mutator.apply(ops(4))
    assert info.value.attempts == 1
    assert info.value.applied == 2
    assert sleeps.delays == []


@pytest.mark.asyncio
async def test_transient_write_error_is_always_retried():
    target = ScriptedTarget(errors=[TransientWriteError("lagging replica")])
    result = await BatchMutator(target, sleep=SleepRecorder()).apply(ops(1))
    assert result.retries == 1


def test_dedupe_keeps_last_occurrence():
    a1 = BatchOperation(filter={}, payload={"v": 1}, idempotency_key="a")
    b = BatchOperation(filter={}, payload={"v": 2}, idempotency_key="b")
    a2 = BatchOperation(filter={}, payload={"v": 3}, idempotency_key="a")
    assert dedupe([a1, b, a2]) == [a2, b]


@pytest.mark.asyncio
async def test_duplicate_keys_collapse_before_writing(redis):
    target = RedisHashTarget(redis)
    result = await BatchMutator(target).apply(
        [
            BatchOperation(
                filter={"key": "h"}, payload={"f": "old"}, idempotency_key="f"
            ),
            BatchOperation(
                filter={"key": "h"}, payload={"f": "new"}, idempotency_key="f"
            ),
        ]
    )
    assert result.applied == 1
    assert await redis.hget("h", "f") == "new"


def test_invalid_configuration_rejected():
    with pytest.raises(ValueError):
        BatchMutator(ScriptedTarget(), chunk_size=0)
    with pytest.raises(ValueError):
        BatchMutator(ScriptedTarget(), max_attempts=0)
