import fakeredis.aioredis
import pytest
from stats_fakes import Clock


@pytest.fixture
def redis():
    return fakeredis.aioredis.FakeRedis(decode_responses=True)


@pytest.fixture
def clock():
    return Clock()
