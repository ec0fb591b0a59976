import redis.asyncio as redis
from src.core.config import Settings, settings


def create_redis(config: Settings = settings) -> redis.Redis:
    """Build a lazily-connecting client; no network I/O happens here."""
    return redis.Redis(
        host=config.redis_host,
        port=config.redis_port,
        db=config.redis_db,
        decode_responses=True,
        socket_connect_timeout=config.redis_connect_timeout_seconds,
        socket_timeout=max(config.redis_op_timeout_seconds, 1.0),
        health_check_interval=30,
    )
