from .environments import Environment
from .redis_keys import CacheTTL, RedisKeys

__all__ = ["CacheTTL", "Environment", "RedisKeys"]
