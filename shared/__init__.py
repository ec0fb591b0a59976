"""Shared utilities and components for all services."""

from .config import (
    BaseClickHouseConfig,
    BaseLoggingConfig,
    BaseRedisConfig,
    BaseServiceConfig,
)
from .constants import CacheTTL, Environment, RedisKeys

__all__ = [
    "CacheTTL",
    "Environment",
    "RedisKeys",
    "BaseServiceConfig",
    "BaseLoggingConfig",
    "BaseRedisConfig",
    "BaseClickHouseConfig",
]
