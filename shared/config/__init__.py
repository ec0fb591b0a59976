"""Shared configuration base classes.

Provides common configuration patterns used across all services to reduce
duplication and ensure consistency.
"""

from pydantic_settings import BaseSettings


class BaseLoggingConfig(BaseSettings):
    """Common logging configuration for all services."""

    app_log_level: str = "INFO"
    app_log_redaction_patterns: list[str] = [
        "password",
        "token",
        "secret",
        "authorization",
        "cookie",
    ]
    app_environment: str = "production"


class BaseRedisConfig(BaseSettings):
    """Connection settings for the key-value store."""

    redis_host: str = "redis"
    redis_port: int = 6379
    redis_db: int = 0
    redis_connect_timeout_seconds: float = 10.0
    redis_op_timeout_seconds: float = 0.5


class BaseClickHouseConfig(BaseSettings):
    """Connection settings for the raw analytical store."""

    clickhouse_host: str = "clickhouse"
    clickhouse_port: int = 8123
    clickhouse_db: str = "analytics"
    clickhouse_user: str = "admin"
    clickhouse_password: str = "admin"


class BaseServiceConfig(BaseLoggingConfig, BaseRedisConfig, BaseClickHouseConfig):
    """Base configuration combining logging and storage settings.

    Services should inherit from this and add their own specific settings.
    The otel_service_name should be overridden by each service.
    """

    otel_service_name: str = "unknown"  # Should be overridden by service


__all__ = [
    "BaseLoggingConfig",
    "BaseRedisConfig",
    "BaseClickHouseConfig",
    "BaseServiceConfig",
]
