from enum import Enum


class Environment(str, Enum):
    """Application environment types."""

    PRODUCTION = "production"
    STAGING = "staging"
    TESTING = "testing"
    DEVELOPMENT = "development"

    @classmethod
    def is_production(cls, env: str) -> bool:
        """Check if environment is production."""
        return env.lower() == cls.PRODUCTION.value

    @classmethod
    def runs_background_jobs(cls, env: str, enabled_flag: bool) -> bool:
        """Background refresh runs in production or when explicitly enabled."""
        return enabled_flag or cls.is_production(env)
