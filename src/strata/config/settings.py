"""
Engine settings using Pydantic.

Provides environment-based configuration loading with STRATA_ prefix.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Engine settings."""

    # Provider
    provider: str = "memory"
    region: str = "us-east-1"
    inventory_path: str | None = None  # memory provider persistence

    # State
    state_path: str = "strata.state.json"

    # Scheduling
    workers: int = 10
    discovery_first: bool = True

    # Readiness polling
    poll_interval_seconds: float = 15.0
    default_timeout_seconds: float = 300.0
    cluster_timeout_seconds: float = 1200.0
    iam_timeout_seconds: float = 300.0

    # Action retries (1 attempt + 3 retries)
    action_max_attempts: int = 4
    action_backoff_base_seconds: float = 1.0
    action_backoff_cap_seconds: float = 30.0

    # Discovery retries
    discovery_max_attempts: int = 5
    discovery_backoff_base_seconds: float = 1.0
    discovery_backoff_cap_seconds: float = 30.0

    # Logging
    log_level: str = "WARNING"
    log_json: bool = True

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "STRATA_"

    def timeout_for(self, timeout_class: str) -> float:
        """Overall readiness timeout for a kind's timeout class."""
        if timeout_class == "cluster":
            return self.cluster_timeout_seconds
        if timeout_class == "iam":
            return self.iam_timeout_seconds
        return self.default_timeout_seconds


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
