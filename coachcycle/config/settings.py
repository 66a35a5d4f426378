"""Application configuration settings."""
from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "CoachCycle"
    debug: bool = False

    # Backing service
    backend_base_url: str = "http://localhost:3001/api"
    backend_token: str | None = None
    backend_timeout: float = 15.0  # seconds, applies to every request

    # Cache storage
    cache_backend: Literal["memory", "redis"] = "memory"
    redis_url: str = "redis://localhost:6379/0"
    cache_namespace: str = "coachcycle"

    # Replication
    replica_concurrency: int = 4  # candidate microcycles processed at once
    autofill_mode: Literal["sentinel", "touched"] = "sentinel"

    # Template values for freshly added exercises; a set still holding one
    # of these is treated as never customized
    default_series: str = "3"
    default_reps: str = "8-12"
    default_rest: str = "2"
    default_expected_effort: str = "2"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "COACHCYCLE_"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
