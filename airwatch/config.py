"""Application configuration pulled from environment variables via pydantic."""
from typing import List

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from utils.logging_utils import get_tagged_logger
logger = get_tagged_logger(__name__, tag="config")

MIN_REFRESH_INTERVAL_MINUTES = 1
REPOSITORY_BACKENDS = ("memory", "sqlalchemy", "redis")


class Settings(BaseSettings):
    """Environment-driven configuration for the AirWatch refresh service."""
    model_config = SettingsConfigDict(env_prefix="AIRWATCH_", extra="ignore")

    waqi_api_url: str = "https://api.waqi.info"
    waqi_api_token: str | None = None
    request_timeout_seconds: float = 10.0
    fetch_retries: int = 3
    fetch_backoff_factor: float = 0.5

    refresh_interval_minutes: int = 10
    locations: List[str] = []  # empty means every registered location
    shutdown_grace_seconds: float = 30.0

    repository_backend: str = "memory"  # options: memory, sqlalchemy, redis
    database_url: str = "sqlite:///./airwatch.db"
    redis_url: str | None = None

    client_refresh_interval_seconds: float = 60.0
    client_freshness_seconds: float = 2.0

    api_key: str | None = None
    log_level: str = "INFO"

    @field_validator("waqi_api_url", mode="after")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize base URLs to avoid double slashes."""
        return str(v).rstrip("/")

    @field_validator("refresh_interval_minutes", mode="after")
    @classmethod
    def clamp_refresh_interval(cls, v: int) -> int:
        """Never refresh more often than once a minute."""
        if v < MIN_REFRESH_INTERVAL_MINUTES:
            logger.warning(
                "Refresh interval below minimum; clamping",
                extra={"requested": v, "minimum": MIN_REFRESH_INTERVAL_MINUTES},
            )
            return MIN_REFRESH_INTERVAL_MINUTES
        return v

    @field_validator("fetch_retries", mode="after")
    @classmethod
    def non_negative_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("fetch_retries must be >= 0")
        return v

    @field_validator("repository_backend", mode="after")
    @classmethod
    def normalize_backend(cls, v: str) -> str:
        """Lower-case the backend name and reject unknown ones early."""
        backend = (v or "memory").strip().lower()
        if backend not in REPOSITORY_BACKENDS:
            raise ValueError(f"repository_backend must be one of {', '.join(REPOSITORY_BACKENDS)}")
        return backend


settings = Settings()


if __name__ == "__main__":
    logger.setLevel("DEBUG")
    logger.debug(f"Loaded settings: {settings.model_dump_json(indent=4)}")
