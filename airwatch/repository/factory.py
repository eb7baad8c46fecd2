"""Factory helpers for choosing the repository backend at startup."""

from __future__ import annotations

from airwatch import config
from airwatch.repository.base import AirQualityRepository
from airwatch.repository.memory import InMemoryRepository
from utils.logging_utils import get_tagged_logger, mask_url

logger = get_tagged_logger(__name__, tag="repository/factory")


def build_repository(settings: config.Settings | None = None) -> AirQualityRepository:
    """Instantiate the configured repository backend."""
    settings = settings or config.settings
    backend = settings.repository_backend

    if backend == "memory":
        logger.info("Using in-memory repository")
        return InMemoryRepository()

    if backend == "sqlalchemy":
        from .sqlalchemy_store import SqlAlchemyRepository

        db_url = settings.database_url
        if not db_url:
            raise ValueError("database_url must be set for the sqlalchemy repository")
        logger.info("Using SQL repository", extra={"db_url": mask_url(db_url)})
        return SqlAlchemyRepository.from_url(db_url)

    if backend == "redis":
        from .redis import RedisRepository

        if not settings.redis_url:
            raise ValueError("redis_url must be set for the redis repository")
        logger.info("Using Redis repository", extra={"redis_url": mask_url(settings.redis_url)})
        return RedisRepository.from_url(settings.redis_url)

    raise ValueError(f"Unknown repository backend '{backend}'")
