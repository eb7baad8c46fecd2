"""Cache backends for snapshots and forecasts."""

from .base import DEFAULT_HISTORY_LIMIT, AirQualityRepository
from .factory import build_repository
from .memory import InMemoryRepository

__all__ = [
    "DEFAULT_HISTORY_LIMIT",
    "AirQualityRepository",
    "InMemoryRepository",
    "build_repository",
]
