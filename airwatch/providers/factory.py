"""Factory helpers for choosing the air-quality provider at startup."""

from __future__ import annotations

from airwatch import config
from airwatch.providers.base import AirQualityProvider
from airwatch.providers.waqi_client import WaqiClient
from utils.logging_utils import get_tagged_logger, mask_url

logger = get_tagged_logger(__name__, tag="providers/factory")


def build_provider(settings: config.Settings | None = None) -> AirQualityProvider:
    """Instantiate the WAQI client from configuration."""
    settings = settings or config.settings
    token = settings.waqi_api_token
    if not token:
        raise ValueError("waqi_api_token must be set to refresh air-quality data")

    logger.info(
        "Using WAQI provider",
        extra={
            "api_url": mask_url(settings.waqi_api_url),
            "retries": settings.fetch_retries,
            "backoff_factor": settings.fetch_backoff_factor,
        },
    )
    return WaqiClient(
        token,
        base_url=settings.waqi_api_url,
        timeout=settings.request_timeout_seconds,
        retries=settings.fetch_retries,
        backoff_factor=settings.fetch_backoff_factor,
    )
