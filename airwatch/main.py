"""FastAPI application setup for AirWatch."""

import asyncio
from contextlib import asynccontextmanager
from typing import Optional, Sequence

from fastapi import FastAPI

from airwatch import config
from airwatch.air_quality_service import AirQualityService
from airwatch.api import register_error_handlers, router as api_router
from airwatch.locations import Location, resolve_locations
from airwatch.providers import AirQualityProvider, build_provider
from airwatch.repository import AirQualityRepository, build_repository
from airwatch.scheduler import RefreshScheduler
from utils.logging_utils import get_tagged_logger, setup_logging

logger = get_tagged_logger(__name__, tag="main")


def _default_provider(settings: config.Settings) -> Optional[AirQualityProvider]:
    if not settings.waqi_api_token:
        logger.warning("AIRWATCH_WAQI_API_TOKEN is not set; serving cached data without refreshing")
        return None
    return build_provider(settings)


def create_app(
    settings: Optional[config.Settings] = None,
    *,
    repository: Optional[AirQualityRepository] = None,
    provider: Optional[AirQualityProvider] = None,
    locations: Optional[Sequence[Location]] = None,
    start_scheduler: bool = True,
) -> FastAPI:
    """
    Wire repository, provider, scheduler and read service into an app.

    The scheduler is created whenever a provider is available but only runs
    in the background while the app's lifespan is active and
    `start_scheduler` is set.
    """
    settings = settings or config.settings
    setup_logging(level=settings.log_level)

    locations = list(locations) if locations is not None else resolve_locations(settings.locations)
    repository = repository if repository is not None else build_repository(settings)
    provider = provider if provider is not None else _default_provider(settings)

    scheduler = None
    if provider is not None:
        scheduler = RefreshScheduler(
            provider,
            repository,
            locations,
            interval_minutes=settings.refresh_interval_minutes,
            shutdown_grace_seconds=settings.shutdown_grace_seconds,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if scheduler is not None and start_scheduler:
            scheduler.start()
        try:
            yield
        finally:
            if scheduler is not None:
                await asyncio.to_thread(scheduler.stop)

    app = FastAPI(title="AirWatch", lifespan=lifespan)
    app.state.settings = settings
    app.state.repository = repository
    app.state.scheduler = scheduler
    app.state.air_quality_service = AirQualityService(repository, locations)

    register_error_handlers(app)
    app.include_router(api_router, prefix="/v1")
    return app


app = create_app()
