"""HTTP read API over the air-quality cache."""

import hmac
from typing import List

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

from airwatch import config
from airwatch.air_quality_service import (
    AirQualityService,
    CompleteAqiResponse,
    ForecastResponse,
    LiveAqiResponse,
    LocationInfo,
    MAX_HISTORY_LIMIT,
)
from airwatch.errors import DataUnavailableError, UnknownLocationError
from airwatch.repository.base import DEFAULT_HISTORY_LIMIT
from airwatch.scheduler import LocationOutcome, RefreshScheduler
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="api")

router = APIRouter()


def get_service(request: Request) -> AirQualityService:
    return request.app.state.air_quality_service


def get_scheduler(request: Request) -> RefreshScheduler:
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                            detail="Refreshing is not configured on this server.")
    return scheduler


def require_api_key(request: Request, x_api_key: str | None = Header(default=None)):
    """
    Validate the X-API-Key header against the configured api_key.
    With no key configured every request is allowed (dev mode).
    """
    settings = getattr(request.app.state, "settings", None) or config.settings
    if not settings.api_key:
        logger.debug("No API key configured; allowing request")
        return

    if not x_api_key:
        logger.debug("No API key provided")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing API key")

    if hmac.compare_digest(str(x_api_key), str(settings.api_key)):
        return

    logger.debug("Invalid API key provided")
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")


def data_unavailable_handler(_request: Request, exc: DataUnavailableError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": str(exc), "kind": exc.kind},
    )


def unknown_location_handler(_request: Request, exc: UnknownLocationError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DataUnavailableError, data_unavailable_handler)
    app.add_exception_handler(UnknownLocationError, unknown_location_handler)


@router.get("/locations", response_model=List[LocationInfo])
def list_locations(service: AirQualityService = Depends(get_service)):
    return service.list_locations()


@router.get("/live/{location_id}", response_model=LiveAqiResponse)
def get_live(location_id: str, service: AirQualityService = Depends(get_service)):
    """Latest cached snapshot for a location."""
    return service.get_current(location_id)


@router.get("/forecast/{location_id}", response_model=ForecastResponse)
def get_forecast(location_id: str, service: AirQualityService = Depends(get_service)):
    return service.get_forecast(location_id)


@router.get("/complete/{location_id}", response_model=CompleteAqiResponse)
def get_complete(location_id: str, service: AirQualityService = Depends(get_service)):
    """Live data plus forecast; the forecast list is empty when none is cached."""
    return service.get_combined(location_id)


@router.get("/history/{location_id}", response_model=List[LiveAqiResponse])
def get_history(
    location_id: str,
    limit: int = Query(default=DEFAULT_HISTORY_LIMIT, ge=1, le=MAX_HISTORY_LIMIT),
    service: AirQualityService = Depends(get_service),
):
    return service.get_history(location_id, limit)


@router.post("/admin/refresh/{location_id}", dependencies=[Depends(require_api_key)])
def refresh_location(
    location_id: str,
    service: AirQualityService = Depends(get_service),
    scheduler: RefreshScheduler = Depends(get_scheduler),
):
    """Run one refresh for a location right now and report the outcome."""
    location = service.resolve(location_id)
    logger.info("Manual refresh requested", extra={"location": location.id})
    outcome: LocationOutcome = scheduler.refresh_location(location)
    return {
        "location_id": outcome.location_id,
        "status": outcome.status.value,
        "snapshot_stored": outcome.snapshot_stored,
        "forecast_stored": outcome.forecast_stored,
        "error": outcome.error,
    }
