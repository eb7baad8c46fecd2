"""Read-only views over the cache. Never calls the provider."""
from __future__ import annotations

import datetime as dt
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from airwatch.domain import (
    POLLUTANT_CODES,
    POLLUTANT_UNITS,
    AqiCategory,
    ForecastRecord,
    PollutantRange,
    Snapshot,
    category_info,
    utcnow,
)
from airwatch.errors import DataUnavailableError, UnknownLocationError
from airwatch.locations import Location, index_locations
from airwatch.repository.base import DEFAULT_HISTORY_LIMIT, AirQualityRepository
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="air_quality_service")

SOURCE_NAME = "WAQI"
MAX_HISTORY_LIMIT = 500


class LocationInfo(BaseModel):
    id: str
    name: str
    station: str
    timezone: str


class Measurement(BaseModel):
    """One reported pollutant reading."""
    parameter: str
    value: float
    unit: str
    timestamp: dt.datetime
    source_name: str = SOURCE_NAME


class LiveAqiResponse(BaseModel):
    """Latest cached snapshot, shaped for display."""
    location_id: str
    location_name: str
    overall_aqi: int
    aqi_category: AqiCategory
    color: str
    health_message: str
    timestamp: dt.datetime
    measurements: List[Measurement] = Field(default_factory=list)
    dominant_pollutant: str


class ForecastDayResponse(BaseModel):
    date: dt.date
    aqi: int
    category: AqiCategory
    color: str
    pollutants: Dict[str, PollutantRange] = Field(default_factory=dict)


class ForecastResponse(BaseModel):
    """Cached forecast; `timestamp` is the as-of time of the stored row."""
    location_id: str
    location_name: str
    forecast: List[ForecastDayResponse] = Field(default_factory=list)
    timestamp: Optional[dt.datetime] = None


class CompleteAqiResponse(BaseModel):
    live_data: LiveAqiResponse
    forecast_data: ForecastResponse
    retrieved_at: dt.datetime


def _measurements(snapshot: Snapshot) -> List[Measurement]:
    out: List[Measurement] = []
    for field_name, pollutant in POLLUTANT_CODES.values():
        value = getattr(snapshot.pollutants, field_name)
        if value is None:
            continue
        out.append(Measurement(
            parameter=pollutant.value,
            value=value,
            unit=POLLUTANT_UNITS[pollutant],
            timestamp=snapshot.timestamp,
        ))
    return out


def live_response(location: Location, snapshot: Snapshot) -> LiveAqiResponse:
    """Map a stored snapshot to its read model."""
    info = category_info(snapshot.aqi)
    return LiveAqiResponse(
        location_id=location.id,
        location_name=location.name,
        overall_aqi=snapshot.aqi,
        aqi_category=info.category,
        color=info.color,
        health_message=info.health_message,
        timestamp=snapshot.timestamp,
        measurements=_measurements(snapshot),
        dominant_pollutant=snapshot.dominant_pollutant.value,
    )


def forecast_response(location: Location, record: Optional[ForecastRecord]) -> ForecastResponse:
    """Map a stored forecast to its read model; None gives an empty forecast."""
    if record is None:
        return ForecastResponse(location_id=location.id, location_name=location.name)
    days = []
    for day in record.days:
        pollutants = {name: getattr(day, name) for name in ("pm25", "pm10", "o3")
                      if getattr(day, name) is not None}
        days.append(ForecastDayResponse(
            date=day.date,
            aqi=day.aqi,
            category=day.category,
            color=category_info(day.aqi).color,
            pollutants=pollutants,
        ))
    return ForecastResponse(
        location_id=location.id,
        location_name=location.name,
        forecast=days,
        timestamp=record.as_of,
    )


class AirQualityService:
    """Serves cached snapshots and forecasts for the configured locations."""

    def __init__(self, repository: AirQualityRepository, locations: Sequence[Location]) -> None:
        self.repository = repository
        self._locations = index_locations(locations)

    @property
    def locations(self) -> List[Location]:
        return list(self._locations.values())

    def resolve(self, location_id: str) -> Location:
        """Look up a location by id (case-insensitive)."""
        location = self._locations.get((location_id or "").strip().lower())
        if location is None:
            raise UnknownLocationError(location_id)
        return location

    def list_locations(self) -> List[LocationInfo]:
        return [
            LocationInfo(id=loc.id, name=loc.name, station=loc.station, timezone=loc.timezone)
            for loc in self._locations.values()
        ]

    def get_current(self, location_id: str) -> LiveAqiResponse:
        location = self.resolve(location_id)
        snapshot = self.repository.latest_snapshot(location.id)
        if snapshot is None:
            logger.info("No cached live data", extra={"location": location.id})
            raise DataUnavailableError(location.id, "live")
        return live_response(location, snapshot)

    def get_forecast(self, location_id: str) -> ForecastResponse:
        location = self.resolve(location_id)
        record = self.repository.get_forecast(location.id)
        if record is None:
            logger.info("No cached forecast data", extra={"location": location.id})
            raise DataUnavailableError(location.id, "forecast")
        return forecast_response(location, record)

    def get_combined(self, location_id: str) -> CompleteAqiResponse:
        """
        Live data plus forecast.

        Missing live data is an error. A missing forecast is not: the response
        carries an empty forecast list instead.
        """
        live = self.get_current(location_id)
        location = self.resolve(location_id)
        record = self.repository.get_forecast(location.id)
        if record is None:
            logger.debug("Forecast unavailable; returning live data only", extra={"location": location.id})
        return CompleteAqiResponse(
            live_data=live,
            forecast_data=forecast_response(location, record),
            retrieved_at=utcnow(),
        )

    def get_history(self, location_id: str, limit: int = DEFAULT_HISTORY_LIMIT) -> List[LiveAqiResponse]:
        """Most recent snapshots, newest first. An empty history is not an error."""
        location = self.resolve(location_id)
        limit = max(0, min(limit, MAX_HISTORY_LIMIT))
        return [live_response(location, s) for s in self.repository.list_snapshots(location.id, limit)]
