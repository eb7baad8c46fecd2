"""Map raw WAQI feed payloads into Snapshot and ForecastRecord objects."""
from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Mapping, Optional
from zoneinfo import ZoneInfo

from pydantic import ValidationError

from airwatch.domain import (
    ForecastDay,
    ForecastRecord,
    PollutantRange,
    PollutantValues,
    Snapshot,
    categorize,
    dominant_pollutant,
    ensure_utc,
    utcnow,
)
from airwatch.errors import ForecastNormalizationError, NormalizationError
from airwatch.locations import Location
from airwatch.providers.waqi_models import (
    WaqiForecast,
    WaqiForecastEntry,
    WaqiIaqi,
    WaqiLiveData,
    WaqiTime,
)
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="normalizer")

FORECAST_POLLUTANTS = ("pm25", "pm10", "o3")


@dataclass
class NormalizedFeed:
    """Result of normalizing one provider response."""
    snapshot: Snapshot
    forecast: Optional[ForecastRecord]
    forecast_error: Optional[str] = None


def _round_half_away(value: float) -> int:
    """Round to int with halves going away from zero (2.5 -> 3, -2.5 -> -3)."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def parse_timestamp(time: WaqiTime, *, now: Optional[dt.datetime] = None) -> dt.datetime:
    """
    Resolve the observation time in UTC.

    Prefers the ISO string (an offset-less string is read as UTC), then the
    epoch seconds, then `now`.
    """
    if time.iso and time.iso.strip():
        try:
            return ensure_utc(dt.datetime.fromisoformat(time.iso.strip()))
        except ValueError:
            logger.debug("Unparseable ISO timestamp; trying epoch", extra={"iso": time.iso})
    if time.v and time.v > 0:
        return dt.datetime.fromtimestamp(time.v, tz=dt.timezone.utc)
    return ensure_utc(now or utcnow())


def _pollutant_values(iaqi: Optional[WaqiIaqi]) -> PollutantValues:
    if iaqi is None:
        return PollutantValues()
    values: Dict[str, float] = {}
    for name in ("pm25", "pm10", "o3", "no2", "so2", "co"):
        measurement = getattr(iaqi, name)
        if measurement is not None:
            values[name] = measurement.v
    return PollutantValues(**values)


def build_snapshot(location: Location, live: WaqiLiveData, *, now: Optional[dt.datetime] = None) -> Snapshot:
    """Build the Snapshot for the live part of a feed."""
    if live.aqi < 0:
        raise NormalizationError(f"{location.id}: negative AQI {live.aqi}")
    pollutants = _pollutant_values(live.iaqi)
    return Snapshot(
        location_id=location.id,
        station=location.station,
        timestamp=parse_timestamp(live.time, now=now),
        aqi=live.aqi,
        pollutants=pollutants,
        dominant_pollutant=dominant_pollutant(live.dominentpol, pollutants),
        category=categorize(live.aqi),
    )


def _merge_entries(
    by_day: Dict[dt.date, Dict[str, PollutantRange]],
    pollutant: str,
    entries: Optional[List[WaqiForecastEntry]],
) -> None:
    for entry in entries or []:
        try:
            day = dt.date.fromisoformat(entry.day.strip())
        except ValueError:
            logger.debug("Skipping forecast entry with bad day", extra={"day": entry.day, "pollutant": pollutant})
            continue
        by_day.setdefault(day, {})[pollutant] = PollutantRange(
            avg=_round_half_away(entry.avg),
            min=_round_half_away(entry.min),
            max=_round_half_away(entry.max),
        )


def build_forecast_days(forecast: WaqiForecast, *, today: dt.date) -> List[ForecastDay]:
    """
    Merge per-pollutant daily entries into ordered ForecastDay objects.

    Days before `today` are dropped. The representative AQI of a day is the
    PM2.5 average, falling back to PM10 then O3.
    """
    daily = forecast.daily
    if daily is None:
        return []

    by_day: Dict[dt.date, Dict[str, PollutantRange]] = {}
    for pollutant in FORECAST_POLLUTANTS:
        _merge_entries(by_day, pollutant, getattr(daily, pollutant))

    days: List[ForecastDay] = []
    for day in sorted(by_day):
        if day < today:
            continue
        ranges = by_day[day]
        representative = next(
            (ranges[p].avg for p in FORECAST_POLLUTANTS if p in ranges),
            0,
        )
        representative = max(representative, 0)
        days.append(
            ForecastDay(
                date=day,
                aqi=representative,
                category=categorize(representative),
                pm25=ranges.get("pm25"),
                pm10=ranges.get("pm10"),
                o3=ranges.get("o3"),
            )
        )
    return days


def _local_date(moment: dt.datetime, tz_name: str) -> dt.date:
    try:
        tz = ZoneInfo(tz_name)
    except Exception:
        logger.warning("Invalid location timezone; using UTC", extra={"tz_name": tz_name})
        tz = dt.timezone.utc
    return moment.astimezone(tz).date()


def build_forecast(location: Location, raw_forecast: object, as_of: dt.datetime) -> Optional[ForecastRecord]:
    """
    Build the ForecastRecord for a feed's forecast block.

    Returns None when there is nothing to store. Raises
    ForecastNormalizationError when the block is present but malformed.
    """
    if raw_forecast is None:
        return None
    try:
        forecast = WaqiForecast.model_validate(raw_forecast)
    except ValidationError as exc:
        raise ForecastNormalizationError(
            f"{location.id}: malformed forecast ({exc.error_count()} errors)"
        ) from exc

    days = build_forecast_days(forecast, today=_local_date(as_of, location.timezone))
    if not days:
        return None
    return ForecastRecord(location_id=location.id, as_of=as_of, days=days)


def normalize(location: Location, raw: Mapping, *, now: Optional[dt.datetime] = None) -> NormalizedFeed:
    """
    Normalize one raw feed into a snapshot and an optional forecast.

    A bad live part raises NormalizationError. A missing forecast is not an
    error; a malformed one is reported through `forecast_error` so the
    snapshot can still be stored.
    """
    if not isinstance(raw, Mapping):
        raise NormalizationError(f"{location.id}: payload is not an object")
    try:
        live = WaqiLiveData.model_validate(raw)
    except ValidationError as exc:
        raise NormalizationError(f"{location.id}: invalid live data ({exc.error_count()} errors)") from exc

    snapshot = build_snapshot(location, live, now=now)

    forecast: Optional[ForecastRecord] = None
    forecast_error: Optional[str] = None
    try:
        forecast = build_forecast(location, raw.get("forecast"), snapshot.timestamp)
    except ForecastNormalizationError as exc:
        forecast_error = str(exc)
        logger.warning("Forecast could not be normalized; keeping previous forecast",
                       extra={"location": location.id, "error": forecast_error})

    return NormalizedFeed(snapshot=snapshot, forecast=forecast, forecast_error=forecast_error)
