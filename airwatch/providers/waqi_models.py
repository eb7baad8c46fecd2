"""Boundary schemas for WAQI feed payloads.

The feed is loosely typed: any pollutant can be missing, the forecast block is
optional, and numbers may arrive as strings ("-" for no data). These models
accept that shape and nothing looser, so downstream code can rely on types.
"""

from __future__ import annotations

import math
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, field_validator


class _ProviderModel(BaseModel):
    """Provider payloads carry many fields we do not use; ignore them."""

    model_config = ConfigDict(extra="ignore", allow_inf_nan=False)


class WaqiMeasurement(_ProviderModel):
    v: float


def _readable_number(value) -> bool:
    if isinstance(value, bool):
        return False
    try:
        number = float(value)
    except (TypeError, ValueError):
        return False
    return math.isfinite(number)


class WaqiIaqi(_ProviderModel):
    pm25: Optional[WaqiMeasurement] = None
    pm10: Optional[WaqiMeasurement] = None
    o3: Optional[WaqiMeasurement] = None
    no2: Optional[WaqiMeasurement] = None
    so2: Optional[WaqiMeasurement] = None
    co: Optional[WaqiMeasurement] = None

    @field_validator("pm25", "pm10", "o3", "no2", "so2", "co", mode="before")
    @classmethod
    def _unreadable_is_absent(cls, v):
        # One garbled pollutant must not sink the whole reading
        if v is None:
            return None
        if not isinstance(v, dict) or not _readable_number(v.get("v")):
            return None
        return v


class WaqiTime(_ProviderModel):
    s: Optional[str] = None
    tz: Optional[str] = None
    v: Optional[int] = None
    iso: Optional[str] = None


class WaqiLiveData(_ProviderModel):
    """Live part of `data`; the forecast block is validated separately."""
    aqi: int
    idx: Optional[int] = None
    dominentpol: Optional[str] = None  # sic, provider spelling
    iaqi: Optional[WaqiIaqi] = None
    time: WaqiTime = WaqiTime()

    @field_validator("aqi", mode="before")
    @classmethod
    def _reject_placeholder_aqi(cls, v):
        # WAQI reports "-" when a station has no current reading
        if isinstance(v, str) and v.strip() in {"", "-"}:
            raise ValueError("station reported no AQI")
        return v


class WaqiForecastEntry(_ProviderModel):
    day: str
    avg: float
    min: float
    max: float


class WaqiDailyForecast(_ProviderModel):
    pm25: Optional[List[WaqiForecastEntry]] = None
    pm10: Optional[List[WaqiForecastEntry]] = None
    o3: Optional[List[WaqiForecastEntry]] = None
    uvi: Optional[List[WaqiForecastEntry]] = None


class WaqiForecast(_ProviderModel):
    daily: Optional[WaqiDailyForecast] = None
