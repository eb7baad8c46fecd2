"""Domain vocabulary and strict records for cached air-quality data.

This module is the contract shared by the normalizer, the repositories and
the read surface: the AQI category table, the closed pollutant vocabulary,
and the Snapshot / ForecastRecord models. No I/O happens here.
"""

from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Dict, List, NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class _StrictBaseModel(BaseModel):
    """Base model with strict extra handling."""

    model_config = ConfigDict(extra="forbid")


class _FrozenModel(_StrictBaseModel):
    """Strict model whose instances cannot be mutated after creation."""

    model_config = ConfigDict(extra="forbid", frozen=True)


def utcnow() -> dt.datetime:
    """Timezone-aware current time in UTC."""
    return dt.datetime.now(dt.timezone.utc)


def ensure_utc(value: dt.datetime) -> dt.datetime:
    """Convert to UTC; naive values are taken to already be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


class AqiCategory(str, Enum):
    """US EPA AQI categories."""
    GOOD = "Good"
    MODERATE = "Moderate"
    UNHEALTHY_FOR_SENSITIVE_GROUPS = "Unhealthy for Sensitive Groups"
    UNHEALTHY = "Unhealthy"
    VERY_UNHEALTHY = "Very Unhealthy"
    HAZARDOUS = "Hazardous"


class CategoryInfo(NamedTuple):
    """One row of the breakpoint table."""
    upper_bound: Optional[int]  # inclusive; None for the open-ended top row
    category: AqiCategory
    color: str
    health_message: str


# Ordered breakpoint table; the first row whose upper bound is >= AQI wins.
AQI_CATEGORY_TABLE: tuple[CategoryInfo, ...] = (
    CategoryInfo(
        50, AqiCategory.GOOD, "#00E400",
        "Air quality is considered satisfactory, and air pollution poses little or no risk.",
    ),
    CategoryInfo(
        100, AqiCategory.MODERATE, "#FFFF00",
        "Air quality is acceptable for most people. However, for some pollutants there may be a moderate "
        "health concern for a very small number of people who are unusually sensitive to air pollution.",
    ),
    CategoryInfo(
        150, AqiCategory.UNHEALTHY_FOR_SENSITIVE_GROUPS, "#FF7E00",
        "Members of sensitive groups may experience health effects. "
        "The general public is not likely to be affected.",
    ),
    CategoryInfo(
        200, AqiCategory.UNHEALTHY, "#FF0000",
        "Everyone may begin to experience health effects; members of sensitive groups may experience "
        "more serious health effects.",
    ),
    CategoryInfo(
        300, AqiCategory.VERY_UNHEALTHY, "#8F3F97",
        "Health warnings of emergency conditions. The entire population is more likely to be affected.",
    ),
    CategoryInfo(
        None, AqiCategory.HAZARDOUS, "#7E0023",
        "Health alert: everyone may experience more serious health effects.",
    ),
)


def category_info(aqi: int) -> CategoryInfo:
    """Return the breakpoint row for an AQI value."""
    if aqi < 0:
        raise ValueError(f"AQI must be non-negative, got {aqi}")
    for row in AQI_CATEGORY_TABLE:
        if row.upper_bound is None or aqi <= row.upper_bound:
            return row
    raise AssertionError("unreachable: table ends with an open-ended row")


def categorize(aqi: int) -> AqiCategory:
    """Deterministic AQI -> category mapping."""
    return category_info(aqi).category


class Pollutant(str, Enum):
    """Closed set of pollutants a snapshot can be dominated by."""
    PM25 = "PM2.5"
    PM10 = "PM10"
    O3 = "O3"
    NO2 = "NO2"
    SO2 = "SO2"
    CO = "CO"
    UNKNOWN = "Unknown"


# Provider code -> (PollutantValues field, Pollutant). Order breaks ties.
POLLUTANT_CODES: Dict[str, tuple[str, Pollutant]] = {
    "pm25": ("pm25", Pollutant.PM25),
    "pm10": ("pm10", Pollutant.PM10),
    "o3": ("o3", Pollutant.O3),
    "no2": ("no2", Pollutant.NO2),
    "so2": ("so2", Pollutant.SO2),
    "co": ("co", Pollutant.CO),
}

POLLUTANT_UNITS: Dict[Pollutant, str] = {
    Pollutant.PM25: "μg/m³",
    Pollutant.PM10: "μg/m³",
    Pollutant.O3: "μg/m³",
    Pollutant.NO2: "μg/m³",
    Pollutant.SO2: "μg/m³",
    Pollutant.CO: "mg/m³",
}


class PollutantValues(_FrozenModel):
    """Per-pollutant readings; None means the provider did not report it."""
    pm25: float | None = None
    pm10: float | None = None
    o3: float | None = None
    no2: float | None = None
    so2: float | None = None
    co: float | None = None

    def present(self) -> Dict[Pollutant, float]:
        """Reported pollutants only, in table order."""
        out: Dict[Pollutant, float] = {}
        for field_name, pollutant in POLLUTANT_CODES.values():
            value = getattr(self, field_name)
            if value is not None:
                out[pollutant] = value
        return out


def dominant_pollutant(code: str | None, values: PollutantValues) -> Pollutant:
    """
    Resolve the dominant pollutant.

    The provider's code wins when it is one we know. Otherwise the highest
    reported value wins (ties go to the earlier pollutant in POLLUTANT_CODES),
    and with nothing reported the answer is UNKNOWN.
    """
    if code:
        known = POLLUTANT_CODES.get(code.strip().lower())
        if known is not None:
            return known[1]
    present = values.present()
    if not present:
        return Pollutant.UNKNOWN
    best: Pollutant | None = None
    best_value = float("-inf")
    for pollutant, value in present.items():
        if value > best_value:
            best, best_value = pollutant, value
    return best or Pollutant.UNKNOWN


class Snapshot(_FrozenModel):
    """One point-in-time measurement; identity is (location_id, timestamp)."""
    location_id: str
    station: str
    timestamp: dt.datetime
    aqi: int = Field(ge=0)
    pollutants: PollutantValues = Field(default_factory=PollutantValues)
    dominant_pollutant: Pollutant = Pollutant.UNKNOWN
    category: AqiCategory

    @field_validator("timestamp", mode="after")
    @classmethod
    def _utc_timestamp(cls, v: dt.datetime) -> dt.datetime:
        return ensure_utc(v)

    @property
    def key(self) -> tuple[str, dt.datetime]:
        return self.location_id, self.timestamp


class PollutantRange(_FrozenModel):
    """Forecast spread for one pollutant on one day."""
    avg: int
    min: int
    max: int


class ForecastDay(_FrozenModel):
    """A single forecast day."""
    date: dt.date
    aqi: int = Field(ge=0)
    category: AqiCategory
    pm25: PollutantRange | None = None
    pm10: PollutantRange | None = None
    o3: PollutantRange | None = None


class ForecastRecord(_StrictBaseModel):
    """The single current forecast for a location, replaced wholesale on upsert."""
    location_id: str
    as_of: dt.datetime
    days: List[ForecastDay] = Field(default_factory=list)

    @field_validator("as_of", mode="after")
    @classmethod
    def _utc_as_of(cls, v: dt.datetime) -> dt.datetime:
        return ensure_utc(v)

    @model_validator(mode="after")
    def _days_in_order(self) -> "ForecastRecord":
        for earlier, later in zip(self.days, self.days[1:]):
            if later.date < earlier.date:
                raise ValueError("forecast days must be in chronological order")
        return self

    @model_validator(mode="after")
    def _no_past_days(self) -> "ForecastRecord":
        # as_of is UTC; the location's local date can trail it by up to a day.
        earliest = self.as_of.date() - dt.timedelta(days=1)
        oldest = min((day.date for day in self.days), default=None)
        if oldest is not None and oldest < earliest:
            raise ValueError(f"forecast day {oldest} is before as-of date {self.as_of.date()}")
        return self
