"""SQLAlchemy tables backing the SQL repository."""
from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import JSON, DateTime, Float, Index, Integer, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from airwatch.domain import utcnow


class Base(DeclarativeBase):
    pass


class SnapshotRow(Base):
    """Append-only live readings; one row per (location, observation time)."""
    __tablename__ = "aq_snapshots"
    __table_args__ = (
        UniqueConstraint("location_id", "observed_at", name="uq_aq_snapshots_location_observed"),
        Index("ix_aq_snapshots_location_observed", "location_id", "observed_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    location_id: Mapped[str] = mapped_column(Text, nullable=False)
    station: Mapped[str] = mapped_column(Text, nullable=False)
    observed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    aqi: Mapped[int] = mapped_column(Integer, nullable=False)
    dominant_pollutant: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(Text, nullable=False)
    pm25: Mapped[Optional[float]] = mapped_column(Float(53))
    pm10: Mapped[Optional[float]] = mapped_column(Float(53))
    o3: Mapped[Optional[float]] = mapped_column(Float(53))
    no2: Mapped[Optional[float]] = mapped_column(Float(53))
    so2: Mapped[Optional[float]] = mapped_column(Float(53))
    co: Mapped[Optional[float]] = mapped_column(Float(53))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class ForecastRow(Base):
    """Current forecast per location, overwritten in place on each refresh."""
    __tablename__ = "aq_forecasts"

    location_id: Mapped[str] = mapped_column(Text, primary_key=True)
    as_of: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    payload: Mapped[List[Any]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


__all__ = [
    "Base",
    "ForecastRow",
    "SnapshotRow",
]
