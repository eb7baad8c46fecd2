"""SQL-backed repository (SQLite for local runs, Postgres in production)."""

from __future__ import annotations

import datetime as dt
import threading
from typing import Dict, List, Optional, Sequence

from pydantic import ValidationError
from sqlalchemy import create_engine, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from airwatch.domain import (
    AqiCategory,
    ForecastDay,
    ForecastRecord,
    Pollutant,
    PollutantValues,
    Snapshot,
    ensure_utc,
    utcnow,
)
from airwatch.errors import RepositoryWriteConflict
from airwatch.repository.base import DEFAULT_HISTORY_LIMIT, AirQualityRepository
from airwatch.repository.sql_models import Base, ForecastRow, SnapshotRow
from utils.logging_utils import get_tagged_logger, mask_url

logger = get_tagged_logger(__name__, tag="repository/sqlalchemy_repository")

# Dialects with INSERT .. ON CONFLICT support.
_ON_CONFLICT_INSERTS = {
    "postgresql": postgresql_insert,
    "sqlite": sqlite_insert,
}


class SqlAlchemyRepository(AirQualityRepository):
    """
    Snapshots and forecasts in two tables.

    Uniqueness is enforced by the schema: `(location_id, observed_at)` for
    snapshots and `location_id` for forecasts. Each write is one transaction,
    and writes for the same location are also serialized in-process.
    """

    MAX_WRITE_ATTEMPTS = 3

    def __init__(self, engine: Engine, *, create_tables: bool = True) -> None:
        """Bind to an engine and create the tables if they are missing."""
        self.engine = engine
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False, future=True)
        self._insert = _ON_CONFLICT_INSERTS.get(engine.dialect.name)
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        if create_tables:
            Base.metadata.create_all(engine)

    @classmethod
    def from_url(cls, database_url: str, **kwargs) -> "SqlAlchemyRepository":
        """Create an engine from a URL and build the repository."""
        engine_kwargs: dict = {"future": True, "pool_pre_ping": True}
        if database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
            if database_url in {"sqlite://", "sqlite:///:memory:"}:
                engine_kwargs["poolclass"] = StaticPool
        logger.info("Connecting SQL repository", extra={"db_url": mask_url(database_url)})
        return cls(create_engine(database_url, **engine_kwargs), **kwargs)

    def _lock_for(self, location_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(location_id)
            if lock is None:
                lock = self._locks[location_id] = threading.Lock()
            return lock

    @staticmethod
    def _snapshot_values(snapshot: Snapshot) -> dict:
        pollutants = snapshot.pollutants
        return {
            "location_id": snapshot.location_id,
            "station": snapshot.station,
            "observed_at": snapshot.timestamp,
            "aqi": snapshot.aqi,
            "dominant_pollutant": snapshot.dominant_pollutant.value,
            "category": snapshot.category.value,
            "pm25": pollutants.pm25,
            "pm10": pollutants.pm10,
            "o3": pollutants.o3,
            "no2": pollutants.no2,
            "so2": pollutants.so2,
            "co": pollutants.co,
            "created_at": utcnow(),
        }

    @staticmethod
    def _row_to_snapshot(row: SnapshotRow) -> Snapshot:
        return Snapshot(
            location_id=row.location_id,
            station=row.station,
            timestamp=ensure_utc(row.observed_at),
            aqi=row.aqi,
            pollutants=PollutantValues(
                pm25=row.pm25, pm10=row.pm10, o3=row.o3,
                no2=row.no2, so2=row.so2, co=row.co,
            ),
            dominant_pollutant=Pollutant(row.dominant_pollutant),
            category=AqiCategory(row.category),
        )

    def append_snapshot(self, snapshot: Snapshot) -> bool:
        """Insert the snapshot; an existing (location, timestamp) wins."""
        values = self._snapshot_values(snapshot)
        with self._lock_for(snapshot.location_id):
            if self._insert is not None:
                stmt = self._insert(SnapshotRow).values(**values).on_conflict_do_nothing(
                    index_elements=["location_id", "observed_at"]
                )
                with self._session_factory.begin() as session:
                    inserted = session.execute(stmt).rowcount == 1
            else:
                try:
                    with self._session_factory.begin() as session:
                        session.add(SnapshotRow(**values))
                    inserted = True
                except IntegrityError:
                    inserted = False

        if not inserted:
            logger.debug("Duplicate snapshot ignored",
                         extra={"location": snapshot.location_id, "timestamp": snapshot.timestamp.isoformat()})
        return inserted

    def latest_snapshot(self, location_id: str) -> Optional[Snapshot]:
        stmt = (
            select(SnapshotRow)
            .where(SnapshotRow.location_id == location_id)
            .order_by(SnapshotRow.observed_at.desc())
            .limit(1)
        )
        with self._session_factory() as session:
            row = session.execute(stmt).scalars().first()
            return self._row_to_snapshot(row) if row else None

    def list_snapshots(self, location_id: str, limit: int = DEFAULT_HISTORY_LIMIT) -> List[Snapshot]:
        if limit <= 0:
            return []
        stmt = (
            select(SnapshotRow)
            .where(SnapshotRow.location_id == location_id)
            .order_by(SnapshotRow.observed_at.desc())
            .limit(limit)
        )
        with self._session_factory() as session:
            return [self._row_to_snapshot(row) for row in session.execute(stmt).scalars()]

    def _write_forecast(self, location_id: str, payload: list, as_of: dt.datetime) -> None:
        """One upsert attempt; raises RepositoryWriteConflict if another writer inserted first."""
        now = utcnow()
        if self._insert is not None:
            stmt = self._insert(ForecastRow).values(
                location_id=location_id,
                as_of=as_of,
                payload=payload,
                created_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[ForecastRow.location_id],
                set_={
                    "as_of": stmt.excluded.as_of,
                    "payload": stmt.excluded.payload,
                    "updated_at": now,
                },
            )
            with self._session_factory.begin() as session:
                session.execute(stmt)
            return

        try:
            with self._session_factory.begin() as session:
                row = session.get(ForecastRow, location_id, with_for_update=True)
                if row is None:
                    session.add(ForecastRow(location_id=location_id, as_of=as_of, payload=payload, created_at=now))
                else:
                    row.as_of = as_of
                    row.payload = payload
                    row.updated_at = now
        except IntegrityError as exc:
            raise RepositoryWriteConflict(f"concurrent forecast insert for {location_id}") from exc

    def upsert_forecast(self, location_id: str, days: Sequence[ForecastDay], as_of: dt.datetime) -> ForecastRecord:
        """Create or overwrite the location's forecast row, retrying lost races."""
        record = ForecastRecord(location_id=location_id, as_of=ensure_utc(as_of), days=list(days))
        payload = [day.model_dump(mode="json") for day in record.days]

        with self._lock_for(location_id):
            for attempt in range(1, self.MAX_WRITE_ATTEMPTS + 1):
                try:
                    self._write_forecast(location_id, payload, record.as_of)
                    return record
                except RepositoryWriteConflict as exc:
                    if attempt == self.MAX_WRITE_ATTEMPTS:
                        raise
                    logger.info("Forecast upsert lost a race; retrying",
                                extra={"location": location_id, "attempt": attempt, "error": str(exc)})
        raise AssertionError("unreachable")

    def get_forecast(self, location_id: str) -> Optional[ForecastRecord]:
        with self._session_factory() as session:
            row = session.get(ForecastRow, location_id)
            if row is None:
                return None
            as_of, payload = row.as_of, row.payload
        try:
            days = [ForecastDay.model_validate(item) for item in payload or []]
            return ForecastRecord(location_id=location_id, as_of=ensure_utc(as_of), days=days)
        except ValidationError as exc:
            logger.warning("Stored forecast could not be decoded; treating as missing",
                           extra={"location": location_id, "error": str(exc)})
            return None
