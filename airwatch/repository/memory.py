"""In-memory repository, intended for development and tests."""

import datetime as dt
import threading
from collections import defaultdict
from typing import Dict, List, Optional, Sequence

from airwatch.domain import ForecastDay, ForecastRecord, Snapshot, ensure_utc
from airwatch.repository.base import DEFAULT_HISTORY_LIMIT, AirQualityRepository
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="repository/in_memory_repository")


class InMemoryRepository(AirQualityRepository):
    """Thread-safe store with one lock per location."""

    def __init__(self) -> None:
        logger.debug("Initializing InMemoryRepository")
        self._snapshots: Dict[str, Dict[dt.datetime, Snapshot]] = defaultdict(dict)
        self._forecasts: Dict[str, ForecastRecord] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, location_id: str) -> threading.Lock:
        """Return the lock that serializes access to one location."""
        with self._registry_lock:
            lock = self._locks.get(location_id)
            if lock is None:
                lock = self._locks[location_id] = threading.Lock()
            return lock

    def append_snapshot(self, snapshot: Snapshot) -> bool:
        """Insert unless the (location, timestamp) key already exists."""
        with self._lock_for(snapshot.location_id):
            rows = self._snapshots[snapshot.location_id]
            if snapshot.timestamp in rows:
                logger.debug("Duplicate snapshot ignored",
                             extra={"location": snapshot.location_id, "timestamp": snapshot.timestamp.isoformat()})
                return False
            rows[snapshot.timestamp] = snapshot
            return True

    def latest_snapshot(self, location_id: str) -> Optional[Snapshot]:
        with self._lock_for(location_id):
            rows = self._snapshots.get(location_id)
            if not rows:
                return None
            return rows[max(rows)]

    def list_snapshots(self, location_id: str, limit: int = DEFAULT_HISTORY_LIMIT) -> List[Snapshot]:
        with self._lock_for(location_id):
            rows = self._snapshots.get(location_id) or {}
            ordered = sorted(rows.values(), key=lambda s: s.timestamp, reverse=True)
        return ordered[:max(limit, 0)]

    def upsert_forecast(self, location_id: str, days: Sequence[ForecastDay], as_of: dt.datetime) -> ForecastRecord:
        """Replace the location's forecast in one step."""
        record = ForecastRecord(location_id=location_id, as_of=ensure_utc(as_of), days=list(days))
        with self._lock_for(location_id):
            self._forecasts[location_id] = record
        return record

    def get_forecast(self, location_id: str) -> Optional[ForecastRecord]:
        with self._lock_for(location_id):
            record = self._forecasts.get(location_id)
        return record.model_copy(deep=True) if record else None

    def clear(self) -> None:
        """Drop everything (tests)."""
        with self._registry_lock:
            self._snapshots.clear()
            self._forecasts.clear()
