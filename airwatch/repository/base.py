"""Shared protocol for air-quality cache backends."""

import datetime as dt
from typing import List, Optional, Protocol, Sequence

from airwatch.domain import ForecastDay, ForecastRecord, Snapshot

DEFAULT_HISTORY_LIMIT = 24


class AirQualityRepository(Protocol):
    """
    Cache of snapshots (append-only) and forecasts (one row per location).

    Writes for different locations never contend and reads never wait on a
    write for another location.
    """

    def append_snapshot(self, snapshot: Snapshot) -> bool:
        """Store a snapshot; a repeated (location, timestamp) is a no-op returning False."""

    def latest_snapshot(self, location_id: str) -> Optional[Snapshot]:
        """Return the snapshot with the greatest timestamp, or None."""

    def list_snapshots(self, location_id: str, limit: int = DEFAULT_HISTORY_LIMIT) -> List[Snapshot]:
        """Return up to `limit` snapshots, newest first."""

    def upsert_forecast(
        self,
        location_id: str,
        days: Sequence[ForecastDay],
        as_of: dt.datetime,
    ) -> ForecastRecord:
        """Create or overwrite the single forecast row for a location."""

    def get_forecast(self, location_id: str) -> Optional[ForecastRecord]:
        """Return the forecast row, or None if none was ever stored."""
