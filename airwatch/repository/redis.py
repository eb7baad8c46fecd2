"""Redis-backed repository."""

import datetime as dt
from typing import List, Optional, Sequence

import redis
from pydantic import ValidationError

from airwatch.domain import ForecastDay, ForecastRecord, Snapshot, ensure_utc
from airwatch.repository.base import DEFAULT_HISTORY_LIMIT, AirQualityRepository
from utils.logging_utils import get_tagged_logger, mask_url

logger = get_tagged_logger(__name__, tag="repository/redis_repository")


class RedisRepository(AirQualityRepository):
    """
    Snapshots live in a per-location hash keyed by ISO timestamp, with a
    sorted-set index scored by epoch seconds for newest-first reads. Both are
    written in one MULTI/EXEC so a snapshot is never half-indexed. The forecast
    is a single JSON string replaced with one SET.
    """

    def __init__(self, client, prefix: str = "airwatch:") -> None:
        logger.debug("Initializing RedisRepository")
        self.client = client
        self.prefix = prefix

    @classmethod
    def from_url(cls, redis_url: str, **kwargs) -> "RedisRepository":
        logger.info("Connecting Redis repository", extra={"redis_url": mask_url(redis_url)})
        return cls(redis.Redis.from_url(redis_url), **kwargs)

    def _snapshots_key(self, location_id: str) -> str:
        return f"{self.prefix}snapshots:{location_id}"

    def _index_key(self, location_id: str) -> str:
        return f"{self.prefix}snapshot-index:{location_id}"

    def _forecast_key(self, location_id: str) -> str:
        return f"{self.prefix}forecast:{location_id}"

    @staticmethod
    def _decode_snapshot(raw) -> Optional[Snapshot]:
        if raw is None:
            return None
        try:
            return Snapshot.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning("Stored snapshot could not be decoded; skipping", extra={"error": str(exc)})
            return None

    def append_snapshot(self, snapshot: Snapshot) -> bool:
        """HSETNX the payload and index it; returns False when the field already existed."""
        field = snapshot.timestamp.isoformat()
        pipe = self.client.pipeline(transaction=True)
        pipe.hsetnx(self._snapshots_key(snapshot.location_id), field, snapshot.model_dump_json())
        pipe.zadd(self._index_key(snapshot.location_id), {field: snapshot.timestamp.timestamp()})
        inserted, _ = pipe.execute()
        if not inserted:
            logger.debug("Duplicate snapshot ignored",
                         extra={"location": snapshot.location_id, "timestamp": field})
        return bool(inserted)

    def latest_snapshot(self, location_id: str) -> Optional[Snapshot]:
        fields = self.client.zrevrange(self._index_key(location_id), 0, 0)
        if not fields:
            return None
        return self._decode_snapshot(self.client.hget(self._snapshots_key(location_id), fields[0]))

    def list_snapshots(self, location_id: str, limit: int = DEFAULT_HISTORY_LIMIT) -> List[Snapshot]:
        if limit <= 0:
            return []
        fields = self.client.zrevrange(self._index_key(location_id), 0, limit - 1)
        if not fields:
            return []
        raws = self.client.hmget(self._snapshots_key(location_id), fields)
        snapshots = [self._decode_snapshot(raw) for raw in raws]
        return [s for s in snapshots if s is not None]

    def upsert_forecast(self, location_id: str, days: Sequence[ForecastDay], as_of: dt.datetime) -> ForecastRecord:
        record = ForecastRecord(location_id=location_id, as_of=ensure_utc(as_of), days=list(days))
        self.client.set(self._forecast_key(location_id), record.model_dump_json())
        return record

    def get_forecast(self, location_id: str) -> Optional[ForecastRecord]:
        raw = self.client.get(self._forecast_key(location_id))
        if not raw:
            return None
        try:
            return ForecastRecord.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning("Stored forecast could not be decoded; treating as missing",
                           extra={"location": location_id, "error": str(exc)})
            return None

    def clear(self) -> None:
        """Delete every key under the configured prefix."""
        for key in self.client.scan_iter(f"{self.prefix}*"):
            self.client.delete(key)
