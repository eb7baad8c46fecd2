"""Periodic refresh of every configured location: fetch, normalize, store."""
from __future__ import annotations

import datetime as dt
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence

from airwatch.domain import utcnow
from airwatch.errors import NormalizationError, PermanentFetchError, TransientFetchError
from airwatch.locations import Location
from airwatch.normalizer import normalize
from airwatch.providers.base import AirQualityProvider
from airwatch.repository.base import AirQualityRepository
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="scheduler")

MIN_INTERVAL_SECONDS = 60.0


class RefreshStatus(str, Enum):
    OK = "ok"
    TRANSIENT_ERROR = "transient_error"
    PERMANENT_ERROR = "permanent_error"
    NORMALIZATION_ERROR = "normalization_error"
    ERROR = "error"


@dataclass
class LocationOutcome:
    """What happened to one location during a refresh."""
    location_id: str
    status: RefreshStatus
    snapshot_stored: bool = False
    forecast_stored: bool = False
    error: Optional[str] = None
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == RefreshStatus.OK


@dataclass
class CycleReport:
    """Outcome of one pass over all locations."""
    started_at: dt.datetime
    finished_at: dt.datetime
    outcomes: List[LocationOutcome] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    @property
    def succeeded(self) -> List[LocationOutcome]:
        return [o for o in self.outcomes if o.ok]

    @property
    def failed(self) -> List[LocationOutcome]:
        return [o for o in self.outcomes if not o.ok]

    def outcome_for(self, location_id: str) -> Optional[LocationOutcome]:
        return next((o for o in self.outcomes if o.location_id == location_id), None)


class RefreshScheduler:
    """
    Drives refresh cycles for a fixed set of locations.

    Each location runs on its own worker so a slow or failing provider call
    never delays the others. A failure leaves that location's cached rows
    untouched; the next cycle is the retry.
    """

    def __init__(
        self,
        provider: AirQualityProvider,
        repository: AirQualityRepository,
        locations: Sequence[Location],
        *,
        interval_minutes: float = 10,
        shutdown_grace_seconds: float = 30.0,
        clock: Callable[[], dt.datetime] = utcnow,
    ) -> None:
        self.provider = provider
        self.repository = repository
        self.locations = list(locations)
        self.interval_seconds = max(float(interval_minutes) * 60.0, MIN_INTERVAL_SECONDS)
        self.shutdown_grace_seconds = shutdown_grace_seconds
        self._clock = clock
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._report_lock = threading.Lock()
        self._last_report: Optional[CycleReport] = None

    @property
    def last_report(self) -> Optional[CycleReport]:
        with self._report_lock:
            return self._last_report

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def refresh_location(self, location: Location) -> LocationOutcome:
        """Fetch, normalize and store one location; never raises."""
        started = time.monotonic()
        outcome = LocationOutcome(location_id=location.id, status=RefreshStatus.OK)
        try:
            raw = self.provider.fetch(location)
            feed = normalize(location, raw, now=self._clock())
            outcome.snapshot_stored = self.repository.append_snapshot(feed.snapshot)
            if feed.forecast is not None:
                self.repository.upsert_forecast(location.id, feed.forecast.days, feed.forecast.as_of)
                outcome.forecast_stored = True
            elif feed.forecast_error is not None:
                outcome.error = feed.forecast_error
            else:
                logger.info("No forecast in provider response; stored forecast left as is",
                            extra={"location": location.id})
        except TransientFetchError as exc:
            outcome.status, outcome.error = RefreshStatus.TRANSIENT_ERROR, str(exc)
            logger.warning("Transient fetch failure; will retry next cycle",
                           extra={"location": location.id, "status_code": exc.status_code, "error": str(exc)})
        except PermanentFetchError as exc:
            outcome.status, outcome.error = RefreshStatus.PERMANENT_ERROR, str(exc)
            logger.error("Permanent fetch failure",
                         extra={"location": location.id, "status_code": exc.status_code, "error": str(exc)})
        except NormalizationError as exc:
            outcome.status, outcome.error = RefreshStatus.NORMALIZATION_ERROR, str(exc)
            logger.warning("Provider payload rejected", extra={"location": location.id, "error": str(exc)})
        except Exception as exc:
            outcome.status, outcome.error = RefreshStatus.ERROR, str(exc)
            logger.exception("Unexpected error refreshing location", extra={"location": location.id})
        outcome.duration_seconds = time.monotonic() - started
        logger.debug("Location refreshed", extra={
            "location": location.id,
            "status": outcome.status.value,
            "duration_seconds": round(outcome.duration_seconds, 3),
        })
        return outcome

    def run_cycle(self, locations: Optional[Sequence[Location]] = None) -> CycleReport:
        """Refresh all locations concurrently and wait for every one of them."""
        targets = list(self.locations if locations is None else locations)
        started_at = utcnow()
        if not targets:
            logger.warning("Refresh cycle skipped; no locations configured")
            report = CycleReport(started_at=started_at, finished_at=utcnow())
        else:
            with ThreadPoolExecutor(max_workers=len(targets), thread_name_prefix="refresh") as pool:
                outcomes = list(pool.map(self.refresh_location, targets))
            report = CycleReport(started_at=started_at, finished_at=utcnow(), outcomes=outcomes)
            logger.info("Refresh cycle finished", extra={
                "locations": len(outcomes),
                "succeeded": len(report.succeeded),
                "failed": [o.location_id for o in report.failed],
                "duration_seconds": round(report.duration_seconds, 3),
            })
        with self._report_lock:
            self._last_report = report
        return report

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_cycle()
            except Exception:
                logger.exception("Refresh cycle crashed")
            if self._stop_event.wait(self.interval_seconds):
                break
        logger.info("Refresh loop stopped")

    def start(self) -> None:
        """Run one cycle now, then one every interval, on a background thread."""
        if self.is_running:
            logger.debug("Scheduler already running")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="refresh-scheduler", daemon=True)
        self._thread.start()
        logger.info("Refresh scheduler started", extra={
            "interval_seconds": self.interval_seconds,
            "locations": [loc.id for loc in self.locations],
        })

    def stop(self, grace_seconds: Optional[float] = None) -> bool:
        """
        Signal shutdown and wait for in-flight work.

        Returns False if work was still running when the grace period ran
        out. Every repository write is atomic, so abandoned work never leaves
        a partial row behind.
        """
        self._stop_event.set()
        thread = self._thread
        if thread is None:
            return True
        grace = self.shutdown_grace_seconds if grace_seconds is None else grace_seconds
        thread.join(timeout=grace)
        if thread.is_alive():
            logger.warning("In-flight refresh did not finish within grace period",
                           extra={"grace_seconds": grace})
            return False
        self._thread = None
        return True
