"""Exception taxonomy for the refresh pipeline and the read surface."""

from __future__ import annotations


class AirWatchError(Exception):
    """Base class for all AirWatch errors."""


class FetchError(AirWatchError):
    """A provider call for one location failed."""

    def __init__(self, location_id: str, message: str, *, status_code: int | None = None) -> None:
        super().__init__(f"{location_id}: {message}")
        self.location_id = location_id
        self.status_code = status_code


class TransientFetchError(FetchError):
    """Timeout, connection reset, 5xx or throttling; retried before surfacing."""


class PermanentFetchError(FetchError):
    """Auth failure, unknown station or other 4xx; never retried."""


class NormalizationError(AirWatchError):
    """A provider payload could not be mapped into a Snapshot."""


class ForecastNormalizationError(NormalizationError):
    """Only the forecast part of a payload was malformed."""


class RepositoryWriteConflict(AirWatchError):
    """A concurrent writer won the race for the same key; the write is retried."""


class UnknownLocationError(AirWatchError):
    """The requested location id is not configured."""

    def __init__(self, location_id: str) -> None:
        super().__init__(f"Unknown location '{location_id}'")
        self.location_id = location_id


class DataUnavailableError(AirWatchError):
    """No cached row exists yet for a location (distinct from a transport error)."""

    def __init__(self, location_id: str, kind: str) -> None:
        super().__init__(f"No cached {kind} data available for {location_id}.")
        self.location_id = location_id
        self.kind = kind
