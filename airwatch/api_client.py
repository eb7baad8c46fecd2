"""HTTP client for the AirWatch read API, usable as a RefreshingReader loader."""
from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

import requests

from airwatch import config
from airwatch.air_quality_service import (
    CompleteAqiResponse,
    ForecastResponse,
    LiveAqiResponse,
    LocationInfo,
)
from airwatch.errors import DataUnavailableError, UnknownLocationError
from airwatch.providers.waqi_client import build_session
from airwatch.refresh_coordinator import RefreshCoordinator, RefreshingReader
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="api_client")

API_RETRY_STATUS_CODES = (500, 502, 504)


class AirWatchApiClient:
    """Thin wrapper over `/v1` that maps error responses back to AirWatch errors."""

    def __init__(
        self,
        base_url: str,
        *,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
        retries: int = 2,
        backoff_factor: float = 0.3,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        if session is None:
            # 503 carries "no cached data" from the server and must reach the caller.
            session = build_session(retries, backoff_factor, status_to_retry=API_RETRY_STATUS_CODES)
        self.session = session

    def _headers(self) -> Dict[str, str]:
        return {"X-API-Key": self.api_key} if self.api_key else {}

    def _request(self, method: str, path: str, location_id: Optional[str] = None, **kwargs) -> Any:
        url = f"{self.base_url}/v1{path}"
        logger.debug("Calling AirWatch API", extra={"method": method, "url": url})
        resp = self.session.request(method, url, headers=self._headers(), timeout=self.timeout, **kwargs)
        if resp.status_code == 404 and location_id is not None:
            raise UnknownLocationError(location_id)
        if resp.status_code == 503 and location_id is not None:
            try:
                kind = resp.json().get("kind", "live")
            except ValueError:
                kind = "live"
            raise DataUnavailableError(location_id, kind)
        resp.raise_for_status()
        return resp.json()

    def list_locations(self) -> List[LocationInfo]:
        return [LocationInfo.model_validate(item) for item in self._request("GET", "/locations")]

    def get_live(self, location_id: str) -> LiveAqiResponse:
        return LiveAqiResponse.model_validate(self._request("GET", f"/live/{location_id}", location_id))

    def get_forecast(self, location_id: str) -> ForecastResponse:
        return ForecastResponse.model_validate(self._request("GET", f"/forecast/{location_id}", location_id))

    def get_complete(self, location_id: str) -> CompleteAqiResponse:
        return CompleteAqiResponse.model_validate(self._request("GET", f"/complete/{location_id}", location_id))

    def get_history(self, location_id: str, limit: int = 24) -> List[LiveAqiResponse]:
        payload = self._request("GET", f"/history/{location_id}", location_id, params={"limit": limit})
        return [LiveAqiResponse.model_validate(item) for item in payload]

    def refresh(self, location_id: str) -> Dict[str, Any]:
        """Ask the server to refresh one location now (admin key required if configured)."""
        return self._request("POST", f"/admin/refresh/{location_id}", location_id)

    def loader(self, kind: str = "complete") -> Callable[[str], Any]:
        """Return the getter for `kind` (live, forecast or complete) keyed by location id."""
        loaders = {"live": self.get_live, "forecast": self.get_forecast, "complete": self.get_complete}
        if kind not in loaders:
            raise ValueError(f"Unknown loader kind '{kind}'")
        return loaders[kind]


def build_reader(
    client: AirWatchApiClient,
    kind: str = "complete",
    *,
    coordinator: Optional[RefreshCoordinator] = None,
    settings: Optional[config.Settings] = None,
) -> RefreshingReader:
    """
    Wrap one of the client's getters in a RefreshingReader.

    Readers built without an explicit coordinator get a new one ticking every
    `client_refresh_interval_seconds`; pass a shared coordinator so many
    readers revalidate off a single timer.
    """
    settings = settings or config.settings
    if coordinator is None:
        coordinator = RefreshCoordinator(settings.client_refresh_interval_seconds)
    return RefreshingReader(
        coordinator,
        client.loader(kind),
        freshness_seconds=settings.client_freshness_seconds,
    )
