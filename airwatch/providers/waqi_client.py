"""Client for the World Air Quality Index (WAQI) station feed."""
from __future__ import annotations

import time
from typing import Any, Callable, Iterable

import requests
from retry_requests import retry

from airwatch.errors import PermanentFetchError, TransientFetchError
from airwatch.locations import Location
from airwatch.providers.base import AirQualityProvider, RawResponse
from utils.logging_utils import get_tagged_logger, mask_url

logger = get_tagged_logger(__name__, tag="waqi_client")

WAQI_API_URL = "https://api.waqi.info"

# Messages WAQI returns (with HTTP 200) that retrying will never fix.
PERMANENT_ERROR_MARKERS = ("invalid key", "unknown station", "unknown city", "can not connect")

TRANSIENT_STATUS_CODES = frozenset({429})
RETRY_STATUS_CODES = (429, 500, 502, 503, 504)


def build_session(
    retries: int = 3,
    backoff_factor: float = 0.5,
    status_to_retry: Iterable[int] = RETRY_STATUS_CODES,
) -> requests.Session:
    """
    Session with transport-level retries.

    Connection errors, read timeouts and `status_to_retry` responses
    (429/500/502/503/504 by default) are retried `retries` times with
    exponential backoff (`backoff_factor * 2 ** (attempt - 1)` seconds) before
    the last error is raised to the caller.
    """
    return retry(
        requests.Session(),
        retries=retries,
        backoff_factor=backoff_factor,
        status_to_retry=tuple(status_to_retry),
    )


class WaqiClient(AirQualityProvider):
    """
    Fetch one station feed per call and classify failures.

    Transport failures and retryable status codes are retried by the session.
    Transient failures WAQI reports inside a 200 response (quota errors,
    non-JSON bodies) are retried here with the same count and backoff.
    """

    def __init__(
        self,
        token: str,
        *,
        base_url: str = WAQI_API_URL,
        timeout: float = 10.0,
        session: Any = None,
        retries: int = 3,
        backoff_factor: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not token or not token.strip():
            raise ValueError("WAQI API token is not configured. Set AIRWATCH_WAQI_API_TOKEN.")
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retries = max(0, retries)
        self.backoff_factor = backoff_factor
        self._sleep = sleep
        self.session = session if session is not None else build_session(retries, backoff_factor)

    def _feed_url(self, location: Location) -> str:
        return f"{self.base_url}/feed/{location.station}/"

    def fetch(self, location: Location) -> RawResponse:
        """Return the feed's `data` object for `location`."""
        url = self._feed_url(location)
        attempt = 0
        while True:
            resp = self._get(location, url)
            try:
                return self._parse(location, resp)
            except TransientFetchError as exc:
                if attempt >= self.retries:
                    raise
                delay = self.backoff_factor * 2 ** attempt
                logger.info("Transient WAQI response; retrying",
                            extra={"location": location.id, "attempt": attempt + 1,
                                   "delay_seconds": delay, "error": str(exc)})
                self._sleep(delay)
            attempt += 1

    def _get(self, location: Location, url: str) -> requests.Response:
        logger.debug(
            "Calling WAQI feed",
            extra={"location": location.id, "url": mask_url(f"{url}?token={self.token}")},
        )
        try:
            resp = self.session.get(url, params={"token": self.token}, timeout=self.timeout)
        except requests.exceptions.Timeout as exc:
            raise TransientFetchError(location.id, f"timed out: {exc.__class__.__name__}") from exc
        except requests.exceptions.RetryError as exc:
            raise TransientFetchError(location.id, "server errors persisted after retries") from exc
        except requests.exceptions.ConnectionError as exc:
            raise TransientFetchError(location.id, f"connection failed: {exc.__class__.__name__}") from exc
        except requests.exceptions.RequestException as exc:
            raise PermanentFetchError(location.id, f"request could not be sent: {exc.__class__.__name__}") from exc

        status = resp.status_code
        if status >= 500 or status in TRANSIENT_STATUS_CODES:
            raise TransientFetchError(location.id, f"HTTP {status}", status_code=status)
        if status >= 400:
            raise PermanentFetchError(location.id, f"HTTP {status}", status_code=status)
        return resp

    def _parse(self, location: Location, resp: requests.Response) -> RawResponse:
        status = resp.status_code
        try:
            payload = resp.json()
        except ValueError as exc:
            raise TransientFetchError(location.id, "response body was not JSON", status_code=status) from exc

        if not isinstance(payload, dict):
            raise TransientFetchError(location.id, "unexpected response shape", status_code=status)

        api_status = str(payload.get("status") or "").lower()
        if api_status != "ok":
            message = str(payload.get("data") or payload.get("message") or api_status or "unknown error")
            if _is_permanent_message(message, PERMANENT_ERROR_MARKERS):
                raise PermanentFetchError(location.id, f"WAQI error: {message}", status_code=status)
            raise TransientFetchError(location.id, f"WAQI error: {message}", status_code=status)

        data = payload.get("data")
        if not isinstance(data, dict):
            raise TransientFetchError(location.id, "WAQI returned ok without a data object", status_code=status)
        return data


def _is_permanent_message(message: str, markers: Iterable[str]) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in markers)
