import unittest

import requests

from airwatch.api_client import AirWatchApiClient, build_reader
from airwatch.config import Settings
from airwatch.refresh_coordinator import RefreshCoordinator
from airwatch.errors import DataUnavailableError, UnknownLocationError

LIVE = {
    "location_id": "sarajevo",
    "location_name": "Sarajevo",
    "overall_aqi": 85,
    "aqi_category": "Moderate",
    "color": "#FFFF00",
    "health_message": "Air quality is acceptable.",
    "timestamp": "2024-01-15T11:00:00Z",
    "measurements": [
        {"parameter": "PM2.5", "value": 85.0, "unit": "μg/m³", "timestamp": "2024-01-15T11:00:00Z"},
    ],
    "dominant_pollutant": "PM2.5",
}

FORECAST = {
    "location_id": "sarajevo",
    "location_name": "Sarajevo",
    "forecast": [],
    "timestamp": None,
}


class DummyResp:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class FakeSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def request(self, method, url, headers=None, timeout=None, **kwargs):
        self.calls.append({"method": method, "url": url, "headers": headers, "timeout": timeout, **kwargs})
        return self.responses.pop(0)


def _client(*responses, **kwargs):
    session = FakeSession(responses)
    return AirWatchApiClient("http://airwatch.local/", session=session, **kwargs), session


class TestAirWatchApiClient(unittest.TestCase):
    def test_get_live_parses_model(self):
        client, session = _client(DummyResp(payload=LIVE))
        live = client.get_live("sarajevo")
        self.assertEqual(live.overall_aqi, 85)
        self.assertEqual(live.measurements[0].source_name, "WAQI")
        call = session.calls[0]
        self.assertEqual(call["method"], "GET")
        self.assertEqual(call["url"], "http://airwatch.local/v1/live/sarajevo")
        self.assertEqual(call["headers"], {})
        self.assertEqual(call["timeout"], 10.0)

    def test_complete_and_history(self):
        client, session = _client(
            DummyResp(payload={"live_data": LIVE, "forecast_data": FORECAST,
                               "retrieved_at": "2024-01-15T11:05:00Z"}),
            DummyResp(payload=[LIVE, LIVE]),
        )
        complete = client.get_complete("sarajevo")
        self.assertEqual(complete.forecast_data.forecast, [])
        history = client.get_history("sarajevo", limit=2)
        self.assertEqual(len(history), 2)
        self.assertEqual(session.calls[1]["params"], {"limit": 2})

    def test_not_found_maps_to_unknown_location(self):
        client, _ = _client(DummyResp(404, {"detail": "Unknown location 'atlantis'"}))
        with self.assertRaises(UnknownLocationError):
            client.get_live("atlantis")

    def test_service_unavailable_maps_kind(self):
        client, _ = _client(
            DummyResp(503, {"detail": "No forecast data", "kind": "forecast"}),
            DummyResp(503),
        )
        with self.assertRaises(DataUnavailableError) as ctx:
            client.get_forecast("sarajevo")
        self.assertEqual(ctx.exception.kind, "forecast")
        with self.assertRaises(DataUnavailableError) as ctx:
            client.get_live("sarajevo")
        self.assertEqual(ctx.exception.kind, "live")

    def test_other_errors_raise_http_error(self):
        client, _ = _client(DummyResp(500, {"detail": "boom"}))
        with self.assertRaises(requests.HTTPError):
            client.get_live("sarajevo")

    def test_refresh_sends_api_key(self):
        client, session = _client(DummyResp(payload={"status": "ok"}), api_key="sekret")
        self.assertEqual(client.refresh("sarajevo"), {"status": "ok"})
        self.assertEqual(session.calls[0]["method"], "POST")
        self.assertEqual(session.calls[0]["headers"], {"X-API-Key": "sekret"})

    def test_default_session_leaves_503_to_the_caller(self):
        client = AirWatchApiClient("http://airwatch.local")
        adapter = client.session.get_adapter("http://airwatch.local/v1/live/sarajevo")
        self.assertNotIn(503, adapter.max_retries.status_forcelist)
        self.assertIn(502, adapter.max_retries.status_forcelist)

    def test_loader_selects_getter(self):
        client, _ = _client(DummyResp(payload=LIVE))
        self.assertEqual(client.loader("live")("sarajevo").location_id, "sarajevo")
        with self.assertRaises(ValueError):
            client.loader("bogus")


class TestBuildReader(unittest.TestCase):
    def test_reader_uses_client_settings(self):
        client, session = _client(DummyResp(payload=LIVE))
        settings = Settings(client_refresh_interval_seconds=45, client_freshness_seconds=5)
        reader = build_reader(client, "live", settings=settings)
        try:
            self.assertEqual(reader.freshness_seconds, 5)
            result = reader.read("sarajevo")
            self.assertEqual(result.data.overall_aqi, 85)
            self.assertEqual(len(session.calls), 1)
        finally:
            reader.close()

    def test_readers_share_a_coordinator(self):
        client, _ = _client()
        coordinator = RefreshCoordinator(interval_seconds=30)
        readers = [build_reader(client, kind, coordinator=coordinator) for kind in ("live", "forecast")]
        self.assertEqual(coordinator.timers_created, 1)
        self.assertEqual(coordinator.subscriber_count, 2)
        for reader in readers:
            reader.close()
        self.assertFalse(coordinator.is_running)


if __name__ == "__main__":
    unittest.main()
