"""Provider clients that fetch raw air-quality feeds."""

from .base import AirQualityProvider, CallableProvider, RawResponse
from .factory import build_provider
from .waqi_client import WaqiClient, build_session

__all__ = [
    "AirQualityProvider",
    "CallableProvider",
    "RawResponse",
    "WaqiClient",
    "build_provider",
    "build_session",
]
