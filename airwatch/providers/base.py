"""Interfaces and helpers for air-quality providers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Protocol

from airwatch.locations import Location

RawResponse = Dict[str, Any]


class AirQualityProvider(Protocol):
    """Anything that can return the raw feed for one location."""

    def fetch(self, location: Location) -> RawResponse:
        """
        Return the provider's raw `data` object for `location`.

        Raises TransientFetchError or PermanentFetchError on failure.
        """
        ...


@dataclass
class CallableProvider(AirQualityProvider):
    """Wrap a plain callable so it can stand in for a provider client."""

    fetch_feed: Callable[[Location], RawResponse]

    def fetch(self, location: Location) -> RawResponse:
        """Delegate to the configured callable."""
        return self.fetch_feed(location)
