"""Registry of monitored locations and the WAQI stations that back them."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Tuple

from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="locations")

DEFAULT_TIMEZONE = "Europe/Sarajevo"


@dataclass(frozen=True)
class Location:
    """A monitored place. Immutable and configured once at startup."""
    id: str
    name: str
    station: str  # WAQI feed reference, e.g. "@10557"
    timezone: str = DEFAULT_TIMEZONE


DEFAULT_LOCATIONS: Tuple[Location, ...] = (
    Location(id="sarajevo", name="Sarajevo", station="@10557"),
    Location(id="tuzla", name="Tuzla", station="@8739"),
    Location(id="zenica", name="Zenica", station="@8740"),
    Location(id="mostar", name="Mostar", station="@8741"),
    Location(id="travnik", name="Travnik", station="@8742"),
    Location(id="bihac", name="Bihać", station="@8743"),
)


def index_locations(locations: Iterable[Location]) -> Dict[str, Location]:
    """Map location ids to locations."""
    return {loc.id: loc for loc in locations}


def resolve_locations(
    names: Iterable[str] | None,
    registry: Iterable[Location] = DEFAULT_LOCATIONS,
) -> List[Location]:
    """
    Pick the configured subset of the registry.

    Names match ids or display names case-insensitively. Unknown names are
    logged and skipped and duplicates collapse. Passing no names at all
    selects every registered location.
    """
    registry = list(registry)
    requested = [n for n in (names or []) if n and n.strip()]
    if not requested:
        return registry

    lookup: Dict[str, Location] = {}
    for loc in registry:
        lookup[loc.id.lower()] = loc
        lookup[loc.name.lower()] = loc

    selected: List[Location] = []
    for name in requested:
        loc = lookup.get(name.strip().lower())
        if loc is None:
            logger.warning("Ignoring unknown location in configuration", extra={"location": name})
            continue
        if loc not in selected:
            selected.append(loc)

    if not selected:
        logger.warning("No configured location matched the registry; nothing will be refreshed")
    return selected
