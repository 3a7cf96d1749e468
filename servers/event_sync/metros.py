"""
Metro configuration and per-source query parameters.

Metros are plain values passed into each run; nothing here holds
process-wide state.
"""

from typing import Iterable, Union

from pydantic import BaseModel

from .models import Metro, SourceKind


SEATTLE = Metro(
    slug="seattle",
    name="Seattle",
    display_name="Seattle, WA",
    state_code="WA",
    lat=47.6062,
    lng=-122.3321,
    radius_mi=30,
    radius_m=48280,
    enabled=True,
    timezone="America/Los_Angeles",
)

# Inactive metros are kept for backfills and future expansion
ALL_METROS: tuple[Metro, ...] = (
    SEATTLE,
    Metro(slug="new-york", name="New York", display_name="New York, NY",
          state_code="NY", lat=40.7128, lng=-74.006, radius_mi=25,
          radius_m=40234, enabled=False, timezone="America/New_York"),
    Metro(slug="los-angeles", name="Los Angeles", display_name="Los Angeles, CA",
          state_code="CA", lat=34.0522, lng=-118.2437, radius_mi=30,
          radius_m=48280, enabled=False, timezone="America/Los_Angeles"),
    Metro(slug="chicago", name="Chicago", display_name="Chicago, IL",
          state_code="IL", lat=41.8781, lng=-87.6298, radius_mi=20,
          radius_m=32187, enabled=False, timezone="America/Chicago"),
    Metro(slug="austin", name="Austin", display_name="Austin, TX",
          state_code="TX", lat=30.2672, lng=-97.7431, radius_mi=15,
          radius_m=24140, enabled=False, timezone="America/Chicago"),
    Metro(slug="nashville", name="Nashville", display_name="Nashville, TN",
          state_code="TN", lat=36.1627, lng=-86.7816, radius_mi=15,
          radius_m=24140, enabled=False, timezone="America/Chicago"),
)


class CityQuery(BaseModel):
    """Ticketmaster: city + state code."""

    metro: str
    city: str
    state_code: str
    timezone: str


class GeoQuery(BaseModel):
    """SeatGeek: center point + range string such as '30mi'."""

    metro: str
    lat: float
    lon: float
    range: str
    timezone: str


class RegionQuery(BaseModel):
    """Google Places: named region + circle radius in meters."""

    metro: str
    name: str
    lat: float
    lng: float
    radius_meters: int
    timezone: str


class ScopeQuery(BaseModel):
    """Scrapers: the metro scope used to pick pages and venue sites."""

    metro: str
    city: str
    state_code: str
    timezone: str


MetroParams = Union[CityQuery, GeoQuery, RegionQuery, ScopeQuery]


def active_metros(metros: Iterable[Metro] = ALL_METROS) -> list[Metro]:
    """Only the enabled metros, in configuration order."""
    return [m for m in metros if m.enabled]


def get_metro(slug: str, metros: Iterable[Metro] = ALL_METROS) -> Metro:
    for metro in metros:
        if metro.slug == slug:
            return metro
    raise KeyError(f"Unknown metro: {slug}")


def resolve_params(metro: Metro, kind: SourceKind) -> MetroParams:
    """
    Produce the native parameter shape a source expects for a metro.

    Raises:
        ValueError: If kind is not a known source kind
    """
    if kind == SourceKind.TICKETMASTER:
        return CityQuery(metro=metro.slug, city=metro.name,
                         state_code=metro.state_code, timezone=metro.timezone)
    if kind == SourceKind.SEATGEEK:
        return GeoQuery(metro=metro.slug, lat=metro.lat, lon=metro.lng,
                        range=f"{metro.radius_mi}mi", timezone=metro.timezone)
    if kind == SourceKind.GOOGLE_PLACES:
        return RegionQuery(metro=metro.slug, name=metro.name, lat=metro.lat,
                           lng=metro.lng, radius_meters=metro.radius_m,
                           timezone=metro.timezone)
    if kind in (SourceKind.SOCIAL_PAGE, SourceKind.SOCIAL_GRAPH, SourceKind.VENUE_WEBSITE):
        return ScopeQuery(metro=metro.slug, city=metro.name,
                          state_code=metro.state_code, timezone=metro.timezone)
    raise ValueError(f"Unknown source kind: {kind!r}")
