"""Tests for metro configuration and per-source parameters."""

import pytest

from servers.event_sync.metros import (
    ALL_METROS,
    CityQuery,
    GeoQuery,
    RegionQuery,
    ScopeQuery,
    active_metros,
    get_metro,
    resolve_params,
)
from servers.event_sync.models import SourceKind


class TestActiveMetros:
    def test_only_enabled(self):
        assert [m.slug for m in active_metros()] == ["seattle"]

    def test_explicit_list(self, seattle, austin):
        assert active_metros([seattle, austin]) == [seattle, austin]

    def test_slugs_unique(self):
        slugs = [m.slug for m in ALL_METROS]
        assert len(slugs) == len(set(slugs))


class TestGetMetro:
    def test_found(self):
        assert get_metro("austin").display_name == "Austin, TX"

    def test_unknown(self):
        with pytest.raises(KeyError):
            get_metro("atlantis")


class TestResolveParams:
    """Each source gets its own parameter shape."""

    def test_ticketmaster_city_state(self, seattle):
        params = resolve_params(seattle, SourceKind.TICKETMASTER)
        assert params == CityQuery(
            metro="seattle", city="Seattle", state_code="WA", timezone="America/Los_Angeles"
        )

    def test_seatgeek_range_string(self, seattle):
        params = resolve_params(seattle, SourceKind.SEATGEEK)
        assert isinstance(params, GeoQuery)
        assert params.range == "30mi"
        assert (params.lat, params.lon) == (seattle.lat, seattle.lng)

    def test_google_places_meters(self, seattle):
        params = resolve_params(seattle, SourceKind.GOOGLE_PLACES)
        assert isinstance(params, RegionQuery)
        assert params.radius_meters == 48280
        assert params.name == "Seattle"

    @pytest.mark.parametrize("kind", [SourceKind.SOCIAL_PAGE, SourceKind.VENUE_WEBSITE])
    def test_scrapers_get_scope(self, seattle, kind):
        params = resolve_params(seattle, kind)
        assert isinstance(params, ScopeQuery)
        assert params.metro == "seattle"

    def test_unknown_kind(self, seattle):
        with pytest.raises(ValueError):
            resolve_params(seattle, "carrier-pigeon")
