"""Tests for the upsert writer."""

from datetime import datetime, timedelta, timezone
from itertools import count

import pytest

from servers.event_sync.errors import RecordValidationError
from servers.event_sync.models import (
    CanonicalEvent,
    CanonicalVenue,
    MatchDecision,
    PageStatus,
    SocialPageSource,
    UpsertAction,
)
from servers.event_sync.writer import UpsertWriter, validate_coordinates

NEW = MatchDecision(rule="new")
T0 = datetime(2030, 1, 1, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self):
        self.now = T0

    def __call__(self):
        return self.now

    def tick(self):
        self.now += timedelta(minutes=1)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def writer(store, clock):
    ids = count(1)
    return UpsertWriter(store, clock=clock, id_factory=lambda: f"{next(ids):06d}-row")


def _event(**overrides) -> CanonicalEvent:
    fields = dict(
        title="Band Night",
        start_at=datetime(2030, 6, 2, 2, 30, tzinfo=timezone.utc),
        category="concerts",
        tags=["rock"],
        external_source="ticketmaster",
        external_id="G5vYZ9a1",
        external_url="https://www.ticketmaster.com/event/G5vYZ9a1",
        slug="band-night-the-crocodile",
    )
    fields.update(overrides)
    return CanonicalEvent(**fields)


class TestValidateCoordinates:
    @pytest.mark.parametrize("lat,lng", [(91, 0), (-90.5, 0), (0, 180.1), (0, -181)])
    def test_out_of_range(self, lat, lng):
        with pytest.raises(RecordValidationError):
            validate_coordinates(lat, lng)

    @pytest.mark.parametrize("lat,lng", [(float("nan"), 0), (0, float("nan")), (float("-inf"), 0)])
    def test_not_finite(self, lat, lng):
        with pytest.raises(RecordValidationError, match="not a finite number"):
            validate_coordinates(lat, lng)

    def test_bounds_and_missing_ok(self):
        validate_coordinates(90, -180)
        validate_coordinates(None, None)


class TestApplyVenue:
    """Tests for venue create and merge."""

    def test_create(self, writer, store, crocodile):
        venue_id, action = writer.apply_venue(crocodile, NEW)

        assert action == UpsertAction.CREATED
        row = store.get_venue(venue_id)
        assert row.slug == "the-crocodile-seattle-000001"
        assert row.owner_source == "ticketmaster"
        assert row.external_ids == {"ticketmaster": "KovZpZAEkn6A"}
        assert row.name_key == "crocodile"
        assert row.created_at == row.updated_at == T0

    def test_same_name_gets_distinct_slugs(self, writer, store, crocodile):
        first, _ = writer.apply_venue(crocodile, NEW)
        second, _ = writer.apply_venue(
            crocodile.model_copy(update={"external_id": "other"}), NEW
        )
        assert store.get_venue(first).slug != store.get_venue(second).slug

    @pytest.mark.parametrize("latitude,longitude,fragment", [
        (123.0, -122.3444, "latitude 123.0 outside"),
        (-90.5, -122.3444, "latitude -90.5 outside"),
        (47.6139, -180.5, "longitude -180.5 outside"),
        (47.6139, 200.0, "longitude 200.0 outside"),
        (float("nan"), -122.3444, "latitude nan is not a finite"),
        (47.6139, float("inf"), "longitude inf is not a finite"),
    ])
    def test_rejects_bad_coordinates(self, writer, store, crocodile, latitude, longitude, fragment):
        with pytest.raises(RecordValidationError, match=fragment):
            writer.apply_venue(
                crocodile.model_copy(update={"latitude": latitude, "longitude": longitude}), NEW
            )
        assert store.list_venues() == []

    def test_bad_coordinates_never_overwrite_stored_ones(self, writer, store, crocodile):
        venue_id, _ = writer.apply_venue(crocodile, NEW)
        with pytest.raises(RecordValidationError):
            writer.apply_venue(
                crocodile.model_copy(update={"longitude": 181.0}),
                MatchDecision(matched_id=venue_id, rule="external_id"),
            )
        assert store.get_venue(venue_id).longitude == -122.3444

    def test_owner_refreshes(self, writer, store, clock, crocodile):
        venue_id, _ = writer.apply_venue(crocodile, NEW)
        clock.tick()

        _, action = writer.apply_venue(
            crocodile.model_copy(update={"address": "2505 1st Ave S"}),
            MatchDecision(matched_id=venue_id, rule="external_id"),
        )

        row = store.get_venue(venue_id)
        assert action == UpsertAction.UPDATED
        assert row.address == "2505 1st Ave S"
        assert row.updated_at > row.created_at

    def test_other_source_only_fills_gaps(self, writer, store, crocodile):
        venue_id, _ = writer.apply_venue(crocodile, NEW)
        from_places = CanonicalVenue(
            name="Crocodile",
            address="2200 2nd Ave",
            city="Seattle",
            rating=4.6,
            website="https://www.thecrocodile.com",
            external_source="google_places",
            external_id="ChIJ-croc",
            slug="crocodile-seattle",
        )

        _, action = writer.apply_venue(from_places, MatchDecision(matched_id=venue_id, rule="name_proximity"))

        row = store.get_venue(venue_id)
        assert action == UpsertAction.UPDATED
        assert row.name == "The Crocodile"
        assert row.address == "2505 1st Ave"
        assert row.rating == 4.6
        assert row.website == "https://www.thecrocodile.com"
        assert row.external_ids == {"ticketmaster": "KovZpZAEkn6A", "google_places": "ChIJ-croc"}
        assert row.owner_source == "ticketmaster"

    def test_identical_record_is_unchanged(self, writer, store, clock, crocodile):
        venue_id, _ = writer.apply_venue(crocodile, NEW)
        clock.tick()

        _, action = writer.apply_venue(crocodile, MatchDecision(matched_id=venue_id, rule="external_id"))

        assert action == UpsertAction.UNCHANGED
        assert store.get_venue(venue_id).updated_at == T0

    def test_slug_never_rewritten(self, writer, store, crocodile):
        venue_id, _ = writer.apply_venue(crocodile, NEW)
        writer.apply_venue(
            crocodile.model_copy(update={"name": "Crocodile Cafe", "slug": "crocodile-cafe"}),
            MatchDecision(matched_id=venue_id, rule="external_id"),
        )
        row = store.get_venue(venue_id)
        assert row.name == "Crocodile Cafe"
        assert row.slug == "the-crocodile-seattle-000001"

    def test_missing_match_target(self, writer, crocodile):
        with pytest.raises(RecordValidationError):
            writer.apply_venue(crocodile, MatchDecision(matched_id="gone", rule="external_id"))


class TestApplyEvent:
    """Tests for event create and merge."""

    @pytest.fixture
    def venue_id(self, writer, crocodile):
        venue_id, _ = writer.apply_venue(crocodile, NEW)
        return venue_id

    def test_create_copies_venue_location(self, writer, store, venue_id):
        event_id, action = writer.apply_event(_event(), venue_id, NEW)

        row = store.get_event(event_id)
        assert action == UpsertAction.CREATED
        assert row.venue_id == venue_id
        assert (row.latitude, row.longitude) == (47.6139, -122.3444)
        assert row.status.value == "published"
        assert row.slug.startswith("band-night-the-crocodile-")

    def test_unknown_venue(self, writer):
        with pytest.raises(RecordValidationError):
            writer.apply_event(_event(), "nope", NEW)

    def test_unknown_category(self, writer, venue_id):
        with pytest.raises(RecordValidationError):
            writer.apply_event(_event(category="opera", tags=[]), venue_id, NEW)

    def test_tags_must_belong_to_category(self, writer, store, venue_id):
        with pytest.raises(RecordValidationError):
            writer.apply_event(_event(tags=["improv"]), venue_id, NEW)
        assert store.list_events() == []

    def test_repeat_is_unchanged(self, writer, store, clock, venue_id):
        event_id, _ = writer.apply_event(_event(), venue_id, NEW)
        clock.tick()

        _, action = writer.apply_event(_event(), venue_id, MatchDecision(matched_id=event_id, rule="external_id"))

        assert action == UpsertAction.UNCHANGED
        assert store.get_event(event_id).updated_at == T0

    def test_non_owner_does_not_overwrite(self, writer, store, venue_id):
        event_id, _ = writer.apply_event(_event(), venue_id, NEW)
        from_seatgeek = _event(
            title="BAND NIGHT (21+)",
            description="All ages welcome? No, 21+.",
            tags=["indie"],
            external_source="seatgeek",
            external_id="5012345",
            external_url="https://seatgeek.com/band-night",
        )

        _, action = writer.apply_event(
            from_seatgeek, venue_id, MatchDecision(matched_id=event_id, rule="venue_title_day")
        )

        row = store.get_event(event_id)
        assert action == UpsertAction.UPDATED
        assert row.title == "Band Night"
        assert row.description == "All ages welcome? No, 21+."
        assert row.tags == ["rock"]
        assert row.external_url == "https://www.ticketmaster.com/event/G5vYZ9a1"
        assert row.external_ids == {"ticketmaster": "G5vYZ9a1", "seatgeek": "5012345"}

    def test_owner_category_change_replaces_tags(self, writer, store, venue_id):
        event_id, _ = writer.apply_event(_event(), venue_id, NEW)

        writer.apply_event(
            _event(category="comedy", tags=["stand-up"]),
            venue_id,
            MatchDecision(matched_id=event_id, rule="external_id"),
        )

        row = store.get_event(event_id)
        assert row.category == "comedy"
        assert row.tags == ["stand-up"]

    def test_owner_moves_event_and_location_follows(self, writer, store, venue_id):
        event_id, _ = writer.apply_event(_event(), venue_id, NEW)
        neumos, _ = writer.apply_venue(
            CanonicalVenue(
                name="Neumos",
                latitude=47.6141,
                longitude=-122.3197,
                external_source="ticketmaster",
                external_id="KovZpZAJledA",
                slug="neumos-seattle",
            ),
            NEW,
        )

        writer.apply_event(_event(), neumos, MatchDecision(matched_id=event_id, rule="external_id"))

        row = store.get_event(event_id)
        assert row.venue_id == neumos
        assert (row.latitude, row.longitude) == (47.6141, -122.3197)


class TestMergeVenues:
    """Tests for folding a duplicate venue into its primary."""

    @pytest.fixture
    def places_venue(self) -> CanonicalVenue:
        return CanonicalVenue(
            name="Crocodile",
            city="Seattle",
            website="https://www.thecrocodile.com",
            rating=4.2,
            external_source="google_places",
            external_id="ChIJd7zN_thqkFQR",
            slug="crocodile-seattle",
        )

    def test_fills_gaps_and_moves_everything(self, writer, store, clock, places_venue, crocodile):
        primary, _ = writer.apply_venue(places_venue, NEW)
        duplicate, _ = writer.apply_venue(crocodile.model_copy(update={"rating": 4.6}), NEW)
        at_primary, _ = writer.apply_event(
            _event(title="Open Mic", external_id="G1", slug="open-mic"), primary, NEW
        )
        at_duplicate, _ = writer.apply_event(_event(), duplicate, NEW)
        store.insert_page(SocialPageSource(
            id="p1",
            page_url="https://www.facebook.com/thecrocodile",
            venue_id=duplicate,
            status=PageStatus.ACTIVE,
            created_at=T0,
            updated_at=T0,
        ))
        clock.tick()

        merged = writer.merge_venues(primary, duplicate)

        assert merged.id == primary
        assert merged.name == "Crocodile"
        assert merged.website == "https://www.thecrocodile.com"
        assert merged.address == "2505 1st Ave"
        assert (merged.latitude, merged.longitude) == (47.6139, -122.3444)
        assert merged.rating == 4.6
        assert merged.external_ids == {
            "google_places": "ChIJd7zN_thqkFQR",
            "ticketmaster": "KovZpZAEkn6A",
        }
        assert merged.updated_at == clock.now
        assert store.get_venue(duplicate) is None
        assert store.find_venue_by_external_id("ticketmaster", "KovZpZAEkn6A").id == primary
        for event_id in (at_primary, at_duplicate):
            row = store.get_event(event_id)
            assert row.venue_id == primary
            assert (row.latitude, row.longitude) == (47.6139, -122.3444)
        assert store.get_page("p1").venue_id == primary

    def test_primary_values_and_ids_win(self, writer, store, crocodile):
        primary, _ = writer.apply_venue(crocodile.model_copy(update={"rating": 4.5}), NEW)
        duplicate, _ = writer.apply_venue(
            crocodile.model_copy(update={
                "name": "Crocodile Cafe",
                "external_id": "KovZ-older",
                "rating": 3.9,
                "slug": "crocodile-cafe",
            }),
            NEW,
        )

        merged = writer.merge_venues(primary, duplicate)

        assert merged.name == "The Crocodile"
        assert merged.rating == 4.5
        assert merged.external_ids == {"ticketmaster": "KovZpZAEkn6A"}
        assert store.find_venue_by_external_id("ticketmaster", "KovZ-older") is None

    def test_same_venue_rejected(self, writer, crocodile):
        venue_id, _ = writer.apply_venue(crocodile, NEW)
        with pytest.raises(RecordValidationError, match="into itself"):
            writer.merge_venues(venue_id, venue_id)

    def test_missing_venue_changes_nothing(self, writer, store, crocodile):
        venue_id, _ = writer.apply_venue(crocodile, NEW)
        writer.apply_event(_event(), venue_id, NEW)

        with pytest.raises(RecordValidationError, match="duplicate venue not found"):
            writer.merge_venues(venue_id, "missing")
        with pytest.raises(RecordValidationError, match="primary venue not found"):
            writer.merge_venues("missing", venue_id)

        assert store.get_venue(venue_id) is not None
        assert len(store.list_events()) == 1
