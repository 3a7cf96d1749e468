"""
Upsert writer: the only component that mutates events and venues.

Create assigns a fresh id, a slug suffixed with the id prefix, and
records the incoming source as owner. Update is fill-or-refresh:

- the owning source overwrites every field it provides
- any other source only fills fields that are still empty
- fields the record does not carry are left alone
- ids, slugs and created_at are never rewritten

A row whose merged state equals its stored state is not written and is
reported as UNCHANGED, so a repeated run does not bump updated_at.
"""

import math
import uuid
from datetime import datetime
from typing import Callable, Optional

import structlog

from .errors import RecordValidationError
from .matcher import normalize_event_title, normalize_venue_name
from .models import (
    CanonicalEvent,
    CanonicalVenue,
    MatchDecision,
    StoredEvent,
    StoredVenue,
    UpsertAction,
    utcnow,
)
from .store import RecordStore
from .taxonomy import CATEGORIES, tags_closed_over

logger = structlog.get_logger()

VENUE_FIELDS = (
    "name", "address", "city", "state", "zip_code", "country", "latitude",
    "longitude", "capacity", "website", "image_url", "rating", "social_page_id",
)

EVENT_FIELDS = (
    "title", "description", "start_at", "end_at", "doors_open_at",
    "image_url", "is_free", "price_min_cents", "price_max_cents", "status",
    "external_url",
)

SLUG_SUFFIX_LENGTH = 6


def validate_coordinates(latitude: Optional[float], longitude: Optional[float]) -> None:
    """Reject non-finite coordinates and values outside the valid lat/lng ranges."""
    for label, value, bound in (("latitude", latitude, 90), ("longitude", longitude, 180)):
        if value is None:
            continue
        if not math.isfinite(value):
            raise RecordValidationError(f"{label} {value} is not a finite number")
        if not -bound <= value <= bound:
            raise RecordValidationError(f"{label} {value} outside [-{bound}, {bound}]")


def _empty(value) -> bool:
    return value is None or value == "" or value == []


def _merge(row_data: dict, incoming: dict, fields: tuple[str, ...], owner: bool) -> dict:
    merged = dict(row_data)
    for field in fields:
        value = incoming.get(field)
        if _empty(value):
            continue
        if owner or _empty(merged.get(field)):
            merged[field] = value
    return merged


class UpsertWriter:
    """Applies match decisions to the store and reports the action taken."""

    def __init__(
        self,
        store: RecordStore,
        clock: Callable[[], datetime] = utcnow,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ):
        self.store = store
        self.clock = clock
        self.id_factory = id_factory

    def _slug(self, base: str, row_id: str, fallback: str) -> str:
        return f"{base or fallback}-{row_id[:SLUG_SUFFIX_LENGTH]}"

    # --- venues ---------------------------------------------------------------

    def apply_venue(self, venue: CanonicalVenue, decision: MatchDecision) -> tuple[str, UpsertAction]:
        validate_coordinates(venue.latitude, venue.longitude)
        source = venue.external_source or "unknown"

        if decision.is_new:
            now = self.clock()
            venue_id = self.id_factory()
            row = StoredVenue(
                id=venue_id,
                slug=self._slug(venue.slug, venue_id, "venue"),
                name_key=normalize_venue_name(venue.name),
                owner_source=source,
                external_ids=(
                    {venue.external_source: venue.external_id}
                    if venue.external_source and venue.external_id else {}
                ),
                created_at=now,
                updated_at=now,
                **{f: getattr(venue, f) for f in VENUE_FIELDS},
            )
            self.store.insert_venue(row)
            logger.debug("venue_created", venue_id=venue_id, name=venue.name, source=source)
            return venue_id, UpsertAction.CREATED

        existing = self.store.get_venue(decision.matched_id)
        if existing is None:
            raise RecordValidationError(f"matched venue {decision.matched_id} no longer exists")

        owner = existing.owner_source == source
        before = existing.model_dump()
        merged = _merge(before, venue.model_dump(), VENUE_FIELDS, owner)
        merged["name_key"] = normalize_venue_name(merged["name"])
        if venue.external_source and venue.external_id:
            merged["external_ids"] = {
                venue.external_source: venue.external_id, **before["external_ids"]
            }

        if merged == before:
            return existing.id, UpsertAction.UNCHANGED

        merged["updated_at"] = self.clock()
        self.store.update_venue(StoredVenue.model_validate(merged))
        logger.debug("venue_updated", venue_id=existing.id, source=source, owner=owner)
        return existing.id, UpsertAction.UPDATED

    def merge_venues(self, primary_id: str, duplicate_id: str) -> StoredVenue:
        """
        Fold a duplicate venue into the primary one and delete it.

        The primary keeps its own values; empty fields are filled from the
        duplicate and the higher rating wins. External ids of both are kept,
        the primary's winning per source. Events and social pages of the
        duplicate move to the primary, and event coordinates follow the
        merged venue.
        """
        if primary_id == duplicate_id:
            raise RecordValidationError(f"cannot merge venue {primary_id} into itself")
        primary = self.store.get_venue(primary_id)
        if primary is None:
            raise RecordValidationError(f"primary venue not found: {primary_id}")
        duplicate = self.store.get_venue(duplicate_id)
        if duplicate is None:
            raise RecordValidationError(f"duplicate venue not found: {duplicate_id}")

        before = primary.model_dump()
        merged = _merge(
            before,
            duplicate.model_dump(),
            tuple(f for f in VENUE_FIELDS if f != "rating"),
            owner=False,
        )
        if duplicate.rating is not None and (primary.rating is None or duplicate.rating > primary.rating):
            merged["rating"] = duplicate.rating
        merged["external_ids"] = {**duplicate.external_ids, **primary.external_ids}

        now = self.clock()
        moved = self.store.reassign_events(duplicate_id, primary_id, now)

        pages = [p for p in self.store.list_pages() if p.venue_id == duplicate_id]
        for page in pages:
            self.store.update_page(page.model_copy(update={"venue_id": primary_id, "updated_at": now}))

        self.store.delete_venue(duplicate_id)

        if merged != before:
            merged["updated_at"] = now
            self.store.update_venue(StoredVenue.model_validate(merged))
        if (merged["latitude"], merged["longitude"]) != (primary.latitude, primary.longitude):
            # Primary just gained coordinates; its events pick them up too
            self.store.reassign_events(primary_id, primary_id, now)

        logger.info(
            "venues_merged",
            primary_id=primary_id,
            duplicate_id=duplicate_id,
            events_moved=moved,
            pages_moved=len(pages),
        )
        return self.store.get_venue(primary_id)

    # --- events ---------------------------------------------------------------

    def apply_event(
        self,
        event: CanonicalEvent,
        venue_id: str,
        decision: MatchDecision,
    ) -> tuple[str, UpsertAction]:
        if event.category not in CATEGORIES:
            raise RecordValidationError(f"unknown category '{event.category}'")
        if not tags_closed_over(event.tags, event.category):
            raise RecordValidationError(
                f"tags {event.tags} not allowed for category '{event.category}'"
            )
        venue = self.store.get_venue(venue_id)
        if venue is None:
            raise RecordValidationError(f"event '{event.title}' references unknown venue {venue_id}")

        source = event.external_source

        if decision.is_new:
            now = self.clock()
            event_id = self.id_factory()
            row = StoredEvent(
                id=event_id,
                slug=self._slug(event.slug, event_id, "event"),
                title_key=normalize_event_title(event.title),
                venue_id=venue_id,
                category=event.category,
                tags=list(event.tags),
                latitude=venue.latitude,
                longitude=venue.longitude,
                owner_source=source,
                external_ids={source: event.external_id} if event.external_id else {},
                created_at=now,
                updated_at=now,
                **{
                    f: getattr(event, f) for f in EVENT_FIELDS
                    if f != "status" or event.status is not None
                },
            )
            self.store.insert_event(row)
            logger.debug("event_created", event_id=event_id, title=event.title, source=source)
            return event_id, UpsertAction.CREATED

        existing = self.store.get_event(decision.matched_id)
        if existing is None:
            raise RecordValidationError(f"matched event {decision.matched_id} no longer exists")

        owner = existing.owner_source == source
        before = existing.model_dump()
        merged = _merge(before, event.model_dump(), EVENT_FIELDS, owner)
        merged["title_key"] = normalize_event_title(merged["title"])

        if owner:
            merged["venue_id"] = venue_id
            if event.category != existing.category:
                merged["category"] = event.category
                merged["tags"] = list(event.tags)
            elif event.tags:
                merged["tags"] = list(event.tags)
        elif not existing.tags and event.category == existing.category:
            merged["tags"] = list(event.tags)

        # Geolocation always follows the event's venue
        if merged["venue_id"] != venue.id:
            venue = self.store.get_venue(merged["venue_id"]) or venue
        merged["latitude"] = venue.latitude
        merged["longitude"] = venue.longitude

        if event.external_id:
            merged["external_ids"] = {source: event.external_id, **before["external_ids"]}

        if not tags_closed_over(merged["tags"], merged["category"]):
            raise RecordValidationError(
                f"merged tags {merged['tags']} not allowed for category '{merged['category']}'"
            )

        if merged == before:
            return existing.id, UpsertAction.UNCHANGED

        merged["updated_at"] = self.clock()
        self.store.update_event(StoredEvent.model_validate(merged))
        logger.debug("event_updated", event_id=existing.id, source=source, owner=owner)
        return existing.id, UpsertAction.UPDATED
