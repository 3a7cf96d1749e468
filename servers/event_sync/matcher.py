"""
Matching of canonical records against stored entities.

Venue policy, first rule with a candidate decides:
1. Same (source, external id)
2. Same normalized name within VENUE_MATCH_RADIUS_M (haversine)
3. No coordinates on one side: same normalized name and same city

Event policy:
1. Same (source, external id)
2. Same venue, same normalized title, start on the same UTC calendar day,
   skipping rows the record's own source already lists under another id

Two or more candidates at the deciding rule is a MatchAmbiguityError;
we never pick one silently. Candidate lists come back from the store
sorted by id, so decisions do not depend on insertion order.

find_duplicate_events is a separate, read-only audit that flags likely
cross-source duplicates already in the store for human review.
"""

import math
import re
from collections import defaultdict
from datetime import timezone
from itertools import combinations
from typing import Optional

from rapidfuzz.distance import Levenshtein

from .errors import MatchAmbiguityError
from .models import CanonicalEvent, CanonicalVenue, DuplicatePair, MatchDecision, StoredEvent
from .store import RecordStore


VENUE_MATCH_RADIUS_M = 150.0

EARTH_RADIUS_KM = 6371.0

# Longest first so "music hall" wins over "hall"
VENUE_SUFFIXES = sorted([
    "amphitheater", "amphitheatre", "auditorium", "ballroom", "center",
    "centre", "club", "coliseum", "complex", "field", "forum", "garden",
    "gardens", "hall", "house", "lounge", "music hall", "pavilion", "plaza",
    "room", "stadium", "stage", "theater", "theatre", "arena", "venue",
], key=len, reverse=True)

# Duplicate audit thresholds
SIMILAR_TITLE_CLOSE = 0.85
SIMILAR_TITLE_SAME_DAY = 0.80
CLOSE_WINDOW_SECONDS = 7200


def normalize_venue_name(name: str) -> str:
    """Normalize venue name for comparison."""
    if not name:
        return ""

    name = re.sub(r"[^\w\s]", "", name.lower())
    name = re.sub(r"\s+", " ", name).strip()

    if name.startswith("the "):
        name = name[4:]

    for suffix in VENUE_SUFFIXES:
        stripped = re.sub(rf"\b{re.escape(suffix)}$", "", name).strip()
        # Keep the name if the suffix is all there is ("The Stage")
        if stripped and stripped != name:
            name = stripped
            break

    return name


def normalize_event_title(title: str) -> str:
    """Normalize event title for comparison."""
    if not title:
        return ""

    title = re.sub(r"[^\w\s]", "", title.lower())
    title = re.sub(r"\s+", " ", title).strip()
    return re.sub(r"^(the|a|an)\s+", "", title)


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 1000 * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def title_similarity(a: str, b: str) -> float:
    """Normalized Levenshtein similarity of two normalized titles (0-1)."""
    a, b = normalize_event_title(a), normalize_event_title(b)
    if not a or not b:
        return 0.0
    return Levenshtein.normalized_similarity(a, b)


def _has_coords(row) -> bool:
    return row.latitude is not None and row.longitude is not None


def _other_listing(stored: StoredEvent, event: CanonicalEvent) -> bool:
    """True when the record's own source already lists the stored row under another id.

    An early and a late show with the same title are two listings at the
    source, so they must never fold into one row.
    """
    if not event.external_id:
        return False
    known = stored.external_ids.get(event.external_source)
    return known is not None and known != event.external_id


def _decide(entity: str, rule: str, candidates: list) -> Optional[MatchDecision]:
    if not candidates:
        return None
    if len(candidates) > 1:
        raise MatchAmbiguityError(entity, rule, [c.id for c in candidates])
    return MatchDecision(matched_id=candidates[0].id, rule=rule)


class Matcher:
    """Decides whether a canonical record is an existing entity or new."""

    def __init__(self, store: RecordStore, radius_m: float = VENUE_MATCH_RADIUS_M):
        self.store = store
        self.radius_m = radius_m

    def match_venue(self, venue: CanonicalVenue) -> MatchDecision:
        if venue.external_source and venue.external_id:
            found = self.store.find_venue_by_external_id(venue.external_source, venue.external_id)
            if found:
                return MatchDecision(matched_id=found.id, rule="external_id")

        name_key = normalize_venue_name(venue.name)
        same_name = self.store.find_venues_by_name_key(name_key) if name_key else []

        if _has_coords(venue):
            nearby = [
                v for v in same_name
                if _has_coords(v)
                and haversine_m(venue.latitude, venue.longitude, v.latitude, v.longitude) <= self.radius_m
            ]
            decision = _decide("venue", "name_proximity", nearby)
            if decision:
                return decision
            same_name = [v for v in same_name if not _has_coords(v)]

        if venue.city:
            same_city = [
                v for v in same_name
                if v.city and v.city.strip().lower() == venue.city.strip().lower()
            ]
            decision = _decide("venue", "name_city", same_city)
            if decision:
                return decision

        return MatchDecision(rule="new")

    def match_event(self, event: CanonicalEvent, venue_id: str) -> MatchDecision:
        if event.external_id:
            found = self.store.find_event_by_external_id(event.external_source, event.external_id)
            if found:
                return MatchDecision(matched_id=found.id, rule="external_id")

        title_key = normalize_event_title(event.title)
        day = event.start_at.astimezone(timezone.utc).date()
        same_day = [
            e for e in self.store.find_events_on_day(venue_id, day)
            if e.title_key == title_key and not _other_listing(e, event)
        ]
        decision = _decide("event", "venue_title_day", same_day)
        if decision:
            return decision

        return MatchDecision(rule="new")


def _pair_score(a: StoredEvent, b: StoredEvent) -> Optional[tuple[float, str]]:
    similarity = title_similarity(a.title, b.title)
    gap = abs((a.start_at - b.start_at).total_seconds())
    if similarity >= SIMILAR_TITLE_CLOSE and gap <= CLOSE_WINDOW_SECONDS:
        return 0.92, f"similar titles ({similarity:.0%}) within 2 hours"
    if similarity >= SIMILAR_TITLE_SAME_DAY:
        return 0.75, f"similar titles ({similarity:.0%}) on the same day"
    return None


def find_duplicate_events(store: RecordStore) -> list[DuplicatePair]:
    """
    Flag likely duplicate events for review. Never merges anything.

    Only events at the same venue on the same UTC day are compared.
    Results are sorted by confidence, highest first.
    """
    groups: dict[tuple[str, object], list[StoredEvent]] = defaultdict(list)
    for event in store.list_events():
        day = event.start_at.astimezone(timezone.utc).date()
        groups[(event.venue_id, day)].append(event)

    pairs: list[DuplicatePair] = []
    for events in groups.values():
        for a, b in combinations(sorted(events, key=lambda e: e.id), 2):
            scored = _pair_score(a, b)
            if scored is None:
                continue
            confidence, reason = scored
            pairs.append(DuplicatePair(
                event_id_a=a.id,
                event_id_b=b.id,
                title_a=a.title,
                title_b=b.title,
                confidence=confidence,
                reason=reason,
            ))

    pairs.sort(key=lambda p: (-p.confidence, p.event_id_a, p.event_id_b))
    return pairs


def format_duplicate_summary(pairs: list[DuplicatePair]) -> str:
    """Format the duplicate audit as a human-readable summary."""
    if not pairs:
        return "No likely duplicates found."

    lines = [f"Likely duplicates: {len(pairs)}", ""]
    for pair in pairs:
        lines.append(
            f"  - '{pair.title_a}' / '{pair.title_b}' "
            f"({pair.reason}, confidence {pair.confidence:.0%})"
        )
    return "\n".join(lines)
