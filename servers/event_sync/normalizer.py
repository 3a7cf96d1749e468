"""
Raw source records -> canonical events and venues.

Everything here is deterministic and side-effect free: no clock reads,
no I/O. Timestamps come out timezone-aware in UTC; naive source-local
times are interpreted in the metro timezone carried in the record
context.
"""

import hashlib
import re
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Union

from dateutil import parser as date_parser
from dateutil import tz

from .errors import RecordValidationError
from .models import CanonicalEvent, CanonicalVenue, EventStatus, RawRecord, SourceKind
from .taxonomy import DEFAULT_CATEGORY, extract_keyword_tags, infer_category, normalize_tags


CanonicalRecord = Union[CanonicalEvent, CanonicalVenue]

TM_SEGMENT_TO_CATEGORY = {
    "Music": "concerts",
    "Sports": "sports",
    "Arts & Theatre": "theater",
    "Comedy": "comedy",
    "Film": "arts",
    "Miscellaneous": "community",
    "Undefined": "community",
}

SG_TYPE_TO_CATEGORY = {
    "concert": "concerts",
    "concerts": "concerts",
    "sports": "sports",
    "comedy": "comedy",
    "theater": "theater",
    "theatre": "theater",
    "broadway_tickets_national": "theater",
    "dance_performance_tour": "arts",
    "classical": "arts",
    "classical_orchestral_instrumental": "arts",
    "literary": "arts",
    "film": "arts",
    "family": "community",
    "festival": "festivals",
    "festivals": "festivals",
    "nightlife": "nightlife",
    "club": "nightlife",
}

SG_IMAGE_KEYS = ("sg_image_w1920", "huge", "banner", "fb_600_315", "criteo_400_300")

SCHEMA_CANCELLED = "EventCancelled"


def slugify(text: str) -> str:
    """Lower-case, strip non-word characters, collapse whitespace to hyphens."""
    slug = text.lower()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"[\s_]+", "-", slug)
    slug = re.sub(r"-{2,}", "-", slug)
    return slug.strip("-")


def stable_external_id(*parts: str) -> str:
    """Deterministic id for sources without native ids: sha256, 16 hex chars."""
    key = "|".join(parts)
    return hashlib.sha256(key.encode()).hexdigest()[:16]


def parse_datetime(value: Any, tz_name: Optional[str] = None) -> Optional[datetime]:
    """
    Parse a timestamp into an aware UTC datetime.

    Naive values are interpreted in tz_name (UTC if absent).
    Returns None for empty or unparseable input.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = date_parser.parse(str(value))
        except (ValueError, OverflowError):
            return None

    if parsed.tzinfo is None:
        zone = tz.gettz(tz_name) if tz_name else None
        parsed = parsed.replace(tzinfo=zone or timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_google_address(formatted: str) -> dict[str, Optional[str]]:
    """
    Split a Places formattedAddress into its parts.

    "1519 1st Ave, Seattle, WA 98101, USA" ->
    address="1519 1st Ave", city="Seattle", state="WA", zip_code="98101",
    country="USA".
    """
    result: dict[str, Optional[str]] = {
        "address": None, "city": None, "state": None,
        "zip_code": None, "country": None,
    }
    if not formatted:
        return result

    parts = [p.strip() for p in formatted.split(",")]
    result["country"] = parts[-1] or None

    if len(parts) >= 2:
        state_zip = parts[-2]
        match = re.match(r"^([A-Za-z][A-Za-z .]+?)\s+(\d{5}(?:-\d{4})?)$", state_zip)
        if match:
            result["state"] = match.group(1).strip()
            result["zip_code"] = match.group(2)
        else:
            result["state"] = state_zip or None

    if len(parts) >= 3:
        result["city"] = parts[-3] or None

    if len(parts) >= 4:
        result["address"] = ", ".join(parts[:-3]) or None

    return result


def _float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise RecordValidationError(f"invalid coordinate: {value!r}")


def _require(value: Any, field: str, source: str) -> Any:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise RecordValidationError(f"{source} record missing required field '{field}'")
    return value.strip() if isinstance(value, str) else value


def _event_slug(title: str, city: Optional[str]) -> str:
    return slugify(f"{title} {city}" if city else title)


# --- Ticketmaster ------------------------------------------------------------

def _tm_date(node: Optional[dict], tz_name: Optional[str]) -> Optional[datetime]:
    if not node:
        return None
    if node.get("dateTime"):
        parsed = parse_datetime(node["dateTime"], tz_name)
        if parsed:
            return parsed
    if node.get("localDate"):
        local = node["localDate"]
        if node.get("localTime"):
            local = f"{local}T{node['localTime']}"
        return parse_datetime(local, tz_name)
    return None


def _tm_image(images: list[dict]) -> Optional[str]:
    if not images:
        return None
    pool = [img for img in images if not img.get("fallback")] or images
    wide = sorted(
        (img for img in pool if img.get("ratio") == "16_9" and img.get("width", 0) >= 640),
        key=lambda img: -img.get("width", 0),
    )
    large = sorted(
        (img for img in pool if img.get("width", 0) >= 640),
        key=lambda img: -img.get("width", 0),
    )
    for candidates in (wide, large, pool):
        if candidates and candidates[0].get("url"):
            return candidates[0]["url"]
    return None


def _tm_venue(node: dict) -> CanonicalVenue:
    name = _require(node.get("name"), "venue.name", "ticketmaster")
    city = (node.get("city") or {}).get("name")
    address = ", ".join(
        line for line in (
            (node.get("address") or {}).get("line1"),
            (node.get("address") or {}).get("line2"),
        ) if line
    ) or None
    location = node.get("location") or {}
    return CanonicalVenue(
        name=name,
        address=address,
        city=city,
        state=(node.get("state") or {}).get("stateCode"),
        zip_code=node.get("postalCode"),
        country=(node.get("country") or {}).get("countryCode"),
        latitude=_float(location.get("latitude")),
        longitude=_float(location.get("longitude")),
        website=node.get("url"),
        external_source="ticketmaster",
        external_id=str(node["id"]) if node.get("id") else None,
        slug=_event_slug(name, city),
    )


def _normalize_ticketmaster(raw: RawRecord) -> CanonicalEvent:
    p = raw.payload
    tz_name = raw.context.get("timezone")
    event_id = _require(p.get("id"), "id", raw.source)
    title = _require(p.get("name"), "name", raw.source)

    dates = p.get("dates") or {}
    start_at = _tm_date(dates.get("start"), tz_name)
    if start_at is None:
        raise RecordValidationError(f"{raw.source} event {event_id} has no usable start date")

    venues = (p.get("_embedded") or {}).get("venues") or []
    if not venues:
        raise RecordValidationError(f"{raw.source} event {event_id} has no venue")
    venue = _tm_venue(venues[0])

    classifications = p.get("classifications") or []
    primary = next((c for c in classifications if c.get("primary")), None)
    if primary is None and classifications:
        primary = classifications[0]
    segment = ((primary or {}).get("segment") or {}).get("name", "Music")
    category = TM_SEGMENT_TO_CATEGORY.get(segment, DEFAULT_CATEGORY)

    raw_tags: list[str] = []
    for c in classifications:
        for level in ("genre", "subGenre", "type", "subType"):
            name = (c.get(level) or {}).get("name")
            if name and name != "Undefined":
                raw_tags.append(name)

    ranges = p.get("priceRanges") or []
    price_min = min((r["min"] for r in ranges if r.get("min") is not None), default=None)
    price_max = max((r["max"] for r in ranges if r.get("max") is not None), default=None)

    status_code = (dates.get("status") or {}).get("code")
    if status_code in ("cancelled", "postponed"):
        status = EventStatus.CANCELLED
    elif status_code == "offsale":
        status = EventStatus.SOLDOUT
    else:
        status = EventStatus.PUBLISHED

    return CanonicalEvent(
        title=title,
        description=p.get("description") or p.get("info") or p.get("pleaseNote"),
        start_at=start_at,
        end_at=_tm_date(dates.get("end"), tz_name),
        doors_open_at=parse_datetime(dates.get("doorOpenDateTime"), tz_name),
        venue=venue,
        category=category,
        tags=normalize_tags(raw_tags, category),
        image_url=_tm_image(p.get("images") or []),
        is_free=price_min == 0 if price_min is not None else None,
        price_min_cents=round(price_min * 100) if price_min is not None else None,
        price_max_cents=round(price_max * 100) if price_max is not None else None,
        status=status,
        external_source=raw.source,
        external_id=str(event_id),
        external_url=p.get("url"),
        slug=_event_slug(title, venue.city),
    )


# --- SeatGeek ----------------------------------------------------------------

def _sg_utc(value: Optional[str]) -> Optional[datetime]:
    # datetime_utc is naive UTC
    return parse_datetime(value, "UTC")


def _normalize_seatgeek(raw: RawRecord) -> CanonicalEvent:
    p = raw.payload
    event_id = _require(p.get("id"), "id", raw.source)
    title = _require(p.get("title") or p.get("short_title"), "title", raw.source)

    start_at = _sg_utc(p.get("datetime_utc"))
    if start_at is None:
        raise RecordValidationError(f"{raw.source} event {event_id} has no usable start date")

    node = p.get("venue")
    if not node:
        raise RecordValidationError(f"{raw.source} event {event_id} has no venue")
    name = _require(node.get("name"), "venue.name", raw.source)
    location = node.get("location") or {}
    venue = CanonicalVenue(
        name=name,
        address=node.get("address"),
        city=node.get("city"),
        state=node.get("state"),
        zip_code=node.get("postal_code"),
        country=node.get("country"),
        latitude=_float(location.get("lat")),
        longitude=_float(location.get("lon")),
        capacity=node.get("capacity") or None,
        website=node.get("url"),
        external_source=raw.source,
        external_id=str(node["id"]) if node.get("id") else None,
        slug=_event_slug(name, node.get("city")),
    )

    event_type = (p.get("type") or "").lower().strip()
    category = SG_TYPE_TO_CATEGORY.get(event_type, DEFAULT_CATEGORY)

    raw_tags = [event_type] if event_type else []
    raw_tags += [t["name"] for t in p.get("taxonomies") or [] if t.get("name")]
    performers = p.get("performers") or []
    for performer in performers:
        if performer.get("type"):
            raw_tags.append(performer["type"])
        raw_tags += [g["name"] for g in performer.get("genres") or [] if g.get("name")]

    image_url = None
    if performers:
        images = performers[0].get("images") or {}
        image_url = next((images[k] for k in SG_IMAGE_KEYS if images.get(k)), None)
        image_url = image_url or performers[0].get("image")

    stats = p.get("stats") or {}
    lowest, highest = stats.get("lowest_price"), stats.get("highest_price")
    has_low = lowest is not None and lowest > 0
    has_high = highest is not None and highest > 0
    if has_low or has_high:
        is_free: Optional[bool] = False
    elif lowest == 0 and highest == 0:
        is_free = True
    else:
        is_free = None

    status = EventStatus.CANCELLED if p.get("status") == "cancelled" else EventStatus.PUBLISHED

    return CanonicalEvent(
        title=title,
        description=p.get("description") or None,
        start_at=start_at,
        end_at=_sg_utc(p.get("enddatetime_utc")),
        venue=venue,
        category=category,
        tags=normalize_tags(raw_tags, category),
        image_url=image_url,
        is_free=is_free,
        price_min_cents=round(lowest * 100) if has_low else None,
        price_max_cents=round(highest * 100) if has_high else None,
        status=status,
        external_source=raw.source,
        external_id=str(event_id),
        external_url=p.get("url"),
        slug=_event_slug(title, venue.city),
    )


# --- Social page (JSON-LD events) ---------------------------------------------

def _first(value: Any) -> Optional[str]:
    if isinstance(value, list):
        return value[0] if value else None
    return value or None


def _normalize_social_page(raw: RawRecord) -> CanonicalEvent:
    p = raw.payload
    ctx = raw.context
    tz_name = ctx.get("timezone")
    title = _require(p.get("name"), "name", raw.source)
    start_raw = _require(p.get("startDate"), "startDate", raw.source)
    start_at = parse_datetime(start_raw, tz_name)
    if start_at is None:
        raise RecordValidationError(f"{raw.source} event '{title}' has unparseable startDate")

    location = p.get("location") or {}
    if isinstance(location, list):
        location = location[0] if location else {}
    venue: Optional[CanonicalVenue] = None
    if location.get("name"):
        address = location.get("address") or {}
        if isinstance(address, str):
            address = {"streetAddress": address}
        geo = location.get("geo") or {}
        city = address.get("addressLocality")
        venue = CanonicalVenue(
            name=location["name"].strip(),
            address=address.get("streetAddress"),
            city=city,
            state=address.get("addressRegion"),
            zip_code=address.get("postalCode"),
            country=address.get("addressCountry"),
            latitude=_float(geo.get("latitude")),
            longitude=_float(geo.get("longitude")),
            social_page_id=ctx.get("page_id"),
            slug=_event_slug(location["name"], city),
        )
    elif not ctx.get("venue_id"):
        raise RecordValidationError(f"{raw.source} event '{title}' has no location")

    description = p.get("description")
    category = infer_category(title, description)
    status = (
        EventStatus.CANCELLED
        if str(p.get("eventStatus") or "").endswith(SCHEMA_CANCELLED)
        else EventStatus.PUBLISHED
    )
    offers = p.get("offers") or {}
    if isinstance(offers, list):
        offers = offers[0] if offers else {}
    page_key = ctx.get("page_url") or ctx.get("page_id") or ""

    return CanonicalEvent(
        title=title,
        description=description,
        start_at=start_at,
        end_at=parse_datetime(p.get("endDate"), tz_name),
        venue=venue,
        venue_id=None if venue else ctx.get("venue_id"),
        category=category,
        tags=normalize_tags(extract_keyword_tags(title, description), category),
        image_url=_first(p.get("image")),
        status=status,
        external_source=raw.source,
        external_id=raw.native_id or stable_external_id(page_key, title, start_raw),
        external_url=offers.get("url") or p.get("url"),
        slug=_event_slug(title, venue.city if venue else None),
    )


# --- Social page (Graph API events) ----------------------------------------------

def _normalize_graph_event(raw: RawRecord) -> CanonicalEvent:
    p = raw.payload
    ctx = raw.context
    tz_name = ctx.get("timezone")
    event_id = str(_require(p.get("id"), "id", raw.source))
    title = _require(p.get("name"), "name", raw.source)
    start_at = parse_datetime(_require(p.get("start_time"), "start_time", raw.source), tz_name)
    if start_at is None:
        raise RecordValidationError(f"{raw.source} event '{title}' has unparseable start_time")

    place = p.get("place") or {}
    venue: Optional[CanonicalVenue] = None
    if place.get("name"):
        location = place.get("location") or {}
        city = location.get("city")
        venue = CanonicalVenue(
            name=place["name"].strip(),
            address=location.get("street"),
            city=city,
            state=location.get("state"),
            zip_code=location.get("zip"),
            country=location.get("country"),
            latitude=_float(location.get("latitude")),
            longitude=_float(location.get("longitude")),
            social_page_id=ctx.get("page_id"),
            slug=_event_slug(place["name"], city),
        )
    elif not ctx.get("venue_id"):
        raise RecordValidationError(f"{raw.source} event '{title}' has no place")

    description = p.get("description")
    fb_category = p.get("category")
    category = infer_category(title, description, fb_category)
    return CanonicalEvent(
        title=title,
        description=description,
        start_at=start_at,
        end_at=parse_datetime(p.get("end_time"), tz_name),
        venue=venue,
        venue_id=None if venue else ctx.get("venue_id"),
        category=category,
        tags=normalize_tags(extract_keyword_tags(title, description, fb_category), category),
        image_url=(p.get("cover") or {}).get("source"),
        status=EventStatus.CANCELLED if p.get("is_canceled") else EventStatus.PUBLISHED,
        external_source=raw.source,
        external_id=event_id,
        external_url=p.get("ticket_uri") or f"https://www.facebook.com/events/{event_id}",
        slug=_event_slug(title, venue.city if venue else None),
    )


# --- Venue website -------------------------------------------------------------

def _normalize_venue_website(raw: RawRecord) -> CanonicalEvent:
    p = raw.payload
    ctx = raw.context
    venue_id = _require(ctx.get("venue_id"), "context.venue_id", raw.source)
    venue_name = ctx.get("venue_name") or ""
    title = _require(p.get("title"), "title", raw.source)
    start_raw = _require(p.get("start_date"), "start_date", raw.source)
    start_at = parse_datetime(start_raw, ctx.get("timezone"))
    if start_at is None:
        raise RecordValidationError(f"{raw.source} event '{title}' has unparseable start_date")

    description = p.get("description")
    category = infer_category(title, description)
    return CanonicalEvent(
        title=title,
        description=description,
        start_at=start_at,
        end_at=parse_datetime(p.get("end_date"), ctx.get("timezone")),
        venue_id=venue_id,
        category=category,
        tags=normalize_tags(extract_keyword_tags(title, description), category),
        image_url=p.get("image_url"),
        status=EventStatus.PUBLISHED,
        external_source=raw.source,
        external_id=stable_external_id(slugify(venue_name), title, start_raw),
        external_url=p.get("ticket_url") or p.get("source_url"),
        slug=slugify(f"{title} {venue_name}"),
    )


# --- Google Places -------------------------------------------------------------

def _normalize_google_place(raw: RawRecord) -> CanonicalVenue:
    p = raw.payload
    place_id = _require(p.get("id"), "id", raw.source)
    name = _require((p.get("displayName") or {}).get("text"), "displayName", raw.source)
    parsed = parse_google_address(p.get("formattedAddress") or "")
    location = p.get("location") or {}
    return CanonicalVenue(
        name=name,
        address=parsed["address"],
        city=parsed["city"],
        state=parsed["state"],
        zip_code=parsed["zip_code"],
        country=parsed["country"],
        latitude=_float(location.get("latitude")),
        longitude=_float(location.get("longitude")),
        website=p.get("websiteUri"),
        rating=p.get("rating"),
        external_source=raw.source,
        external_id=str(place_id),
        slug=_event_slug(name, parsed["city"]),
    )


_NORMALIZERS: dict[SourceKind, Callable[[RawRecord], CanonicalRecord]] = {
    SourceKind.TICKETMASTER: _normalize_ticketmaster,
    SourceKind.SEATGEEK: _normalize_seatgeek,
    SourceKind.SOCIAL_PAGE: _normalize_social_page,
    SourceKind.SOCIAL_GRAPH: _normalize_graph_event,
    SourceKind.VENUE_WEBSITE: _normalize_venue_website,
    SourceKind.GOOGLE_PLACES: _normalize_google_place,
}


def normalize(kind: SourceKind, raw: RawRecord) -> CanonicalRecord:
    """
    Convert a raw source record into its canonical shape.

    Raises:
        RecordValidationError: If required fields are missing or malformed
        ValueError: If kind has no normalizer
    """
    try:
        handler = _NORMALIZERS[kind]
    except KeyError:
        raise ValueError(f"No normalizer for source kind {kind!r}")
    try:
        return handler(raw)
    except RecordValidationError:
        raise
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        # Payload shape did not match what the source documents
        raise RecordValidationError(f"{raw.source} record malformed: {e}") from e
