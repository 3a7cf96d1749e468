"""
Pydantic models for the sync engine.

These models define the core data types passed between components:
- Metro: a configured geographic market
- RawRecord / FetchBatch: what source adapters hand back
- CanonicalVenue / CanonicalEvent: normalized, source-agnostic records
- StoredVenue / StoredEvent: canonical records as persisted by the writer
- SocialPageSource: a registered social page and its lifecycle status
- SyncRunLog: append-only audit row for one metro run
- Result models returned to the trigger caller
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, computed_field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SourceKind(str, Enum):
    """Tag used to dispatch to a source adapter implementation."""

    TICKETMASTER = "ticketmaster"
    SEATGEEK = "seatgeek"
    SOCIAL_PAGE = "facebook"
    SOCIAL_GRAPH = "facebook_graph"
    VENUE_WEBSITE = "venue_website"
    GOOGLE_PLACES = "google_places"


EVENT_SOURCE_KINDS = frozenset({
    SourceKind.TICKETMASTER,
    SourceKind.SEATGEEK,
    SourceKind.SOCIAL_PAGE,
    SourceKind.SOCIAL_GRAPH,
    SourceKind.VENUE_WEBSITE,
})

DISCOVERY_SOURCE_KINDS = frozenset({SourceKind.GOOGLE_PLACES})


class Metro(BaseModel):
    """A geographic market used to scope all source queries."""

    model_config = {"frozen": True}

    slug: str
    name: str  # city name as sources expect it
    display_name: str
    state_code: str
    lat: float
    lng: float
    radius_mi: int
    radius_m: int
    enabled: bool = True
    timezone: str = "UTC"


class RawRecord(BaseModel):
    """An opaque source payload plus the context needed to normalize it."""

    source: str
    kind: SourceKind
    native_id: Optional[str] = None
    payload: dict[str, Any]
    context: dict[str, Any] = Field(default_factory=dict)


class FetchBatch(BaseModel):
    """Records returned by one adapter call, in adapter order."""

    source: str
    records: list[RawRecord] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class CanonicalVenue(BaseModel):
    """Normalized venue; coordinates are checked by the writer, not here."""

    name: str
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    capacity: Optional[int] = None
    website: Optional[str] = None
    image_url: Optional[str] = None
    rating: Optional[float] = None
    social_page_id: Optional[str] = None

    external_source: Optional[str] = None
    external_id: Optional[str] = None
    slug: str


class EventStatus(str, Enum):
    PUBLISHED = "published"
    CANCELLED = "cancelled"
    SOLDOUT = "soldout"


class CanonicalEvent(BaseModel):
    """Normalized event with its venue embedded or referenced."""

    title: str
    description: Optional[str] = None

    # Timing, always timezone-aware UTC
    start_at: datetime
    end_at: Optional[datetime] = None
    doors_open_at: Optional[datetime] = None

    # Location: an embedded venue to resolve, or an already-known venue id
    venue: Optional[CanonicalVenue] = None
    venue_id: Optional[str] = None

    # Classification
    category: str
    tags: list[str] = Field(default_factory=list)

    # Details
    image_url: Optional[str] = None
    is_free: Optional[bool] = None
    price_min_cents: Optional[int] = None
    price_max_cents: Optional[int] = None
    status: Optional[EventStatus] = None

    # Source tracking
    external_source: str
    external_id: Optional[str] = None
    external_url: Optional[str] = None
    slug: str


class StoredVenue(BaseModel):
    """A venue row as held by the record store."""

    id: str
    slug: str
    name: str
    name_key: str
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    capacity: Optional[int] = None
    website: Optional[str] = None
    image_url: Optional[str] = None
    rating: Optional[float] = None
    social_page_id: Optional[str] = None

    owner_source: str
    external_ids: dict[str, str] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime


class StoredEvent(BaseModel):
    """An event row as held by the record store."""

    id: str
    slug: str
    title: str
    title_key: str
    description: Optional[str] = None
    start_at: datetime
    end_at: Optional[datetime] = None
    doors_open_at: Optional[datetime] = None
    venue_id: str
    category: str
    tags: list[str] = Field(default_factory=list)
    image_url: Optional[str] = None
    is_free: Optional[bool] = None
    price_min_cents: Optional[int] = None
    price_max_cents: Optional[int] = None
    status: EventStatus = EventStatus.PUBLISHED
    external_url: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    owner_source: str
    external_ids: dict[str, str] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime


class PageStatus(str, Enum):
    PENDING_REVIEW = "pending_review"
    ACTIVE = "active"
    PAUSED = "paused"
    FAILED = "failed"


class SocialPageSource(BaseModel):
    """A registered public social page scraped for events."""

    id: str
    page_url: str
    page_id: Optional[str] = None  # resolved lazily on first scrape
    page_name: Optional[str] = None
    venue_id: Optional[str] = None
    metro: Optional[str] = None
    status: PageStatus = PageStatus.PENDING_REVIEW

    consecutive_failures: int = 0
    last_sync_at: Optional[datetime] = None
    last_sync_error: Optional[str] = None
    sync_count: int = 0
    events_found: int = 0

    created_at: datetime
    updated_at: datetime


class RunStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class SyncRunLog(BaseModel):
    """Audit row for one run over one metro. Appended once, never mutated."""

    id: str
    flow: str  # event_sync or venue_discovery
    source: str
    metro: str
    status: Optional[RunStatus] = None
    events_created: int = 0
    events_updated: int = 0
    venues_created: int = 0
    venues_updated: int = 0
    errors: list[str] = Field(default_factory=list)
    duration_ms: Optional[int] = None
    started_at: datetime
    completed_at: Optional[datetime] = None

    @property
    def is_finalized(self) -> bool:
        return self.status is not None and self.completed_at is not None


class UpsertAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


class MatchDecision(BaseModel):
    """Outcome of matching one canonical record against the store."""

    matched_id: Optional[str] = None
    rule: str  # external_id, name_proximity, name_city, venue_title_day, new

    @property
    def is_new(self) -> bool:
        return self.matched_id is None


class SourceStats(BaseModel):
    """Counters for one source across the metros of a run."""

    source: str
    status: str = "success"  # success, error, partial, timeout
    records_fetched: int = 0
    records_processed: int = 0
    records_skipped: int = 0
    events_created: int = 0
    events_updated: int = 0
    events_unchanged: int = 0
    venues_created: int = 0
    venues_updated: int = 0
    errors: list[str] = Field(default_factory=list)
    duration_ms: Optional[int] = None


class SyncTotals(BaseModel):
    events_created: int = 0
    events_updated: int = 0
    venues_created: int = 0
    venues_updated: int = 0
    errors: int = 0


class EventSyncResult(BaseModel):
    """Structured result of an event sync trigger."""

    duration_ms: int
    per_source: dict[str, SourceStats]
    totals: SyncTotals
    runs: list[SyncRunLog] = Field(default_factory=list)

    @computed_field
    @property
    def status(self) -> str:
        statuses = {run.status for run in self.runs}
        if statuses == {RunStatus.SUCCESS}:
            return RunStatus.SUCCESS.value
        if RunStatus.SUCCESS in statuses or RunStatus.PARTIAL in statuses:
            return RunStatus.PARTIAL.value
        return RunStatus.FAILED.value


class VenueDiscoveryResult(BaseModel):
    """Structured result of a venue discovery trigger."""

    duration_ms: int
    venues_discovered: int = 0
    venues_updated: int = 0
    venues_new: int = 0
    errors: list[str] = Field(default_factory=list)
    runs: list[SyncRunLog] = Field(default_factory=list)


class BrokenLink(BaseModel):
    id: str
    title: str
    url: str


class LinkHealthResult(BaseModel):
    total: int = 0
    valid: int = 0
    broken: int = 0
    errors: int = 0
    broken_links: list[BrokenLink] = Field(default_factory=list)


class DuplicatePair(BaseModel):
    """A likely duplicate pair flagged for human review."""

    event_id_a: str
    event_id_b: str
    title_a: str
    title_b: str
    confidence: float
    reason: str
