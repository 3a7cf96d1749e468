"""
Google Places API (New) Text Search, used for venue discovery.

Runs a fixed set of music-venue queries biased to the metro circle and
returns each place once, keyed by place id. Places are venue records;
this source produces no events.
"""

import httpx
import structlog

from ..config.settings import SyncSettings
from ..errors import AdapterError
from ..metros import RegionQuery
from ..models import FetchBatch, RawRecord, SourceKind
from ..resilience.rate_limit import RateLimiter
from .http import request_json

logger = structlog.get_logger()

PLACES_TEXT_SEARCH_URL = "https://places.googleapis.com/v1/places:searchText"

FIELD_MASK = ",".join([
    "places.id",
    "places.displayName",
    "places.formattedAddress",
    "places.location",
    "places.rating",
    "places.websiteUri",
    "places.googleMapsUri",
    "places.types",
])

# Venues the ticketing platforms tend to miss
VENUE_SEARCH_QUERIES = [
    "live music venue",
    "live music bar",
    "jazz club",
    "blues bar",
    "comedy club",
    "open mic night venue",
    "concert hall",
    "music lounge",
    "rock bar live music",
    "indie music venue",
]

MAX_RESULTS = 20


class GooglePlacesAdapter:
    name = "google_places"
    kind = SourceKind.GOOGLE_PLACES

    def __init__(self, api_key: str, settings: SyncSettings, queries: list[str] | None = None):
        self.api_key = api_key
        self.settings = settings
        self.queries = queries or VENUE_SEARCH_QUERIES
        self.rate_limiter = RateLimiter(settings.page_delay_seconds)

    def _body(self, query: str, params: RegionQuery) -> dict:
        return {
            "textQuery": f"{query} in {params.name}",
            "maxResultCount": MAX_RESULTS,
            "locationBias": {
                "circle": {
                    "center": {"latitude": params.lat, "longitude": params.lng},
                    "radius": float(params.radius_meters),
                },
            },
        }

    async def fetch_venues(self, params: RegionQuery) -> FetchBatch:
        batch = FetchBatch(source=self.name)
        seen: set[str] = set()
        failures: list[str] = []
        headers = {
            "Content-Type": "application/json",
            "X-Goog-Api-Key": self.api_key,
            "X-Goog-FieldMask": FIELD_MASK,
        }

        async with httpx.AsyncClient(timeout=self.settings.request_timeout_seconds) as client:
            for query in self.queries:
                await self.rate_limiter.wait()
                try:
                    data = await request_json(
                        client,
                        "POST",
                        PLACES_TEXT_SEARCH_URL,
                        source=self.name,
                        json=self._body(query, params),
                        headers=headers,
                        max_attempts=self.settings.retry_attempts,
                        base_delay=self.settings.retry_base_delay,
                    )
                except AdapterError as e:
                    failures.append(f"query '{query}': {e.message}")
                    continue

                for place in data.get("places") or []:
                    place_id = place.get("id")
                    if place_id and place_id in seen:
                        continue
                    if place_id:
                        seen.add(place_id)
                    batch.records.append(RawRecord(
                        source=self.name,
                        kind=self.kind,
                        native_id=place_id,
                        payload=place,
                        context={"timezone": params.timezone, "metro": params.metro},
                    ))

        if failures and len(failures) == len(self.queries):
            raise AdapterError(self.name, f"all queries failed; first error: {failures[0]}")
        batch.warnings.extend(f"{self.name}: {msg}" for msg in failures)

        logger.info(
            "source_fetched",
            source=self.name,
            metro=params.metro,
            count=len(batch.records),
            queries=len(self.queries),
        )
        return batch

    async def fetch_events(self, params: RegionQuery) -> FetchBatch:
        return FetchBatch(source=self.name)
