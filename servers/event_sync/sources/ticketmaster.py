"""
Ticketmaster Discovery API v2.

Auth: TICKETMASTER_API_KEY as the apikey query parameter
Pagination: page/size (size max 200), stops at page.totalPages
Window: now -> now + days_ahead, sorted by date ascending
"""

from datetime import datetime, timedelta, timezone

import httpx
import structlog

from ..config.settings import SyncSettings
from ..metros import CityQuery
from ..models import FetchBatch, RawRecord, SourceKind
from ..resilience.rate_limit import RateLimiter
from .http import request_json

logger = structlog.get_logger()

TM_BASE_URL = "https://app.ticketmaster.com/discovery/v2"
MAX_PAGE_SIZE = 200
# Discovery API refuses deep paging beyond size * page >= 1000
MAX_PAGES = 5


def to_tm_datetime(value: datetime) -> str:
    """Ticketmaster wants YYYY-MM-DDTHH:mm:ssZ with no fractional seconds."""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class TicketmasterAdapter:
    name = "ticketmaster"
    kind = SourceKind.TICKETMASTER

    def __init__(self, api_key: str, settings: SyncSettings):
        self.api_key = api_key
        self.settings = settings
        self.rate_limiter = RateLimiter(settings.page_delay_seconds)

    def _params(self, query: CityQuery, page: int, now: datetime) -> dict:
        return {
            "apikey": self.api_key,
            "locale": "*",
            "size": MAX_PAGE_SIZE,
            "page": page,
            "city": query.city,
            "stateCode": query.state_code,
            "startDateTime": to_tm_datetime(now),
            "endDateTime": to_tm_datetime(now + timedelta(days=self.settings.days_ahead)),
            "sort": "date,asc",
        }

    async def fetch_events(self, params: CityQuery) -> FetchBatch:
        """Fetch every page of events for one city."""
        now = datetime.now(timezone.utc)
        records: list[RawRecord] = []
        page, total_pages = 0, 1

        async with httpx.AsyncClient(timeout=self.settings.request_timeout_seconds) as client:
            while page < min(total_pages, MAX_PAGES):
                await self.rate_limiter.wait()
                data = await request_json(
                    client,
                    "GET",
                    f"{TM_BASE_URL}/events.json",
                    source=self.name,
                    params=self._params(params, page, now),
                    headers={"Accept": "application/json"},
                    max_attempts=self.settings.retry_attempts,
                    base_delay=self.settings.retry_base_delay,
                )
                for item in (data.get("_embedded") or {}).get("events") or []:
                    records.append(RawRecord(
                        source=self.name,
                        kind=self.kind,
                        native_id=str(item["id"]) if item.get("id") else None,
                        payload=item,
                        context={"timezone": params.timezone, "metro": params.metro},
                    ))
                total_pages = (data.get("page") or {}).get("totalPages", 0)
                page += 1

        logger.info(
            "source_fetched",
            source=self.name,
            metro=params.metro,
            count=len(records),
            pages=page,
        )
        return FetchBatch(source=self.name, records=records)
