"""
SeatGeek Platform API (/2/events).

Auth: SEATGEEK_CLIENT_ID as client_id
Location: lat/lon + range ("30mi")
Pagination: page/per_page until meta.total is covered
"""

from datetime import datetime, timedelta, timezone

import httpx
import structlog

from ..config.settings import SyncSettings
from ..metros import GeoQuery
from ..models import FetchBatch, RawRecord, SourceKind
from ..resilience.rate_limit import RateLimiter
from .http import request_json

logger = structlog.get_logger()

SEATGEEK_BASE_URL = "https://api.seatgeek.com/2"
PER_PAGE = 100
MAX_PAGES = 10


def to_sg_datetime(value: datetime) -> str:
    # SeatGeek filters on naive UTC timestamps
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")


class SeatGeekAdapter:
    name = "seatgeek"
    kind = SourceKind.SEATGEEK

    def __init__(self, client_id: str, settings: SyncSettings):
        self.client_id = client_id
        self.settings = settings
        self.rate_limiter = RateLimiter(settings.page_delay_seconds)

    async def fetch_events(self, params: GeoQuery) -> FetchBatch:
        now = datetime.now(timezone.utc)
        query = {
            "client_id": self.client_id,
            "lat": params.lat,
            "lon": params.lon,
            "range": params.range,
            "datetime_utc.gte": to_sg_datetime(now),
            "datetime_utc.lte": to_sg_datetime(now + timedelta(days=self.settings.days_ahead)),
            "per_page": PER_PAGE,
        }
        records: list[RawRecord] = []
        page = 1

        async with httpx.AsyncClient(timeout=self.settings.request_timeout_seconds) as client:
            while page <= MAX_PAGES:
                await self.rate_limiter.wait()
                data = await request_json(
                    client,
                    "GET",
                    f"{SEATGEEK_BASE_URL}/events",
                    source=self.name,
                    params={**query, "page": page},
                    max_attempts=self.settings.retry_attempts,
                    base_delay=self.settings.retry_base_delay,
                )
                events = data.get("events") or []
                for item in events:
                    records.append(RawRecord(
                        source=self.name,
                        kind=self.kind,
                        native_id=str(item["id"]) if item.get("id") is not None else None,
                        payload=item,
                        context={"timezone": params.timezone, "metro": params.metro},
                    ))

                total = (data.get("meta") or {}).get("total", 0)
                if not events or page * PER_PAGE >= total:
                    break
                page += 1

        logger.info("source_fetched", source=self.name, metro=params.metro, count=len(records))
        return FetchBatch(source=self.name, records=records)
