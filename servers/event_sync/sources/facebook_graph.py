"""
Facebook Graph API events for registered pages.

Auth: FACEBOOK_ACCESS_TOKEN (needs pages_read_engagement)
Targets: active pages of the metro whose numeric page_id is known
Pagination: cursor paging (paging.cursors.after while paging.next is set)

Page health stays with the page scraper: this adapter reads the page
list but never touches failure counters or status. A page that fails is
a warning; the source errors only when every page failed.
"""

from datetime import datetime, timezone
from typing import TYPE_CHECKING

import httpx
import structlog

from ..config.settings import SyncSettings
from ..errors import AdapterError
from ..metros import ScopeQuery
from ..models import FetchBatch, PageStatus, RawRecord, SocialPageSource, SourceKind
from ..normalizer import parse_datetime
from ..resilience.rate_limit import RateLimiter
from .http import request_json

if TYPE_CHECKING:
    from ..lifecycle import SourceLifecycleManager

logger = structlog.get_logger()

GRAPH_API_BASE = "https://graph.facebook.com/v19.0"
EVENT_FIELDS = (
    "id,name,description,start_time,end_time,place,cover,category,"
    "ticket_uri,is_online,is_canceled"
)
PAGE_LIMIT = 100
MAX_PAGES = 10


class FacebookGraphAdapter:
    name = "facebook_graph"
    kind = SourceKind.SOCIAL_GRAPH

    def __init__(
        self,
        access_token: str,
        lifecycle: "SourceLifecycleManager",
        settings: SyncSettings,
    ):
        self.access_token = access_token
        self.lifecycle = lifecycle
        self.settings = settings
        self.rate_limiter = RateLimiter(settings.page_delay_seconds)

    def _targets(self, metro: str) -> list[SocialPageSource]:
        return [
            page for page in self.lifecycle.pages_for_sync(metro)
            if page.status == PageStatus.ACTIVE and page.page_id
        ]

    async def _page_events(
        self,
        client: httpx.AsyncClient,
        page: SocialPageSource,
        params: ScopeQuery,
    ) -> list[RawRecord]:
        query = {"fields": EVENT_FIELDS, "limit": PAGE_LIMIT, "access_token": self.access_token}
        context = {
            "timezone": params.timezone,
            "metro": params.metro,
            "page_id": page.id,
            "page_url": page.page_url,
            "venue_id": page.venue_id,
        }
        now = datetime.now(timezone.utc)
        records: list[RawRecord] = []

        for _ in range(MAX_PAGES):
            await self.rate_limiter.wait()
            data = await request_json(
                client,
                "GET",
                f"{GRAPH_API_BASE}/{page.page_id}/events",
                source=self.name,
                params=query,
                max_attempts=self.settings.retry_attempts,
                base_delay=self.settings.retry_base_delay,
            )
            error = data.get("error")
            if error:
                raise AdapterError(
                    self.name, f"Graph API error [{error.get('code')}]: {error.get('message')}"
                )

            for item in data.get("data") or []:
                if item.get("is_online"):
                    continue
                start = parse_datetime(item.get("start_time"), params.timezone)
                if start is not None and start < now:
                    continue
                records.append(RawRecord(
                    source=self.name,
                    kind=self.kind,
                    native_id=str(item["id"]) if item.get("id") is not None else None,
                    payload=item,
                    context=context,
                ))

            paging = data.get("paging") or {}
            after = (paging.get("cursors") or {}).get("after")
            # The next URL repeats the token; follow the cursor instead
            if not paging.get("next") or not after:
                break
            query = {**query, "after": after}

        return records

    async def fetch_events(self, params: ScopeQuery) -> FetchBatch:
        pages = self._targets(params.metro)
        batch = FetchBatch(source=self.name)
        if not pages:
            logger.info("source_no_targets", source=self.name, metro=params.metro)
            return batch

        failures: list[str] = []
        async with httpx.AsyncClient(timeout=self.settings.request_timeout_seconds) as client:
            for page in pages:
                label = page.page_name or page.page_url
                try:
                    records = await self._page_events(client, page, params)
                except AdapterError as e:
                    failures.append(f"page '{label}': {e.message}")
                    logger.warning("graph_page_failed", source=self.name, page=label, error=e.message)
                    continue
                batch.records.extend(records)
                logger.debug("graph_page_fetched", source=self.name, page=label, count=len(records))

        if len(failures) == len(pages):
            raise AdapterError(
                self.name, f"all {len(pages)} pages failed; first error: {failures[0]}"
            )
        batch.warnings.extend(f"{self.name}: {msg}" for msg in failures)

        logger.info(
            "source_fetched",
            source=self.name,
            metro=params.metro,
            count=len(batch.records),
            pages=len(pages),
            failed_pages=len(failures),
        )
        return batch
