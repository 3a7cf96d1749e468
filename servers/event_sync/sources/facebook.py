"""
Public Facebook page scraper.

Fetches <page_url>/events and reads schema.org Event JSON-LD blocks.
Pages come from the lifecycle manager (pending_review and active pages
of the metro); each page's outcome is reported back to it so the first
success promotes a pending page and failures are counted.

A page that fails is a warning while other pages succeed. The source
as a whole errors only when every page failed.
"""

from datetime import datetime, timezone
from typing import TYPE_CHECKING

import httpx
import structlog
from bs4 import BeautifulSoup

from ..config.settings import SyncSettings
from ..errors import AdapterError
from ..metros import ScopeQuery
from ..models import FetchBatch, RawRecord, SocialPageSource, SourceKind
from ..normalizer import parse_datetime
from ..resilience.rate_limit import RateLimiter
from .http import fetch_html, head_check
from .jsonld import extract_jsonld_events

if TYPE_CHECKING:
    from ..lifecycle import SourceLifecycleManager

logger = structlog.get_logger()


def _is_upcoming(item: dict, tz_name: str, now: datetime) -> bool:
    start = parse_datetime(item.get("startDate"), tz_name)
    # Unparseable dates go through so the normalizer can report them
    return start is None or start >= now


class FacebookPageAdapter:
    name = "facebook"
    kind = SourceKind.SOCIAL_PAGE

    def __init__(self, lifecycle: "SourceLifecycleManager", settings: SyncSettings):
        self.lifecycle = lifecycle
        self.settings = settings
        self.rate_limiter = RateLimiter(settings.page_delay_seconds)

    async def _scrape_page(
        self,
        client: httpx.AsyncClient,
        page: SocialPageSource,
        params: ScopeQuery,
    ) -> list[RawRecord]:
        html = await fetch_html(
            client,
            page.page_url.rstrip("/") + "/events",
            source=self.name,
            max_attempts=self.settings.retry_attempts,
            base_delay=self.settings.retry_base_delay,
        )
        soup = BeautifulSoup(html, "html.parser")
        now = datetime.now(timezone.utc)

        context = {
            "timezone": params.timezone,
            "metro": params.metro,
            "page_id": page.id,
            "page_url": page.page_url,
            "venue_id": page.venue_id,
        }
        return [
            RawRecord(source=self.name, kind=self.kind, payload=item, context=context)
            for item in extract_jsonld_events(soup)
            if _is_upcoming(item, params.timezone, now)
        ]

    async def fetch_events(self, params: ScopeQuery) -> FetchBatch:
        pages = self.lifecycle.pages_for_sync(params.metro)
        batch = FetchBatch(source=self.name)
        if not pages:
            logger.info("source_no_targets", source=self.name, metro=params.metro)
            return batch

        failures: list[str] = []
        async with httpx.AsyncClient(timeout=self.settings.scrape_timeout_seconds) as client:
            for page in pages:
                label = page.page_name or page.page_url
                await self.rate_limiter.wait()
                try:
                    records = await self._scrape_page(client, page, params)
                except AdapterError as e:
                    self.lifecycle.record_scrape_failure(page.id, e.message)
                    failures.append(f"page '{label}': {e.message}")
                    continue

                self.lifecycle.record_scrape_success(page.id, len(records))
                batch.records.extend(records)
                logger.debug("page_scraped", source=self.name, page=label, count=len(records))

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

    async def check_link(self, url: str) -> str:
        return await head_check(url, timeout=self.settings.link_check_timeout_seconds)
