"""
Venue website scraper.

For each stored venue in the metro's city that has a website:
1. schema.org Event JSON-LD (best quality)
2. iCal feed links are noted in the log, not parsed
3. Common listing markup (.event, .show, time[datetime], ...) when the
   page has no JSON-LD events

Only upcoming events are returned. Failures are per venue; the source
errors only when every venue site failed.
"""

from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urljoin

import httpx
import structlog
from bs4 import BeautifulSoup, Tag

from ..config.settings import SyncSettings
from ..errors import AdapterError
from ..metros import ScopeQuery
from ..models import FetchBatch, RawRecord, SourceKind, StoredVenue
from ..normalizer import parse_datetime
from ..resilience.rate_limit import RateLimiter
from ..store import RecordStore
from .http import fetch_html, head_check
from .jsonld import extract_jsonld_events

logger = structlog.get_logger()


# Common selectors for event listing pages
LISTING_SELECTORS = [
    ".event", ".show", ".listing", ".calendar-event",
    "[class*='event-item']", "[class*='event-card']", "[class*='show-listing']",
    "article.event", ".events-list > li", ".events-list > div",
]
TITLE_SELECTORS = "h2, h3, h4, .title, .event-title, .show-title"
DATE_SELECTORS = ".date, .event-date, .show-date, time"
DESCRIPTION_SELECTORS = ".description, .event-description, p"
TICKET_SELECTORS = "a[href*='ticket'], a[href*='buy'], a.ticket, a.buy"

MIN_TITLE_LENGTH = 3


def _absolute(url: Optional[str], base: str) -> Optional[str]:
    return urljoin(base, url) if url else None


def _first(value) -> Optional[str]:
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, dict):
        value = value.get("url")
    return value or None


def jsonld_to_listing(item: dict, page_url: str) -> Optional[dict]:
    """Flatten a JSON-LD Event into the listing dict the normalizer reads."""
    if not item.get("name") or not item.get("startDate"):
        return None
    offers = item.get("offers") or {}
    if isinstance(offers, list):
        offers = offers[0] if offers else {}
    return {
        "title": item["name"],
        "description": item.get("description"),
        "start_date": item["startDate"],
        "end_date": item.get("endDate"),
        "image_url": _absolute(_first(item.get("image")), page_url),
        "ticket_url": _absolute(offers.get("url") or item.get("url"), page_url),
        "source_url": page_url,
    }


def _element_listing(element: Tag, page_url: str) -> Optional[dict]:
    title_el = element.select_one(TITLE_SELECTORS) or element.find("a")
    title = title_el.get_text(" ", strip=True) if title_el else ""
    if len(title) < MIN_TITLE_LENGTH:
        return None

    time_el = element.select_one("time[datetime]")
    start = time_el.get("datetime") if time_el else None
    if not start:
        date_el = element.select_one(DATE_SELECTORS)
        date_text = date_el.get_text(" ", strip=True) if date_el else ""
        start = date_text if date_text and parse_datetime(date_text) else None
    if not start:
        return None

    description_el = element.select_one(DESCRIPTION_SELECTORS)
    image_el = element.find("img")
    ticket_el = element.select_one(TICKET_SELECTORS)
    return {
        "title": title,
        "description": description_el.get_text(" ", strip=True) if description_el else None,
        "start_date": start,
        "image_url": _absolute(
            image_el and (image_el.get("src") or image_el.get("data-src")), page_url
        ),
        "ticket_url": _absolute(ticket_el.get("href") if ticket_el else None, page_url),
        "source_url": page_url,
    }


def extract_html_listings(soup: BeautifulSoup, page_url: str) -> list[dict]:
    """Event listings from common calendar markup, de-duplicated by title+date."""
    listings: list[dict] = []
    seen: set[tuple[str, str]] = set()

    def add(listing: Optional[dict]) -> None:
        if listing is None:
            return
        key = (listing["title"], listing["start_date"])
        if key not in seen:
            seen.add(key)
            listings.append(listing)

    for selector in LISTING_SELECTORS:
        for element in soup.select(selector):
            add(_element_listing(element, page_url))

    if not listings:
        # Bare <time datetime> elements with a heading nearby
        for time_el in soup.select("time[datetime]"):
            container = time_el.find_parent(["div", "li", "article", "section"])
            if container is None:
                continue
            heading = container.find(["h2", "h3", "h4"]) or container.find("a")
            title = heading.get_text(" ", strip=True) if heading else ""
            if len(title) >= MIN_TITLE_LENGTH:
                add({
                    "title": title,
                    "start_date": time_el["datetime"],
                    "source_url": page_url,
                })

    return listings


def extract_ical_links(soup: BeautifulSoup, page_url: str) -> list[str]:
    links = {
        urljoin(page_url, a["href"])
        for a in soup.find_all("a", href=True)
        if a["href"].lower().endswith(".ics") or a["href"].lower().startswith("webcal:")
    }
    for link in soup.find_all("link", attrs={"type": "text/calendar"}):
        if link.get("href"):
            links.add(urljoin(page_url, link["href"]))
    return sorted(links)


class VenueWebsiteAdapter:
    name = "venue_website"
    kind = SourceKind.VENUE_WEBSITE

    def __init__(self, store: RecordStore, settings: SyncSettings):
        self.store = store
        self.settings = settings
        self.rate_limiter = RateLimiter(settings.page_delay_seconds)

    def _listings(self, html: str, page_url: str, venue: StoredVenue) -> list[dict]:
        soup = BeautifulSoup(html, "html.parser")
        listings = [
            listing
            for listing in (jsonld_to_listing(item, page_url) for item in extract_jsonld_events(soup))
            if listing
        ]

        ical = extract_ical_links(soup, page_url)
        if ical:
            logger.info("ical_feeds_found", source=self.name, venue=venue.name, feeds=ical)

        if not listings:
            listings = extract_html_listings(soup, page_url)
        return listings

    async def fetch_events(self, params: ScopeQuery) -> FetchBatch:
        venues = self.store.list_venues(city=params.city, with_website=True)
        batch = FetchBatch(source=self.name)
        if not venues:
            logger.info("source_no_targets", source=self.name, metro=params.metro)
            return batch

        now = datetime.now(timezone.utc)
        failures: list[str] = []
        async with httpx.AsyncClient(timeout=self.settings.scrape_timeout_seconds) as client:
            for venue in venues:
                await self.rate_limiter.wait()
                try:
                    html = await fetch_html(
                        client,
                        venue.website,
                        source=self.name,
                        max_attempts=self.settings.retry_attempts,
                        base_delay=self.settings.retry_base_delay,
                    )
                except AdapterError as e:
                    failures.append(f"venue '{venue.name}': {e.message}")
                    continue

                context = {
                    "timezone": params.timezone,
                    "metro": params.metro,
                    "venue_id": venue.id,
                    "venue_name": venue.name,
                }
                for listing in self._listings(html, venue.website, venue):
                    start = parse_datetime(listing["start_date"], params.timezone)
                    if start is not None and start < now:
                        continue
                    batch.records.append(RawRecord(
                        source=self.name, kind=self.kind, payload=listing, context=context,
                    ))

        if len(failures) == len(venues):
            raise AdapterError(
                self.name, f"all {len(venues)} venue sites failed; first error: {failures[0]}"
            )
        batch.warnings.extend(f"{self.name}: {msg}" for msg in failures)

        logger.info(
            "source_fetched",
            source=self.name,
            metro=params.metro,
            count=len(batch.records),
            venues=len(venues),
            failed_venues=len(failures),
        )
        return batch

    async def check_link(self, url: str) -> str:
        return await head_check(url, timeout=self.settings.link_check_timeout_seconds)
