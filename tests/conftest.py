"""Shared pytest fixtures for event sync tests."""

import asyncio
from typing import Optional

import pytest

from servers.event_sync.config.settings import SyncSettings
from servers.event_sync.lifecycle import SourceLifecycleManager
from servers.event_sync.metros import SEATTLE, get_metro
from servers.event_sync.models import CanonicalVenue, FetchBatch, Metro, RawRecord, SourceKind
from servers.event_sync.store import InMemoryStore


class FakeAdapter:
    """In-memory source adapter for orchestrator scenarios."""

    def __init__(
        self,
        name: str,
        kind: SourceKind = SourceKind.TICKETMASTER,
        payloads: Optional[list[dict]] = None,
        error: Optional[Exception] = None,
        gate: Optional[asyncio.Event] = None,
        gate_metro: Optional[str] = None,
    ):
        self.name = name
        self.kind = kind
        self.payloads = payloads or []
        self.error = error
        self.gate = gate
        self.gate_metro = gate_metro
        self.started = asyncio.Event()
        self.calls: list = []

    async def _fetch(self, params) -> FetchBatch:
        self.calls.append(params)
        if self.gate is not None and self.gate_metro in (None, params.metro):
            self.started.set()
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return FetchBatch(
            source=self.name,
            records=[
                RawRecord(
                    source=self.name,
                    kind=self.kind,
                    native_id=str(p.get("id")),
                    payload=p,
                    context={"timezone": params.timezone, "metro": params.metro},
                )
                for p in self.payloads
            ],
        )

    async def fetch_events(self, params) -> FetchBatch:
        return await self._fetch(params)

    async def fetch_venues(self, params) -> FetchBatch:
        return await self._fetch(params)


@pytest.fixture
def fake_adapter():
    """Provide the FakeAdapter class."""
    return FakeAdapter


@pytest.fixture
def seattle() -> Metro:
    return SEATTLE


@pytest.fixture
def austin() -> Metro:
    """Austin, enabled for tests."""
    return get_metro("austin").model_copy(update={"enabled": True})


@pytest.fixture
def settings(austin: Metro) -> SyncSettings:
    """Settings with no pacing or backoff delays."""
    return SyncSettings(
        metros=[SEATTLE, austin],
        retry_attempts=2,
        retry_base_delay=0.0,
        page_delay_seconds=0.0,
        link_check_delay_seconds=0.0,
    )


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def lifecycle(store: InMemoryStore) -> SourceLifecycleManager:
    return SourceLifecycleManager(store)


@pytest.fixture
def crocodile() -> CanonicalVenue:
    """The Crocodile in Belltown, as Ticketmaster reports it."""
    return CanonicalVenue(
        name="The Crocodile",
        address="2505 1st Ave",
        city="Seattle",
        state="WA",
        zip_code="98121",
        country="US",
        latitude=47.6139,
        longitude=-122.3444,
        external_source="ticketmaster",
        external_id="KovZpZAEkn6A",
        slug="the-crocodile-seattle",
    )


@pytest.fixture
def tm_event():
    """Factory for Ticketmaster Discovery API event payloads."""

    def make(
        event_id: str = "G5vYZ9a1",
        name: str = "Band Night",
        local_date: str = "2030-06-01",
        local_time: str = "19:30:00",
        venue_id: str = "KovZpZAEkn6A",
        venue_name: str = "The Crocodile",
        latitude: str = "47.6139",
        longitude: str = "-122.3444",
        genre: str = "Rock",
    ) -> dict:
        return {
            "id": event_id,
            "name": name,
            "url": f"https://www.ticketmaster.com/event/{event_id}",
            "dates": {
                "start": {"localDate": local_date, "localTime": local_time},
                "status": {"code": "onsale"},
            },
            "classifications": [{
                "primary": True,
                "segment": {"name": "Music"},
                "genre": {"name": genre},
                "subGenre": {"name": "Undefined"},
            }],
            "priceRanges": [{"min": 20.0, "max": 35.5}],
            "images": [
                {"ratio": "16_9", "width": 1024, "url": f"https://s1.ticketm.net/{event_id}.jpg"},
            ],
            "_embedded": {"venues": [{
                "id": venue_id,
                "name": venue_name,
                "city": {"name": "Seattle"},
                "state": {"stateCode": "WA"},
                "country": {"countryCode": "US"},
                "postalCode": "98121",
                "address": {"line1": "2505 1st Ave"},
                "location": {"latitude": latitude, "longitude": longitude},
            }]},
        }

    return make
