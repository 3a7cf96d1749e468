"""
Record store used by the engine.

The engine only talks to storage through the verbs on RecordStore.
InMemoryStore implements them for a single process and can snapshot
itself to a JSON file so the CLI can run against persistent state.

Rows handed out are copies; mutating them never changes stored state
until they are written back through update_*.
"""

import json
import threading
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Iterable, Optional, Protocol

import structlog

from .errors import StoreWriteError
from .models import PageStatus, SocialPageSource, StoredEvent, StoredVenue, SyncRunLog

logger = structlog.get_logger()


class RecordStore(Protocol):
    # Venues
    def get_venue(self, venue_id: str) -> Optional[StoredVenue]: ...
    def find_venue_by_external_id(self, source: str, external_id: str) -> Optional[StoredVenue]: ...
    def find_venues_by_name_key(self, name_key: str) -> list[StoredVenue]: ...
    def list_venues(self, city: Optional[str] = None, with_website: bool = False) -> list[StoredVenue]: ...
    def insert_venue(self, venue: StoredVenue) -> None: ...
    def update_venue(self, venue: StoredVenue) -> None: ...
    def delete_venue(self, venue_id: str) -> bool: ...

    # Events
    def get_event(self, event_id: str) -> Optional[StoredEvent]: ...
    def find_event_by_external_id(self, source: str, external_id: str) -> Optional[StoredEvent]: ...
    def find_events_on_day(self, venue_id: str, day: date) -> list[StoredEvent]: ...
    def list_events(self, with_external_url: bool = False, limit: Optional[int] = None) -> list[StoredEvent]: ...
    def insert_event(self, event: StoredEvent) -> None: ...
    def update_event(self, event: StoredEvent) -> None: ...
    def reassign_events(self, from_venue_id: str, to_venue_id: str, updated_at: datetime) -> int: ...

    # Run logs
    def append_run_log(self, log: SyncRunLog) -> None: ...
    def list_run_logs(self, metro: Optional[str] = None, limit: Optional[int] = None) -> list[SyncRunLog]: ...

    # Social pages
    def get_page(self, page_id: str) -> Optional[SocialPageSource]: ...
    def list_pages(self, statuses: Optional[Iterable[PageStatus]] = None, metro: Optional[str] = None) -> list[SocialPageSource]: ...
    def insert_page(self, page: SocialPageSource) -> None: ...
    def update_page(self, page: SocialPageSource) -> None: ...
    def delete_page(self, page_id: str) -> bool: ...
    def get_page_status(self, page_id: str) -> Optional[PageStatus]: ...


class InMemoryStore:
    """Dict-backed RecordStore with unique indexes on slug and external ids."""

    def __init__(self):
        self._lock = threading.RLock()
        self._venues: dict[str, StoredVenue] = {}
        self._events: dict[str, StoredEvent] = {}
        self._pages: dict[str, SocialPageSource] = {}
        self._run_logs: list[SyncRunLog] = []
        self._venue_ext: dict[tuple[str, str], str] = {}
        self._event_ext: dict[tuple[str, str], str] = {}

    # --- venues ---------------------------------------------------------------

    def get_venue(self, venue_id: str) -> Optional[StoredVenue]:
        venue = self._venues.get(venue_id)
        return venue.model_copy(deep=True) if venue else None

    def find_venue_by_external_id(self, source: str, external_id: str) -> Optional[StoredVenue]:
        venue_id = self._venue_ext.get((source, external_id))
        return self.get_venue(venue_id) if venue_id else None

    def find_venues_by_name_key(self, name_key: str) -> list[StoredVenue]:
        return [
            v.model_copy(deep=True)
            for v in sorted(self._venues.values(), key=lambda v: v.id)
            if v.name_key == name_key
        ]

    def list_venues(self, city: Optional[str] = None, with_website: bool = False) -> list[StoredVenue]:
        rows = []
        for v in sorted(self._venues.values(), key=lambda v: v.created_at):
            if city and (v.city or "").lower() != city.lower():
                continue
            if with_website and not v.website:
                continue
            rows.append(v.model_copy(deep=True))
        return rows

    def insert_venue(self, venue: StoredVenue) -> None:
        with self._lock:
            if venue.id in self._venues:
                raise StoreWriteError(f"venue {venue.id} already exists")
            self._check_slug(venue.slug, self._venues.values(), venue.id)
            self._check_external_ids(venue.external_ids, self._venue_ext, venue.id, "venue")
            self._venues[venue.id] = venue.model_copy(deep=True)
            self._index(venue.external_ids, self._venue_ext, venue.id)

    def update_venue(self, venue: StoredVenue) -> None:
        with self._lock:
            current = self._venues.get(venue.id)
            if current is None:
                raise StoreWriteError(f"venue {venue.id} does not exist")
            if current.slug != venue.slug:
                raise StoreWriteError(f"venue {venue.id} slug is immutable")
            self._check_external_ids(venue.external_ids, self._venue_ext, venue.id, "venue")
            self._venues[venue.id] = venue.model_copy(deep=True)
            self._index(venue.external_ids, self._venue_ext, venue.id)

    def delete_venue(self, venue_id: str) -> bool:
        """Remove a venue. Refused while any event still points at it."""
        with self._lock:
            if venue_id not in self._venues:
                return False
            if any(e.venue_id == venue_id for e in self._events.values()):
                raise StoreWriteError(f"venue {venue_id} still has events")
            del self._venues[venue_id]
            self._index({}, self._venue_ext, venue_id)
            return True

    # --- events ---------------------------------------------------------------

    def get_event(self, event_id: str) -> Optional[StoredEvent]:
        event = self._events.get(event_id)
        return event.model_copy(deep=True) if event else None

    def find_event_by_external_id(self, source: str, external_id: str) -> Optional[StoredEvent]:
        event_id = self._event_ext.get((source, external_id))
        return self.get_event(event_id) if event_id else None

    def find_events_on_day(self, venue_id: str, day: date) -> list[StoredEvent]:
        return [
            e.model_copy(deep=True)
            for e in sorted(self._events.values(), key=lambda e: e.id)
            if e.venue_id == venue_id
            and e.start_at.astimezone(timezone.utc).date() == day
        ]

    def list_events(self, with_external_url: bool = False, limit: Optional[int] = None) -> list[StoredEvent]:
        rows = [
            e for e in sorted(self._events.values(), key=lambda e: e.start_at)
            if not with_external_url or e.external_url
        ]
        if limit is not None:
            rows = rows[:limit]
        return [e.model_copy(deep=True) for e in rows]

    def insert_event(self, event: StoredEvent) -> None:
        with self._lock:
            if event.id in self._events:
                raise StoreWriteError(f"event {event.id} already exists")
            if event.venue_id not in self._venues:
                raise StoreWriteError(f"event {event.id} references unknown venue {event.venue_id}")
            self._check_slug(event.slug, self._events.values(), event.id)
            self._check_external_ids(event.external_ids, self._event_ext, event.id, "event")
            self._events[event.id] = event.model_copy(deep=True)
            self._index(event.external_ids, self._event_ext, event.id)

    def update_event(self, event: StoredEvent) -> None:
        with self._lock:
            current = self._events.get(event.id)
            if current is None:
                raise StoreWriteError(f"event {event.id} does not exist")
            if current.slug != event.slug:
                raise StoreWriteError(f"event {event.id} slug is immutable")
            if event.venue_id not in self._venues:
                raise StoreWriteError(f"event {event.id} references unknown venue {event.venue_id}")
            self._check_external_ids(event.external_ids, self._event_ext, event.id, "event")
            self._events[event.id] = event.model_copy(deep=True)
            self._index(event.external_ids, self._event_ext, event.id)

    def reassign_events(self, from_venue_id: str, to_venue_id: str, updated_at: datetime) -> int:
        """Move every event of one venue to another, taking its coordinates along."""
        with self._lock:
            target = self._venues.get(to_venue_id)
            if target is None:
                raise StoreWriteError(f"venue {to_venue_id} does not exist")
            moved = 0
            for event_id, event in list(self._events.items()):
                if event.venue_id != from_venue_id:
                    continue
                self._events[event_id] = event.model_copy(update={
                    "venue_id": to_venue_id,
                    "latitude": target.latitude,
                    "longitude": target.longitude,
                    "updated_at": updated_at,
                })
                moved += 1
            return moved

    # --- run logs -------------------------------------------------------------

    def append_run_log(self, log: SyncRunLog) -> None:
        with self._lock:
            if not log.is_finalized:
                raise StoreWriteError(f"run log {log.id} is not finalized")
            if any(existing.id == log.id for existing in self._run_logs):
                raise StoreWriteError(f"run log {log.id} already appended")
            self._run_logs.append(log.model_copy(deep=True))

    def list_run_logs(self, metro: Optional[str] = None, limit: Optional[int] = None) -> list[SyncRunLog]:
        rows = [log for log in reversed(self._run_logs) if metro is None or log.metro == metro]
        if limit is not None:
            rows = rows[:limit]
        return [log.model_copy(deep=True) for log in rows]

    # --- social pages ---------------------------------------------------------

    def get_page(self, page_id: str) -> Optional[SocialPageSource]:
        page = self._pages.get(page_id)
        return page.model_copy(deep=True) if page else None

    def list_pages(
        self,
        statuses: Optional[Iterable[PageStatus]] = None,
        metro: Optional[str] = None,
    ) -> list[SocialPageSource]:
        wanted = set(statuses) if statuses is not None else None
        return [
            p.model_copy(deep=True)
            for p in sorted(self._pages.values(), key=lambda p: p.created_at)
            if (wanted is None or p.status in wanted)
            and (metro is None or p.metro == metro)
        ]

    def insert_page(self, page: SocialPageSource) -> None:
        with self._lock:
            if page.id in self._pages:
                raise StoreWriteError(f"page {page.id} already exists")
            if any(p.page_url == page.page_url for p in self._pages.values()):
                raise StoreWriteError(f"page {page.page_url} already registered")
            self._pages[page.id] = page.model_copy(deep=True)

    def update_page(self, page: SocialPageSource) -> None:
        with self._lock:
            if page.id not in self._pages:
                raise StoreWriteError(f"page {page.id} does not exist")
            self._pages[page.id] = page.model_copy(deep=True)

    def delete_page(self, page_id: str) -> bool:
        with self._lock:
            return self._pages.pop(page_id, None) is not None

    def get_page_status(self, page_id: str) -> Optional[PageStatus]:
        page = self._pages.get(page_id)
        return page.status if page else None

    # --- index helpers --------------------------------------------------------

    @staticmethod
    def _check_slug(slug: str, rows: Iterable, row_id: str) -> None:
        for row in rows:
            if row.slug == slug and row.id != row_id:
                raise StoreWriteError(f"slug '{slug}' already in use by {row.id}")

    @staticmethod
    def _check_external_ids(
        external_ids: dict[str, str],
        index: dict[tuple[str, str], str],
        row_id: str,
        entity: str,
    ) -> None:
        for source, external_id in external_ids.items():
            owner = index.get((source, external_id))
            if owner is not None and owner != row_id:
                raise StoreWriteError(
                    f"{entity} external id {source}:{external_id} already belongs to {owner}"
                )

    @staticmethod
    def _index(external_ids: dict[str, str], index: dict[tuple[str, str], str], row_id: str) -> None:
        for key in [k for k, v in index.items() if v == row_id]:
            del index[key]
        for source, external_id in external_ids.items():
            index[(source, external_id)] = row_id

    # --- persistence ----------------------------------------------------------

    def save(self, path: Path) -> None:
        """Write a JSON snapshot of every table."""
        with self._lock:
            snapshot = {
                "venues": [v.model_dump(mode="json") for v in self._venues.values()],
                "events": [e.model_dump(mode="json") for e in self._events.values()],
                "pages": [p.model_dump(mode="json") for p in self._pages.values()],
                "run_logs": [r.model_dump(mode="json") for r in self._run_logs],
            }
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(snapshot, indent=2))
        logger.debug(
            "store_saved",
            path=str(path),
            venues=len(snapshot["venues"]),
            events=len(snapshot["events"]),
        )

    @classmethod
    def load(cls, path: Path) -> "InMemoryStore":
        """Build a store from a snapshot; a missing file gives an empty store."""
        store = cls()
        path = Path(path)
        if not path.exists():
            return store
        data = json.loads(path.read_text())
        for row in data.get("venues", []):
            store.insert_venue(StoredVenue.model_validate(row))
        for row in data.get("events", []):
            store.insert_event(StoredEvent.model_validate(row))
        for row in data.get("pages", []):
            store.insert_page(SocialPageSource.model_validate(row))
        for row in data.get("run_logs", []):
            store._run_logs.append(SyncRunLog.model_validate(row))
        return store
