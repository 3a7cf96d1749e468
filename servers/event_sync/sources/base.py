"""
The adapter capability and the registry that builds adapters.

An adapter is any object with name, kind and the async methods below.
The orchestrator dispatches on kind; there is no adapter base class.
"""

from typing import TYPE_CHECKING, Callable, Iterable, Optional, Protocol, runtime_checkable

import structlog

from ..config.settings import SyncSettings
from ..metros import MetroParams
from ..models import FetchBatch, SourceKind
from ..store import RecordStore

if TYPE_CHECKING:
    from ..lifecycle import SourceLifecycleManager

logger = structlog.get_logger()


@runtime_checkable
class SourceAdapter(Protocol):
    """fetch_events is required; fetch_venues and check_link are optional."""

    name: str
    kind: SourceKind

    async def fetch_events(self, params: MetroParams) -> FetchBatch: ...


@runtime_checkable
class VenueDiscoveryAdapter(Protocol):
    name: str
    kind: SourceKind

    async def fetch_venues(self, params: MetroParams) -> FetchBatch: ...


@runtime_checkable
class LinkCheckingAdapter(Protocol):
    name: str

    async def check_link(self, url: str) -> str: ...


AdapterFactory = Callable[
    [SyncSettings, RecordStore, "SourceLifecycleManager"], Optional[object]
]


def _ticketmaster(settings, store, lifecycle):
    from .ticketmaster import TicketmasterAdapter

    if not settings.ticketmaster_api_key:
        return None
    return TicketmasterAdapter(settings.ticketmaster_api_key, settings)


def _seatgeek(settings, store, lifecycle):
    from .seatgeek import SeatGeekAdapter

    if not settings.seatgeek_client_id:
        return None
    return SeatGeekAdapter(settings.seatgeek_client_id, settings)


def _social_page(settings, store, lifecycle):
    from .facebook import FacebookPageAdapter

    return FacebookPageAdapter(lifecycle, settings)


def _social_graph(settings, store, lifecycle):
    from .facebook_graph import FacebookGraphAdapter

    if not settings.facebook_access_token:
        return None
    return FacebookGraphAdapter(settings.facebook_access_token, lifecycle, settings)


def _venue_website(settings, store, lifecycle):
    from .venue_website import VenueWebsiteAdapter

    return VenueWebsiteAdapter(store, settings)


def _google_places(settings, store, lifecycle):
    from .google_places import GooglePlacesAdapter

    if not settings.google_places_api_key:
        return None
    return GooglePlacesAdapter(settings.google_places_api_key, settings)


ADAPTER_FACTORIES: dict[SourceKind, AdapterFactory] = {
    SourceKind.TICKETMASTER: _ticketmaster,
    SourceKind.SEATGEEK: _seatgeek,
    SourceKind.SOCIAL_PAGE: _social_page,
    SourceKind.SOCIAL_GRAPH: _social_graph,
    SourceKind.VENUE_WEBSITE: _venue_website,
    SourceKind.GOOGLE_PLACES: _google_places,
}

MISSING_CREDENTIAL = {
    SourceKind.TICKETMASTER: "TICKETMASTER_API_KEY",
    SourceKind.SEATGEEK: "SEATGEEK_CLIENT_ID",
    SourceKind.GOOGLE_PLACES: "GOOGLE_PLACES_API_KEY",
    SourceKind.SOCIAL_GRAPH: "FACEBOOK_ACCESS_TOKEN",
}


def build_adapters(
    settings: SyncSettings,
    store: RecordStore,
    lifecycle: "SourceLifecycleManager",
    kinds: Optional[Iterable[SourceKind]] = None,
) -> list:
    """
    Instantiate adapters for the requested kinds (all kinds by default).

    Sources whose credentials are not configured are skipped and logged,
    not treated as errors.
    """
    adapters = []
    for kind in kinds or ADAPTER_FACTORIES:
        adapter = ADAPTER_FACTORIES[kind](settings, store, lifecycle)
        if adapter is None:
            logger.info(
                "source_skipped",
                source=kind.value,
                reason=f"{MISSING_CREDENTIAL.get(kind, 'credentials')} not configured",
            )
            continue
        adapters.append(adapter)
    return adapters
