"""
Source adapters.

Each adapter exposes:
- name, kind
- fetch_events(params) -> FetchBatch
- fetch_venues(params) -> FetchBatch (discovery sources)
- check_link(url) -> "valid" | "broken" | "error" (scraped sources)

Request shaping, pagination and backoff stay inside the adapter.
"""

from .base import (
    ADAPTER_FACTORIES,
    LinkCheckingAdapter,
    SourceAdapter,
    VenueDiscoveryAdapter,
    build_adapters,
)

__all__ = [
    "ADAPTER_FACTORIES",
    "LinkCheckingAdapter",
    "SourceAdapter",
    "VenueDiscoveryAdapter",
    "build_adapters",
]
