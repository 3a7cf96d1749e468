"""
Event Sync Engine

Keeps a store of events and venues in step with several outside sources:
- Ticketing APIs (Ticketmaster, SeatGeek)
- Scraped sources (public Facebook pages, venue websites)
- Venue discovery (Google Places)

Records are normalized to one canonical shape, matched against what is
already stored, and upserted so that repeated runs are idempotent.
Every run is scoped to a metro and leaves an append-only run log.
"""

__version__ = "1.0.0"
