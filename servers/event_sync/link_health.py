"""On-demand check that stored event links still resolve."""

import asyncio
from typing import Iterable, Optional

import structlog

from .models import BrokenLink, LinkHealthResult
from .sources.base import LinkCheckingAdapter
from .sources.http import LINK_BROKEN, LINK_VALID, head_check
from .store import RecordStore

logger = structlog.get_logger()

DEFAULT_TIMEOUT_SECONDS = 5.0
DEFAULT_DELAY_SECONDS = 0.1


async def check_links(
    store: RecordStore,
    adapters: Iterable = (),
    limit: Optional[int] = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    delay: float = DEFAULT_DELAY_SECONDS,
) -> LinkHealthResult:
    """
    Check the external URL of stored events.

    Links are checked through the owning source's check_link when that
    adapter has one, otherwise with a plain HEAD request. Checks run one
    at a time with a short pause between them.

    Args:
        store: Record store to read events from
        adapters: Adapters that may provide check_link
        limit: Maximum number of events to check
        timeout: HEAD timeout for the shared HEAD check
        delay: Pause between checks in seconds
    """
    checkers = {a.name: a.check_link for a in adapters if isinstance(a, LinkCheckingAdapter)}
    events = store.list_events(with_external_url=True, limit=limit)
    result = LinkHealthResult(total=len(events))

    for i, event in enumerate(events):
        if i and delay:
            await asyncio.sleep(delay)

        checker = checkers.get(event.owner_source)
        if checker is not None:
            outcome = await checker(event.external_url)
        else:
            outcome = await head_check(event.external_url, timeout=timeout)

        if outcome == LINK_VALID:
            result.valid += 1
        elif outcome == LINK_BROKEN:
            result.broken += 1
            result.broken_links.append(
                BrokenLink(id=event.id, title=event.title, url=event.external_url)
            )
        else:
            result.errors += 1

    logger.info(
        "link_health_checked",
        total=result.total,
        valid=result.valid,
        broken=result.broken,
        errors=result.errors,
    )
    return result
