"""
Lifecycle of registered social pages.

    pending_review -> active        first successful scrape, or approval
    active <-> paused               manual toggle
    active -> failed                threshold check or manual action
    failed -> active                manual reactivation

Scrape outcomes only update counters. A page is demoted to failed only
when a caller runs enforce_failure_threshold or mark_failed, never as a
side effect of a sync run.
"""

import uuid
from datetime import datetime
from typing import Callable, Iterable, Optional

import structlog

from .errors import InvalidTransitionError, PageNotFoundError
from .models import PageStatus, SocialPageSource, utcnow
from .sources.url_validator import validate_page_url
from .store import RecordStore

logger = structlog.get_logger()

DEFAULT_FAILURE_THRESHOLD = 3

# Target status -> statuses it may be entered from
ALLOWED_TRANSITIONS: dict[PageStatus, frozenset[PageStatus]] = {
    PageStatus.ACTIVE: frozenset({PageStatus.PENDING_REVIEW, PageStatus.PAUSED, PageStatus.FAILED}),
    PageStatus.PAUSED: frozenset({PageStatus.ACTIVE}),
    PageStatus.FAILED: frozenset({PageStatus.ACTIVE, PageStatus.PENDING_REVIEW}),
}

SYNCABLE_STATUSES = (PageStatus.PENDING_REVIEW, PageStatus.ACTIVE)


class SourceLifecycleManager:
    """Owns social page status; the only writer of page rows."""

    def __init__(
        self,
        store: RecordStore,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        clock: Callable[[], datetime] = utcnow,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        self.store = store
        self.failure_threshold = failure_threshold
        self.clock = clock
        self.id_factory = id_factory

    def add_page(
        self,
        page_url: str,
        page_name: Optional[str] = None,
        venue_id: Optional[str] = None,
        metro: Optional[str] = None,
        page_id: Optional[str] = None,
    ) -> SocialPageSource:
        """Register a page for review. New pages start in pending_review."""
        now = self.clock()
        page = SocialPageSource(
            id=self.id_factory(),
            page_url=validate_page_url(page_url),
            page_id=page_id,
            page_name=page_name,
            venue_id=venue_id,
            metro=metro,
            status=PageStatus.PENDING_REVIEW,
            created_at=now,
            updated_at=now,
        )
        self.store.insert_page(page)
        logger.info("page_added", page_id=page.id, page_url=page.page_url, metro=metro)
        return page

    def get_page(self, page_id: str) -> SocialPageSource:
        page = self.store.get_page(page_id)
        if page is None:
            raise PageNotFoundError(f"No social page with id {page_id}")
        return page

    def list_pages(
        self,
        statuses: Optional[Iterable[PageStatus]] = None,
        metro: Optional[str] = None,
    ) -> list[SocialPageSource]:
        return self.store.list_pages(statuses=statuses, metro=metro)

    def pages_for_sync(self, metro: Optional[str] = None) -> list[SocialPageSource]:
        """Pages a scrape run should visit: pending review or active."""
        return self.store.list_pages(statuses=SYNCABLE_STATUSES, metro=metro)

    def _transition(
        self,
        page_id: str,
        target: PageStatus,
        reason: Optional[str] = None,
    ) -> SocialPageSource:
        page = self.get_page(page_id)
        if page.status == target:
            # Idempotent: no write, updated_at untouched
            return page
        if page.status not in ALLOWED_TRANSITIONS[target]:
            raise InvalidTransitionError(
                f"cannot move page {page_id} from {page.status.value} to {target.value}"
            )

        previous = page.status
        page.status = target
        page.updated_at = self.clock()
        if target == PageStatus.ACTIVE and previous == PageStatus.FAILED:
            page.consecutive_failures = 0
        if reason:
            page.last_sync_error = reason
        self.store.update_page(page)
        logger.info(
            "page_status_changed",
            page_id=page_id,
            from_status=previous.value,
            to_status=target.value,
            reason=reason,
        )
        return page

    def activate(self, page_id: str) -> SocialPageSource:
        """Approve a pending page, or reactivate a failed one."""
        page = self.get_page(page_id)
        if page.status == PageStatus.PAUSED:
            raise InvalidTransitionError(f"page {page_id} is paused; use resume")
        return self._transition(page_id, PageStatus.ACTIVE)

    def pause(self, page_id: str) -> SocialPageSource:
        return self._transition(page_id, PageStatus.PAUSED)

    def resume(self, page_id: str) -> SocialPageSource:
        page = self.get_page(page_id)
        if page.status not in (PageStatus.PAUSED, PageStatus.ACTIVE):
            raise InvalidTransitionError(
                f"cannot resume page {page_id} from {page.status.value}"
            )
        return self._transition(page_id, PageStatus.ACTIVE)

    def mark_failed(self, page_id: str, reason: Optional[str] = None) -> SocialPageSource:
        return self._transition(page_id, PageStatus.FAILED, reason=reason)

    def delete_page(self, page_id: str) -> bool:
        """Remove a page. Events it produced stay where they are."""
        deleted = self.store.delete_page(page_id)
        logger.info("page_deleted", page_id=page_id, existed=deleted)
        return deleted

    def record_scrape_success(
        self,
        page_id: str,
        events_found: int,
        resolved_page_id: Optional[str] = None,
    ) -> SocialPageSource:
        """Reset failure state; a pending page becomes active on its first success."""
        page = self.get_page(page_id)
        now = self.clock()
        page.consecutive_failures = 0
        page.last_sync_error = None
        page.last_sync_at = now
        page.sync_count += 1
        page.events_found = events_found
        page.updated_at = now
        if resolved_page_id and not page.page_id:
            page.page_id = resolved_page_id

        promoted = page.status == PageStatus.PENDING_REVIEW
        if promoted:
            page.status = PageStatus.ACTIVE
        self.store.update_page(page)

        if promoted:
            logger.info("page_activated", page_id=page_id, events_found=events_found)
        return page

    def record_scrape_failure(self, page_id: str, error: str) -> SocialPageSource:
        """Count a failed scrape. Status is left as is."""
        page = self.get_page(page_id)
        now = self.clock()
        page.consecutive_failures += 1
        page.last_sync_error = error
        page.last_sync_at = now
        page.updated_at = now
        self.store.update_page(page)
        logger.warning(
            "page_scrape_failed",
            page_id=page_id,
            consecutive_failures=page.consecutive_failures,
            error=error,
        )
        return page

    def enforce_failure_threshold(self, threshold: Optional[int] = None) -> list[SocialPageSource]:
        """
        Demote pages whose consecutive failures reached the threshold.

        Args:
            threshold: Override for the configured threshold

        Returns:
            The pages moved to failed
        """
        limit = threshold if threshold is not None else self.failure_threshold
        demoted: list[SocialPageSource] = []
        for page in self.store.list_pages(statuses=SYNCABLE_STATUSES):
            if page.consecutive_failures >= limit:
                reason = f"Failed {page.consecutive_failures} consecutive times: {page.last_sync_error}"
                demoted.append(self.mark_failed(page.id, reason=reason))
        return demoted
