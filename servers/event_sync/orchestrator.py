"""
Run orchestration for the two sync flows.

Event sync:       ticketing and scraped sources -> events (+ embedded venues)
Venue discovery:  place search sources -> venues

Each metro is one run:

    started -> per-source processing -> finalizing -> success | partial | failed

Sources run concurrently up to settings.max_concurrency. Within a source,
records go through normalize -> match -> upsert one at a time in adapter
order. Source failures are recorded in the run log and never abort the
other sources. Only RunConcurrencyError and RunInitializationError reach
the caller.

A caller that cancels a trigger (asyncio.wait_for and friends) gets the
CancelledError back only after every source task of the current metro
has stopped and its run log has been appended, so nothing writes to the
store without holding the metro lease.
"""

import asyncio
import threading
import time
import uuid
from contextlib import ExitStack, contextmanager
from datetime import datetime
from typing import Awaitable, Callable, Iterable, Iterator, Optional, Union

import structlog

from .config.settings import SyncSettings, get_default_settings
from .errors import (
    AdapterError,
    RecordValidationError,
    RunConcurrencyError,
    RunInitializationError,
    StoreWriteError,
)
from .lifecycle import SourceLifecycleManager
from .matcher import Matcher
from .metros import active_metros, get_metro, resolve_params
from .models import (
    DISCOVERY_SOURCE_KINDS,
    EVENT_SOURCE_KINDS,
    CanonicalEvent,
    CanonicalVenue,
    EventSyncResult,
    Metro,
    RawRecord,
    RunStatus,
    SourceStats,
    SyncRunLog,
    SyncTotals,
    UpsertAction,
    VenueDiscoveryResult,
    utcnow,
)
from .normalizer import normalize
from .sources import SourceAdapter, VenueDiscoveryAdapter, build_adapters
from .store import RecordStore
from .writer import UpsertWriter

logger = structlog.get_logger()

EVENT_SYNC = "event_sync"
VENUE_DISCOVERY = "venue_discovery"

# Source status values, worst last
SOURCE_SUCCESS = "success"
SOURCE_PARTIAL = "partial"
SOURCE_TIMEOUT = "timeout"
SOURCE_ERROR = "error"
_SOURCE_STATUS_RANK = {SOURCE_SUCCESS: 0, SOURCE_PARTIAL: 1, SOURCE_TIMEOUT: 2, SOURCE_ERROR: 3}
FAILED_SOURCE_STATUSES = frozenset({SOURCE_TIMEOUT, SOURCE_ERROR})


class MetroLeaseRegistry:
    """In-process run locks keyed by metro slug."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    @contextmanager
    def hold(self, slug: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(slug, threading.Lock())
        if not lock.acquire(blocking=False):
            raise RunConcurrencyError(slug)
        try:
            yield
        finally:
            lock.release()


def run_status(stats: Iterable[SourceStats]) -> RunStatus:
    """
    Overall status for one metro run.

    success: no source errored
    partial: some errored and a healthy source processed at least one record
    failed:  every source errored, or there were no sources
    """
    stats = list(stats)
    if not stats:
        return RunStatus.FAILED
    healthy = [s for s in stats if s.status not in FAILED_SOURCE_STATUSES]
    if len(healthy) == len(stats):
        return RunStatus.SUCCESS
    if any(s.records_processed > 0 for s in healthy):
        return RunStatus.PARTIAL
    return RunStatus.FAILED


def _merge_stats(total: SourceStats, part: SourceStats) -> None:
    for field in (
        "records_fetched", "records_processed", "records_skipped",
        "events_created", "events_updated", "events_unchanged",
        "venues_created", "venues_updated",
    ):
        setattr(total, field, getattr(total, field) + getattr(part, field))
    total.errors.extend(part.errors)
    total.duration_ms = (total.duration_ms or 0) + (part.duration_ms or 0)
    if _SOURCE_STATUS_RANK[part.status] > _SOURCE_STATUS_RANK[total.status]:
        total.status = part.status


def _errors_in_order(adapters: list, stats: dict[str, SourceStats]) -> list[str]:
    # Adapter order keeps the error list stable across runs
    return [error for adapter in adapters for error in stats[adapter.name].errors]


async def _stop(tasks) -> None:
    """Cancel tasks and wait until every one of them has finished."""
    tasks = list(tasks)
    for task in tasks:
        task.cancel()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)


RecordHandler = Callable[[object, RawRecord, SourceStats], None]


class SyncOrchestrator:
    """Runs event sync and venue discovery over a set of metros."""

    def __init__(
        self,
        store: RecordStore,
        settings: Optional[SyncSettings] = None,
        adapters: Optional[list] = None,
        lifecycle: Optional[SourceLifecycleManager] = None,
        matcher: Optional[Matcher] = None,
        writer: Optional[UpsertWriter] = None,
        leases: Optional[MetroLeaseRegistry] = None,
        clock: Callable[[], datetime] = utcnow,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ):
        self.store = store
        self.settings = settings or get_default_settings()
        self.lifecycle = lifecycle or SourceLifecycleManager(
            store, failure_threshold=self.settings.page_failure_threshold
        )
        self.matcher = matcher or Matcher(store, radius_m=self.settings.venue_match_radius_m)
        self.writer = writer or UpsertWriter(store)
        self.leases = leases or MetroLeaseRegistry()
        self.clock = clock
        self.id_factory = id_factory
        if adapters is None:
            adapters = build_adapters(self.settings, store, self.lifecycle)
        self.adapters = adapters

    # --- public triggers -------------------------------------------------------

    async def run_event_sync(
        self,
        metros: Optional[Iterable[Union[Metro, str]]] = None,
        timeout: Optional[float] = None,
    ) -> EventSyncResult:
        """
        Fetch and upsert events from every event source for each metro.

        Args:
            metros: Metros or slugs to run; defaults to the enabled metros.
                Disabled metros may be passed explicitly for backfills.
            timeout: Wall-clock budget in seconds for the whole trigger

        Raises:
            RunInitializationError: If there are no metros to run
            RunConcurrencyError: If any requested metro is already running
        """
        adapters = [
            a for a in self.adapters
            if a.kind in EVENT_SOURCE_KINDS and isinstance(a, SourceAdapter)
        ]
        started = time.monotonic()
        per_source, runs = await self._run_flow(
            EVENT_SYNC, metros, adapters, self._process_event_record, timeout
        )

        totals = SyncTotals(
            events_created=sum(s.events_created for s in per_source.values()),
            events_updated=sum(s.events_updated for s in per_source.values()),
            venues_created=sum(s.venues_created for s in per_source.values()),
            venues_updated=sum(s.venues_updated for s in per_source.values()),
            errors=sum(len(run.errors) for run in runs),
        )
        return EventSyncResult(
            duration_ms=int((time.monotonic() - started) * 1000),
            per_source=per_source,
            totals=totals,
            runs=runs,
        )

    async def run_venue_discovery(
        self,
        metros: Optional[Iterable[Union[Metro, str]]] = None,
        timeout: Optional[float] = None,
    ) -> VenueDiscoveryResult:
        """Fetch and upsert venues from place search sources for each metro."""
        adapters = [
            a for a in self.adapters
            if a.kind in DISCOVERY_SOURCE_KINDS and isinstance(a, VenueDiscoveryAdapter)
        ]
        started = time.monotonic()
        per_source, runs = await self._run_flow(
            VENUE_DISCOVERY, metros, adapters, self._process_venue_record, timeout
        )

        return VenueDiscoveryResult(
            duration_ms=int((time.monotonic() - started) * 1000),
            venues_discovered=sum(s.records_processed for s in per_source.values()),
            venues_new=sum(s.venues_created for s in per_source.values()),
            venues_updated=sum(s.venues_updated for s in per_source.values()),
            errors=[error for run in runs for error in run.errors],
            runs=runs,
        )

    # --- flow plumbing -----------------------------------------------------------

    def _resolve_metros(self, metros: Optional[Iterable[Union[Metro, str]]]) -> list[Metro]:
        if metros is None:
            resolved = active_metros(self.settings.metros)
        else:
            resolved = []
            for metro in metros:
                if isinstance(metro, Metro):
                    resolved.append(metro)
                    continue
                try:
                    resolved.append(get_metro(metro, self.settings.metros))
                except KeyError as e:
                    raise RunInitializationError(f"unknown metro '{metro}'") from e
        if not resolved:
            raise RunInitializationError("no active metros configured")

        # A metro named twice is one run, in first-seen order
        unique: dict[str, Metro] = {}
        for metro in resolved:
            unique.setdefault(metro.slug, metro)
        return list(unique.values())

    async def _run_flow(
        self,
        flow: str,
        metros: Optional[Iterable[Union[Metro, str]]],
        adapters: list,
        handler: RecordHandler,
        timeout: Optional[float],
    ) -> tuple[dict[str, SourceStats], list[SyncRunLog]]:
        resolved = self._resolve_metros(metros)
        budget = timeout if timeout is not None else self.settings.run_timeout_seconds
        deadline = time.monotonic() + budget if budget is not None else None

        per_source = {a.name: SourceStats(source=a.name) for a in adapters}
        runs: list[SyncRunLog] = []

        with ExitStack() as stack:
            # All leases are taken before any work so a refused trigger starts nothing
            for metro in resolved:
                stack.enter_context(self.leases.hold(metro.slug))

            for metro in resolved:
                remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
                metro_stats, run = await self._run_metro(flow, metro, adapters, handler, remaining)
                for name, stats in metro_stats.items():
                    _merge_stats(per_source[name], stats)
                runs.append(run)

        return per_source, runs

    async def _run_metro(
        self,
        flow: str,
        metro: Metro,
        adapters: list,
        handler: RecordHandler,
        timeout: Optional[float],
    ) -> tuple[dict[str, SourceStats], SyncRunLog]:
        run_id = self.id_factory()
        started_at = self.clock()
        started = time.monotonic()
        log = logger.bind(run_id=run_id, flow=flow, metro=metro.slug)
        log.info("run_started", sources=[a.name for a in adapters])

        stats = {a.name: SourceStats(source=a.name) for a in adapters}
        errors: list[str] = []
        if not adapters:
            errors.append("no sources configured")

        semaphore = asyncio.Semaphore(self.settings.max_concurrency)

        async def guarded(adapter) -> None:
            async with semaphore:
                await self._process_source(flow, adapter, metro, handler, stats[adapter.name])

        tasks = {asyncio.create_task(guarded(a)): a for a in adapters}
        if tasks:
            try:
                done, pending = await asyncio.wait(tasks, timeout=timeout)
            except asyncio.CancelledError:
                # The caller gave up on the run. No source may keep writing
                # once this returns and the metro lease is released.
                unfinished = [task for task in tasks if not task.done()]
                await _stop(unfinished)
                self._mark_unfinished(unfinished, tasks, stats, "cancelled before finishing", log)
                self._collect_crashes(tasks.keys() - set(unfinished), tasks, stats, log)
                errors.extend(_errors_in_order(adapters, stats))
                log.warning("run_cancelled", unfinished=[tasks[t].name for t in unfinished])
                self._finalize(flow, metro, adapters, stats, errors, run_id, started_at, started, log)
                raise

            await _stop(pending)
            self._mark_unfinished(pending, tasks, stats, "timed out before finishing", log)
            self._collect_crashes(done, tasks, stats, log)
            errors.extend(_errors_in_order(adapters, stats))

        run = self._finalize(flow, metro, adapters, stats, errors, run_id, started_at, started, log)
        return stats, run

    def _mark_unfinished(self, unfinished, tasks: dict, stats: dict[str, SourceStats], reason: str, log) -> None:
        for task in unfinished:
            adapter = tasks[task]
            source_stats = stats[adapter.name]
            source_stats.status = SOURCE_TIMEOUT
            source_stats.errors.append(f"{adapter.name}: {reason}")
            log.warning("source_timeout", source=adapter.name, reason=reason)

    def _collect_crashes(self, done, tasks: dict, stats: dict[str, SourceStats], log) -> None:
        for task in done:
            exc = task.exception()
            if exc is not None:
                adapter = tasks[task]
                stats[adapter.name].status = SOURCE_ERROR
                stats[adapter.name].errors.append(f"{adapter.name}: unexpected error: {exc!r}")
                log.error("source_crashed", source=adapter.name, error=repr(exc))

    def _finalize(
        self,
        flow: str,
        metro: Metro,
        adapters: list,
        stats: dict[str, SourceStats],
        errors: list[str],
        run_id: str,
        started_at: datetime,
        started: float,
        log,
    ) -> SyncRunLog:
        status = run_status(stats.values())
        run = SyncRunLog(
            id=run_id,
            flow=flow,
            source=",".join(a.name for a in adapters) or "none",
            metro=metro.slug,
            status=status,
            events_created=sum(s.events_created for s in stats.values()),
            events_updated=sum(s.events_updated for s in stats.values()),
            venues_created=sum(s.venues_created for s in stats.values()),
            venues_updated=sum(s.venues_updated for s in stats.values()),
            errors=errors,
            duration_ms=int((time.monotonic() - started) * 1000),
            started_at=started_at,
            completed_at=self.clock(),
        )
        self.store.append_run_log(run)

        log.info(
            "run_completed",
            status=status.value,
            events_created=run.events_created,
            events_updated=run.events_updated,
            venues_created=run.venues_created,
            venues_updated=run.venues_updated,
            errors=len(errors),
            duration_ms=run.duration_ms,
        )
        return run

    async def _process_source(
        self,
        flow: str,
        adapter,
        metro: Metro,
        handler: RecordHandler,
        stats: SourceStats,
    ) -> None:
        started = time.monotonic()
        try:
            params = resolve_params(metro, adapter.kind)
            fetch: Callable[..., Awaitable] = (
                adapter.fetch_events if flow == EVENT_SYNC else adapter.fetch_venues
            )
            try:
                batch = await fetch(params)
            except AdapterError as e:
                stats.status = SOURCE_ERROR
                stats.errors.append(str(e))
                logger.warning("source_failed", source=adapter.name, metro=metro.slug, error=e.message)
                return

            stats.records_fetched += len(batch.records)
            if batch.warnings:
                stats.status = SOURCE_PARTIAL
                stats.errors.extend(batch.warnings)

            for record in batch.records:
                try:
                    handler(adapter, record, stats)
                except (RecordValidationError, StoreWriteError) as e:
                    stats.records_skipped += 1
                    if stats.status == SOURCE_SUCCESS:
                        stats.status = SOURCE_PARTIAL
                    stats.errors.append(f"{adapter.name}: {e}")
                    logger.warning(
                        "record_skipped",
                        source=adapter.name,
                        metro=metro.slug,
                        native_id=record.native_id,
                        error=str(e),
                    )
                else:
                    stats.records_processed += 1

            logger.info(
                "source_processed",
                source=adapter.name,
                metro=metro.slug,
                fetched=stats.records_fetched,
                processed=stats.records_processed,
                skipped=stats.records_skipped,
            )
        finally:
            stats.duration_ms = int((time.monotonic() - started) * 1000)

    # --- per-record pipelines ------------------------------------------------------

    def _count_venue(self, action: UpsertAction, stats: SourceStats) -> None:
        if action is UpsertAction.CREATED:
            stats.venues_created += 1
        elif action is UpsertAction.UPDATED:
            stats.venues_updated += 1

    def _process_event_record(self, adapter, record: RawRecord, stats: SourceStats) -> None:
        event = normalize(adapter.kind, record)
        if not isinstance(event, CanonicalEvent):
            raise RecordValidationError(f"{adapter.kind.value} record did not normalize to an event")

        if event.venue is not None:
            decision = self.matcher.match_venue(event.venue)
            venue_id, action = self.writer.apply_venue(event.venue, decision)
            self._count_venue(action, stats)
        elif event.venue_id:
            venue_id = event.venue_id
        else:
            raise RecordValidationError(f"event '{event.title}' has no venue")

        decision = self.matcher.match_event(event, venue_id)
        event_id, action = self.writer.apply_event(event, venue_id, decision)
        if action is UpsertAction.CREATED:
            stats.events_created += 1
        elif action is UpsertAction.UPDATED:
            stats.events_updated += 1
        else:
            stats.events_unchanged += 1
        logger.debug(
            "event_applied", source=adapter.name, event_id=event_id,
            action=action.value, rule=decision.rule,
        )

    def _process_venue_record(self, adapter, record: RawRecord, stats: SourceStats) -> None:
        venue = normalize(adapter.kind, record)
        if not isinstance(venue, CanonicalVenue):
            raise RecordValidationError(f"{adapter.kind.value} record did not normalize to a venue")
        decision = self.matcher.match_venue(venue)
        venue_id, action = self.writer.apply_venue(venue, decision)
        self._count_venue(action, stats)
        logger.debug(
            "venue_applied", source=adapter.name, venue_id=venue_id,
            action=action.value, rule=decision.rule,
        )
