"""
Command line entry point for the sync engine.

Commands run against a JSON store snapshot (--store, default from
EVENT_SYNC_STORE_PATH) and save it back afterwards:

    event-sync        fetch and upsert events for active metros
    venue-discovery   discover venues through place search
    link-health       check stored event links
    duplicates        list likely duplicate events
    merge-venues      fold a duplicate venue into its primary
    pages ...         manage registered social pages
    logs              show recent run logs

Run with: python -m servers.event_sync <command>
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import structlog
from pydantic import ValidationError

from .config.settings import load_settings, validate_settings
from .errors import SyncError
from .lifecycle import SourceLifecycleManager
from .link_health import check_links
from .matcher import find_duplicate_events, format_duplicate_summary
from .models import PageStatus
from .orchestrator import SyncOrchestrator
from .sources import build_adapters
from .store import InMemoryStore
from .writer import UpsertWriter

logger = structlog.get_logger()


def _print_model(model) -> None:
    print(model.model_dump_json(indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="python -m servers.event_sync")
    parser.add_argument("--store", help="Path to the JSON store snapshot")
    commands = parser.add_subparsers(dest="command", required=True)

    for name in ("event-sync", "venue-discovery"):
        cmd = commands.add_parser(name)
        cmd.add_argument("--metro", action="append", dest="metros",
                         help="Metro slug (repeatable); defaults to enabled metros")
        cmd.add_argument("--timeout", type=float, help="Wall-clock budget in seconds")

    links = commands.add_parser("link-health")
    links.add_argument("--limit", type=int)

    dupes = commands.add_parser("duplicates")
    dupes.add_argument("--json", action="store_true", help="Print pairs as JSON")

    merge = commands.add_parser("merge-venues")
    merge.add_argument("primary_id", help="Venue that survives")
    merge.add_argument("duplicate_id", help="Venue folded in and deleted")

    logs = commands.add_parser("logs")
    logs.add_argument("--metro")
    logs.add_argument("--limit", type=int, default=20)

    pages = commands.add_parser("pages")
    page_commands = pages.add_subparsers(dest="page_command", required=True)

    add = page_commands.add_parser("add")
    add.add_argument("page_url")
    add.add_argument("--name")
    add.add_argument("--venue-id")
    add.add_argument("--metro")
    add.add_argument("--page-id", help="Numeric page id for Graph API access")

    listing = page_commands.add_parser("list")
    listing.add_argument("--status", action="append", choices=[s.value for s in PageStatus])
    listing.add_argument("--metro")

    for name in ("activate", "pause", "resume", "delete"):
        page_commands.add_parser(name).add_argument("page_id")
    fail = page_commands.add_parser("fail")
    fail.add_argument("page_id")
    fail.add_argument("--reason")

    enforce = page_commands.add_parser("enforce")
    enforce.add_argument("--threshold", type=int)

    return parser


def _run_pages(args, lifecycle: SourceLifecycleManager) -> None:
    command = args.page_command
    if command == "add":
        _print_model(lifecycle.add_page(
            args.page_url, page_name=args.name, venue_id=args.venue_id,
            metro=args.metro, page_id=args.page_id,
        ))
    elif command == "list":
        statuses = [PageStatus(s) for s in args.status] if args.status else None
        for page in lifecycle.list_pages(statuses=statuses, metro=args.metro):
            print(f"{page.id}  {page.status.value:<15} {page.page_name or '-':<30} {page.page_url}")
    elif command == "activate":
        _print_model(lifecycle.activate(args.page_id))
    elif command == "pause":
        _print_model(lifecycle.pause(args.page_id))
    elif command == "resume":
        _print_model(lifecycle.resume(args.page_id))
    elif command == "fail":
        _print_model(lifecycle.mark_failed(args.page_id, reason=args.reason))
    elif command == "delete":
        print(json.dumps({"deleted": lifecycle.delete_page(args.page_id)}))
    elif command == "enforce":
        demoted = lifecycle.enforce_failure_threshold(args.threshold)
        print(json.dumps({"demoted": [p.id for p in demoted]}))


async def run(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = load_settings()
    except ValidationError as e:
        print(f"error: invalid settings: {e}", file=sys.stderr)
        return 2
    for problem in validate_settings(settings):
        logger.warning("settings_invalid", problem=problem)

    store_path = Path(args.store or settings.store_path)
    store = InMemoryStore.load(store_path)
    lifecycle = SourceLifecycleManager(store, failure_threshold=settings.page_failure_threshold)

    try:
        if args.command in ("event-sync", "venue-discovery"):
            orchestrator = SyncOrchestrator(store, settings, lifecycle=lifecycle)
            if args.command == "event-sync":
                result = await orchestrator.run_event_sync(args.metros, timeout=args.timeout)
            else:
                result = await orchestrator.run_venue_discovery(args.metros, timeout=args.timeout)
            _print_model(result)
        elif args.command == "link-health":
            adapters = build_adapters(settings, store, lifecycle)
            _print_model(await check_links(
                store,
                adapters,
                limit=args.limit,
                timeout=settings.link_check_timeout_seconds,
                delay=settings.link_check_delay_seconds,
            ))
        elif args.command == "duplicates":
            pairs = find_duplicate_events(store)
            if args.json:
                print(json.dumps([p.model_dump() for p in pairs], indent=2))
            else:
                print(format_duplicate_summary(pairs))
        elif args.command == "merge-venues":
            _print_model(UpsertWriter(store).merge_venues(args.primary_id, args.duplicate_id))
        elif args.command == "logs":
            for entry in store.list_run_logs(metro=args.metro, limit=args.limit):
                print(
                    f"{entry.started_at:%Y-%m-%d %H:%M} {entry.flow:<16} {entry.metro:<12} "
                    f"{entry.status.value:<8} +{entry.events_created}e ~{entry.events_updated}e "
                    f"+{entry.venues_created}v errors={len(entry.errors)}"
                )
        elif args.command == "pages":
            _run_pages(args, lifecycle)
    except (SyncError, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    store.save(store_path)
    return 0


def configure_logging(level: int = logging.INFO) -> None:
    """Send structured logs to stderr so stdout stays machine-readable."""
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(sys.stderr),
    )


def main() -> None:
    configure_logging()
    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    main()
