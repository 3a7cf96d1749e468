"""
Engine configuration.

Settings come from defaults, overridden by environment variables:

    TICKETMASTER_API_KEY, SEATGEEK_CLIENT_ID, GOOGLE_PLACES_API_KEY,
    FACEBOOK_ACCESS_TOKEN
    EVENT_SYNC_VENUE_MATCH_RADIUS_M, EVENT_SYNC_PAGE_FAILURE_THRESHOLD,
    EVENT_SYNC_MAX_CONCURRENCY, EVENT_SYNC_RUN_TIMEOUT_SECONDS,
    EVENT_SYNC_DAYS_AHEAD, EVENT_SYNC_REQUEST_TIMEOUT_SECONDS,
    EVENT_SYNC_LINK_CHECK_TIMEOUT_SECONDS, EVENT_SYNC_RETRY_ATTEMPTS,
    EVENT_SYNC_RETRY_BASE_DELAY, EVENT_SYNC_METROS (comma-separated slugs
    to force-enable), EVENT_SYNC_STORE_PATH
"""

import os
from typing import Any, Mapping, Optional

import structlog
from pydantic import BaseModel, Field

from ..metros import ALL_METROS
from ..models import Metro

log = structlog.get_logger(__name__)

ENV_PREFIX = "EVENT_SYNC_"

MAX_CONCURRENCY = 8

_ENV_FIELDS = {
    "VENUE_MATCH_RADIUS_M": "venue_match_radius_m",
    "PAGE_FAILURE_THRESHOLD": "page_failure_threshold",
    "MAX_CONCURRENCY": "max_concurrency",
    "RUN_TIMEOUT_SECONDS": "run_timeout_seconds",
    "DAYS_AHEAD": "days_ahead",
    "REQUEST_TIMEOUT_SECONDS": "request_timeout_seconds",
    "LINK_CHECK_TIMEOUT_SECONDS": "link_check_timeout_seconds",
    "RETRY_ATTEMPTS": "retry_attempts",
    "RETRY_BASE_DELAY": "retry_base_delay",
    "STORE_PATH": "store_path",
}


class SyncSettings(BaseModel):
    """Tunables for one engine instance."""

    ticketmaster_api_key: Optional[str] = None
    seatgeek_client_id: Optional[str] = None
    google_places_api_key: Optional[str] = None
    facebook_access_token: Optional[str] = None

    venue_match_radius_m: float = Field(default=150.0, gt=0)
    page_failure_threshold: int = Field(default=3, ge=1)
    max_concurrency: int = Field(default=3, ge=1)
    run_timeout_seconds: Optional[float] = Field(default=None, gt=0)
    days_ahead: int = Field(default=30, ge=1)

    request_timeout_seconds: float = Field(default=30.0, gt=0)
    scrape_timeout_seconds: float = Field(default=15.0, gt=0)
    link_check_timeout_seconds: float = Field(default=5.0, gt=0)
    retry_attempts: int = Field(default=3, ge=1)
    retry_base_delay: float = Field(default=1.0, ge=0)
    page_delay_seconds: float = Field(default=0.5, ge=0)
    link_check_delay_seconds: float = Field(default=0.1, ge=0)

    store_path: str = "event_sync_store.json"
    metros: list[Metro] = Field(default_factory=lambda: list(ALL_METROS))


def get_default_settings() -> SyncSettings:
    """Return settings with no API keys and the built-in metros."""
    return SyncSettings()


def load_settings(env: Optional[Mapping[str, str]] = None) -> SyncSettings:
    """
    Build settings from the environment.

    Args:
        env: Mapping to read instead of os.environ (for tests)

    Returns:
        SyncSettings with environment overrides applied
    """
    env = os.environ if env is None else env
    values: dict[str, Any] = {
        "ticketmaster_api_key": env.get("TICKETMASTER_API_KEY") or None,
        "seatgeek_client_id": env.get("SEATGEEK_CLIENT_ID") or None,
        "google_places_api_key": env.get("GOOGLE_PLACES_API_KEY") or None,
        "facebook_access_token": env.get("FACEBOOK_ACCESS_TOKEN") or None,
    }
    for suffix, field in _ENV_FIELDS.items():
        raw = env.get(ENV_PREFIX + suffix)
        if raw not in (None, ""):
            values[field] = raw

    forced = env.get(ENV_PREFIX + "METROS")
    if forced:
        wanted = {slug.strip() for slug in forced.split(",") if slug.strip()}
        values["metros"] = [
            m.model_copy(update={"enabled": m.slug in wanted}) for m in ALL_METROS
        ]
        unknown = wanted - {m.slug for m in ALL_METROS}
        if unknown:
            log.warning("unknown_metros_ignored", metros=sorted(unknown))

    settings = SyncSettings.model_validate(values)
    log.debug(
        "settings_loaded",
        ticketmaster=bool(settings.ticketmaster_api_key),
        seatgeek=bool(settings.seatgeek_client_id),
        google_places=bool(settings.google_places_api_key),
        facebook_graph=bool(settings.facebook_access_token),
    )
    return settings


def validate_settings(settings: SyncSettings) -> list[str]:
    """
    Validate settings and return list of errors.

    Field ranges are enforced when SyncSettings is built; this covers
    the checks that span fields or are advisory.

    Returns:
        List of error messages (empty if valid)
    """
    errors: list[str] = []

    if settings.max_concurrency > MAX_CONCURRENCY:
        errors.append(
            f"Invalid max concurrency: {settings.max_concurrency} (must be 1-{MAX_CONCURRENCY})"
        )

    slugs = [m.slug for m in settings.metros]
    if len(slugs) != len(set(slugs)):
        errors.append("Duplicate metro slugs in configuration")
    if not any(m.enabled for m in settings.metros):
        errors.append("No enabled metros configured")

    return errors
