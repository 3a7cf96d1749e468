"""
Shared HTTP plumbing for source adapters.

Adapters call request_json / fetch_html with an httpx.AsyncClient they
own. Rate limiting (429), server errors (5xx) and transport failures are
retried with backoff; whatever still fails is raised as AdapterError so
no httpx exception ever reaches the orchestrator.
"""

from typing import Any

import httpx
import structlog

from ..errors import AdapterError
from ..resilience.retry import retry_async
from .url_validator import SSRFError, validate_url_for_scraping

logger = structlog.get_logger()

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

HTML_HEADERS = {
    "User-Agent": BROWSER_USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}

RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})
AUTH_STATUS = frozenset({401, 403})

# Link check outcomes
LINK_VALID = "valid"
LINK_BROKEN = "broken"
LINK_ERROR = "error"

VALID_LINK_STATUS = frozenset({301, 302, 405})


class RetryableStatusError(Exception):
    """A response status worth retrying."""

    def __init__(self, status_code: int):
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}")


async def _send(client: httpx.AsyncClient, method: str, url: str, **kwargs: Any) -> httpx.Response:
    response = await client.request(method, url, **kwargs)
    if response.status_code in RETRYABLE_STATUS:
        raise RetryableStatusError(response.status_code)
    return response


async def send_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    source: str,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    **kwargs: Any,
) -> httpx.Response:
    """
    Send a request, retrying 429/5xx and transport errors.

    Raises:
        AdapterError: If retries are exhausted, auth is rejected, or the
            response status is otherwise not 2xx
    """
    try:
        response = await retry_async(
            _send,
            client,
            method,
            url,
            max_attempts=max_attempts,
            base_delay=base_delay,
            retryable_exceptions=(RetryableStatusError, httpx.TransportError),
            **kwargs,
        )
    except RetryableStatusError as e:
        raise AdapterError(source, f"{e} after {max_attempts} attempts") from e
    except httpx.TimeoutException as e:
        raise AdapterError(source, f"request timed out: {type(e).__name__}") from e
    except httpx.HTTPError as e:
        raise AdapterError(source, f"request failed: {e}") from e

    if response.status_code in AUTH_STATUS:
        raise AdapterError(source, f"authentication rejected (HTTP {response.status_code})")
    if not 200 <= response.status_code < 300:
        raise AdapterError(source, f"HTTP {response.status_code} for {url}")
    return response


async def request_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    source: str,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    **kwargs: Any,
) -> dict:
    response = await send_with_retry(
        client, method, url,
        source=source, max_attempts=max_attempts, base_delay=base_delay, **kwargs,
    )
    try:
        data = response.json()
    except ValueError as e:
        raise AdapterError(source, f"invalid JSON from {url}") from e
    if not isinstance(data, dict):
        raise AdapterError(source, f"unexpected response shape from {url}")
    return data


async def fetch_html(
    client: httpx.AsyncClient,
    url: str,
    *,
    source: str,
    max_attempts: int = 2,
    base_delay: float = 1.0,
) -> str:
    """Validate and fetch an HTML page; any failure is an AdapterError."""
    try:
        url = validate_url_for_scraping(url)
    except SSRFError as e:
        raise AdapterError(source, f"URL validation failed: {e}") from e
    response = await send_with_retry(
        client, "GET", url,
        source=source, max_attempts=max_attempts, base_delay=base_delay,
        headers=HTML_HEADERS, follow_redirects=True,
    )
    return response.text


async def head_check(url: str, timeout: float = 5.0) -> str:
    """
    HEAD a stored link and classify it as valid, broken or error.

    2xx plus 301/302/405 count as valid; 405 is common for servers that
    refuse HEAD but serve GET fine.
    """
    try:
        url = validate_url_for_scraping(url)
    except SSRFError as e:
        logger.debug("link_rejected", url=url, error=str(e))
        return LINK_ERROR

    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.head(
                url,
                headers={"User-Agent": BROWSER_USER_AGENT},
                follow_redirects=False,
            )
    except httpx.HTTPError as e:
        logger.debug("link_check_failed", url=url, error=str(e))
        return LINK_ERROR

    if 200 <= response.status_code < 300 or response.status_code in VALID_LINK_STATUS:
        return LINK_VALID
    return LINK_BROKEN
