"""
Outbound URL checks for scrapers and link checks.

Every URL taken from stored data (page URLs, venue websites, event
links) passes through here before a request is made, so a bad row can
never point the engine at loopback, link-local or private addresses.
"""

import ipaddress
import socket
from typing import Optional
from urllib.parse import urlparse


class SSRFError(ValueError):
    """Raised when a URL fails outbound validation."""


BLOCKED_HOSTNAMES = frozenset({
    "localhost",
    "localhost.localdomain",
    "metadata.google.internal",
})

SOCIAL_PAGE_DOMAINS = frozenset({"facebook.com", "fb.com"})


IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


def _is_blocked_ip(ip_addr: IPAddress) -> bool:
    if isinstance(ip_addr, ipaddress.IPv6Address) and ip_addr.ipv4_mapped:
        ip_addr = ip_addr.ipv4_mapped
    return (
        ip_addr.is_private
        or ip_addr.is_loopback
        or ip_addr.is_link_local
        or ip_addr.is_multicast
        or ip_addr.is_reserved
        or ip_addr.is_unspecified
    )


def _parse_ip(hostname: str) -> Optional[IPAddress]:
    try:
        return ipaddress.ip_address(hostname)
    except ValueError:
        return None


def _resolve(hostname: str) -> list[str]:
    results = socket.getaddrinfo(hostname, None, socket.AF_UNSPEC)
    return sorted({result[4][0] for result in results})


def _domain_allowed(hostname: str, allowed_domains: frozenset[str] | set[str]) -> bool:
    return any(
        hostname == domain or hostname.endswith("." + domain)
        for domain in (d.lower() for d in allowed_domains)
    )


def validate_url(
    url: str,
    require_https: bool = False,
    allowed_domains: Optional[set[str] | frozenset[str]] = None,
    resolve_dns: bool = True,
) -> str:
    """
    Validate a URL before any request is made to it.

    Args:
        url: The URL to validate
        require_https: Reject plain http:// URLs
        allowed_domains: If given, the host must be one of these or a subdomain
        resolve_dns: Resolve the host and reject it if any address is internal

    Returns:
        The stripped URL

    Raises:
        SSRFError: With a message describing why the URL was rejected
    """
    if not url or not isinstance(url, str):
        raise SSRFError("URL must be a non-empty string")

    url = url.strip()
    parsed = urlparse(url)

    scheme = parsed.scheme.lower()
    allowed_schemes = ("https",) if require_https else ("http", "https")
    if scheme not in allowed_schemes:
        raise SSRFError(f"Scheme {scheme or '(none)'}:// is not allowed for {url}")

    hostname = (parsed.hostname or "").lower()
    if not hostname:
        raise SSRFError(f"URL has no hostname: {url}")

    if hostname in BLOCKED_HOSTNAMES or hostname.endswith(".localhost"):
        raise SSRFError(f"Access to {hostname} is blocked")

    if allowed_domains is not None and not _domain_allowed(hostname, allowed_domains):
        raise SSRFError(f"Domain {hostname} is not in the allowed domains list")

    ip_addr = _parse_ip(hostname)
    if ip_addr is not None:
        if _is_blocked_ip(ip_addr):
            raise SSRFError(f"Access to {hostname} is blocked (internal address)")
        return url

    if resolve_dns:
        try:
            addresses = _resolve(hostname)
        except socket.gaierror:
            # Unresolvable hosts fail at request time with a transport error
            return url
        for address in addresses:
            resolved = _parse_ip(address.split("%")[0])
            if resolved is not None and _is_blocked_ip(resolved):
                raise SSRFError(f"Access to {hostname} is blocked (resolves to {address})")

    return url


def validate_page_url(url: str) -> str:
    """Check a social page URL at registration time (no DNS lookup)."""
    return validate_url(
        url,
        require_https=True,
        allowed_domains=SOCIAL_PAGE_DOMAINS,
        resolve_dns=False,
    ).rstrip("/")


def validate_url_for_scraping(url: str, require_https: bool = False) -> str:
    """Check a URL right before fetching it, including a DNS check."""
    return validate_url(url, require_https=require_https, resolve_dns=True)
