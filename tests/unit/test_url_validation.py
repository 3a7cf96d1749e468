"""Tests for outbound URL validation."""

import socket
from unittest.mock import patch

import pytest

from servers.event_sync.sources.url_validator import (
    SSRFError,
    validate_page_url,
    validate_url,
    validate_url_for_scraping,
)


class TestValidateUrl:
    """Tests for validate_url."""

    def test_accepts_public_https(self):
        assert validate_url("https://www.thecrocodile.com/events", resolve_dns=False) == (
            "https://www.thecrocodile.com/events"
        )

    def test_strips_whitespace(self):
        assert validate_url("  https://example.com/  ", resolve_dns=False) == "https://example.com/"

    def test_http_allowed_by_default(self):
        assert validate_url("http://example.com", resolve_dns=False) == "http://example.com"

    def test_http_rejected_when_https_required(self):
        with pytest.raises(SSRFError):
            validate_url("http://example.com", require_https=True, resolve_dns=False)

    @pytest.mark.parametrize("url", ["ftp://example.com/x", "file:///etc/passwd", "example.com"])
    def test_non_http_schemes_rejected(self, url):
        with pytest.raises(SSRFError) as exc:
            validate_url(url, resolve_dns=False)
        assert "not allowed" in str(exc.value)

    @pytest.mark.parametrize("url", [None, ""])
    def test_empty_rejected(self, url):
        with pytest.raises(SSRFError):
            validate_url(url)

    @pytest.mark.parametrize("url", [
        "https://localhost/admin",
        "https://localhost:8080/",
        "https://evil.localhost/",
        "https://metadata.google.internal/computeMetadata/v1/",
    ])
    def test_blocked_hostnames(self, url):
        with pytest.raises(SSRFError) as exc:
            validate_url(url, resolve_dns=False)
        assert "blocked" in str(exc.value)

    @pytest.mark.parametrize("host", [
        "10.0.0.1", "172.16.0.1", "192.168.1.1", "127.0.0.1",
        "169.254.169.254", "0.0.0.0", "[::1]", "[::ffff:10.0.0.1]",
    ])
    def test_internal_addresses_blocked(self, host):
        """Private, loopback, link-local and unspecified addresses are refused."""
        with pytest.raises(SSRFError) as exc:
            validate_url(f"https://{host}/", resolve_dns=False)
        assert "internal address" in str(exc.value)

    def test_public_ip_allowed(self):
        assert validate_url("https://8.8.8.8/", resolve_dns=False) == "https://8.8.8.8/"

    def test_allowed_domains_subdomain(self):
        url = validate_url(
            "https://m.facebook.com/crocodileseattle",
            allowed_domains={"facebook.com"},
            resolve_dns=False,
        )
        assert url == "https://m.facebook.com/crocodileseattle"

    def test_allowed_domains_lookalike_rejected(self):
        with pytest.raises(SSRFError):
            validate_url(
                "https://notfacebook.com/page",
                allowed_domains={"facebook.com"},
                resolve_dns=False,
            )

    def test_dns_resolving_to_private_blocked(self):
        """A public-looking name that resolves internally is refused."""
        with patch(
            "servers.event_sync.sources.url_validator._resolve",
            return_value=["10.1.2.3"],
        ):
            with pytest.raises(SSRFError) as exc:
                validate_url("https://internal.example.com/")
        assert "resolves to 10.1.2.3" in str(exc.value)

    def test_unresolvable_host_passes(self):
        """DNS failures are left to the request itself."""
        with patch(
            "servers.event_sync.sources.url_validator._resolve",
            side_effect=socket.gaierror("no such host"),
        ):
            assert validate_url("https://nowhere.invalid/") == "https://nowhere.invalid/"


class TestValidatePageUrl:
    """Tests for social page registration URLs."""

    def test_accepts_facebook_page(self):
        assert validate_page_url("https://www.facebook.com/thecrocodile/") == (
            "https://www.facebook.com/thecrocodile"
        )

    def test_accepts_fb_short_domain(self):
        assert validate_page_url("https://fb.com/thecrocodile") == "https://fb.com/thecrocodile"

    def test_rejects_http(self):
        with pytest.raises(SSRFError):
            validate_page_url("http://www.facebook.com/thecrocodile")

    def test_rejects_other_domains(self):
        with pytest.raises(SSRFError):
            validate_page_url("https://www.instagram.com/thecrocodile")

    def test_is_a_value_error(self):
        with pytest.raises(ValueError):
            validate_page_url("not a url")


class TestValidateUrlForScraping:
    """Tests for the pre-fetch check."""

    def test_resolves_dns(self):
        with patch(
            "servers.event_sync.sources.url_validator._resolve",
            return_value=["93.184.216.34"],
        ) as resolve:
            assert validate_url_for_scraping("https://example.com/") == "https://example.com/"
        resolve.assert_called_once_with("example.com")

    def test_https_can_be_required(self):
        with pytest.raises(SSRFError):
            validate_url_for_scraping("http://example.com/", require_https=True)
