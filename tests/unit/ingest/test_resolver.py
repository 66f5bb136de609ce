"""Tests for ContentResolver — URL detection, fetch guard and text extraction."""

from __future__ import annotations

import http.client
import threading
import time
import urllib.request
from unittest.mock import MagicMock, patch

import pytest

from quarry.errors import FetchError, SsrfError
from quarry.ingest.resolver import (
    ContentResolver,
    _LimitedRedirectHandler,
    fetch_url,
    sentinel_for,
    to_plain_text,
    to_url,
)


def _patch_getaddrinfo(ip: str):
    """Return a context manager that makes getaddrinfo resolve to *ip*."""
    addr_info = [(None, None, None, None, (ip, 0))]
    return patch("quarry.ingest.resolver.socket.getaddrinfo", return_value=addr_info)


def _html_fetcher(html: str):
    def _fetch(url: str, timeout: float) -> tuple[bytes, str]:
        return html.encode("utf-8"), "text/html"

    return _fetch


# ------------------------------------------------------------------
# to_url
# ------------------------------------------------------------------


@pytest.mark.parametrize("source,expected", [
    ("https://example.com/page", "https://example.com/page"),
    ("http://example.com", "http://example.com"),
    ("  https://example.com  ", "https://example.com"),
    ("example.com", "https://example.com"),
    ("www.example.org/docs?id=1", "https://www.example.org/docs?id=1"),
    ("ftp://example.com/file", "ftp://example.com/file"),
])
def test_to_url_detects_urls(source, expected):
    assert to_url(source) == expected


@pytest.mark.parametrize("source", [
    "",
    "   ",
    "The sun is a star.",
    "see https://example.com for more",
    "hello",
    "v1.2",
])
def test_to_url_literal_text(source):
    assert to_url(source) is None


# ------------------------------------------------------------------
# resolve: literal text
# ------------------------------------------------------------------


def test_literal_text_passes_through_unchanged():
    text = "  Solar panels\n\nconvert sunlight.  "
    assert ContentResolver().resolve(text) == text


def test_literal_text_never_fetches():
    def _boom(url, timeout):
        raise AssertionError("fetcher must not be called")

    assert ContentResolver(fetcher=_boom).resolve("plain words") == "plain words"


# ------------------------------------------------------------------
# resolve: URLs
# ------------------------------------------------------------------


def test_url_is_fetched_and_stripped():
    resolver = ContentResolver(fetcher=_html_fetcher(
        "<html><head><style>p{}</style></head>"
        "<body><h1>Title</h1><p>Body   text</p><script>x()</script></body></html>"
    ))
    assert resolver.resolve("https://example.com") == "Title Body text"


def test_bare_domain_is_promoted_to_https():
    seen: list[str] = []

    def _fetch(url, timeout):
        seen.append(url)
        return b"ok", "text/plain"

    ContentResolver(fetcher=_fetch).resolve("example.com")
    assert seen == ["https://example.com"]


def test_fetch_error_becomes_sentinel():
    def _fail(url, timeout):
        raise FetchError(url, "HTTP 404")

    result = ContentResolver(fetcher=_fail).resolve_detailed("https://example.com/missing")
    assert result.failed
    assert result.error == "HTTP 404"
    assert result.text == sentinel_for("https://example.com/missing", "HTTP 404")
    assert result.text.startswith("Failed to fetch content from https://example.com/missing")


def test_os_error_becomes_sentinel():
    def _fail(url, timeout):
        raise TimeoutError("timed out")

    text = ContentResolver(fetcher=_fail).resolve("https://slow.example.com")
    assert "Failed to fetch content from https://slow.example.com" in text
    assert "timed out" in text


def test_ssrf_blocked_url_becomes_sentinel():
    with _patch_getaddrinfo("127.0.0.1"):
        result = ContentResolver().resolve_detailed("http://localhost.example")
    assert result.failed
    assert "private address" in result.error


def test_fetcher_receives_timeout():
    seen: list[float] = []

    def _fetch(url, timeout):
        seen.append(timeout)
        return b"ok", "text/plain"

    ContentResolver(timeout=7.5, fetcher=_fetch).resolve("https://example.com")
    assert seen == [7.5]


# ------------------------------------------------------------------
# resolve_many
# ------------------------------------------------------------------


def test_resolve_many_preserves_order():
    def _fetch(url, timeout):
        # First URL finishes last
        time.sleep(0.05 if url.endswith("/a") else 0.0)
        return url.encode(), "text/plain"

    sources = ["https://example.com/a", "literal", "https://example.com/b"]
    results = ContentResolver(fetcher=_fetch).resolve_many(sources)
    assert [r.text for r in results] == sources
    assert [r.source for r in results] == sources


def test_resolve_many_runs_concurrently():
    barrier = threading.Barrier(2, timeout=5)

    def _fetch(url, timeout):
        barrier.wait()
        return b"ok", "text/plain"

    results = ContentResolver(max_workers=2, fetcher=_fetch).resolve_many(
        ["https://example.com/a", "https://example.com/b"]
    )
    assert [r.text for r in results] == ["ok", "ok"]


def test_resolve_many_isolates_failures():
    def _fetch(url, timeout):
        if "down" in url:
            raise FetchError(url, "HTTP 503")
        return b"up", "text/plain"

    results = ContentResolver(fetcher=_fetch).resolve_many(
        ["https://down.example.com", "https://up.example.com"]
    )
    assert [r.failed for r in results] == [True, False]
    assert results[1].text == "up"


def test_resolve_many_empty():
    assert ContentResolver().resolve_many([]) == []


# ------------------------------------------------------------------
# fetch_url guard
# ------------------------------------------------------------------


@pytest.mark.parametrize("url", ["ftp://example.com", "file:///etc/passwd"])
def test_fetch_url_rejects_scheme(url):
    with pytest.raises(FetchError, match="scheme"):
        fetch_url(url)


def test_fetch_url_requires_hostname():
    with pytest.raises(FetchError, match="hostname"):
        fetch_url("https://")


@pytest.mark.parametrize("ip", ["127.0.0.1", "10.0.0.5", "192.168.1.1", "169.254.169.254", "::1"])
def test_fetch_url_blocks_private_addresses(ip):
    with _patch_getaddrinfo(ip), pytest.raises(SsrfError):
        fetch_url("https://internal.example.com")


def test_fetch_url_public_address_reaches_fetch():
    with (
        _patch_getaddrinfo("93.184.216.34"),
        patch("quarry.ingest.resolver._fetch", return_value=(b"ok", "text/plain")) as mock_fetch,
    ):
        assert fetch_url("https://example.com", timeout=3) == (b"ok", "text/plain")
    mock_fetch.assert_called_once_with("https://example.com", 3)


# ------------------------------------------------------------------
# malformed responses
# ------------------------------------------------------------------


def _patch_opener(*, open_error=None, read_error=None):
    """Patch build_opener so the opener fails while opening or while reading."""
    response = MagicMock()
    response.headers.get.return_value = "text/html; charset=utf-8"
    response.read.side_effect = read_error
    opener = MagicMock()
    opener.open.side_effect = open_error
    opener.open.return_value = response
    return patch("quarry.ingest.resolver.urllib.request.build_opener", return_value=opener)


def test_bad_status_line_raises_fetch_error():
    with (
        _patch_getaddrinfo("93.184.216.34"),
        _patch_opener(open_error=http.client.BadStatusLine("garbage status line")),
        pytest.raises(FetchError, match="Malformed HTTP response"),
    ):
        fetch_url("https://example.com/broken")


def test_truncated_body_raises_fetch_error():
    with (
        _patch_getaddrinfo("93.184.216.34"),
        _patch_opener(read_error=http.client.IncompleteRead(b"<p>par")),
        pytest.raises(FetchError, match="Malformed HTTP response"),
    ):
        fetch_url("https://example.com/short")


def test_bad_status_line_becomes_sentinel():
    url = "https://example.com/broken"
    with (
        _patch_getaddrinfo("93.184.216.34"),
        _patch_opener(open_error=http.client.BadStatusLine("garbage status line")),
    ):
        result = ContentResolver(timeout=5).resolve_detailed(url)
    assert result.text.startswith(f"Failed to fetch content from {url}")
    assert "Malformed HTTP response" in result.error


def test_http_exception_from_custom_fetcher_becomes_sentinel():
    def _fetch(url: str, timeout: float) -> tuple[bytes, str]:
        raise http.client.LineTooLong("header line")

    result = ContentResolver(fetcher=_fetch).resolve_detailed("https://example.com")
    assert result.error is not None
    assert result.text.startswith("Failed to fetch content from https://example.com")


# ------------------------------------------------------------------
# redirects
# ------------------------------------------------------------------


def _redirect(handler, newurl):
    req = urllib.request.Request("https://example.com/start")
    return handler.redirect_request(req, None, 302, "Found", {}, newurl)


@pytest.mark.parametrize("ip", ["169.254.169.254", "127.0.0.1", "10.1.2.3"])
def test_redirect_to_private_address_is_refused(ip):
    handler = _LimitedRedirectHandler(3)
    with _patch_getaddrinfo(ip), pytest.raises(SsrfError):
        _redirect(handler, "http://metadata.internal/latest/meta-data")


def test_redirect_to_other_scheme_is_refused():
    handler = _LimitedRedirectHandler(3)
    with pytest.raises(FetchError, match="scheme"):
        _redirect(handler, "file:///etc/passwd")


def test_redirect_to_public_address_is_followed():
    handler = _LimitedRedirectHandler(3)
    with _patch_getaddrinfo("93.184.216.34"):
        new_req = _redirect(handler, "https://example.org/next")
    assert new_req.full_url == "https://example.org/next"


def test_redirect_limit():
    handler = _LimitedRedirectHandler(1)
    with _patch_getaddrinfo("93.184.216.34"):
        _redirect(handler, "https://example.org/one")
        with pytest.raises(FetchError, match="Too many redirects"):
            _redirect(handler, "https://example.org/two")


# ------------------------------------------------------------------
# to_plain_text
# ------------------------------------------------------------------


def test_plain_text_collapses_whitespace():
    assert to_plain_text(b"  line one\n\n\tline two  ", "text/plain") == "line one line two"


def test_html_tags_become_spaces():
    assert to_plain_text(b"<p>one</p><p>two</p>", "text/html") == "one two"


def test_html_script_and_style_removed():
    html = b"<style>.a{color:red}</style><div>kept</div><script>var x = 1;</script>"
    assert to_plain_text(html, "text/html") == "kept"


def test_invalid_utf8_is_replaced():
    assert to_plain_text(b"caf\xe9", "text/plain") == "caf�"
