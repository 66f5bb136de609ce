"""Content resolver — turn a raw source token into plain text.

URL-like tokens are fetched and stripped of markup; anything else is literal
text and passes through unchanged. Fetch failures never escape ``resolve()``:
they become a sentinel string naming the source and the reason.

Fetch guard (applied before any connection is made):
- Allowed URL schemes: https:// and http:// only.
- SSRF guard: hostnames resolving to private/loopback/link-local/reserved
  ranges are refused.
- Content-Type whitelist: text/html and text/plain only.
- Max response body: 5 MB.
- Max redirects: 3.
"""

from __future__ import annotations

import ipaddress
import re
import socket
import urllib.error
import urllib.parse
import urllib.request
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from http.client import HTTPException, HTTPResponse

from bs4 import BeautifulSoup
from loguru import logger

from quarry.errors import FetchError, SsrfError

_USER_AGENT = "quarry/0.1"
_MAX_BYTES = 5 * 1024 * 1024  # 5 MB
_DEFAULT_TIMEOUT = 30.0  # seconds
_MAX_REDIRECTS = 3
_ALLOWED_SCHEMES = {"https", "http"}
_ALLOWED_CONTENT_TYPES = {"text/html", "text/plain"}

# A single whitespace-free token that looks like a host, optionally with a path.
_BARE_DOMAIN_RE = re.compile(
    r"^(?:www\.)?[a-z0-9](?:[a-z0-9-]*[a-z0-9])?(?:\.[a-z0-9](?:[a-z0-9-]*[a-z0-9])?)*"
    r"\.[a-z]{2,}(?::\d+)?(?:[/?#]\S*)?$",
    re.IGNORECASE,
)
_WHITESPACE_RE = re.compile(r"\s+")

Fetcher = Callable[[str, float], tuple[bytes, str]]


def sentinel_for(source: str, reason: str) -> str:
    """Placeholder text indexed in place of an unreachable URL source."""
    return f"Failed to fetch content from {source}: {reason}"


def to_url(source: str) -> str | None:
    """Return the URL *source* denotes, or None if it is literal text.

    ``http://`` / ``https://`` tokens are URLs as written; other schemes
    (``ftp://``, ``file://``) are URLs the guard will refuse. A bare
    ``www.`` or domain-like token is promoted by prefixing ``https://``.
    """
    token = source.strip()
    if not token or any(ch.isspace() for ch in token):
        return None
    if re.match(r"^[a-z][a-z0-9+.\-]*://", token, re.IGNORECASE):
        return token
    if _BARE_DOMAIN_RE.match(token):
        return f"https://{token}"
    return None


@dataclass(frozen=True)
class ResolvedSource:
    """Outcome of resolving one source.

    ``text`` is the fetched text, the literal source, or the sentinel when
    ``error`` is set.
    """

    source: str
    text: str
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class ContentResolver:
    """Resolve raw sources (URLs or literal text) into plain text.

    Args:
        timeout: HTTP timeout in seconds (connect + read).
        max_workers: Thread pool size for ``resolve_many``.
        fetcher: ``(url, timeout) -> (body, content_type)``; defaults to the
            guarded urllib fetcher. Substitute a fake in tests.
    """

    def __init__(
        self,
        timeout: float = _DEFAULT_TIMEOUT,
        max_workers: int = 5,
        fetcher: Fetcher | None = None,
    ) -> None:
        self.timeout = timeout
        self.max_workers = max(1, max_workers)
        self._fetcher = fetcher or fetch_url

    def resolve(self, source: str) -> str:
        """Return plain text for *source*; never raises on fetch failure."""
        return self.resolve_detailed(source).text

    def resolve_detailed(self, source: str) -> ResolvedSource:
        url = to_url(source)
        if url is None:
            return ResolvedSource(source=source, text=source)
        try:
            body, content_type = self._fetcher(url, self.timeout)
            text = to_plain_text(body, content_type)
        except FetchError as exc:
            return self._failed(source, exc.reason)
        except (HTTPException, OSError, ValueError) as exc:
            return self._failed(source, str(exc) or exc.__class__.__name__)
        logger.debug(f"Fetched {url} ({len(text)} chars)")
        return ResolvedSource(source=source, text=text)

    def resolve_many(self, sources: Sequence[str]) -> list[ResolvedSource]:
        """Resolve *sources* concurrently; results keep the input order."""
        if len(sources) <= 1:
            return [self.resolve_detailed(s) for s in sources]
        workers = min(self.max_workers, len(sources))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="quarry-fetch") as pool:
            return list(pool.map(self.resolve_detailed, sources))

    @staticmethod
    def _failed(source: str, reason: str) -> ResolvedSource:
        logger.warning(f"Fetch failed for {source}: {reason}")
        return ResolvedSource(source=source, text=sentinel_for(source, reason), error=reason)


# ------------------------------------------------------------------
# Fetch pipeline
# ------------------------------------------------------------------


def fetch_url(url: str, timeout: float = _DEFAULT_TIMEOUT) -> tuple[bytes, str]:
    """Validate and fetch *url*. Returns (body_bytes, content_type_without_params).

    Raises:
        FetchError: On a refused URL, network failure, or unsupported response.
    """
    _validate_scheme(url)
    _check_ssrf(url)
    return _fetch(url, timeout)


def _validate_scheme(url: str) -> None:
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in _ALLOWED_SCHEMES:
        raise FetchError(
            url,
            f"Unsupported URL scheme '{parsed.scheme}'. Only https:// and http:// are allowed.",
        )


def _check_ssrf(url: str) -> None:
    """Resolve the hostname and block private/reserved IP ranges."""
    hostname = urllib.parse.urlparse(url).hostname
    if not hostname:
        raise FetchError(url, "URL has no hostname")

    try:
        addrinfos = socket.getaddrinfo(hostname, None)
    except socket.gaierror as exc:
        raise FetchError(url, f"DNS resolution failed for '{hostname}': {exc}") from exc

    for addrinfo in addrinfos:
        try:
            ip = ipaddress.ip_address(addrinfo[4][0])
        except ValueError:
            continue
        if (
            ip.is_private
            or ip.is_loopback
            or ip.is_link_local
            or ip.is_reserved
            or ip.is_multicast
            or ip.is_unspecified
        ):
            raise SsrfError(
                url,
                f"URL resolves to private address ({ip}). "
                "Access to internal network addresses is not allowed.",
            )


def _fetch(url: str, timeout: float) -> tuple[bytes, str]:
    request = urllib.request.Request(url, headers={"User-Agent": _USER_AGENT})
    opener = urllib.request.build_opener(_LimitedRedirectHandler(_MAX_REDIRECTS))

    try:
        response: HTTPResponse = opener.open(request, timeout=timeout)
    except urllib.error.HTTPError as exc:
        raise FetchError(url, f"HTTP {exc.code}") from exc
    except (urllib.error.URLError, OSError) as exc:
        raise FetchError(url, f"Failed to fetch URL: {exc}") from exc
    except HTTPException as exc:
        # http.client protocol errors are not OSError and urllib leaves them unwrapped.
        raise FetchError(url, f"Malformed HTTP response: {exc!r}") from exc

    with response:
        raw_ct = response.headers.get("Content-Type", "text/html")
        ct = raw_ct.split(";")[0].strip().lower()
        if ct not in _ALLOWED_CONTENT_TYPES:
            raise FetchError(
                url,
                f"Unsupported Content-Type '{ct}'. "
                f"Accepted: {', '.join(sorted(_ALLOWED_CONTENT_TYPES))}",
            )
        try:
            body = response.read(_MAX_BYTES + 1)
        except HTTPException as exc:
            raise FetchError(url, f"Malformed HTTP response: {exc!r}") from exc
        except OSError as exc:
            raise FetchError(url, f"Failed to read response: {exc}") from exc

    if len(body) > _MAX_BYTES:
        raise FetchError(url, f"Response body exceeds {_MAX_BYTES // (1024 * 1024)} MB limit")
    return body, ct


def to_plain_text(body: bytes, content_type: str) -> str:
    """Convert *body* to whitespace-normalised plain text.

    HTML: script and style blocks are removed first, then every remaining tag
    collapses to whitespace.
    """
    text = body.decode("utf-8", errors="replace")
    if content_type == "text/html":
        soup = BeautifulSoup(text, "html.parser")
        for tag in soup.find_all(["script", "style"]):
            tag.decompose()
        text = soup.get_text(" ")
    return _WHITESPACE_RE.sub(" ", text).strip()


class _LimitedRedirectHandler(urllib.request.HTTPRedirectHandler):
    """Raise an error after more than *max_redirects* redirects.

    Every redirect target passes the same scheme and address checks as the
    initial URL.
    """

    def __init__(self, max_redirects: int) -> None:
        self._max_redirects = max_redirects
        self._count = 0

    def redirect_request(self, req, fp, code, msg, headers, newurl):
        self._count += 1
        if self._count > self._max_redirects:
            raise FetchError(req.full_url, f"Too many redirects (>{self._max_redirects})")
        _validate_scheme(newurl)
        _check_ssrf(newurl)
        return super().redirect_request(req, fp, code, msg, headers, newurl)
