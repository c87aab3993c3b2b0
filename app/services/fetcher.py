"""Outbound HTTP fetching with SSRF checks, redirects, retries and size caps."""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urljoin, urlsplit
from urllib.robotparser import RobotFileParser

import httpx
from charset_normalizer import from_bytes

from app.exceptions import (
    FetchError,
    FetchTimeoutError,
    RedirectError,
    RobotsBlockedError,
    SecurityRejectedError,
    TooLargeError,
    UnsupportedContentTypeError,
    UpstreamStatusError,
)
from app.services.rate_limiter import DomainLimiter
from app.services.ssrf_guard import SSRFGuard

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429, 502, 503, 504})
REDIRECT_STATUS_CODES = frozenset({301, 302, 303, 307, 308})

# Parseable media types. Anything else is rejected before the body is read.
PARSEABLE_CONTENT_TYPES = frozenset({
    "text/html",
    "application/xhtml+xml",
    "text/plain",
    "application/json",
    "application/xml",
    "text/xml",
})

# Domains known to challenge non-browser clients. Everything else gets the
# honest bot user agent.
BROWSER_TIER_DOMAINS: frozenset[str] = frozenset({
    "facebook.com",
    "fb.com",
    "instagram.com",
    "linkedin.com",
    "amazon.com",
    "amazon.co.uk",
    "amazon.de",
    "amazon.fr",
    "amazon.it",
    "amazon.es",
    "amazon.co.jp",
    "amazon.ca",
    "imdb.com",
    "medium.com",
    "quora.com",
    "bloomberg.com",
    "wsj.com",
    "nytimes.com",
})

ACCEPT_HTML = "text/html,application/xhtml+xml;q=0.9,*/*;q=0.8"
ACCEPT_JSON = "application/json;q=1.0,*/*;q=0.5"

_META_CHARSET_RE = re.compile(
    rb"""<meta[^>]+charset\s*=\s*["']?\s*([a-zA-Z0-9_\-:.]+)""", re.IGNORECASE
)
# Share of U+FFFD above which a decoding is considered broken
MAX_REPLACEMENT_RATIO = 0.05

# Request extension carrying the address the SSRF guard vetted for a hop
PINNED_ADDRESS_EXTENSION = "linkparse.pinned_address"

ROBOTS_MAX_BYTES = 512 * 1024
ROBOTS_CACHE_SIZE = 1024


@dataclass(frozen=True)
class FetchConfig:
    """Limits applied to every outbound request."""

    timeout_seconds: float = 8.0
    total_budget_seconds: float = 20.0
    max_retries: int = 2
    backoff_base_seconds: float = 0.5
    max_redirects: int = 5
    max_bytes: int = 5 * 1024 * 1024
    probe_bytes: int = 256 * 1024
    user_agent: str = "Mozilla/5.0 (compatible; LinkParseBot/1.0)"
    browser_user_agent: str = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
    )
    respect_robots: bool = True
    # Product token matched against robots.txt User-agent lines
    robots_user_agent: str = "LinkParseBot"
    robots_timeout_seconds: float = 3.0
    robots_cache_ttl_seconds: float = 24 * 60 * 60


@dataclass
class FetchAttempt:
    """Diagnostics for a single attempt (one or more redirect hops)."""

    url: str
    status_code: int | None = None
    redirect_chain: list[str] = field(default_factory=list)
    bytes_read: int = 0
    elapsed_ms: float = 0.0
    error: str | None = None


@dataclass(frozen=True)
class FetchResult:
    """A successfully fetched response body."""

    url: str
    final_url: str
    status_code: int
    content_type: str
    body: bytes
    text: str
    truncated: bool = False
    attempts: tuple[FetchAttempt, ...] = ()

    @property
    def redirect_chain(self) -> list[str]:
        return self.attempts[-1].redirect_chain if self.attempts else []

    def json(self) -> Any:
        """Decode the body as JSON.

        Raises:
            ValueError: If the body is not valid JSON.
        """
        return json.loads(self.text)


def media_type(content_type: str) -> str:
    """Return the lowercase media type without parameters."""
    return content_type.split(";", 1)[0].strip().lower()


def is_parseable_content_type(content_type: str) -> bool:
    """Return True for text, HTML, JSON and XML media types.

    A missing Content-Type is treated as HTML.
    """
    mtype = media_type(content_type)
    if not mtype:
        return True
    if mtype in PARSEABLE_CONTENT_TYPES:
        return True
    return mtype.endswith("+json") or mtype.endswith("+xml")


def user_agent_tier(host: str) -> str:
    """Return the user agent tier ("browser" or "default") for a host."""
    host = host.lower()
    for domain in BROWSER_TIER_DOMAINS:
        if host == domain or host.endswith("." + domain):
            return "browser"
    return "default"


def _header_charset(content_type: str) -> str | None:
    for param in content_type.split(";")[1:]:
        name, _, value = param.partition("=")
        if name.strip().lower() == "charset" and value.strip():
            return value.strip().strip("\"'")
    return None


def decode_body(body: bytes, content_type: str = "") -> str:
    """Decode a response body to text.

    Tries the Content-Type charset, then a ``<meta charset>`` declaration,
    then strict UTF-8, then charset-normalizer detection. A declared
    candidate producing too many replacement characters is skipped in
    favour of the next one.
    """
    candidates: list[str] = []
    header = _header_charset(content_type)
    if header:
        candidates.append(header)
    match = _META_CHARSET_RE.search(body[:4096])
    if match:
        candidates.append(match.group(1).decode("ascii", "ignore"))

    for charset in candidates:
        try:
            text = body.decode(charset, errors="replace")
        except LookupError:
            logger.debug("Unknown charset %r, skipping", charset)
            continue
        if not text or text.count("\ufffd") / len(text) <= MAX_REPLACEMENT_RATIO:
            return text

    try:
        return body.decode("utf-8")
    except UnicodeDecodeError as e:
        # A truncated probe may end mid-character
        if e.reason == "unexpected end of data":
            return body[: e.start].decode("utf-8", errors="replace")

    best = from_bytes(body).best()
    if best is not None:
        logger.debug("Detected charset %s for undeclared body", best.encoding)
        return str(best)
    return body.decode("utf-8", errors="replace")


class PinnedAddressTransport(httpx.AsyncBaseTransport):
    """Transport that connects to the address the SSRF guard vetted.

    Each request must carry the vetted IP in its extensions. The URL host
    is swapped for that IP so no second DNS lookup happens between the
    check and the connect. The Host header and TLS SNI keep the original
    hostname, so virtual hosting and certificate checks still work.
    """

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._transport = transport or httpx.AsyncHTTPTransport(trust_env=False)

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        address = request.extensions.get(PINNED_ADDRESS_EXTENSION)
        if not address:
            raise SecurityRejectedError(str(request.url), "destination was not vetted")

        hostname = request.url.host
        if hostname != address:
            # IPv6 literals need brackets in a URL host
            host = f"[{address}]" if ":" in address else address
            request.url = request.url.copy_with(host=host)
            request.extensions = {**request.extensions, "sni_hostname": hostname}
        return await self._transport.handle_async_request(request)

    async def aclose(self) -> None:
        await self._transport.aclose()


class Fetcher:
    """Fetches URLs on behalf of parse strategies.

    Redirects are followed manually so every hop passes the SSRF guard,
    and each hop connects to the address the guard vetted. Requests are
    limited per domain and retried on transient failures.
    """

    def __init__(
        self,
        config: FetchConfig | None = None,
        guard: SSRFGuard | None = None,
        limiter: DomainLimiter | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or FetchConfig()
        self.guard = guard or SSRFGuard()
        self.limiter = limiter or DomainLimiter()
        self._client = httpx.AsyncClient(
            transport=transport or PinnedAddressTransport(),
            follow_redirects=False,
            timeout=self.config.timeout_seconds,
            trust_env=False,
        )
        # origin -> (expires_at, parsed robots.txt)
        self._robots: dict[str, tuple[float, RobotFileParser]] = {}

    def user_agent_for(self, url: str) -> str:
        host = urlsplit(url).hostname or ""
        if user_agent_tier(host) == "browser":
            return self.config.browser_user_agent
        return self.config.user_agent

    async def fetch(
        self,
        url: str,
        *,
        accept: str = ACCEPT_HTML,
        max_bytes: int | None = None,
        allow_truncation: bool = False,
        timeout: float | None = None,
        headers: dict[str, str] | None = None,
        user_agent: str | None = None,
        check_robots: bool = False,
    ) -> FetchResult:
        """Fetch a URL, retrying transient failures.

        Args:
            url: Absolute http(s) URL.
            accept: Accept header value.
            max_bytes: Body cap (defaults to the configured page cap).
            allow_truncation: Return the first ``max_bytes`` instead of
                raising TooLargeError. Only for metadata probes.
            timeout: Per-attempt timeout override.
            headers: Extra request headers.
            user_agent: Explicit User-Agent (defaults to the domain tier).
            check_robots: Consult the site's robots.txt first (page
                fetches only; platform APIs are not crawled).

        Returns:
            FetchResult for the final (non-redirect) response.

        Raises:
            SecurityRejectedError: If any hop targets a forbidden destination.
            RobotsBlockedError: If robots.txt disallows the URL.
            UpstreamStatusError: On a non-success final status.
            TooLargeError: If the body exceeds the cap.
            UnsupportedContentTypeError: If the content type is not parseable.
            FetchTimeoutError: If attempts or the overall budget time out.
            FetchError: For other network failures.
        """
        if check_robots and self.config.respect_robots and not await self.robots_allows(url):
            logger.info("ROBOTS_BLOCKED: %s", _loggable(url))
            raise RobotsBlockedError(url)

        per_attempt = timeout or self.config.timeout_seconds
        deadline = time.monotonic() + self.config.total_budget_seconds
        request_headers = {
            "User-Agent": user_agent or self.user_agent_for(url),
            "Accept": accept,
            "Accept-Language": "en-US,en;q=0.8",
        }
        if headers:
            request_headers.update(headers)

        attempts: list[FetchAttempt] = []
        for attempt_no in range(self.config.max_retries + 1):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise FetchTimeoutError(f"Fetch budget exhausted for {url}", url)

            attempt = FetchAttempt(url=url)
            attempts.append(attempt)
            try:
                return await self._attempt(
                    url,
                    attempt,
                    attempts,
                    headers=request_headers,
                    timeout=min(per_attempt, remaining),
                    max_bytes=max_bytes or self.config.max_bytes,
                    allow_truncation=allow_truncation,
                )
            except UpstreamStatusError as e:
                if e.status_code not in RETRYABLE_STATUS_CODES:
                    raise
                last_error: FetchError = e
            except FetchError as e:
                if not e.transient:
                    raise
                last_error = e

            if attempt_no == self.config.max_retries:
                raise last_error

            backoff = self.config.backoff_base_seconds * (2**attempt_no)
            if time.monotonic() + backoff >= deadline:
                raise last_error
            logger.info(
                "Retrying %s in %.2fs after: %s", _loggable(url), backoff, last_error
            )
            await asyncio.sleep(backoff)

        raise FetchError(f"Fetch failed for {url}", url)

    async def get_json(self, url: str, *, timeout: float | None = None, **kwargs: Any) -> Any:
        """Fetch a URL and decode the body as JSON.

        Raises:
            FetchError: On fetch failure or if the body is not JSON.
        """
        result = await self.fetch(url, accept=ACCEPT_JSON, timeout=timeout, **kwargs)
        try:
            return result.json()
        except ValueError as e:
            raise FetchError(f"Invalid JSON from {_loggable(url)}", url, e) from e

    async def robots_allows(self, url: str) -> bool:
        """Return True if the site's robots.txt lets our bot fetch ``url``.

        Rules are cached per origin. A missing or unreadable robots.txt
        allows everything.
        """
        parts = urlsplit(url)
        origin = f"{parts.scheme}://{parts.netloc}".lower()
        now = time.monotonic()
        cached = self._robots.get(origin)
        if cached is not None and cached[0] > now:
            parser = cached[1]
        else:
            parser = await self._load_robots(origin)
            self._robots.pop(origin, None)
            if len(self._robots) >= ROBOTS_CACHE_SIZE:
                # Oldest insertion first
                self._robots.pop(next(iter(self._robots)))
            self._robots[origin] = (now + self.config.robots_cache_ttl_seconds, parser)
        return parser.can_fetch(self.config.robots_user_agent, url)

    async def _load_robots(self, origin: str) -> RobotFileParser:
        parser = RobotFileParser(f"{origin}/robots.txt")
        try:
            result = await self.fetch(
                f"{origin}/robots.txt",
                accept="text/plain,*/*;q=0.5",
                max_bytes=ROBOTS_MAX_BYTES,
                allow_truncation=True,
                timeout=self.config.robots_timeout_seconds,
                user_agent=self.config.user_agent,
            )
            lines = result.text.splitlines()
        except (FetchError, SecurityRejectedError) as e:
            logger.debug("No usable robots.txt at %s: %s", origin, e)
            lines = []
        parser.parse(lines)
        return parser

    async def _attempt(
        self,
        url: str,
        attempt: FetchAttempt,
        attempts: list[FetchAttempt],
        *,
        headers: dict[str, str],
        timeout: float,
        max_bytes: int,
        allow_truncation: bool,
    ) -> FetchResult:
        start = time.monotonic()
        domain = (urlsplit(url).hostname or "").lower()
        current = url
        seen = {url}

        try:
            async with self.limiter.slot(domain):
                for hop in range(self.config.max_redirects + 1):
                    addresses = await self.guard.check(current)
                    request = self._client.build_request(
                        "GET",
                        current,
                        headers=headers,
                        timeout=timeout,
                        extensions={PINNED_ADDRESS_EXTENSION: addresses[0]},
                    )
                    response = await self._client.send(request, stream=True)
                    try:
                        attempt.status_code = response.status_code
                        location = response.headers.get("location")
                        if response.status_code in REDIRECT_STATUS_CODES and location:
                            target = urljoin(current, location)
                            attempt.redirect_chain.append(current)
                            if target in seen:
                                raise RedirectError(f"Redirect loop at {target}", url)
                            if hop == self.config.max_redirects:
                                raise RedirectError(
                                    f"More than {self.config.max_redirects} redirects",
                                    url,
                                )
                            seen.add(target)
                            current = target
                            continue

                        if response.status_code >= 400:
                            raise UpstreamStatusError(current, response.status_code)

                        content_type = response.headers.get("content-type", "")
                        if not is_parseable_content_type(content_type):
                            raise UnsupportedContentTypeError(current, media_type(content_type))

                        body, truncated = await self._read_body(
                            response, current, max_bytes, allow_truncation
                        )
                        attempt.bytes_read = len(body)
                        return FetchResult(
                            url=url,
                            final_url=current,
                            status_code=response.status_code,
                            content_type=content_type,
                            body=body,
                            text=decode_body(body, content_type),
                            truncated=truncated,
                            attempts=tuple(attempts),
                        )
                    finally:
                        await response.aclose()

                raise RedirectError(f"Redirect chain exhausted for {url}", url)
        except httpx.TimeoutException as e:
            attempt.error = "timeout"
            raise FetchTimeoutError(f"Timeout fetching {_loggable(current)}", url, e) from e
        except httpx.RequestError as e:
            attempt.error = type(e).__name__
            raise FetchError(f"Network error fetching {_loggable(current)}: {e}", url, e) from e
        except FetchError as e:
            attempt.error = type(e).__name__
            raise
        finally:
            attempt.elapsed_ms = (time.monotonic() - start) * 1000
            logger.debug(
                "Fetched %s status=%s hops=%d bytes=%d (%.1fms)",
                _loggable(url),
                attempt.status_code,
                len(attempt.redirect_chain),
                attempt.bytes_read,
                attempt.elapsed_ms,
            )

    @staticmethod
    async def _read_body(
        response: httpx.Response,
        url: str,
        max_bytes: int,
        allow_truncation: bool,
    ) -> tuple[bytes, bool]:
        declared = response.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > max_bytes and not allow_truncation:
            raise TooLargeError(url, max_bytes)

        chunks: list[bytes] = []
        total = 0
        async for chunk in response.aiter_bytes():
            total += len(chunk)
            if total > max_bytes:
                if not allow_truncation:
                    raise TooLargeError(url, max_bytes)
                chunks.append(chunk[: len(chunk) - (total - max_bytes)])
                return b"".join(chunks), True
            chunks.append(chunk)
        return b"".join(chunks), False

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> Fetcher:
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit - ensures cleanup."""
        await self.close()


def _loggable(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}{parts.path}"
