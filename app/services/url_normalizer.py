"""URL normalization and cache key derivation."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from urllib.parse import parse_qsl, quote, unquote, urlencode, urlsplit, urlunsplit

from app.exceptions import InvalidURLError

ALLOWED_SCHEMES = frozenset({"http", "https"})
DEFAULT_PORTS = {"http": 80, "https": 443}

# Query parameters that only identify the referrer or carry credentials.
# They never change the content and must never reach the cache or logs.
TRACKING_PARAMS: frozenset[str] = frozenset({
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_term",
    "utm_content",
    "utm_id",
    "fbclid",
    "gclid",
    "gclsrc",
    "dclid",
    "msclkid",
    "mc_cid",
    "mc_eid",
    "_ga",
    "_gl",
    "igshid",
    "ref",
    "ref_src",
    "ref_url",
    "source",
    "via",
    "at_medium",
    "at_campaign",
    "spm",
    "share_token",
    "si",
    "feature",
    "token",
    "access_token",
    "auth",
    "key",
    "password",
})


@dataclass(frozen=True)
class NormalizedURL:
    """A canonical http(s) URL used as cache key material."""

    url: str
    scheme: str
    host: str
    port: int | None
    path: str
    query: str

    @property
    def cache_key(self) -> str:
        """Return the sha1 hex digest used to key the cache."""
        return hashlib.sha1(self.url.encode("utf-8")).hexdigest()

    @property
    def domain(self) -> str:
        """Return the host without a leading ``www.``."""
        return self.host[4:] if self.host.startswith("www.") else self.host

    @property
    def origin(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        netloc = host if self.port is None else f"{host}:{self.port}"
        return f"{self.scheme}://{netloc}"

    @property
    def loggable(self) -> str:
        """URL without its query string, safe for log output."""
        return f"{self.origin}{self.path}"

    def __str__(self) -> str:
        return self.url


def _normalize_host(host: str, raw: str) -> str:
    host = host.strip().rstrip(".").lower()
    if not host:
        raise InvalidURLError(raw, "missing host")
    if ":" in host:
        # IPv6 literal
        return host
    try:
        return host.encode("idna").decode("ascii")
    except UnicodeError as e:
        raise InvalidURLError(raw, "invalid host") from e


def _normalize_path(path: str) -> str:
    if not path:
        return "/"
    # Re-quote so that equivalent encodings produce the same key
    return quote(unquote(path), safe="/:@!$&'()*+,;=-._~")


def normalize_url(raw: str) -> NormalizedURL:
    """Normalize a raw URL string.

    Lowercases scheme and host, strips default ports, known tracking
    parameters and the fragment. Remaining query parameters keep their order.
    The operation is idempotent.

    Args:
        raw: URL as submitted by the client.

    Returns:
        NormalizedURL

    Raises:
        InvalidURLError: If the input is not an absolute http(s) URL with a host.
    """
    if not isinstance(raw, str) or not raw.strip():
        raise InvalidURLError(str(raw), "empty")

    candidate = raw.strip()
    try:
        parts = urlsplit(candidate)
        port = parts.port
    except ValueError as e:
        raise InvalidURLError(candidate, str(e)) from e

    scheme = parts.scheme.lower()
    if scheme not in ALLOWED_SCHEMES:
        raise InvalidURLError(candidate, "scheme must be http or https")
    if parts.username is not None or parts.password is not None:
        raise InvalidURLError(candidate, "credentials in URL are not allowed")
    if not parts.hostname:
        raise InvalidURLError(candidate, "missing host")

    host = _normalize_host(parts.hostname, candidate)
    if port is not None and DEFAULT_PORTS.get(scheme) == port:
        port = None

    path = _normalize_path(parts.path)
    pairs = [
        (k, v)
        for k, v in parse_qsl(parts.query, keep_blank_values=True)
        if k.lower() not in TRACKING_PARAMS
    ]
    query = urlencode(pairs, doseq=True)

    display_host = f"[{host}]" if ":" in host else host
    netloc = display_host if port is None else f"{display_host}:{port}"
    url = urlunsplit((scheme, netloc, path, query, ""))

    return NormalizedURL(
        url=url,
        scheme=scheme,
        host=host,
        port=port,
        path=path,
        query=query,
    )
