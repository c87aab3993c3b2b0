"""Custom exceptions for the link parse service.

Fatal errors (InvalidURLError, SecurityRejectedError, OverloadedError) are
reported to the caller as failures. Everything else degrades into a
webview result.
"""

from __future__ import annotations


class ParseServiceError(Exception):
    """Base exception for parse pipeline errors."""

    pass


class InvalidURLError(ParseServiceError):
    """Raised when the submitted URL is not an absolute http(s) URL.

    Error Code: INVALID_URL
    """

    def __init__(self, url: str, reason: str = "") -> None:
        self.url = url
        self.reason = reason
        message = f"Invalid URL: {url!r}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class SecurityRejectedError(ParseServiceError):
    """Raised when a destination resolves to a forbidden network target.

    Never retried and never cached. The message is internal only; callers
    receive a generic error.

    Error Code: SECURITY_REJECTED
    """

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"Refusing to fetch {url}: {reason}")


class OverloadedError(ParseServiceError):
    """Raised when the per-domain wait queue is full.

    Error Code: OVERLOADED
    """

    def __init__(self, domain: str) -> None:
        self.domain = domain
        super().__init__(f"Too many pending requests for {domain}")


class RequestTimeoutError(ParseServiceError):
    """Raised when a request exceeds its overall time budget."""

    def __init__(self, budget_seconds: float) -> None:
        self.budget_seconds = budget_seconds
        super().__init__(f"Request exceeded its {budget_seconds:.1f}s budget")


# ---------------------------------------------------------------------------
# Fetch Exceptions
# ---------------------------------------------------------------------------


class FetchError(ParseServiceError):
    """Base exception for upstream fetch failures.

    Attributes:
        url: The URL being fetched when the failure happened.
        transient: Whether the failure may succeed later (not cached).
    """

    transient: bool = True

    def __init__(self, message: str, url: str, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.cause = cause


class FetchTimeoutError(FetchError):
    """Raised when a fetch attempt or the fetch budget times out."""

    pass


class UpstreamStatusError(FetchError):
    """Raised when the upstream answers with a non-success status.

    4xx (other than 429) is terminal; 429 and 5xx are transient.
    """

    def __init__(self, url: str, status_code: int) -> None:
        super().__init__(f"HTTP {status_code} from {url}", url)
        self.status_code = status_code
        self.transient = status_code == 429 or status_code >= 500


class RedirectError(FetchError):
    """Raised for redirect loops or chains longer than allowed."""

    transient = False


class TooLargeError(FetchError):
    """Raised when the response body exceeds the configured cap."""

    transient = False

    def __init__(self, url: str, limit: int) -> None:
        super().__init__(f"Response from {url} exceeds {limit} bytes", url)
        self.limit = limit


class UnsupportedContentTypeError(FetchError):
    """Raised before reading the body when the content type is not parseable."""

    transient = False

    def __init__(self, url: str, content_type: str) -> None:
        super().__init__(f"Unsupported content type {content_type!r} from {url}", url)
        self.content_type = content_type


class RobotsBlockedError(FetchError):
    """Raised when the site's robots.txt disallows fetching the page."""

    transient = False

    def __init__(self, url: str) -> None:
        super().__init__(f"Blocked by robots.txt: {url}", url)
