"""Tests for pipeline and extraction exceptions."""

from __future__ import annotations

import pytest

from app.exceptions import (
    FetchError,
    FetchTimeoutError,
    InvalidURLError,
    OverloadedError,
    ParseServiceError,
    RedirectError,
    SecurityRejectedError,
    TooLargeError,
    UnsupportedContentTypeError,
    UpstreamStatusError,
)
from app.services.extractors.exceptions import (
    EmptyContentError,
    ExtractionError,
    StrategyError,
)


class TestExceptionHierarchy:
    """Test the exception class hierarchy."""

    @pytest.mark.parametrize(
        "exc_class",
        [InvalidURLError, SecurityRejectedError, OverloadedError, FetchError],
    )
    def test_pipeline_errors_inherit_from_base(self, exc_class) -> None:
        """Test pipeline errors share ParseServiceError."""
        assert issubclass(exc_class, ParseServiceError)

    @pytest.mark.parametrize(
        "exc_class",
        [FetchTimeoutError, UpstreamStatusError, RedirectError, TooLargeError, UnsupportedContentTypeError],
    )
    def test_fetch_errors_inherit_from_fetch_error(self, exc_class) -> None:
        """Test fetch failures share FetchError."""
        assert issubclass(exc_class, FetchError)

    def test_security_rejection_is_not_a_fetch_error(self) -> None:
        """Test that SSRF rejections are never handled as ordinary fetch failures."""
        assert not issubclass(SecurityRejectedError, FetchError)

    def test_extraction_errors(self) -> None:
        """Test extraction exceptions inherit from ExtractionError."""
        assert issubclass(StrategyError, ExtractionError)
        assert issubclass(EmptyContentError, ExtractionError)


class TestTransience:
    """Test which fetch failures are treated as transient."""

    @pytest.mark.parametrize(
        "status,transient",
        [(404, False), (403, False), (410, False), (429, True), (500, True), (503, True)],
    )
    def test_upstream_status(self, status, transient) -> None:
        """Test status-based transience."""
        error = UpstreamStatusError("https://example.com/", status)
        assert error.transient is transient
        assert error.status_code == status

    def test_terminal_fetch_errors(self) -> None:
        """Test errors that will not change on retry."""
        assert TooLargeError("https://example.com/", 10).transient is False
        assert RedirectError("loop", "https://example.com/").transient is False
        assert UnsupportedContentTypeError("https://example.com/", "application/pdf").transient is False

    def test_network_errors_are_transient(self) -> None:
        """Test generic network failures and timeouts."""
        assert FetchError("reset", "https://example.com/").transient is True
        assert FetchTimeoutError("slow", "https://example.com/").transient is True


class TestExceptionMessages:
    """Test that exceptions carry context."""

    def test_invalid_url(self) -> None:
        """Test InvalidURLError message and attributes."""
        error = InvalidURLError("ftp://x", "scheme must be http or https")
        assert error.url == "ftp://x"
        assert "scheme must be http or https" in str(error)

    def test_strategy_error_prefixes_name(self) -> None:
        """Test StrategyError includes the strategy name."""
        error = StrategyError("youtube", "oEmbed returned no title")
        assert str(error) == "youtube: oEmbed returned no title"
        assert error.strategy == "youtube"

    def test_overloaded_carries_domain(self) -> None:
        """Test OverloadedError keeps the domain."""
        assert OverloadedError("example.com").domain == "example.com"

    def test_fetch_error_keeps_cause(self) -> None:
        """Test FetchError chains the underlying exception."""
        cause = ConnectionResetError("reset")
        error = FetchError("Network error", "https://example.com/", cause)
        assert error.cause is cause
        assert error.url == "https://example.com/"
