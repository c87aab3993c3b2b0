"""Maps pipeline results and fatal errors onto the HTTP response shapes."""

from __future__ import annotations

import logging

from app.exceptions import (
    InvalidURLError,
    OverloadedError,
    ParseServiceError,
    SecurityRejectedError,
)
from app.schemas.parse import ParseFailureResponse, ParseSuccessResponse
from app.services.extractors.base import FallbackReason, ParseResult

logger = logging.getLogger(__name__)

# Shown instead of the guard's reason so internal topology never leaks
GENERIC_FETCH_ERROR = "Unable to fetch this URL"


def compose_success(result: ParseResult, cached: bool = False) -> ParseSuccessResponse:
    """Build the success body for a parse result."""
    return ParseSuccessResponse(
        title=result.title,
        type=result.content_type.value,
        domain=result.domain,
        content_html=None if result.is_webview else result.content_html,
        cover_image=result.cover_image_url,
        confidence=result.confidence,
        fallback_reason=result.fallback_reason.value if result.fallback_reason else None,
        excerpt=result.excerpt,
        reading_time_minutes=result.reading_time_minutes,
        cached=cached,
        fetched_at=result.fetched_at,
    )


def compose_failure(error: ParseServiceError) -> tuple[int, ParseFailureResponse]:
    """Build the failure body and HTTP status for a fatal error.

    Args:
        error: InvalidURLError, SecurityRejectedError or OverloadedError.

    Returns:
        (status code, body)
    """
    if isinstance(error, InvalidURLError):
        return 400, ParseFailureResponse(
            error=str(error),
            fallback_reason=FallbackReason.FETCH_ERROR.value,
        )
    if isinstance(error, SecurityRejectedError):
        return 422, ParseFailureResponse(
            error=GENERIC_FETCH_ERROR,
            fallback_reason=FallbackReason.FETCH_ERROR.value,
        )
    if isinstance(error, OverloadedError):
        return 503, ParseFailureResponse(
            error="Too many pending requests for this site, retry later",
            fallback_reason=FallbackReason.FETCH_ERROR.value,
        )
    logger.error("Unexpected fatal parse error: %s", error)
    return 500, ParseFailureResponse(
        error=GENERIC_FETCH_ERROR,
        fallback_reason=FallbackReason.FETCH_ERROR.value,
    )
