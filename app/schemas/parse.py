"""Pydantic v2 schemas for the parse endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


# -----------------------------------------------------------------------------
# Request Schemas
# -----------------------------------------------------------------------------


class ParseRequest(BaseModel):
    """Request body for POST /parse."""

    # Plain string: the normalizer validates it and answers with our own
    # INVALID_URL body instead of a pydantic 422
    url: str = Field(..., max_length=8192, description="Absolute http(s) URL to parse")
    skip_cache: bool = Field(
        default=False,
        description="Bypass the cache read (the result is still written)",
    )


# -----------------------------------------------------------------------------
# Response Schemas
# -----------------------------------------------------------------------------


class ParseSuccessResponse(BaseModel):
    """Structured representation of a parsed URL."""

    success: Literal[True] = True
    title: str = Field(..., description="Display title")
    type: str = Field(..., description="article, video, audio, image, code, design, product or webview")
    domain: str = Field(..., description="Display domain without www.")
    content_html: str | None = Field(default=None, description="Sanitized body, null for webview")
    cover_image: str | None = Field(default=None, description="Absolute cover image URL")
    confidence: float = Field(..., ge=0.0, le=1.0, description="Extraction quality score")
    fallback_reason: str | None = Field(
        default=None, description="Why the client should show the page in a webview"
    )
    excerpt: str | None = Field(default=None, description="Short summary")
    reading_time_minutes: int = Field(default=0, ge=0)
    cached: bool = Field(default=False, description="Served from the cache")
    fetched_at: datetime = Field(..., description="When the result was produced")


class ParseFailureResponse(BaseModel):
    """Returned when a URL cannot be parsed at all."""

    success: Literal[False] = False
    error: str = Field(..., description="Human-readable error message")
    type: Literal["webview"] = "webview"
    fallback_reason: str | None = Field(default=None)


class CacheInvalidationResponse(BaseModel):
    """Response for DELETE /parse/cache."""

    url: str
    removed: bool
