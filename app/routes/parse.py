"""URL parse REST endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from app.exceptions import (
    InvalidURLError,
    OverloadedError,
    SecurityRejectedError,
)
from app.schemas.common import ErrorResponse
from app.schemas.parse import (
    CacheInvalidationResponse,
    ParseFailureResponse,
    ParseRequest,
    ParseSuccessResponse,
)
from app.services.composer import compose_failure, compose_success
from app.services.parse_service import ParseService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["parse"])


def get_parse_service(request: Request) -> ParseService:
    """FastAPI dependency returning the service created at startup."""
    service = getattr(request.app.state, "parse_service", None)
    if service is None:
        raise HTTPException(
            status_code=503,
            detail={
                "error": {
                    "code": "SERVICE_UNAVAILABLE",
                    "message": "Parse service is not initialized",
                }
            },
        )
    return service


@router.post(
    "/parse",
    response_model=ParseSuccessResponse,
    responses={
        400: {"model": ParseFailureResponse},
        401: {"model": ErrorResponse},
        422: {"model": ParseFailureResponse},
        503: {"model": ParseFailureResponse},
        500: {"model": ErrorResponse},
    },
)
async def parse_url(
    request: ParseRequest,
    service: ParseService = Depends(get_parse_service),
) -> ParseSuccessResponse | JSONResponse:
    """Parse a URL into a structured, sanitized representation.

    Every upstream failure degrades into a successful ``webview`` result;
    only an invalid URL, a forbidden destination or an overloaded domain
    produce a failure body.

    Args:
        request: URL to parse and the cache bypass flag.
        service: Parse pipeline.

    Returns:
        ParseSuccessResponse, or a ParseFailureResponse with status 400,
        422 or 503.
    """
    try:
        outcome = await service.parse(request.url, force_refresh=request.skip_cache)
    except (InvalidURLError, SecurityRejectedError, OverloadedError) as e:
        status_code, failure = compose_failure(e)
        return JSONResponse(status_code=status_code, content=failure.model_dump())

    return compose_success(outcome.result, cached=outcome.cached)


@router.delete("/parse/cache", response_model=CacheInvalidationResponse)
async def invalidate_cached_parse(
    url: str = Query(..., description="URL whose cached result should be dropped"),
    service: ParseService = Depends(get_parse_service),
) -> CacheInvalidationResponse:
    """Remove the cached result for a URL so the next request re-parses it.

    Raises:
        HTTPException: 400 if the URL is invalid.
    """
    try:
        removed = await service.invalidate(url)
    except InvalidURLError as e:
        raise HTTPException(
            status_code=400,
            detail={"error": {"code": "INVALID_URL", "message": str(e)}},
        )
    return CacheInvalidationResponse(url=url, removed=removed)
