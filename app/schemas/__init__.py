"""Pydantic schemas package."""

from app.schemas.common import ErrorResponse, HealthResponse  # noqa: F401
from app.schemas.parse import (  # noqa: F401
    CacheInvalidationResponse,
    ParseFailureResponse,
    ParseRequest,
    ParseSuccessResponse,
)
