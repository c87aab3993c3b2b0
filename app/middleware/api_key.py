"""Middleware requiring a client credential on parse endpoints.

Accepts ``Authorization: Bearer <token>`` or an ``apikey`` header. When
API keys are configured the credential must be one of them; otherwise any
non-empty credential passes (the gateway in front validates it).

Does NOT identify users; there are no accounts in this service.
"""

from __future__ import annotations

import hmac
import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from app.core.config import settings

logger = logging.getLogger(__name__)

# Routes that require a credential
_PROTECTED_PREFIXES = ("/parse",)


def extract_credential(request: Request) -> str | None:
    """Return the bearer token or apikey header value, if any."""
    authorization = request.headers.get("authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    apikey = request.headers.get("apikey", "").strip()
    return apikey or None


def is_valid_credential(credential: str, allowed: set[str]) -> bool:
    if not allowed:
        return True
    return any(hmac.compare_digest(credential, key) for key in allowed)


class APIKeyMiddleware(BaseHTTPMiddleware):
    """Reject unauthenticated requests to protected routes with 401."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if request.method == "OPTIONS" or not path.startswith(_PROTECTED_PREFIXES):
            return await call_next(request)

        credential = extract_credential(request)
        if credential is None or not is_valid_credential(credential, settings.get_api_keys()):
            logger.warning(
                "UNAUTHORIZED: %s %s (credential %s)",
                request.method,
                path,
                "missing" if credential is None else "rejected",
            )
            return JSONResponse(
                status_code=401,
                content={
                    "error": {
                        "code": "UNAUTHORIZED",
                        "message": "A valid bearer token or apikey header is required.",
                    }
                },
            )

        return await call_next(request)
