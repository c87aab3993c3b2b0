"""Per-client request quota on parse endpoints.

Counts requests per client IP in fixed one-minute windows and answers
429 once the configured quota is used up. Counters live in process
memory and are dropped when the window rolls over.
"""

from __future__ import annotations

import logging
import time

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from starlette.types import ASGIApp

from app.core.config import settings

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60

# Routes that count against the quota
_LIMITED_PREFIXES = ("/parse",)


def client_ip(request: Request) -> str:
    """Return the caller's IP, preferring the first X-Forwarded-For hop."""
    forwarded = request.headers.get("x-forwarded-for", "")
    first = forwarded.split(",", 1)[0].strip()
    if first:
        return first
    return request.client.host if request.client else "unknown"


class ClientQuotaMiddleware(BaseHTTPMiddleware):
    """Reject clients over ``client_rate_limit_per_minute`` with 429."""

    def __init__(self, app: ASGIApp) -> None:
        super().__init__(app)
        self._window = 0
        self._counts: dict[str, int] = {}

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        limit = settings.client_rate_limit_per_minute
        path = request.url.path
        if limit <= 0 or request.method == "OPTIONS" or not path.startswith(_LIMITED_PREFIXES):
            return await call_next(request)

        now = time.time()
        window = int(now // WINDOW_SECONDS)
        if window != self._window:
            self._window = window
            self._counts.clear()

        ip = client_ip(request)
        count = self._counts.get(ip, 0) + 1
        self._counts[ip] = count
        if count > limit:
            retry_after = WINDOW_SECONDS - int(now % WINDOW_SECONDS)
            logger.warning("RATE_LIMITED: %s %s from %s (%d/min)", request.method, path, ip, limit)
            return JSONResponse(
                status_code=429,
                headers={"Retry-After": str(retry_after)},
                content={
                    "error": {
                        "code": "RATE_LIMITED",
                        "message": "Too many requests from this client. Try again later.",
                    }
                },
            )

        return await call_next(request)
