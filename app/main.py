"""FastAPI application entry point for linkparse-service.

Configures middleware, exception handlers, lifecycle hooks, and routes.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.db.session import create_all_tables, get_session_local
from app.middleware.api_key import APIKeyMiddleware
from app.middleware.client_quota import ClientQuotaMiddleware
from app.routes import health
from app.routes.parse import router as parse_router
from app.services.parse_service import ParseService

# ---------------------------------------------------------------------------
# Logging Configuration
# ---------------------------------------------------------------------------

# Configure root logger with level from settings
logging.basicConfig(
    level=settings.get_log_level_int(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup / shutdown lifecycle."""
    # --- Startup ---
    logger.info(
        "Starting linkparse-service (env=%s, port=%d)",
        settings.service_env,
        settings.port,
    )

    # Ensure tables exist (dev convenience - production uses alembic)
    if settings.service_env == "development":
        try:
            # Import models so Base.metadata knows about them
            import app.models  # noqa: F401

            create_all_tables()
            logger.info("Database tables ensured (dev mode)")
        except SQLAlchemyError:
            logger.warning(
                "Could not auto-create tables (database may not be available). "
                "Use 'alembic upgrade head' to create tables."
            )

    service = ParseService.from_settings(settings, get_session_local())
    try:
        service.store.purge_expired()
    except SQLAlchemyError:
        logger.warning("Could not purge expired cache rows at startup", exc_info=True)
    app.state.parse_service = service
    logger.info(
        "Parse service ready with %d registered strategies",
        len(service.registry.descriptors) + 1,
    )

    yield

    # --- Shutdown ---
    logger.info("Shutting down linkparse-service")
    await service.close()
    app.state.parse_service = None


# ---------------------------------------------------------------------------
# App instance
# ---------------------------------------------------------------------------

app = FastAPI(
    title="linkparse API",
    version="0.1.0",
    docs_url="/docs",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Runs after the credential check, so only authenticated calls count
app.add_middleware(ClientQuotaMiddleware)
app.add_middleware(APIKeyMiddleware)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    """Log every request with method, path, status, and duration."""
    start = time.monotonic()
    response = await call_next(request)
    duration_ms = (time.monotonic() - start) * 1000
    logger.info(
        "%s %s -> %d (%.1fms)",
        request.method,
        request.url.path,
        response.status_code,
        duration_ms,
    )
    return response


# ---------------------------------------------------------------------------
# Global exception handler
# ---------------------------------------------------------------------------


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler that returns a structured JSON error."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred.",
            }
        },
    )


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

# Health check at /health (no prefix)
app.include_router(health.router)

# POST /parse and DELETE /parse/cache
app.include_router(parse_router)
