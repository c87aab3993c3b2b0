from fastapi import APIRouter, Request
from sqlalchemy.exc import SQLAlchemyError
import logging
import subprocess

from app.schemas.common import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter()


def get_git_sha() -> str:
    """Get git SHA, fallback to 'unknown' if not in git repo."""
    try:
        return (
            subprocess.check_output(["git", "rev-parse", "HEAD"]).decode().strip()[:7]
        )
    except (subprocess.CalledProcessError, FileNotFoundError):
        return "unknown"


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    cache_entries = None
    service = getattr(request.app.state, "parse_service", None)
    if service is not None:
        try:
            cache_entries = service.store.count()
        except SQLAlchemyError as e:
            logger.warning("Cache store unavailable: %s", e)
    return {
        "status": "ok",
        "name": "linkparse-service",
        "version": "0.1.0",
        "git_sha": get_git_sha(),
        "cache_entries": cache_entries,
    }
