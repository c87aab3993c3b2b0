"""ORM models package."""

from app.models.parsed_cache import ParseLease, ParsedCacheEntry  # noqa: F401
