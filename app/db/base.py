"""SQLAlchemy declarative base for the cache tables and Alembic."""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for ParsedCacheEntry and ParseLease."""

    pass
