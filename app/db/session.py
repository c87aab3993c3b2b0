"""Database engine and the session factory handed to the parse cache store."""

from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from app.db.base import Base

# Lazy initialization so importing the app never opens a connection
_engine: Engine | None = None
_SessionLocal: sessionmaker[Session] | None = None


def get_engine() -> Engine:
    """Return the global SQLAlchemy engine (created lazily)."""
    global _engine
    if _engine is None:
        from app.core.config import settings

        connect_args: dict = {}
        url = settings.database_url

        # The cache store is used from the event loop thread and from heal tasks
        if url.startswith("sqlite"):
            connect_args["check_same_thread"] = False

        _engine = create_engine(
            url,
            echo=False,
            pool_pre_ping=True,
            connect_args=connect_args,
        )
    return _engine


def get_session_local() -> sessionmaker[Session]:
    """Return the global session factory (created lazily).

    ParseCacheStore opens one short-lived session per operation from this
    factory; there are no request-scoped sessions.
    """
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            bind=get_engine(),
        )
    return _SessionLocal


def create_all_tables() -> None:
    """Create the cache and lease tables from ORM metadata (dev convenience)."""
    Base.metadata.create_all(bind=get_engine())
