"""SQLAlchemy ORM models for the parse result cache and fetch leases."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.types import JSON

from app.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ParsedCacheEntry(Base):
    """Cached ParseResult for one normalized URL."""

    __tablename__ = "parsed_cache"

    # sha1 hex digest of the normalized URL
    url_hash: str = Column(String(40), primary_key=True)

    # Normalized URL the hash was computed from
    url: str = Column(Text, nullable=False)

    # Serialized ParseResult (ParseResult.to_dict())
    result = Column(JSON, nullable=False)

    # Copied out of the result so heal candidates can be queried
    confidence: float = Column(Float, nullable=False, default=0.0)

    # Timestamps
    created_at: datetime = Column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    last_validated_at: datetime = Column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    # Number of times the entry was served from cache
    hit_count: int = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("idx_parsed_cache_created_at", "created_at"),
        Index("idx_parsed_cache_confidence", "confidence"),
    )

    def __repr__(self) -> str:
        return (
            f"<ParsedCacheEntry {self.url_hash}: "
            f"confidence={self.confidence} hits={self.hit_count}>"
        )


class ParseLease(Base):
    """Marks a URL as being fetched by one worker.

    A lease past ``expires_at`` is treated as abandoned and may be taken
    over by another worker.
    """

    __tablename__ = "parse_leases"

    url_hash: str = Column(String(40), primary_key=True)

    # Identifier of the worker holding the lease (process + task)
    holder: str = Column(String(128), nullable=False)

    expires_at: datetime = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("idx_parse_leases_expires_at", "expires_at"),)

    def __repr__(self) -> str:
        return f"<ParseLease {self.url_hash}: holder={self.holder}>"
