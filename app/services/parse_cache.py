"""Persistent cache of parse results plus cross-process fetch leases.

The store is passed explicitly to the parse pipeline; it is the only state
shared between requests. All methods open a short-lived session from the
supplied factory and commit before returning.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.parsed_cache import ParseLease, ParsedCacheEntry
from app.services.extractors.base import ParseResult

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 24 * 60 * 60


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class CachedParse:
    """A cache row as seen by the pipeline."""

    url_hash: str
    url: str
    result: ParseResult
    created_at: datetime
    last_validated_at: datetime
    hit_count: int
    expires_at: datetime

    @property
    def confidence(self) -> float:
        return self.result.confidence

    def is_fresh(self, now: datetime | None = None) -> bool:
        return (now or _utcnow()) < self.expires_at

    def validated_within(self, seconds: float, now: datetime | None = None) -> bool:
        return (now or _utcnow()) - self.last_validated_at < timedelta(seconds=seconds)


class ParseCacheStore:
    """SQL-backed cache keyed by ``sha1(normalized URL)``.

    Args:
        session_factory: Callable returning a new SQLAlchemy session.
        ttl_seconds: Age after which an entry is no longer fresh.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
    ) -> None:
        self._session_factory = session_factory
        self.ttl = timedelta(seconds=ttl_seconds)

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    def _to_cached(self, row: ParsedCacheEntry) -> CachedParse:
        created_at = _as_utc(row.created_at)
        return CachedParse(
            url_hash=row.url_hash,
            url=row.url,
            result=ParseResult.from_dict(row.result),
            created_at=created_at,
            last_validated_at=_as_utc(row.last_validated_at),
            hit_count=row.hit_count or 0,
            expires_at=created_at + self.ttl,
        )

    def get(self, url_hash: str) -> CachedParse | None:
        """Return the entry for a key, fresh or not, or None."""
        with self._session_factory() as db:
            row = db.get(ParsedCacheEntry, url_hash)
            return self._to_cached(row) if row is not None else None

    def get_fresh(self, url_hash: str) -> CachedParse | None:
        """Return the entry only if it is still within its TTL."""
        entry = self.get(url_hash)
        if entry is None or not entry.is_fresh():
            return None
        return entry

    def put(self, url_hash: str, url: str, result: ParseResult) -> CachedParse:
        """Write a result, replacing whatever was stored for the key."""
        now = _utcnow()
        with self._session_factory() as db:
            row = db.get(ParsedCacheEntry, url_hash)
            if row is None:
                row = ParsedCacheEntry(url_hash=url_hash, url=url, hit_count=0)
                db.add(row)
            row.url = url
            row.result = result.to_dict()
            row.confidence = result.confidence
            row.created_at = now
            row.last_validated_at = now
            db.commit()
            db.refresh(row)
            logger.debug("Cached %s (confidence=%.3f)", url_hash, result.confidence)
            return self._to_cached(row)

    def replace_if_better(self, url_hash: str, url: str, result: ParseResult) -> bool:
        """Store ``result`` only if it beats the cached confidence.

        The comparison and write happen in one transaction. When the new
        result is not strictly better, only ``last_validated_at`` moves.

        Returns:
            True if the stored result was replaced.
        """
        now = _utcnow()
        with self._session_factory() as db:
            row = db.get(ParsedCacheEntry, url_hash, with_for_update=True)
            if row is None:
                db.add(
                    ParsedCacheEntry(
                        url_hash=url_hash,
                        url=url,
                        result=result.to_dict(),
                        confidence=result.confidence,
                        created_at=now,
                        last_validated_at=now,
                        hit_count=0,
                    )
                )
                db.commit()
                return True

            if result.confidence > (row.confidence or 0.0):
                row.result = result.to_dict()
                row.confidence = result.confidence
                row.created_at = now
                row.last_validated_at = now
                db.commit()
                logger.info(
                    "Self-heal improved %s to confidence=%.3f", url_hash, result.confidence
                )
                return True

            row.last_validated_at = now
            db.commit()
            return False

    def touch_validated(self, url_hash: str) -> None:
        """Mark an entry as re-validated without touching its result."""
        with self._session_factory() as db:
            db.execute(
                update(ParsedCacheEntry)
                .where(ParsedCacheEntry.url_hash == url_hash)
                .values(last_validated_at=_utcnow())
            )
            db.commit()

    def record_hit(self, url_hash: str) -> None:
        with self._session_factory() as db:
            db.execute(
                update(ParsedCacheEntry)
                .where(ParsedCacheEntry.url_hash == url_hash)
                .values(hit_count=ParsedCacheEntry.hit_count + 1)
            )
            db.commit()

    def invalidate(self, url_hash: str) -> bool:
        """Delete an entry. Returns True if one existed."""
        with self._session_factory() as db:
            deleted = db.execute(
                delete(ParsedCacheEntry).where(ParsedCacheEntry.url_hash == url_hash)
            ).rowcount
            db.commit()
        return bool(deleted)

    # ------------------------------------------------------------------
    # Leases
    # ------------------------------------------------------------------

    def acquire_lease(self, url_hash: str, holder: str, ttl_seconds: float) -> bool:
        """Try to take the fetch lease for a key.

        An expired lease is taken over; a live lease held by someone else
        is left alone.

        Returns:
            True if ``holder`` now owns the lease.
        """
        now = _utcnow()
        expires_at = now + timedelta(seconds=ttl_seconds)
        with self._session_factory() as db:
            db.execute(
                delete(ParseLease).where(
                    ParseLease.url_hash == url_hash, ParseLease.expires_at <= now
                )
            )
            existing = db.get(ParseLease, url_hash)
            if existing is not None:
                if existing.holder != holder:
                    db.commit()
                    return False
                existing.expires_at = expires_at
                db.commit()
                return True

            db.add(ParseLease(url_hash=url_hash, holder=holder, expires_at=expires_at))
            try:
                db.commit()
            except IntegrityError:
                # Another worker inserted the lease first
                db.rollback()
                return False
        return True

    def lease_holder(self, url_hash: str) -> str | None:
        """Return the holder of a live lease, or None."""
        with self._session_factory() as db:
            lease = db.get(ParseLease, url_hash)
            if lease is None or _as_utc(lease.expires_at) <= _utcnow():
                return None
            return lease.holder

    def release_lease(self, url_hash: str, holder: str) -> None:
        with self._session_factory() as db:
            db.execute(
                delete(ParseLease).where(
                    ParseLease.url_hash == url_hash, ParseLease.holder == holder
                )
            )
            db.commit()

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def purge_expired(self) -> tuple[int, int]:
        """Delete expired entries and leases.

        Returns:
            (entries removed, leases removed)
        """
        now = _utcnow()
        with self._session_factory() as db:
            entries = db.execute(
                delete(ParsedCacheEntry).where(ParsedCacheEntry.created_at < now - self.ttl)
            ).rowcount
            leases = db.execute(delete(ParseLease).where(ParseLease.expires_at <= now)).rowcount
            db.commit()
        if entries or leases:
            logger.info("Purged %d expired cache entries and %d leases", entries, leases)
        return entries or 0, leases or 0

    def count(self) -> int:
        with self._session_factory() as db:
            return db.execute(select(func.count()).select_from(ParsedCacheEntry)).scalar_one()
