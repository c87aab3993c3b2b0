"""Unit tests for ParseCacheStore.

Uses an in-memory SQLite database shared through StaticPool.

Tests cover:
- Put/get round trip and TTL freshness
- replace_if_better never lowering stored confidence
- Hit counting, validation timestamps and invalidation
- Lease acquisition, takeover of expired leases and release
- Purging expired rows
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from app.models.parsed_cache import ParseLease, ParsedCacheEntry
from app.services.extractors.base import ContentType, FallbackReason, ParseResult
from app.services.parse_cache import ParseCacheStore

KEY = "a" * 40
URL = "https://example.com/post"


def make_result(confidence: float = 0.8, title: str = "A post") -> ParseResult:
    if confidence < 0.3:
        return ParseResult(
            title=title,
            content_type=ContentType.WEBVIEW,
            domain="example.com",
            confidence=confidence,
            fallback_reason=FallbackReason.LOW_CONFIDENCE,
        )
    return ParseResult(
        title=title,
        content_type=ContentType.ARTICLE,
        domain="example.com",
        confidence=confidence,
        content_html="<p>Body</p>",
        excerpt="Body",
        reading_time_minutes=1,
        strategy="generic",
    )


def backdate(session_factory, **values) -> None:
    with session_factory() as db:
        row = db.get(ParsedCacheEntry, KEY)
        for name, value in values.items():
            setattr(row, name, value)
        db.commit()


class TestEntries:
    """Tests for reading and writing cache entries."""

    def test_put_then_get(self, shared_store):
        stored = shared_store.put(KEY, URL, make_result())
        fetched = shared_store.get(KEY)

        assert fetched is not None
        assert fetched.result == stored.result
        assert fetched.result.content_type == ContentType.ARTICLE
        assert fetched.url == URL
        assert fetched.hit_count == 0

    def test_missing_key(self, shared_store):
        assert shared_store.get(KEY) is None
        assert shared_store.get_fresh(KEY) is None

    def test_put_overwrites(self, shared_store):
        shared_store.put(KEY, URL, make_result(0.9))
        shared_store.put(KEY, URL, make_result(0.4, title="Replacement"))
        assert shared_store.get(KEY).result.title == "Replacement"
        assert shared_store.count() == 1

    def test_stale_entry_is_not_fresh(self, shared_store, shared_session_factory):
        shared_store.put(KEY, URL, make_result())
        backdate(
            shared_session_factory,
            created_at=datetime.now(timezone.utc) - timedelta(days=2),
        )

        assert shared_store.get(KEY) is not None
        assert shared_store.get_fresh(KEY) is None

    def test_custom_ttl(self, shared_session_factory):
        store = ParseCacheStore(shared_session_factory, ttl_seconds=60)
        store.put(KEY, URL, make_result())
        backdate(
            shared_session_factory,
            created_at=datetime.now(timezone.utc) - timedelta(minutes=5),
        )
        assert store.get_fresh(KEY) is None

    def test_record_hit(self, shared_store):
        shared_store.put(KEY, URL, make_result())
        shared_store.record_hit(KEY)
        shared_store.record_hit(KEY)
        assert shared_store.get(KEY).hit_count == 2

    def test_invalidate(self, shared_store):
        shared_store.put(KEY, URL, make_result())
        assert shared_store.invalidate(KEY) is True
        assert shared_store.get(KEY) is None
        assert shared_store.invalidate(KEY) is False


class TestReplaceIfBetter:
    """Self-heal writes never lower the stored confidence."""

    def test_inserts_when_missing(self, shared_store):
        assert shared_store.replace_if_better(KEY, URL, make_result(0.4)) is True
        assert shared_store.get(KEY).confidence == 0.4

    def test_higher_confidence_replaces(self, shared_store):
        shared_store.put(KEY, URL, make_result(0.2))
        assert shared_store.replace_if_better(KEY, URL, make_result(0.9, title="Better")) is True
        entry = shared_store.get(KEY)
        assert entry.confidence == 0.9
        assert entry.result.title == "Better"

    @pytest.mark.parametrize("confidence", [0.1, 0.5])
    def test_lower_or_equal_keeps_existing(self, shared_store, shared_session_factory, confidence):
        shared_store.put(KEY, URL, make_result(0.5, title="Original"))
        old = datetime.now(timezone.utc) - timedelta(hours=1)
        backdate(shared_session_factory, last_validated_at=old)

        assert shared_store.replace_if_better(KEY, URL, make_result(confidence, title="New")) is False
        entry = shared_store.get(KEY)
        assert entry.result.title == "Original"
        assert entry.confidence == 0.5
        assert entry.last_validated_at > old

    def test_touch_validated(self, shared_store, shared_session_factory):
        shared_store.put(KEY, URL, make_result())
        old = datetime.now(timezone.utc) - timedelta(hours=1)
        backdate(shared_session_factory, last_validated_at=old)

        shared_store.touch_validated(KEY)
        entry = shared_store.get(KEY)
        assert entry.validated_within(60)


class TestLeases:
    """Tests for cross-process fetch leases."""

    def test_acquire_and_release(self, shared_store):
        assert shared_store.acquire_lease(KEY, "worker-1", 30) is True
        assert shared_store.lease_holder(KEY) == "worker-1"

        shared_store.release_lease(KEY, "worker-1")
        assert shared_store.lease_holder(KEY) is None

    def test_live_lease_blocks_other_holders(self, shared_store):
        assert shared_store.acquire_lease(KEY, "worker-1", 30) is True
        assert shared_store.acquire_lease(KEY, "worker-2", 30) is False
        assert shared_store.lease_holder(KEY) == "worker-1"

    def test_holder_can_renew(self, shared_store):
        assert shared_store.acquire_lease(KEY, "worker-1", 30) is True
        assert shared_store.acquire_lease(KEY, "worker-1", 30) is True

    def test_expired_lease_is_taken_over(self, shared_store, shared_session_factory):
        shared_store.acquire_lease(KEY, "worker-1", 30)
        with shared_session_factory() as db:
            lease = db.get(ParseLease, KEY)
            lease.expires_at = datetime.now(timezone.utc) - timedelta(seconds=1)
            db.commit()

        assert shared_store.lease_holder(KEY) is None
        assert shared_store.acquire_lease(KEY, "worker-2", 30) is True
        assert shared_store.lease_holder(KEY) == "worker-2"

    def test_release_by_non_holder_is_ignored(self, shared_store):
        shared_store.acquire_lease(KEY, "worker-1", 30)
        shared_store.release_lease(KEY, "worker-2")
        assert shared_store.lease_holder(KEY) == "worker-1"


class TestPurge:
    """Tests for purge_expired()."""

    def test_purges_stale_entries_and_leases(self, shared_store, shared_session_factory):
        shared_store.put(KEY, URL, make_result())
        shared_store.put("b" * 40, URL + "/2", make_result())
        backdate(
            shared_session_factory,
            created_at=datetime.now(timezone.utc) - timedelta(days=3),
        )
        shared_store.acquire_lease(KEY, "worker-1", -1)

        assert shared_store.purge_expired() == (1, 1)
        assert shared_store.count() == 1
