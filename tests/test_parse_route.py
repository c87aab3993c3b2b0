"""Tests for the parse HTTP endpoints.

Tests cover:
- Credential checks on /parse routes
- Success body shape for article and webview results
- Failure bodies for invalid URLs, forbidden destinations and overload
- Per-client request quota
- Cache invalidation
- /health
"""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from app.core.config import settings
from app.exceptions import InvalidURLError, OverloadedError, SecurityRejectedError
from app.main import app
from app.routes.parse import get_parse_service
from app.services.extractors.base import ContentType, FallbackReason, ParseResult
from app.services.parse_service import ParseOutcome

AUTH = {"Authorization": "Bearer test-token"}

ARTICLE = ParseResult(
    title="Rock pools at low tide",
    content_type=ContentType.ARTICLE,
    domain="example.com",
    confidence=0.92,
    content_html="<p>Anemones close.</p>",
    cover_image_url="https://example.com/img/pool.jpg",
    excerpt="What lives in a rock pool.",
    reading_time_minutes=3,
    final_url="https://example.com/guides/rock-pools",
    strategy="generic",
    fetched_at=datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc),
)


@pytest.fixture
def service() -> MagicMock:
    fake = MagicMock()
    fake.parse = AsyncMock(return_value=ParseOutcome(ARTICLE))
    fake.invalidate = AsyncMock(return_value=True)
    return fake


@pytest.fixture
def client(service: MagicMock):
    app.dependency_overrides[get_parse_service] = lambda: service
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


class TestAuthentication:
    """Credential checks."""

    def test_missing_credential(self, client: TestClient, service: MagicMock) -> None:
        resp = client.post("/parse", json={"url": "https://example.com/"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "UNAUTHORIZED"
        service.parse.assert_not_called()

    def test_apikey_header(self, client: TestClient) -> None:
        resp = client.post("/parse", json={"url": "https://example.com/"}, headers={"apikey": "abc"})
        assert resp.status_code == 200

    def test_configured_keys(self, client: TestClient, monkeypatch) -> None:
        monkeypatch.setattr(settings, "api_keys", "k1, k2")
        denied = client.post("/parse", json={"url": "https://example.com/"}, headers=AUTH)
        allowed = client.post(
            "/parse", json={"url": "https://example.com/"}, headers={"Authorization": "Bearer k2"}
        )
        assert denied.status_code == 401
        assert allowed.status_code == 200

    def test_health_is_public(self, client: TestClient) -> None:
        assert client.get("/health").status_code == 200


class TestParseEndpoint:
    """POST /parse."""

    def test_article_body(self, client: TestClient, service: MagicMock) -> None:
        resp = client.post("/parse", json={"url": "https://example.com/guides/rock-pools"}, headers=AUTH)

        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["title"] == "Rock pools at low tide"
        assert data["type"] == "article"
        assert data["domain"] == "example.com"
        assert data["content_html"] == "<p>Anemones close.</p>"
        assert data["cover_image"] == "https://example.com/img/pool.jpg"
        assert data["confidence"] == 0.92
        assert data["fallback_reason"] is None
        assert data["reading_time_minutes"] == 3
        assert data["cached"] is False
        assert data["fetched_at"].startswith("2026-10-01T12:00:00")
        service.parse.assert_awaited_once_with(
            "https://example.com/guides/rock-pools", force_refresh=False
        )

    def test_skip_cache_forces_refresh(self, client: TestClient, service: MagicMock) -> None:
        client.post("/parse", json={"url": "https://example.com/", "skip_cache": True}, headers=AUTH)
        service.parse.assert_awaited_once_with("https://example.com/", force_refresh=True)

    def test_webview_has_no_body(self, client: TestClient, service: MagicMock) -> None:
        webview = ParseResult(
            title="Dashboard",
            content_type=ContentType.WEBVIEW,
            domain="app.example.com",
            confidence=0.1,
            content_html="<div>should never be sent</div>",
            fallback_reason=FallbackReason.JS_REQUIRED,
        )
        service.parse.return_value = ParseOutcome(webview, cached=True)

        data = client.post("/parse", json={"url": "https://app.example.com/"}, headers=AUTH).json()

        assert data["type"] == "webview"
        assert data["content_html"] is None
        assert data["fallback_reason"] == "js-required"
        assert data["cached"] is True

    def test_invalid_url(self, client: TestClient, service: MagicMock) -> None:
        service.parse.side_effect = InvalidURLError("ftp://example.com/", "unsupported scheme")

        resp = client.post("/parse", json={"url": "ftp://example.com/"}, headers=AUTH)

        assert resp.status_code == 400
        data = resp.json()
        assert data["success"] is False
        assert data["type"] == "webview"
        assert data["fallback_reason"] == "fetch-error"
        assert "ftp://example.com/" in data["error"]

    def test_security_rejection_is_generic(self, client: TestClient, service: MagicMock) -> None:
        service.parse.side_effect = SecurityRejectedError("http://10.0.0.5/", "private address 10.0.0.5")

        resp = client.post("/parse", json={"url": "http://10.0.0.5/"}, headers=AUTH)

        assert resp.status_code == 422
        data = resp.json()
        assert data["error"] == "Unable to fetch this URL"
        assert data["fallback_reason"] == "fetch-error"
        assert "10.0.0.5" not in resp.text

    def test_overloaded(self, client: TestClient, service: MagicMock) -> None:
        service.parse.side_effect = OverloadedError("example.com")

        resp = client.post("/parse", json={"url": "https://example.com/"}, headers=AUTH)

        assert resp.status_code == 503
        assert resp.json()["success"] is False

    def test_missing_url_is_validation_error(self, client: TestClient) -> None:
        resp = client.post("/parse", json={}, headers=AUTH)
        assert resp.status_code == 422

    def test_service_not_started(self) -> None:
        client = TestClient(app, raise_server_exceptions=False)
        resp = client.post("/parse", json={"url": "https://example.com/"}, headers=AUTH)
        assert resp.status_code == 503
        assert resp.json()["detail"]["error"]["code"] == "SERVICE_UNAVAILABLE"


class TestClientQuota:
    """Per-client request quota on /parse."""

    def test_over_quota_gets_429(self, client: TestClient, service: MagicMock, monkeypatch) -> None:
        monkeypatch.setattr(settings, "client_rate_limit_per_minute", 2)
        headers = {**AUTH, "X-Forwarded-For": "198.51.100.7"}

        codes = [
            client.post("/parse", json={"url": "https://example.com/"}, headers=headers).status_code
            for _ in range(3)
        ]

        assert codes == [200, 200, 429]
        assert service.parse.await_count == 2

    def test_quota_body_and_retry_after(self, client: TestClient, monkeypatch) -> None:
        monkeypatch.setattr(settings, "client_rate_limit_per_minute", 1)
        headers = {**AUTH, "X-Forwarded-For": "198.51.100.8"}
        client.post("/parse", json={"url": "https://example.com/"}, headers=headers)

        resp = client.post("/parse", json={"url": "https://example.com/"}, headers=headers)

        assert resp.status_code == 429
        assert resp.json()["error"]["code"] == "RATE_LIMITED"
        assert 0 < int(resp.headers["retry-after"]) <= 60

    def test_clients_are_counted_separately(self, client: TestClient, monkeypatch) -> None:
        monkeypatch.setattr(settings, "client_rate_limit_per_minute", 1)
        first = {**AUTH, "X-Forwarded-For": "198.51.100.9"}
        second = {**AUTH, "X-Forwarded-For": "198.51.100.10, 10.0.0.1"}

        assert client.post("/parse", json={"url": "https://example.com/"}, headers=first).status_code == 200
        assert client.post("/parse", json={"url": "https://example.com/"}, headers=second).status_code == 200

    def test_health_is_not_counted(self, client: TestClient, monkeypatch) -> None:
        monkeypatch.setattr(settings, "client_rate_limit_per_minute", 1)
        codes = {client.get("/health").status_code for _ in range(3)}
        assert codes == {200}


class TestCacheEndpoint:
    """DELETE /parse/cache."""

    def test_invalidate(self, client: TestClient, service: MagicMock) -> None:
        resp = client.delete("/parse/cache", params={"url": "https://example.com/a"}, headers=AUTH)

        assert resp.status_code == 200
        assert resp.json() == {"url": "https://example.com/a", "removed": True}
        service.invalidate.assert_awaited_once_with("https://example.com/a")

    def test_invalid_url(self, client: TestClient, service: MagicMock) -> None:
        service.invalidate.side_effect = InvalidURLError("nope")

        resp = client.delete("/parse/cache", params={"url": "nope"}, headers=AUTH)

        assert resp.status_code == 400
        assert resp.json()["detail"]["error"]["code"] == "INVALID_URL"

    def test_requires_credential(self, client: TestClient) -> None:
        resp = client.delete("/parse/cache", params={"url": "https://example.com/a"})
        assert resp.status_code == 401


class TestHealth:
    """GET /health."""

    def test_reports_cache_size(self, client: TestClient) -> None:
        fake = MagicMock()
        fake.store.count.return_value = 7
        app.state.parse_service = fake
        try:
            data = client.get("/health").json()
        finally:
            app.state.parse_service = None

        assert data["status"] == "ok"
        assert data["name"] == "linkparse-service"
        assert data["cache_entries"] == 7
        assert "git_sha" in data

    def test_without_service(self, client: TestClient) -> None:
        data = client.get("/health").json()
        assert data["status"] == "ok"
        assert data["cache_entries"] is None
