"""Shared pytest fixtures for integration and unit tests.

Network access is always faked: fetchers get an ``httpx.MockTransport`` and
the SSRF guard gets a resolver that maps every hostname to a public
documentation-free address. The mock transport replaces the address-pinning
transport, which has its own tests in test_fetcher.py. Individual test
modules define their own ``client`` fixtures; the fixtures below are
prefixed with ``shared_`` so they never collide with per-module fixtures.

Usage in new test files:
    async def test_something(make_service):
        service = make_service(handler)
        outcome = await service.parse("https://example.com/")
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401  -- ensure models registered with Base.metadata
from app.core.config import settings
from app.db.base import Base
from app.services.extractors.base import StrategyContext
from app.services.fetcher import FetchConfig, Fetcher
from app.services.parse_cache import ParseCacheStore
from app.services.parse_service import ParseService
from app.services.rate_limiter import DomainLimiter
from app.services.ssrf_guard import SSRFGuard
from app.services.url_normalizer import normalize_url

# Public address used for every fake DNS answer
PUBLIC_ADDRESS = "93.184.215.14"


async def public_resolver(host: str, port: int) -> list[str]:
    return [PUBLIC_ADDRESS]


def fast_fetch_config(**overrides) -> FetchConfig:
    """FetchConfig without backoff delays for tests.

    robots.txt lookups are off unless a test turns them on, so request
    counts only include the URLs under test.
    """
    values = dict(
        timeout_seconds=2.0,
        total_budget_seconds=5.0,
        max_retries=2,
        backoff_base_seconds=0.0,
        respect_robots=False,
    )
    values.update(overrides)
    return FetchConfig(**values)


def make_fetcher(
    handler: Callable[[httpx.Request], httpx.Response],
    *,
    resolver=public_resolver,
    limiter: DomainLimiter | None = None,
    **config,
) -> Fetcher:
    """Fetcher wired to a mock transport and a fake resolver."""
    return Fetcher(
        fast_fetch_config(**config),
        guard=SSRFGuard(resolver),
        limiter=limiter,
        transport=httpx.MockTransport(handler),
    )


def respond_json(data: Any, status: int = 200) -> Callable[[httpx.Request], httpx.Response]:
    return lambda request: httpx.Response(status, json=data)


def respond_html(markup: str, status: int = 200) -> Callable[[httpx.Request], httpx.Response]:
    return lambda request: httpx.Response(status, html=markup)


class RouteHandler:
    """Mock transport handler answering by URL prefix.

    Unknown URLs get a 404. Every requested URL is recorded.
    """

    def __init__(self, routes: dict[str, Callable[[httpx.Request], httpx.Response]] | None = None):
        self.routes = routes or {}
        self.requested: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requested.append(url)
        for prefix, respond in self.routes.items():
            if url.startswith(prefix):
                return respond(request)
        return httpx.Response(404, html="<h1>Not found</h1>")


@asynccontextmanager
async def strategy_context(url: str, handler: Callable, **config) -> AsyncIterator[StrategyContext]:
    """StrategyContext for ``url`` backed by a mock transport."""
    async with make_fetcher(handler, **config) as fetcher:
        yield StrategyContext(normalize_url(url), fetcher)


@pytest.fixture(autouse=True)
def _client_quota_off(monkeypatch):
    """Per-client quota is off unless a test sets one."""
    monkeypatch.setattr(settings, "client_rate_limit_per_minute", 0)


# ------------------------------------------------------------------
# Database fixtures (shared_ prefix to avoid collisions)
# ------------------------------------------------------------------


@pytest.fixture()
def shared_db_engine():
    """Create an in-memory SQLite engine shared across connections."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def shared_session_factory(shared_db_engine):
    """Session factory bound to the in-memory engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=shared_db_engine)


@pytest.fixture()
def shared_store(shared_session_factory) -> ParseCacheStore:
    """Cache store on the in-memory database."""
    return ParseCacheStore(shared_session_factory)


# ------------------------------------------------------------------
# Helper fixtures
# ------------------------------------------------------------------


@pytest.fixture()
def make_service(shared_store) -> Callable[..., ParseService]:
    """Return a helper that builds a ParseService around a mock transport.

    Extra keyword arguments are passed to the ParseService constructor.
    """

    def _make(
        handler: Callable[[httpx.Request], httpx.Response],
        *,
        resolver=public_resolver,
        fetch_config: dict | None = None,
        **kwargs,
    ) -> ParseService:
        fetcher = make_fetcher(handler, resolver=resolver, **(fetch_config or {}))
        kwargs.setdefault("lease_poll_interval_seconds", 0.01)
        return ParseService(shared_store, fetcher, **kwargs)

    return _make
