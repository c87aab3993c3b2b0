"""Parse pipeline orchestration.

Normalizer -> SSRF guard -> cache lookup -> (miss) strategy -> sanitizer ->
quality scorer -> cache write. Concurrent requests for one URL share a
single upstream fetch: in-process through a shared task per cache key,
across processes through a lease row in the cache store.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import os
import socket
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import partial
from typing import TYPE_CHECKING, Callable
from urllib.parse import quote
from uuid import uuid4

import httpx
from sqlalchemy.orm import Session

from app.exceptions import (
    FetchError,
    ParseServiceError,
    RobotsBlockedError,
    UnsupportedContentTypeError,
)
from app.services.extractors.base import (
    ContentType,
    FallbackReason,
    ParseResult,
    ParsingStrategy,
    StrategyContext,
    StrategyDraft,
)
from app.services.extractors.exceptions import ExtractionError, StrategyError
from app.services.extractors.metadata import is_generic_title, title_from_url
from app.services.extractors.registry import StrategyRegistry, build_default_registry
from app.services.fetcher import FetchConfig, Fetcher
from app.services.parse_cache import CachedParse, ParseCacheStore
from app.services.quality import QualityScorer
from app.services.rate_limiter import DomainLimiter
from app.services.sanitizer import HTMLSanitizer, contains_embed
from app.services.ssrf_guard import Resolver, SSRFGuard
from app.services.url_normalizer import NormalizedURL, normalize_url

if TYPE_CHECKING:
    from app.core.config import Settings

logger = logging.getLogger(__name__)

_WORKER_ID = f"{socket.gethostname()}:{os.getpid()}"

# Cover image for results without one; {domain} is the display domain
FAVICON_URL_TEMPLATE = "https://www.google.com/s2/favicons?domain={domain}&sz=128"


@dataclass(frozen=True)
class ParseOutcome:
    """What the HTTP layer needs to answer a parse request."""

    result: ParseResult
    cached: bool = False


@dataclass(frozen=True)
class _PipelineRun:
    result: ParseResult
    # False for transient failures, which are never written to the cache
    cacheable: bool


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ParseService:
    """Runs the parse pipeline with caching, single flight and self-healing.

    Args:
        store: Cache store (the only state shared between requests).
        fetcher: Fetcher used by every strategy; its SSRF guard also
            checks the submitted URL before the cache is consulted.
        registry: Strategy table; defaults to the built-in strategies.
        sanitizer: HTML sanitizer for extracted bodies.
        scorer: Quality scorer that decides webview fallbacks.
        favicon_url_template: Cover image URL for results without one
            (formatted with ``domain``); None disables it.
    """

    def __init__(
        self,
        store: ParseCacheStore,
        fetcher: Fetcher,
        registry: StrategyRegistry | None = None,
        *,
        sanitizer: HTMLSanitizer | None = None,
        scorer: QualityScorer | None = None,
        lease_ttl_seconds: float = 30.0,
        lease_poll_interval_seconds: float = 0.25,
        request_budget_seconds: float = 25.0,
        heal_threshold: float = 0.5,
        high_confidence: float = 0.7,
        heal_cooldown_seconds: float = 600.0,
        oembed_timeout_seconds: float = 3.0,
        favicon_url_template: str | None = FAVICON_URL_TEMPLATE,
    ) -> None:
        self.store = store
        self.fetcher = fetcher
        self.registry = registry or build_default_registry()
        self.sanitizer = sanitizer or HTMLSanitizer()
        self.scorer = scorer or QualityScorer()
        self.lease_ttl_seconds = lease_ttl_seconds
        self.lease_poll_interval_seconds = lease_poll_interval_seconds
        self.request_budget_seconds = request_budget_seconds
        self.heal_threshold = heal_threshold
        self.high_confidence = high_confidence
        self.heal_cooldown_seconds = heal_cooldown_seconds
        self.oembed_timeout_seconds = oembed_timeout_seconds
        self.favicon_url_template = favicon_url_template

        self._inflight: dict[str, asyncio.Task[ParseOutcome]] = {}
        self._healing: dict[str, asyncio.Task[None]] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session_factory: Callable[[], Session],
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        resolver: Resolver | None = None,
    ) -> ParseService:
        """Wire the full pipeline from configuration."""
        config = FetchConfig(
            timeout_seconds=settings.fetch_timeout_seconds,
            total_budget_seconds=settings.fetch_total_budget_seconds,
            max_retries=settings.fetch_max_retries,
            backoff_base_seconds=settings.fetch_backoff_base_seconds,
            max_redirects=settings.fetch_max_redirects,
            max_bytes=settings.fetch_max_bytes,
            probe_bytes=settings.fetch_probe_bytes,
            user_agent=settings.user_agent,
            browser_user_agent=settings.browser_user_agent,
            respect_robots=settings.respect_robots_txt,
            robots_user_agent=settings.robots_user_agent,
            robots_cache_ttl_seconds=settings.robots_cache_ttl_seconds,
        )
        fetcher = Fetcher(
            config,
            guard=SSRFGuard(resolver),
            limiter=DomainLimiter(settings.domain_concurrency, settings.domain_queue_depth),
            transport=transport,
        )
        return cls(
            ParseCacheStore(session_factory, settings.cache_ttl_seconds),
            fetcher,
            build_default_registry(settings.min_content_length),
            sanitizer=HTMLSanitizer(settings.sanitizer_max_nodes),
            scorer=QualityScorer(settings.min_content_length, settings.confidence_threshold),
            lease_ttl_seconds=settings.lease_ttl_seconds,
            lease_poll_interval_seconds=settings.lease_poll_interval_seconds,
            request_budget_seconds=settings.request_budget_seconds,
            heal_threshold=settings.cache_heal_threshold,
            high_confidence=settings.cache_high_confidence,
            heal_cooldown_seconds=settings.cache_heal_cooldown_seconds,
            oembed_timeout_seconds=settings.oembed_timeout_seconds,
            favicon_url_template=settings.favicon_fallback_url or None,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def parse(self, raw_url: str, *, force_refresh: bool = False) -> ParseOutcome:
        """Parse a URL, serving from the cache when possible.

        Args:
            raw_url: URL as submitted by the client.
            force_refresh: Skip the cache read unless the cached result is
                already high confidence. The result is still written.

        Returns:
            ParseOutcome with the result and whether it came from the cache.

        Raises:
            InvalidURLError: If the URL is not an absolute http(s) URL.
            SecurityRejectedError: If the destination is forbidden.
            OverloadedError: If the per-domain queue is full.
        """
        normalized = normalize_url(raw_url)
        key = normalized.cache_key

        try:
            await self.fetcher.guard.check(normalized.url)
        except FetchError as e:
            # DNS failure: transient, never cached
            logger.info("Could not resolve %s: %s", normalized.loggable, e)
            return ParseOutcome(self._failure_result(normalized, "resolver"))

        entry = self.store.get_fresh(key)
        if entry is not None and (not force_refresh or entry.confidence >= self.high_confidence):
            self.store.record_hit(key)
            if self.needs_heal(entry):
                self._schedule_heal(normalized, entry)
            logger.debug("Cache hit for %s (confidence=%.3f)", normalized.loggable, entry.confidence)
            return ParseOutcome(entry.result, cached=True)

        return await self._run_shared(normalized, force=entry is not None)

    async def invalidate(self, raw_url: str) -> bool:
        """Drop the cached result for a URL. Returns True if one existed."""
        normalized = normalize_url(raw_url)
        removed = self.store.invalidate(normalized.cache_key)
        logger.info("Cache invalidation for %s: removed=%s", normalized.loggable, removed)
        return removed

    def needs_heal(self, entry: CachedParse) -> bool:
        """Whether a cached result is weak enough to re-parse in the background.

        Client-rendered pages are never healed; a static re-fetch returns
        the same empty shell.
        """
        result = entry.result
        if result.is_webview and result.fallback_reason == FallbackReason.JS_REQUIRED:
            return False
        if result.confidence < self.heal_threshold:
            return True
        return is_generic_title(result.title, result.domain)

    async def drain(self) -> None:
        """Wait for background self-heal tasks to finish."""
        while self._healing:
            await asyncio.gather(*list(self._healing.values()), return_exceptions=True)

    async def close(self) -> None:
        """Cancel background work and close the fetcher."""
        for task in list(self._healing.values()):
            task.cancel()
        await asyncio.gather(*list(self._healing.values()), return_exceptions=True)
        await self.fetcher.close()

    # ------------------------------------------------------------------
    # Single flight
    # ------------------------------------------------------------------

    async def _run_shared(self, normalized: NormalizedURL, *, force: bool) -> ParseOutcome:
        key = normalized.cache_key
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.create_task(self._produce(normalized, force=force))
            self._inflight[key] = task
            task.add_done_callback(partial(self._forget_inflight, key))
        else:
            logger.debug("Joining in-flight parse of %s", normalized.loggable)
        # A waiter going away must not cancel the fetch other waiters share
        return await asyncio.shield(task)

    def _forget_inflight(self, key: str, task: asyncio.Task[ParseOutcome]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled():
            # Mark retrieved; every waiter re-raises it on its own
            task.exception()

    async def _produce(self, normalized: NormalizedURL, *, force: bool) -> ParseOutcome:
        try:
            return await asyncio.wait_for(
                self._produce_with_lease(normalized, force=force),
                timeout=self.request_budget_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Parse of %s exceeded its %.1fs budget",
                normalized.loggable,
                self.request_budget_seconds,
            )
            return ParseOutcome(self._failure_result(normalized, "timeout"))

    async def _produce_with_lease(self, normalized: NormalizedURL, *, force: bool) -> ParseOutcome:
        key = normalized.cache_key
        holder = f"{_WORKER_ID}:{uuid4().hex[:8]}"
        started = _utcnow()

        while True:
            if self.store.acquire_lease(key, holder, self.lease_ttl_seconds):
                try:
                    if not force:
                        # Another worker may have finished between lookup and lease
                        entry = self.store.get_fresh(key)
                        if entry is not None:
                            return ParseOutcome(entry.result, cached=True)

                    run = await self._execute(normalized)
                    if run.cacheable:
                        self.store.put(key, normalized.url, run.result)
                    elif force:
                        previous = self.store.get_fresh(key)
                        if previous is not None:
                            logger.info(
                                "Refresh of %s failed transiently, serving cached result",
                                normalized.loggable,
                            )
                            return ParseOutcome(previous.result, cached=True)
                    return ParseOutcome(run.result)
                finally:
                    self.store.release_lease(key, holder)

            logger.debug("Lease for %s held by another worker, waiting", normalized.loggable)
            entry = await self._wait_for_peer(key, started if force else None)
            if entry is not None:
                return ParseOutcome(entry.result, cached=True)

    async def _wait_for_peer(self, key: str, written_after: datetime | None) -> CachedParse | None:
        """Poll until the lease is released, then read what the holder wrote."""
        while self.store.lease_holder(key) is not None:
            await asyncio.sleep(self.lease_poll_interval_seconds)
        entry = self.store.get_fresh(key)
        if entry is None:
            return None
        if written_after is not None and entry.created_at < written_after:
            return None
        return entry

    # ------------------------------------------------------------------
    # Self-healing
    # ------------------------------------------------------------------

    def _schedule_heal(self, normalized: NormalizedURL, entry: CachedParse) -> None:
        key = normalized.cache_key
        if key in self._healing or key in self._inflight:
            return
        if entry.validated_within(self.heal_cooldown_seconds):
            return
        logger.info(
            "Scheduling self-heal for %s (confidence=%.3f)", normalized.loggable, entry.confidence
        )
        task = asyncio.create_task(self._heal(normalized))
        self._healing[key] = task
        task.add_done_callback(lambda _t, key=key: self._healing.pop(key, None))

    async def _heal(self, normalized: NormalizedURL) -> None:
        key = normalized.cache_key
        holder = f"{_WORKER_ID}:heal:{uuid4().hex[:8]}"
        if not self.store.acquire_lease(key, holder, self.lease_ttl_seconds):
            logger.debug("Skipping self-heal for %s, lease is taken", normalized.loggable)
            return

        try:
            run = await asyncio.wait_for(
                self._execute(normalized), timeout=self.request_budget_seconds
            )
            if run.cacheable:
                self.store.replace_if_better(key, normalized.url, run.result)
            else:
                self.store.touch_validated(key)
        except asyncio.TimeoutError:
            logger.info("Self-heal for %s timed out", normalized.loggable)
            self.store.touch_validated(key)
        except ParseServiceError as e:
            logger.info("Self-heal for %s aborted: %s", normalized.loggable, e)
            self.store.touch_validated(key)
        except Exception:
            logger.exception("Self-heal for %s failed", normalized.loggable)
        finally:
            self.store.release_lease(key, holder)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _execute(self, normalized: NormalizedURL) -> _PipelineRun:
        """Select a strategy, run it, sanitize and score the draft."""
        strategy = self.registry.select(normalized)
        ctx = StrategyContext(normalized, self.fetcher, oembed_timeout=self.oembed_timeout_seconds)
        logger.debug("Parsing %s with %s", normalized.loggable, strategy.name)

        cacheable = True
        try:
            draft = await self._run_strategy(strategy, ctx)
        except UnsupportedContentTypeError as e:
            draft = self._unsupported_draft(e, strategy.name)
        except RobotsBlockedError:
            draft = StrategyDraft(
                title=title_from_url(normalized.url),
                content_type=ContentType.WEBVIEW,
                fallback_reason=FallbackReason.BOT_PROTECTED,
                reading_time_minutes=0,
                final_url=normalized.url,
                strategy=strategy.name,
            )
        except FetchError as e:
            logger.info("Fetch failed for %s: %s", normalized.loggable, e)
            draft = self._failure_draft(normalized, strategy.name)
            cacheable = not e.transient
        except ExtractionError as e:
            logger.warning("Extraction failed for %s: %s", normalized.loggable, e)
            draft = StrategyDraft(
                title=None,
                content_type=ContentType.WEBVIEW,
                fallback_reason=FallbackReason.LOW_CONFIDENCE,
                final_url=normalized.url,
                strategy=strategy.name,
            )
            cacheable = False

        raw_html = draft.content_html
        draft.content_html = self.sanitizer.sanitize(
            draft.content_html, draft.final_url or normalized.url
        )
        if draft.has_embed and contains_embed(raw_html) and not contains_embed(draft.content_html):
            logger.info("Embed for %s removed by the sanitizer", normalized.loggable)
            draft.has_embed = False
        result = self._with_cover(self.scorer.score(draft, normalized.url, normalized.domain))
        logger.info(
            "Parsed %s via %s: type=%s confidence=%.3f reason=%s",
            normalized.loggable,
            result.strategy or strategy.name,
            result.content_type.value,
            result.confidence,
            result.fallback_reason.value if result.fallback_reason else None,
        )
        return _PipelineRun(result=result, cacheable=cacheable)

    async def _run_strategy(self, strategy: ParsingStrategy, ctx: StrategyContext) -> StrategyDraft:
        self.registry.record_execution(strategy)
        try:
            return await strategy.parse(ctx)
        except (StrategyError, FetchError) as e:
            generic = self.registry.generic
            if strategy is generic:
                raise
            # The target itself failed; the generic strategy would fail the same way
            if isinstance(e, FetchError) and e.url == ctx.url.url:
                raise
            logger.info(
                "Strategy %s failed for %s (%s), falling back to %s",
                strategy.name,
                ctx.url.loggable,
                e,
                generic.name,
            )
        self.registry.record_execution(self.registry.generic)
        return await self.registry.generic.parse(ctx)

    @staticmethod
    def _unsupported_draft(error: UnsupportedContentTypeError, strategy: str) -> StrategyDraft:
        url = error.url
        if error.content_type.startswith("image/"):
            return StrategyDraft(
                title=title_from_url(url),
                content_type=ContentType.IMAGE,
                cover_image_url=url,
                confidence=1.0,
                reading_time_minutes=0,
                final_url=url,
                strategy=strategy,
            )
        # PDFs, media files and archives are best shown by the browser itself
        return StrategyDraft(
            title=title_from_url(url),
            content_type=ContentType.WEBVIEW,
            confidence=1.0,
            reading_time_minutes=0,
            final_url=url,
            strategy=strategy,
        )

    @staticmethod
    def _failure_draft(normalized: NormalizedURL, strategy: str) -> StrategyDraft:
        return StrategyDraft(
            title=title_from_url(normalized.url),
            content_type=ContentType.WEBVIEW,
            fallback_reason=FallbackReason.FETCH_ERROR,
            reading_time_minutes=0,
            final_url=normalized.url,
            strategy=strategy,
        )

    def _failure_result(self, normalized: NormalizedURL, strategy: str) -> ParseResult:
        draft = self._failure_draft(normalized, strategy)
        return self._with_cover(self.scorer.score(draft, normalized.url, normalized.domain))

    def _with_cover(self, result: ParseResult) -> ParseResult:
        """Fall back to the site's favicon when a result has no cover image."""
        if result.cover_image_url or not self.favicon_url_template or not result.domain:
            return result
        cover = self.favicon_url_template.format(domain=quote(result.domain, safe=""))
        return dataclasses.replace(result, cover_image_url=cover)
