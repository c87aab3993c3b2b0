"""Bypass for domains that only render client-side.

These sites never serve readable HTML to a non-browser client, so the
result is always a webview. At most a lightweight metadata probe runs to
give the client a title and cover image.
"""

from __future__ import annotations

import logging

from bs4 import BeautifulSoup

from app.exceptions import FetchError
from app.services.extractors.base import (
    ContentType,
    FallbackReason,
    StrategyContext,
    StrategyDraft,
    StrategyKind,
)
from app.services.extractors.exceptions import StrategyError
from app.services.extractors.metadata import extract_metadata, make_excerpt
from app.services.extractors.oembed import fetch_oembed, oembed_request_url

logger = logging.getLogger(__name__)

SPA_DOMAINS: tuple[str, ...] = (
    "twitter.com",
    "x.com",
    "threads.net",
    "threads.com",
    "bsky.app",
)

TWITTER_DOMAINS = ("twitter.com", "x.com")
TWITTER_OEMBED_ENDPOINT = "https://publish.twitter.com/oembed"
SPA_CONFIDENCE = 1.0


def _on_domain(host: str, domains: tuple[str, ...]) -> bool:
    return any(host == d or host.endswith("." + d) for d in domains)


class SpaBypassStrategy:
    """Return a webview/js-required result after a metadata probe."""

    name = "spa-bypass"
    kind = StrategyKind.SPA_BYPASS

    async def parse(self, ctx: StrategyContext) -> StrategyDraft:
        draft = StrategyDraft(
            title=None,
            content_type=ContentType.WEBVIEW,
            fallback_reason=FallbackReason.JS_REQUIRED,
            # Final; re-parsing cannot improve it
            confidence=SPA_CONFIDENCE,
            final_url=ctx.url.url,
            strategy=self.name,
        )
        try:
            if _on_domain(ctx.url.host, TWITTER_DOMAINS) and "/status/" in ctx.url.path:
                await self._probe_twitter(ctx, draft)
            else:
                await self._probe_page(ctx, draft)
        except (FetchError, StrategyError, ValueError) as e:
            logger.info("Metadata probe failed for %s: %s", ctx.url.loggable, e)
        return draft

    @staticmethod
    async def _probe_twitter(ctx: StrategyContext, draft: StrategyDraft) -> None:
        request_url = oembed_request_url(
            TWITTER_OEMBED_ENDPOINT, ctx.url.url, omit_script="true"
        )
        data = await fetch_oembed(ctx, request_url, "spa-bypass")
        author = data.get("author_name")
        if author:
            draft.title = f"{author} on X"
        html = data.get("html")
        if isinstance(html, str) and html:
            text = BeautifulSoup(html, "lxml").get_text(" ", strip=True)
            draft.excerpt = make_excerpt(text)
        draft.has_structured_metadata = bool(author)

    @staticmethod
    async def _probe_page(ctx: StrategyContext, draft: StrategyDraft) -> None:
        page = await ctx.probe()
        meta = extract_metadata(BeautifulSoup(page.text, "lxml"), page.final_url)
        draft.title = meta.best_title()
        draft.cover_image_url = meta.image
        draft.excerpt = meta.description
        draft.has_structured_metadata = meta.has_structured
        draft.final_url = page.final_url
