"""Generic readability strategy used when no platform strategy matches."""

from __future__ import annotations

import asyncio
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
from app.services.extractors.exceptions import EmptyContentError, StrategyError
from app.services.extractors.html_extractor import HTMLExtractor, text_to_html
from app.services.extractors.metadata import (
    PageMetadata,
    extract_metadata,
    infer_content_type,
    title_from_url,
)
from app.services.extractors.oembed import OEMBED_TYPE_MAP, draft_from_oembed, fetch_oembed
from app.services.fetcher import media_type
from app.services.quality import is_login_redirect

logger = logging.getLogger(__name__)

# Mount points used by client-rendered apps
SPA_ROOT_IDS = frozenset({"root", "app", "__next", "__nuxt", "___gatsby", "svelte", "main-app"})
SPA_MAX_VISIBLE_CHARS = 200
SPA_SCRIPT_RATIO = 0.5


def looks_like_spa(soup: BeautifulSoup, raw_html: str) -> bool:
    """Detect client-rendered shells with no server-side content.

    True when the visible text is nearly empty and either scripts dominate
    the document or the body holds an empty app mount point.
    """
    body = soup.body
    if body is None:
        return True

    script_chars = sum(len(s.get_text()) for s in soup.find_all("script"))
    visible = " ".join(
        t.strip()
        for t in body.find_all(string=True)
        if t.parent is not None and t.parent.name not in ("script", "style", "noscript", "template")
    ).strip()
    if len(visible) >= SPA_MAX_VISIBLE_CHARS:
        return False

    if raw_html and script_chars / len(raw_html) > SPA_SCRIPT_RATIO:
        return True
    for root_id in SPA_ROOT_IDS:
        mount = body.find(id=root_id)
        if mount is not None and not mount.get_text(strip=True):
            return True
    return False


class GenericStrategy:
    """Readability-style extraction for arbitrary pages.

    Order of attempts:
    1. Login redirect detection (fetch ended on a sign-in page)
    2. oEmbed discovery via ``<link type="application/json+oembed">``
    3. Client-rendered shell detection
    4. Body extraction (readability-lxml, trafilatura, newspaper4k)
    """

    name = "generic"
    kind = StrategyKind.GENERIC_READABILITY

    def __init__(self, extractor: HTMLExtractor | None = None, discover_oembed: bool = True) -> None:
        self.extractor = extractor or HTMLExtractor()
        self.discover_oembed = discover_oembed

    async def parse(self, ctx: StrategyContext) -> StrategyDraft:
        page = await ctx.fetch_page()
        final_url = page.final_url

        if is_login_redirect(ctx.url.url, final_url):
            logger.info("Login redirect detected for %s", ctx.url.loggable)
            return StrategyDraft(
                title=None,
                content_type=ContentType.WEBVIEW,
                fallback_reason=FallbackReason.PAYWALLED,
                final_url=final_url,
                strategy=self.name,
            )

        mtype = media_type(page.content_type)
        if mtype == "text/plain":
            return StrategyDraft(
                title=title_from_url(final_url),
                content_html=text_to_html(page.text),
                plain_text=page.text,
                final_url=final_url,
                strategy=self.name,
            )
        if mtype and "html" not in mtype:
            # JSON or XML documents have no readable body of their own
            return StrategyDraft(
                title=title_from_url(final_url),
                content_type=ContentType.WEBVIEW,
                final_url=final_url,
                strategy=self.name,
            )

        soup = BeautifulSoup(page.text, "lxml")
        meta = extract_metadata(soup, final_url)

        if self.discover_oembed and meta.oembed_url:
            draft = await self._try_oembed(ctx, meta)
            if draft is not None:
                return draft

        title = meta.best_title() or self._first_heading(soup)
        if looks_like_spa(soup, page.text):
            logger.info("Client-rendered shell detected for %s", ctx.url.loggable)
            return StrategyDraft(
                title=title,
                content_type=ContentType.WEBVIEW,
                cover_image_url=meta.image,
                excerpt=meta.description,
                has_structured_metadata=meta.has_structured,
                fallback_reason=FallbackReason.JS_REQUIRED,
                final_url=final_url,
                strategy=self.name,
            )

        warnings: list[str] = []
        try:
            article = await asyncio.to_thread(self.extractor.extract, page.text, final_url)
            content_html, plain_text = article.content_html, article.plain_text
            warnings = article.warnings
        except EmptyContentError as e:
            logger.info("No readable body for %s: %s", ctx.url.loggable, e)
            content_html, plain_text = None, soup.get_text(" ", strip=True)

        return StrategyDraft(
            title=title,
            content_type=infer_content_type(meta),
            content_html=content_html,
            cover_image_url=meta.image,
            excerpt=meta.description,
            plain_text=plain_text,
            has_structured_metadata=meta.has_structured,
            final_url=final_url,
            strategy=self.name,
            warnings=warnings,
        )

    async def _try_oembed(self, ctx: StrategyContext, meta: PageMetadata) -> StrategyDraft | None:
        try:
            data = await fetch_oembed(ctx, meta.oembed_url, self.name)
        except (FetchError, StrategyError, ValueError) as e:
            logger.debug("oEmbed discovery failed for %s: %s", ctx.url.loggable, e)
            return None

        oembed_type = str(data.get("type") or "")
        # Rich embeds (e.g. blog post cards) are worse than the article itself
        if oembed_type not in ("video", "photo"):
            return None

        draft = draft_from_oembed(
            data,
            strategy=f"{self.name}:oembed",
            content_type=OEMBED_TYPE_MAP.get(oembed_type),
            page_url=ctx.page.final_url if ctx.page else ctx.url.url,
        )
        draft.title = draft.title or meta.best_title()
        draft.cover_image_url = draft.cover_image_url or meta.image
        draft.excerpt = meta.description or draft.excerpt
        return draft

    @staticmethod
    def _first_heading(soup: BeautifulSoup) -> str | None:
        h1 = soup.find("h1")
        text = h1.get_text(" ", strip=True) if h1 else ""
        return text or None
