"""Platforms parsed from page metadata only: Amazon, IMDb, Instagram, Facebook.

These sites block or obfuscate body scraping, but their Open Graph tags
are reliable enough for a preview card.
"""

from __future__ import annotations

import html as html_lib
import logging
import re

from bs4 import BeautifulSoup

from app.exceptions import FetchError
from app.services.extractors.base import ContentType, StrategyContext, StrategyDraft, StrategyKind
from app.services.extractors.exceptions import StrategyError
from app.services.extractors.metadata import PageMetadata, extract_metadata, is_generic_title

logger = logging.getLogger(__name__)


async def probe_metadata(ctx: StrategyContext) -> tuple[PageMetadata, str]:
    """Fetch the head of the page and return its metadata and final URL."""
    page = await ctx.probe()
    return extract_metadata(BeautifulSoup(page.text, "lxml"), page.final_url), page.final_url


class AmazonStrategy:
    """Product cards; the listing itself stays in the browser."""

    name = "amazon"
    kind = StrategyKind.STRUCTURED_METADATA

    _ASIN = re.compile(r"/(?:dp|gp/product)/([A-Z0-9]{10})")

    async def parse(self, ctx: StrategyContext) -> StrategyDraft:
        meta, final_url = await probe_metadata(ctx)
        title = meta.best_title()
        if is_generic_title(title, ctx.url.domain):
            match = self._ASIN.search(ctx.url.path)
            raise StrategyError(
                self.name, f"no product metadata (asin={match.group(1) if match else None})"
            )
        return StrategyDraft(
            title=title,
            content_type=ContentType.PRODUCT,
            cover_image_url=meta.image,
            excerpt=meta.description,
            has_structured_metadata=meta.has_structured,
            confidence=0.6,
            reading_time_minutes=0,
            final_url=final_url,
            strategy=self.name,
        )


class IMDbStrategy:
    """Title pages on IMDb as video cards."""

    name = "imdb"
    kind = StrategyKind.STRUCTURED_METADATA

    async def parse(self, ctx: StrategyContext) -> StrategyDraft:
        meta, final_url = await probe_metadata(ctx)
        title = meta.best_title()
        if not title:
            raise StrategyError(self.name, "no title metadata")
        description = meta.description or ""
        return StrategyDraft(
            title=title,
            content_type=ContentType.VIDEO,
            content_html=f"<p>{html_lib.escape(description)}</p>" if description else None,
            cover_image_url=meta.image,
            excerpt=meta.description,
            plain_text=description,
            has_structured_metadata=meta.has_structured,
            reading_time_minutes=0,
            final_url=final_url,
            strategy=self.name,
        )


class InstagramStrategy:
    """Posts and reels rendered through Instagram's embed iframe."""

    name = "instagram"
    kind = StrategyKind.STRUCTURED_METADATA

    _POST = re.compile(r"^/(?:[^/]+/)?(p|reel|tv)/([A-Za-z0-9_-]+)")
    _AUTHOR = re.compile(r"^(.*) \(@([^)]+)\) on Instagram")

    async def parse(self, ctx: StrategyContext) -> StrategyDraft:
        match = self._POST.match(ctx.url.path)
        if not match:
            raise StrategyError(self.name, "not a post URL")
        kind, post_id = match.groups()
        embed_url = f"https://www.instagram.com/{kind}/{post_id}/embed"
        iframe = f'<iframe src="{embed_url}" width="400" height="480" frameborder="0"></iframe>'

        title = "Instagram post"
        excerpt = None
        cover = None
        try:
            meta, _ = await probe_metadata(ctx)
        except (FetchError, ValueError) as e:
            # The embed works without page metadata
            logger.info("Instagram metadata probe failed: %s", e)
        else:
            og_title = meta.og_title or ""
            author = self._AUTHOR.match(og_title)
            if author:
                title = f"{author.group(1)} (@{author.group(2)})"
            elif og_title and not is_generic_title(og_title):
                title = og_title
            if ': "' in og_title:
                excerpt = og_title.split(': "', 1)[1].rstrip('"')
            else:
                excerpt = meta.description
            cover = meta.image

        return StrategyDraft(
            title=title,
            content_type=ContentType.VIDEO if kind in ("reel", "tv") else ContentType.IMAGE,
            content_html=iframe,
            cover_image_url=cover,
            excerpt=excerpt,
            has_structured_metadata=cover is not None,
            has_embed=True,
            reading_time_minutes=0,
            final_url=ctx.url.url,
            strategy=self.name,
        )


class FacebookStrategy:
    """Public Facebook posts and videos as metadata cards."""

    name = "facebook"
    kind = StrategyKind.STRUCTURED_METADATA

    async def parse(self, ctx: StrategyContext) -> StrategyDraft:
        meta, final_url = await probe_metadata(ctx)
        title = meta.best_title()
        if is_generic_title(title, ctx.url.domain) or (title or "").lower().startswith("log in"):
            raise StrategyError(self.name, "page requires login")
        is_video = "/videos/" in ctx.url.path or ctx.url.host.endswith("fb.watch")
        return StrategyDraft(
            title=title,
            content_type=ContentType.VIDEO if is_video else ContentType.ARTICLE,
            cover_image_url=meta.image,
            excerpt=meta.description,
            plain_text=meta.description or "",
            has_structured_metadata=meta.has_structured,
            confidence=0.5,
            reading_time_minutes=0,
            final_url=final_url,
            strategy=self.name,
        )
