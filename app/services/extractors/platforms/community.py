"""Community platforms with public JSON: Reddit, Wikipedia, Trello."""

from __future__ import annotations

import html as html_lib
import logging
import re
from urllib.parse import quote, unquote, urlunsplit

from app.exceptions import FetchError
from app.services.extractors.base import (
    ContentType,
    FallbackReason,
    StrategyContext,
    StrategyDraft,
    StrategyKind,
)
from app.services.extractors.exceptions import StrategyError
from app.services.extractors.metadata import estimate_reading_time, make_excerpt

logger = logging.getLogger(__name__)

_REDDIT_THUMBNAIL_PLACEHOLDERS = frozenset({"self", "default", "nsfw", "spoiler", "image", ""})


class RedditStrategy:
    """Reddit posts via the ``.json`` view of old.reddit.com."""

    name = "reddit"
    kind = StrategyKind.PLATFORM_API

    async def parse(self, ctx: StrategyContext) -> StrategyDraft:
        path = ctx.url.path.rstrip("/")
        if "/comments/" not in path:
            raise StrategyError(self.name, "not a post URL")
        json_url = urlunsplit(("https", "old.reddit.com", f"{path}.json", "raw_json=1", ""))

        data = await ctx.get_json(json_url)
        try:
            post = data[0]["data"]["children"][0]["data"]
        except (KeyError, IndexError, TypeError) as e:
            raise StrategyError(self.name, "unexpected listing payload") from e

        title = str(post.get("title") or "")
        selftext_html = post.get("selftext_html") or ""
        media_url = str(post.get("url") or "")
        permalink = str(post.get("permalink") or "")

        content_type = ContentType.ARTICLE
        parts: list[str] = []
        if post.get("post_hint") == "image" and media_url:
            content_type = ContentType.IMAGE
            parts.append(
                f'<img src="{html_lib.escape(media_url, quote=True)}" alt="{html_lib.escape(title, quote=True)}">'
            )
        elif post.get("is_video"):
            content_type = ContentType.VIDEO
            video = ((post.get("media") or {}).get("reddit_video") or {}).get("fallback_url")
            if video:
                parts.append(f'<video src="{html_lib.escape(video, quote=True)}" controls></video>')
        elif media_url and permalink not in media_url:
            parts.append(
                f'<p><a href="{html_lib.escape(media_url, quote=True)}">{html_lib.escape(media_url)}</a></p>'
            )
        if selftext_html:
            parts.append(selftext_html)

        thumbnail = str(post.get("thumbnail") or "")
        cover = thumbnail if thumbnail not in _REDDIT_THUMBNAIL_PLACEHOLDERS else None
        if content_type == ContentType.IMAGE:
            cover = media_url

        selftext = str(post.get("selftext") or "")
        return StrategyDraft(
            title=title,
            content_type=content_type,
            content_html="".join(parts) or None,
            cover_image_url=cover,
            excerpt=make_excerpt(selftext) or f"Posted by u/{post.get('author')} in r/{post.get('subreddit')}",
            plain_text=selftext,
            has_structured_metadata=True,
            has_embed=bool(parts) and not selftext,
            reading_time_minutes=estimate_reading_time(selftext) if selftext else None,
            final_url=f"https://www.reddit.com{permalink}" if permalink else ctx.url.url,
            strategy=self.name,
        )


class WikipediaStrategy:
    """Wikipedia summaries.

    The summary endpoint only returns the lead paragraph, so the result is
    a webview with a title, excerpt and thumbnail instead of a truncated
    article.
    """

    name = "wikipedia"
    kind = StrategyKind.PLATFORM_API

    _LANG = re.compile(r"^([a-z][a-z0-9-]{1,11})(?:\.m)?\.wikipedia\.org$")

    async def parse(self, ctx: StrategyContext) -> StrategyDraft:
        if not ctx.url.path.startswith("/wiki/"):
            raise StrategyError(self.name, "not an article URL")
        article = unquote(ctx.url.path[len("/wiki/"):])
        match = self._LANG.match(ctx.url.host)
        lang = match.group(1) if match else "en"

        data = await ctx.get_json(
            f"https://{lang}.wikipedia.org/api/rest_v1/page/summary/{quote(article, safe='')}"
        )
        if not isinstance(data, dict) or not data.get("title"):
            raise StrategyError(self.name, "summary not found")

        extract = str(data.get("extract") or "")
        thumbnail = data.get("thumbnail") or data.get("originalimage") or {}
        return StrategyDraft(
            title=str(data["title"]),
            content_type=ContentType.WEBVIEW,
            cover_image_url=thumbnail.get("source"),
            excerpt=make_excerpt(extract, 300),
            plain_text=extract,
            has_structured_metadata=True,
            confidence=0.9,
            reading_time_minutes=0,
            final_url=ctx.url.url,
            strategy=self.name,
        )


class TrelloStrategy:
    """Trello boards and cards: public JSON when available, else protected."""

    name = "trello"
    kind = StrategyKind.PLATFORM_API

    async def parse(self, ctx: StrategyContext) -> StrategyDraft:
        path = ctx.url.path.rstrip("/")
        json_url = urlunsplit(("https", "trello.com", f"{path}.json", "", ""))
        try:
            data = await ctx.get_json(json_url)
        except FetchError as e:
            logger.info("Trello JSON unavailable for %s: %s", ctx.url.loggable, e)
            data = None

        if not isinstance(data, dict):
            return StrategyDraft(
                title="Trello board",
                content_type=ContentType.WEBVIEW,
                excerpt="Private Trello content, open it to sign in",
                fallback_reason=FallbackReason.PAYWALLED,
                confidence=0.5,
                final_url=ctx.url.url,
                strategy=self.name,
            )

        prefs = data.get("prefs") or {}
        cover = data.get("cover") or {}
        return StrategyDraft(
            title=str(data.get("name") or "Trello"),
            content_type=ContentType.WEBVIEW,
            cover_image_url=prefs.get("backgroundImage") or cover.get("sharedSourceUrl"),
            excerpt=make_excerpt(str(data.get("desc") or ""), 300),
            has_structured_metadata=True,
            confidence=0.6,
            final_url=ctx.url.url,
            strategy=self.name,
        )
