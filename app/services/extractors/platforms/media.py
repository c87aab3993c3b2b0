"""Audio, video and design platforms served through oEmbed or embed players."""

from __future__ import annotations

import html as html_lib
import logging

from bs4 import BeautifulSoup

from app.services.extractors.base import ContentType, StrategyContext, StrategyDraft, StrategyKind
from app.services.extractors.exceptions import StrategyError
from app.services.extractors.metadata import extract_metadata
from app.services.extractors.oembed import OEmbedStrategy

logger = logging.getLogger(__name__)


def youtube() -> OEmbedStrategy:
    return OEmbedStrategy("youtube", "https://www.youtube.com/oembed", ContentType.VIDEO)


def vimeo() -> OEmbedStrategy:
    return OEmbedStrategy("vimeo", "https://vimeo.com/api/oembed.json", ContentType.VIDEO)


def spotify() -> OEmbedStrategy:
    return OEmbedStrategy("spotify", "https://open.spotify.com/oembed", ContentType.AUDIO)


def soundcloud() -> OEmbedStrategy:
    return OEmbedStrategy("soundcloud", "https://soundcloud.com/oembed", ContentType.AUDIO)


def tiktok() -> OEmbedStrategy:
    return OEmbedStrategy("tiktok", "https://www.tiktok.com/oembed", ContentType.VIDEO)


def twitch() -> OEmbedStrategy:
    return OEmbedStrategy("twitch", "https://www.twitch.tv/services/oembed", ContentType.VIDEO)


def figma() -> OEmbedStrategy:
    return OEmbedStrategy("figma", "https://www.figma.com/api/oembed", ContentType.DESIGN)


def pinterest() -> OEmbedStrategy:
    return OEmbedStrategy("pinterest", "https://www.pinterest.com/oembed.json", ContentType.IMAGE)


def linkedin() -> OEmbedStrategy:
    return OEmbedStrategy("linkedin", "https://www.linkedin.com/oembed", ContentType.ARTICLE)


class AppleMusicStrategy:
    """Apple Music pages: Open Graph metadata plus the embed player."""

    name = "apple-music"
    kind = StrategyKind.STRUCTURED_METADATA

    async def parse(self, ctx: StrategyContext) -> StrategyDraft:
        page = await ctx.probe()
        soup = BeautifulSoup(page.text, "lxml")
        meta = extract_metadata(soup, page.final_url)
        title = meta.best_title()
        if not title:
            raise StrategyError(self.name, "page has no title metadata")

        embed_url = ctx.url.url.replace("://music.apple.com", "://embed.music.apple.com", 1)
        iframe = (
            f'<iframe src="{html_lib.escape(embed_url, quote=True)}" height="450" '
            'allow="autoplay *; encrypted-media *; fullscreen *" frameborder="0"></iframe>'
        )

        minutes = None
        duration = soup.find("meta", attrs={"property": "music:duration"})
        if duration is not None and str(duration.get("content", "")).isdigit():
            minutes = max(1, -(-int(duration["content"]) // 60))

        return StrategyDraft(
            title=title,
            content_type=ContentType.AUDIO,
            content_html=iframe,
            cover_image_url=meta.image,
            excerpt=meta.description,
            has_structured_metadata=meta.has_structured,
            has_embed=True,
            reading_time_minutes=minutes,
            final_url=page.final_url,
            strategy=self.name,
        )
