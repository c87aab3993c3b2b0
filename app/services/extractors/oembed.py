"""oEmbed lookups: known providers, discovery and draft conversion."""

from __future__ import annotations

import html as html_lib
import logging
import re
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

from app.services.extractors.base import ContentType, StrategyContext, StrategyDraft, StrategyKind
from app.services.extractors.exceptions import StrategyError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OEmbedProvider:
    """A provider without a dedicated strategy, reached by URL pattern."""

    name: str
    domains: tuple[str, ...]
    pattern: re.Pattern[str]
    endpoint: str
    content_type: ContentType


OEMBED_PROVIDERS: tuple[OEmbedProvider, ...] = (
    OEmbedProvider(
        "dailymotion", ("dailymotion.com",), re.compile(r"^/video/"),
        "https://www.dailymotion.com/services/oembed", ContentType.VIDEO,
    ),
    OEmbedProvider(
        "flickr", ("flickr.com",), re.compile(r"^/photos/"),
        "https://www.flickr.com/services/oembed/", ContentType.IMAGE,
    ),
    OEmbedProvider(
        "slideshare", ("slideshare.net",), re.compile(r"^/.+"),
        "https://www.slideshare.net/api/oembed/2", ContentType.ARTICLE,
    ),
    OEmbedProvider(
        "speakerdeck", ("speakerdeck.com",), re.compile(r"^/.+"),
        "https://speakerdeck.com/oembed.json", ContentType.ARTICLE,
    ),
    OEmbedProvider(
        "codepen", ("codepen.io",), re.compile(r"^/[^/]+/pen/"),
        "https://codepen.io/api/oembed", ContentType.CODE,
    ),
    OEmbedProvider(
        "gist", ("gist.github.com",), re.compile(r"^/.+"),
        "https://gist.github.com/oembed", ContentType.CODE,
    ),
    OEmbedProvider(
        "dribbble", ("dribbble.com",), re.compile(r"^/shots/"),
        "https://dribbble.com/oauth/oembed", ContentType.DESIGN,
    ),
)

OEMBED_TYPE_MAP = {
    "video": ContentType.VIDEO,
    "photo": ContentType.IMAGE,
    "rich": ContentType.ARTICLE,
    "link": ContentType.ARTICLE,
}


def oembed_request_url(endpoint: str, url: str, **params: str) -> str:
    """Build ``endpoint?url=...&format=json`` for a target URL."""
    query = {"url": url, "format": "json", **params}
    separator = "&" if "?" in endpoint else "?"
    return f"{endpoint}{separator}{urlencode(query)}"


def find_provider(host: str, path: str) -> OEmbedProvider | None:
    for provider in OEMBED_PROVIDERS:
        if any(host == d or host.endswith("." + d) for d in provider.domains):
            if provider.pattern.search(path):
                return provider
    return None


async def fetch_oembed(ctx: StrategyContext, request_url: str, strategy: str) -> dict[str, Any]:
    """Fetch and validate an oEmbed payload.

    Raises:
        StrategyError: If the payload is not a JSON object.
        FetchError: If the endpoint could not be fetched.
    """
    data = await ctx.get_json(request_url, timeout=ctx.oembed_timeout)
    if not isinstance(data, dict):
        raise StrategyError(strategy, "oEmbed response is not an object")
    return data


def draft_from_oembed(
    data: dict[str, Any],
    *,
    strategy: str,
    content_type: ContentType | None = None,
    page_url: str | None = None,
) -> StrategyDraft:
    """Convert an oEmbed payload into a draft.

    The provider's embed markup becomes the body; the sanitizer later drops
    it unless the iframe host is allowlisted.
    """
    oembed_type = str(data.get("type") or "rich")
    resolved_type = content_type or OEMBED_TYPE_MAP.get(oembed_type, ContentType.ARTICLE)

    embed_html = data.get("html") if isinstance(data.get("html"), str) else None
    if oembed_type == "photo" and isinstance(data.get("url"), str):
        alt = html_lib.escape(str(data.get("title") or ""), quote=True)
        embed_html = f'<img src="{html_lib.escape(data["url"], quote=True)}" alt="{alt}">'

    author = data.get("author_name")
    title = data.get("title")
    if not title and author:
        title = f"{author} on {data.get('provider_name') or 'the web'}"

    description = data.get("description")
    excerpt = description if isinstance(description, str) and description else (
        f"By {author}" if author else None
    )

    return StrategyDraft(
        title=str(title) if title else None,
        content_type=resolved_type,
        content_html=embed_html,
        cover_image_url=data.get("thumbnail_url") or (
            data.get("url") if oembed_type == "photo" else None
        ),
        excerpt=excerpt,
        plain_text=excerpt or "",
        has_structured_metadata=True,
        has_embed=bool(embed_html),
        final_url=page_url,
        strategy=strategy,
    )


class OEmbedStrategy:
    """Platform strategy backed by a single oEmbed endpoint."""

    kind = StrategyKind.PLATFORM_API

    def __init__(
        self,
        name: str,
        endpoint: str,
        content_type: ContentType,
        **extra_params: str,
    ) -> None:
        self.name = name
        self.endpoint = endpoint
        self.content_type = content_type
        self.extra_params = extra_params

    async def parse(self, ctx: StrategyContext) -> StrategyDraft:
        request_url = oembed_request_url(self.endpoint, ctx.url.url, **self.extra_params)
        data = await fetch_oembed(ctx, request_url, self.name)
        draft = draft_from_oembed(
            data,
            strategy=self.name,
            content_type=self.content_type,
            page_url=ctx.url.url,
        )
        if not draft.title:
            raise StrategyError(self.name, "oEmbed response has no title")
        return draft


class OEmbedProviderStrategy:
    """Catch-all for providers in OEMBED_PROVIDERS."""

    name = "oembed"
    kind = StrategyKind.PLATFORM_API

    def matches(self, url) -> bool:
        return find_provider(url.host, url.path) is not None

    async def parse(self, ctx: StrategyContext) -> StrategyDraft:
        provider = find_provider(ctx.url.host, ctx.url.path)
        if provider is None:
            raise StrategyError(self.name, "no oEmbed provider for URL")
        data = await fetch_oembed(
            ctx, oembed_request_url(provider.endpoint, ctx.url.url), self.name
        )
        return draft_from_oembed(
            data,
            strategy=f"{self.name}:{provider.name}",
            content_type=provider.content_type,
            page_url=ctx.url.url,
        )
