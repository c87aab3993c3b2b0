"""Page metadata helpers: Open Graph, Twitter cards, JSON-LD and titles."""

from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import unquote, urljoin, urlsplit

from bs4 import BeautifulSoup

from app.services.extractors.base import ContentType

logger = logging.getLogger(__name__)

WORDS_PER_MINUTE = 200

# Titles that say nothing about the page
GENERIC_TITLES = frozenset({
    "",
    "home",
    "homepage",
    "untitled",
    "untitled document",
    "loading",
    "loading...",
    "index",
    "welcome",
    "x",
    "twitter",
    "instagram",
    "facebook",
    "reddit",
    "login",
    "log in",
    "sign in",
    "access denied",
    "just a moment...",
    "attention required!",
    "403 forbidden",
    "404 not found",
    "page not found",
    "error",
})

_TITLE_SEPARATORS = (" | ", " - ", " – ", " — ", " · ", " :: ")

OG_TYPE_MAP = {
    "article": ContentType.ARTICLE,
    "blog": ContentType.ARTICLE,
    "website": ContentType.ARTICLE,
    "video": ContentType.VIDEO,
    "video.movie": ContentType.VIDEO,
    "video.episode": ContentType.VIDEO,
    "video.tv_show": ContentType.VIDEO,
    "video.other": ContentType.VIDEO,
    "music": ContentType.AUDIO,
    "music.song": ContentType.AUDIO,
    "music.album": ContentType.AUDIO,
    "music.playlist": ContentType.AUDIO,
    "music.radio_station": ContentType.AUDIO,
    "product": ContentType.PRODUCT,
    "og:product": ContentType.PRODUCT,
    "product.item": ContentType.PRODUCT,
    "image": ContentType.IMAGE,
    "photo": ContentType.IMAGE,
}

JSON_LD_TYPE_MAP = {
    "article": ContentType.ARTICLE,
    "newsarticle": ContentType.ARTICLE,
    "blogposting": ContentType.ARTICLE,
    "techarticle": ContentType.ARTICLE,
    "report": ContentType.ARTICLE,
    "videoobject": ContentType.VIDEO,
    "movie": ContentType.VIDEO,
    "tvepisode": ContentType.VIDEO,
    "audioobject": ContentType.AUDIO,
    "musicrecording": ContentType.AUDIO,
    "podcastepisode": ContentType.AUDIO,
    "imageobject": ContentType.IMAGE,
    "photograph": ContentType.IMAGE,
    "product": ContentType.PRODUCT,
    "softwaresourcecode": ContentType.CODE,
}


@dataclass
class PageMetadata:
    """Metadata declared by a page's head."""

    title: str | None = None
    og_title: str | None = None
    twitter_title: str | None = None
    description: str | None = None
    image: str | None = None
    site_name: str | None = None
    og_type: str | None = None
    author: str | None = None
    canonical_url: str | None = None
    oembed_url: str | None = None
    json_ld: list[dict[str, Any]] = field(default_factory=list)

    @property
    def has_structured(self) -> bool:
        """True when the page declares Open Graph, Twitter card or JSON-LD data."""
        return bool(self.og_title or self.twitter_title or self.json_ld)

    @property
    def json_ld_types(self) -> list[str]:
        types: list[str] = []
        for item in self.json_ld:
            value = item.get("@type")
            if isinstance(value, str):
                types.append(value)
            elif isinstance(value, list):
                types.extend(v for v in value if isinstance(v, str))
        return types

    def best_title(self) -> str | None:
        for candidate in (self.og_title, self.twitter_title, self._json_ld_headline(), self.title):
            if candidate and candidate.strip():
                return clean_title(candidate, self.site_name)
        return None

    def _json_ld_headline(self) -> str | None:
        for item in self.json_ld:
            for key in ("headline", "name"):
                value = item.get(key)
                if isinstance(value, str) and value.strip():
                    return value
        return None


def _meta(soup: BeautifulSoup, *names: str) -> str | None:
    for name in names:
        tag = soup.find("meta", attrs={"property": name}) or soup.find(
            "meta", attrs={"name": name}
        )
        if tag is not None:
            content = tag.get("content")
            if isinstance(content, str) and content.strip():
                return content.strip()
    return None


def _parse_json_ld(soup: BeautifulSoup) -> list[dict[str, Any]]:
    items: list[dict[str, Any]] = []
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        raw = script.string or script.get_text()
        if not raw:
            continue
        try:
            data = json.loads(raw)
        except ValueError:
            logger.debug("Skipping malformed JSON-LD block")
            continue
        if isinstance(data, dict) and isinstance(data.get("@graph"), list):
            data = data["@graph"]
        if isinstance(data, dict):
            items.append(data)
        elif isinstance(data, list):
            items.extend(d for d in data if isinstance(d, dict))
    return items


def extract_metadata(soup: BeautifulSoup, base_url: str) -> PageMetadata:
    """Read title, description, cover image and type hints from a parsed page.

    Args:
        soup: Parsed document.
        base_url: URL the document was fetched from, for resolving relative
            image and oEmbed links.

    Returns:
        PageMetadata (fields are None when the page does not declare them)
    """
    title_tag = soup.find("title")
    image = _meta(soup, "og:image", "og:image:url", "og:image:secure_url", "twitter:image", "twitter:image:src")
    canonical = soup.find("link", rel="canonical")
    oembed = soup.find("link", attrs={"type": "application/json+oembed"})

    meta = PageMetadata(
        title=title_tag.get_text(strip=True) if title_tag else None,
        og_title=_meta(soup, "og:title"),
        twitter_title=_meta(soup, "twitter:title"),
        description=_meta(soup, "og:description", "twitter:description", "description"),
        image=urljoin(base_url, image) if image else None,
        site_name=_meta(soup, "og:site_name", "application-name"),
        og_type=_meta(soup, "og:type"),
        author=_meta(soup, "author", "article:author"),
        canonical_url=(
            urljoin(base_url, canonical["href"])
            if canonical is not None and canonical.get("href")
            else None
        ),
        oembed_url=(
            urljoin(base_url, oembed["href"])
            if oembed is not None and oembed.get("href")
            else None
        ),
        json_ld=_parse_json_ld(soup),
    )

    if meta.image is None:
        for item in meta.json_ld:
            value = item.get("image")
            if isinstance(value, dict):
                value = value.get("url")
            if isinstance(value, list) and value:
                value = value[0] if isinstance(value[0], str) else None
            if isinstance(value, str) and value:
                meta.image = urljoin(base_url, value)
                break
    return meta


def infer_content_type(meta: PageMetadata) -> ContentType:
    """Guess the content type from og:type, then JSON-LD @type."""
    if meta.og_type:
        mapped = OG_TYPE_MAP.get(meta.og_type.strip().lower())
        if mapped is not None and mapped != ContentType.ARTICLE:
            return mapped
    for ld_type in meta.json_ld_types:
        mapped = JSON_LD_TYPE_MAP.get(ld_type.lower())
        if mapped is not None:
            return mapped
    return ContentType.ARTICLE


def clean_title(title: str, site_name: str | None = None) -> str:
    """Strip a trailing ``| Site Name`` style suffix from a page title."""
    title = re.sub(r"\s+", " ", title).strip()
    for sep in _TITLE_SEPARATORS:
        if sep not in title:
            continue
        head, _, tail = title.rpartition(sep)
        tail = tail.strip()
        if not head.strip():
            continue
        if site_name and tail.lower() == site_name.strip().lower():
            return head.strip()
        # A short trailing segment is almost always the site name
        if len(tail) <= 30 and len(head) > len(tail):
            return head.strip()
    return title


def is_generic_title(title: str | None, domain: str = "") -> bool:
    """Return True for empty, placeholder or bare-domain titles."""
    if not title:
        return True
    normalized = title.strip().lower()
    if normalized in GENERIC_TITLES:
        return True
    if domain:
        bare = domain.lower().removeprefix("www.")
        if normalized in (bare, f"www.{bare}", bare.split(".")[0]):
            return True
    return False


def title_from_url(url: str) -> str:
    """Derive a readable title from the last path segment, else the host."""
    parts = urlsplit(url)
    segments = [s for s in parts.path.split("/") if s]
    if segments:
        slug = unquote(segments[-1])
        slug = re.sub(r"\.(html?|php|aspx?)$", "", slug, flags=re.IGNORECASE)
        words = re.sub(r"[-_+]+", " ", slug).strip()
        if words and not words.isdigit() and len(words) > 2:
            return words[:1].upper() + words[1:]
    host = (parts.hostname or "").removeprefix("www.")
    return host or url


def estimate_reading_time(text: str) -> int:
    """Minutes to read ``text`` at 200 words per minute (0 for no text)."""
    words = len(text.split())
    if words == 0:
        return 0
    return max(1, math.ceil(words / WORDS_PER_MINUTE))


def make_excerpt(text: str, limit: int = 200) -> str | None:
    """Return the first ``limit`` characters of ``text``, cut at a word boundary."""
    text = re.sub(r"\s+", " ", text).strip()
    if not text:
        return None
    if len(text) <= limit:
        return text
    cut = text[:limit].rsplit(" ", 1)[0]
    return cut.rstrip(",.;:") + "…"
