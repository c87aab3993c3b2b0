"""HTML sanitization for content leaving the parse pipeline.

The sanitizer never raises: any failure degrades to escaped plain-text
paragraphs so a result can always be returned.
"""

from __future__ import annotations

import html as html_lib
import logging
import re
from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup, Comment
from bs4.element import Tag

logger = logging.getLogger(__name__)

DEFAULT_MAX_NODES = 3000

# Removed together with their contents
REMOVE_TAGS = frozenset({
    "script",
    "style",
    "noscript",
    "object",
    "embed",
    "applet",
    "form",
    "input",
    "button",
    "select",
    "option",
    "textarea",
    "link",
    "meta",
    "base",
    "svg",
    "math",
    "template",
    "frame",
    "frameset",
    "head",
    "title",
    "dialog",
    "portal",
})

# Iframes are kept only when they point at one of these embed hosts
IFRAME_ALLOWLIST: frozenset[str] = frozenset({
    "youtube.com",
    "youtube-nocookie.com",
    "player.vimeo.com",
    "open.spotify.com",
    "w.soundcloud.com",
    "embed.music.apple.com",
    "www.tiktok.com",
    "player.twitch.tv",
    "clips.twitch.tv",
    "www.figma.com",
    "embed.figma.com",
    "codepen.io",
    "www.dailymotion.com",
    "platform.twitter.com",
    "www.instagram.com",
    "assets.pinterest.com",
    "speakerdeck.com",
    "www.slideshare.net",
})

EMBED_TAGS = ("iframe", "video", "audio")
# Markup holding none of these and no text is treated as empty
MEDIA_TAGS = (*EMBED_TAGS, "img", "picture", "source")

URL_ATTRIBUTES = ("href", "src", "poster", "cite", "action", "background")
LAZY_SRC_ATTRIBUTES = ("data-src", "data-lazy-src", "data-original", "data-url")

ALLOWED_ATTRIBUTES = frozenset({
    "href",
    "src",
    "srcset",
    "alt",
    "title",
    "width",
    "height",
    "poster",
    "controls",
    "colspan",
    "rowspan",
    "cite",
    "datetime",
    "lang",
    "dir",
    "start",
    "type",
    "allow",
    "allowfullscreen",
    "frameborder",
    "loading",
    "rel",
    "target",
    "class",
    "id",
})

IFRAME_SANDBOX = "allow-scripts allow-same-origin allow-presentation allow-popups"

_DANGEROUS_SCHEME = re.compile(r"^\s*(javascript|vbscript|file|about):", re.IGNORECASE)
_DATA_IMAGE = re.compile(r"^\s*data:image/(png|gif|jpe?g|webp|avif);", re.IGNORECASE)
_CONTROL_CHARS = re.compile(r"[\x00-\x20\x7f]+")


def _iframe_allowed(src: str) -> bool:
    host = (urlsplit(src).hostname or "").lower()
    return any(host == h or host.endswith("." + h) for h in IFRAME_ALLOWLIST)


def _safe_url(value: str, base_url: str) -> str | None:
    """Return an absolute, safe URL or None if it must be dropped."""
    compact = _CONTROL_CHARS.sub("", value)
    if _DANGEROUS_SCHEME.match(compact):
        return None
    if compact.lower().startswith("data:"):
        return value.strip() if _DATA_IMAGE.match(compact) else None
    absolute = urljoin(base_url, value.strip())
    scheme = urlsplit(absolute).scheme.lower()
    if scheme not in ("http", "https", "mailto", "tel"):
        return None
    return absolute


def _rewrite_srcset(value: str, base_url: str) -> str | None:
    candidates = []
    for part in value.split(","):
        pieces = part.strip().split()
        if not pieces:
            continue
        url = _safe_url(pieces[0], base_url)
        if url is None or url.startswith("data:"):
            continue
        candidates.append(" ".join([url, *pieces[1:]]))
    return ", ".join(candidates) or None


def plain_text_fallback(markup: str) -> str:
    """Escape the visible text of ``markup`` into plain paragraphs."""
    text = re.sub(r"<[^>]*>", " ", markup)
    text = html_lib.unescape(text)
    paragraphs = [
        re.sub(r"\s+", " ", p).strip() for p in re.split(r"\n\s*\n", text) if p.strip()
    ]
    return "".join(f"<p>{html_lib.escape(p)}</p>" for p in paragraphs)


def contains_embed(markup: str | None) -> bool:
    """Return True if sanitized markup still holds a player or media element."""
    if not markup:
        return False
    soup = BeautifulSoup(f"<body>{markup}</body>", "lxml")
    return soup.find(EMBED_TAGS) is not None


class HTMLSanitizer:
    """Strips active content and rewrites URLs in extracted markup.

    Args:
        max_nodes: Element budget; elements past it are dropped.
    """

    def __init__(self, max_nodes: int = DEFAULT_MAX_NODES) -> None:
        self.max_nodes = max_nodes

    def sanitize(self, markup: str | None, base_url: str) -> str | None:
        """Sanitize markup for offline display.

        Args:
            markup: Untrusted HTML fragment (None passes through).
            base_url: Final fetched URL for resolving relative links.

        Returns:
            Sanitized HTML, or None if nothing remains.
        """
        if markup is None:
            return None
        try:
            cleaned = self._sanitize(markup, base_url)
        except Exception:
            logger.exception("Sanitizer failed for %s, falling back to plain text", base_url)
            cleaned = plain_text_fallback(markup)
        return cleaned if cleaned and cleaned.strip() else None

    def _sanitize(self, markup: str, base_url: str) -> str:
        # Fragments are parsed inside a body so head-only markup never
        # leaves an empty <html> shell behind
        soup = BeautifulSoup(f"<body>{markup}</body>", "lxml")
        root = soup.body
        if root is None:
            return ""

        for comment in root.find_all(string=lambda s: isinstance(s, Comment)):
            comment.extract()
        for tag in root.find_all(list(REMOVE_TAGS)):
            tag.decompose()

        count = 0
        for tag in list(root.find_all(True)):
            if tag.decomposed:
                continue
            if tag.name == "iframe" and not self._clean_iframe(tag, base_url):
                tag.decompose()
                continue

            count += 1
            if count > self.max_nodes:
                tag.decompose()
                continue

            self._clean_attributes(tag, base_url)
            if tag.name == "a" and tag.get("href"):
                tag["rel"] = "noopener noreferrer"
                tag["target"] = "_blank"
            if tag.name == "img" and not tag.get("src") and not tag.get("srcset"):
                tag.decompose()

        if not root.get_text(strip=True) and root.find(MEDIA_TAGS) is None:
            return ""
        return root.decode_contents()

    @staticmethod
    def _clean_iframe(tag: Tag, base_url: str) -> bool:
        src = tag.get("src") or tag.get("data-src")
        if not isinstance(src, str):
            return False
        absolute = _safe_url(src, base_url)
        if absolute is None or not absolute.startswith("https://") or not _iframe_allowed(absolute):
            return False
        tag["src"] = absolute
        tag["sandbox"] = IFRAME_SANDBOX
        tag["loading"] = "lazy"
        return True

    @staticmethod
    def _clean_attributes(tag: Tag, base_url: str) -> None:
        # Promote lazy-loaded sources before unknown attributes are dropped
        if tag.name in ("img", "source", "video", "audio") and not tag.get("src"):
            for attr in LAZY_SRC_ATTRIBUTES:
                value = tag.get(attr)
                if isinstance(value, str) and value.strip():
                    tag["src"] = value
                    break
        if tag.name in ("img", "source") and not tag.get("srcset") and tag.get("data-srcset"):
            tag["srcset"] = tag["data-srcset"]

        for attr in list(tag.attrs):
            name = attr.lower()
            if name.startswith("on") or name == "style" or name not in ALLOWED_ATTRIBUTES:
                if not (tag.name == "iframe" and name == "sandbox"):
                    del tag[attr]
                continue

            if name in URL_ATTRIBUTES:
                value = tag.get(attr)
                safe = _safe_url(value, base_url) if isinstance(value, str) else None
                if safe is None or (safe.startswith("data:") and tag.name != "img"):
                    del tag[attr]
                else:
                    tag[attr] = safe
            elif name == "srcset":
                value = tag.get(attr)
                rewritten = _rewrite_srcset(value, base_url) if isinstance(value, str) else None
                if rewritten is None:
                    del tag[attr]
                else:
                    tag[attr] = rewritten
