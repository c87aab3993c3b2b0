"""Base types shared by parse strategies."""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from app.services.fetcher import Fetcher, FetchResult
    from app.services.url_normalizer import NormalizedURL


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ContentType(str, enum.Enum):
    """Kind of content a parsed URL represents."""

    ARTICLE = "article"
    VIDEO = "video"
    AUDIO = "audio"
    IMAGE = "image"
    CODE = "code"
    DESIGN = "design"
    PRODUCT = "product"
    WEBVIEW = "webview"


# Types whose body is an embed or picture rather than running text
MEDIA_TYPES = frozenset({
    ContentType.VIDEO,
    ContentType.AUDIO,
    ContentType.IMAGE,
    ContentType.DESIGN,
})


class FallbackReason(str, enum.Enum):
    """Why a result is presented in the isolated browser view."""

    BOT_PROTECTED = "bot-protected"
    JS_REQUIRED = "js-required"
    PAYWALLED = "paywalled"
    LOW_CONFIDENCE = "low-confidence"
    FETCH_ERROR = "fetch-error"


class StrategyKind(str, enum.Enum):
    """Broad family a strategy belongs to."""

    PLATFORM_API = "platform-api"
    STRUCTURED_METADATA = "structured-metadata"
    GENERIC_READABILITY = "generic-readability"
    SPA_BYPASS = "spa-bypass"


@dataclass(frozen=True)
class ParseResult:
    """Final, scored and sanitized result for a URL.

    Immutable once produced. ``content_html`` is None whenever ``content_type``
    is webview, and ``fallback_reason`` is set whenever confidence is below
    the quality threshold.
    """

    title: str
    content_type: ContentType
    domain: str
    confidence: float
    content_html: str | None = None
    cover_image_url: str | None = None
    fallback_reason: FallbackReason | None = None
    excerpt: str | None = None
    reading_time_minutes: int = 0
    final_url: str | None = None
    strategy: str = ""
    fetched_at: datetime = field(default_factory=_utcnow)

    @property
    def is_webview(self) -> bool:
        return self.content_type == ContentType.WEBVIEW

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict for the cache."""
        data = asdict(self)
        data["content_type"] = self.content_type.value
        data["fallback_reason"] = (
            self.fallback_reason.value if self.fallback_reason else None
        )
        data["fetched_at"] = self.fetched_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ParseResult:
        """Rebuild a result previously produced by to_dict()."""
        reason = data.get("fallback_reason")
        fetched_at = data.get("fetched_at")
        return cls(
            title=data.get("title") or "",
            content_type=ContentType(data.get("content_type", ContentType.WEBVIEW.value)),
            domain=data.get("domain") or "",
            confidence=float(data.get("confidence") or 0.0),
            content_html=data.get("content_html"),
            cover_image_url=data.get("cover_image_url"),
            fallback_reason=FallbackReason(reason) if reason else None,
            excerpt=data.get("excerpt"),
            reading_time_minutes=int(data.get("reading_time_minutes") or 0),
            final_url=data.get("final_url"),
            strategy=data.get("strategy") or "",
            fetched_at=(
                datetime.fromisoformat(fetched_at) if fetched_at else _utcnow()
            ),
        )


@dataclass
class StrategyDraft:
    """Unscored output of a strategy, consumed by the sanitizer and scorer."""

    title: str | None
    content_type: ContentType = ContentType.ARTICLE
    content_html: str | None = None
    cover_image_url: str | None = None
    excerpt: str | None = None
    plain_text: str = ""  # Visible text used for length and fingerprint checks
    text_length: int = 0  # Auto-calculated from plain_text
    has_structured_metadata: bool = False
    has_embed: bool = False
    fallback_reason: FallbackReason | None = None
    # Set by strategies that decide the outcome themselves (protected
    # webviews, SPA bypass). The scorer keeps it instead of computing one.
    confidence: float | None = None
    reading_time_minutes: int | None = None
    final_url: str | None = None
    strategy: str = ""
    warnings: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.text_length == 0 and self.plain_text:
            self.text_length = len(self.plain_text)


class ParsingStrategy(Protocol):
    """Protocol defining the interface for parse strategies."""

    name: str

    async def parse(self, ctx: StrategyContext) -> StrategyDraft:
        """Produce a draft result for the context's URL.

        Args:
            ctx: Per-request context giving access to the URL and the fetcher.

        Returns:
            StrategyDraft for the quality scorer.

        Raises:
            FetchError: If the upstream could not be fetched.
            StrategyError: If the platform answered with something unusable.
            SecurityRejectedError: If a destination is forbidden.
        """
        ...


class StrategyContext:
    """Per-request access to the target URL and the network.

    Strategies never open connections themselves; everything goes through
    the shared fetcher so SSRF checks and per-domain limits always apply.
    """

    def __init__(
        self,
        url: NormalizedURL,
        fetcher: Fetcher,
        *,
        oembed_timeout: float = 3.0,
        probe_bytes: int | None = None,
    ) -> None:
        self.url = url
        self.fetcher = fetcher
        self.oembed_timeout = oembed_timeout
        self.probe_bytes = probe_bytes or fetcher.config.probe_bytes
        self._page: FetchResult | None = None

    @property
    def page(self) -> FetchResult | None:
        """The page response, if it has been fetched already."""
        return self._page

    async def fetch_page(self) -> FetchResult:
        """Fetch the target URL once, honouring robots.txt, and reuse the response."""
        if self._page is None:
            self._page = await self.fetcher.fetch(self.url.url, check_robots=True)
        return self._page

    async def fetch(self, url: str, **kwargs: Any) -> FetchResult:
        return await self.fetcher.fetch(url, **kwargs)

    async def get_json(self, url: str, *, timeout: float | None = None, **kwargs: Any) -> Any:
        return await self.fetcher.get_json(url, timeout=timeout, **kwargs)

    async def probe(self, url: str | None = None, **kwargs: Any) -> FetchResult:
        """Fetch the head of a page for metadata only (may be truncated)."""
        return await self.fetcher.fetch(
            url or self.url.url,
            max_bytes=self.probe_bytes,
            allow_truncation=True,
            timeout=self.oembed_timeout,
            **kwargs,
        )
