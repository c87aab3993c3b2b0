"""Parse strategies for URL content.

Strategy selection depends on the URL only:
1. SPA bypass for client-rendered social sites (webview, metadata probe)
2. Platform strategies (public JSON APIs, oEmbed, page metadata)
3. oEmbed providers without a dedicated strategy
4. Generic readability extraction (readability-lxml, trafilatura, newspaper4k)

Only the shared types are re-exported here; the strategies live in their
own modules and are wired up by
``app.services.extractors.registry.build_default_registry``.
"""

from app.services.extractors.base import (
    ContentType,
    FallbackReason,
    ParseResult,
    ParsingStrategy,
    StrategyContext,
    StrategyDraft,
    StrategyKind,
)
from app.services.extractors.exceptions import (
    EmptyContentError,
    ExtractionError,
    StrategyError,
)

__all__ = [
    # Base types
    "ContentType",
    "FallbackReason",
    "ParseResult",
    "ParsingStrategy",
    "StrategyContext",
    "StrategyDraft",
    "StrategyKind",
    # Exceptions
    "ExtractionError",
    "StrategyError",
    "EmptyContentError",
]
