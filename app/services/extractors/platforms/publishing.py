"""Newsletter and blogging platforms with metered or paid walls: Medium, Substack."""

from __future__ import annotations

import logging
import re

from app.services.extractors.base import (
    FallbackReason,
    StrategyContext,
    StrategyDraft,
    StrategyKind,
)
from app.services.extractors.generic import GenericStrategy
from app.services.extractors.html_extractor import HTMLExtractor

logger = logging.getLogger(__name__)

MEDIUM_PAYWALL_MARKERS = (
    re.compile(r"member-only story", re.IGNORECASE),
    re.compile(r'"isLocked"\s*:\s*true'),
    re.compile(r"meteredContent", re.IGNORECASE),
    re.compile(r"paywall-upsell", re.IGNORECASE),
)

SUBSTACK_PAYWALL_MARKERS = (
    re.compile(r"this post is for paid subscribers", re.IGNORECASE),
    re.compile(r"this post is for paying subscribers", re.IGNORECASE),
    re.compile(r'class="[^"]*\bpaywall\b', re.IGNORECASE),
    re.compile(r'"audience"\s*:\s*"only_paid"'),
)

# A locked post still ships a teaser; below this much text we trust the markers
PAYWALL_TEXT_LIMIT = 3000


def detect_paywall(html: str, text_length: int, markers: tuple[re.Pattern[str], ...]) -> bool:
    """Return True when paywall markers appear and the visible body is short."""
    if text_length >= PAYWALL_TEXT_LIMIT:
        return False
    return any(marker.search(html) for marker in markers)


class _PaywalledReadabilityStrategy(GenericStrategy):
    """Generic extraction preceded by a platform-specific paywall check."""

    markers: tuple[re.Pattern[str], ...] = ()

    def __init__(self, extractor: HTMLExtractor | None = None) -> None:
        super().__init__(extractor, discover_oembed=False)

    async def parse(self, ctx: StrategyContext) -> StrategyDraft:
        draft = await super().parse(ctx)
        draft.strategy = self.name
        page = ctx.page
        if page is not None and draft.fallback_reason is None and detect_paywall(
            page.text, draft.text_length, self.markers
        ):
            logger.info("Paywall detected on %s", ctx.url.loggable)
            draft.fallback_reason = FallbackReason.PAYWALLED
            draft.content_html = None
        return draft


class MediumStrategy(_PaywalledReadabilityStrategy):
    """Medium articles; member-only stories fall back to a paywalled webview."""

    name = "medium"
    kind = StrategyKind.GENERIC_READABILITY
    markers = MEDIUM_PAYWALL_MARKERS


class SubstackStrategy(_PaywalledReadabilityStrategy):
    """Substack posts; paid-only posts fall back to a paywalled webview."""

    name = "substack"
    kind = StrategyKind.GENERIC_READABILITY
    markers = SUBSTACK_PAYWALL_MARKERS
